"""
Module: billing_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident, per-invoice audit chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (db/immutability.py).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - (invoice_id, seq) is unique and seq increases by one per invoice.
      Every write for an invoice runs under that invoice's lock, so the
      chain tip read before an append is never stale.

Audit relevance:
    Every invoice and payment state transition produces an AuditEvent.  Payment
    transitions carry the payment amount in minor units so ``amount_paid`` can
    be replayed independently of the payments table.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Invoice lifecycle
    INVOICE_CREATED = "invoice_created"
    INVOICE_SUBMITTED_FOR_APPROVAL = "invoice_submitted_for_approval"
    INVOICE_APPROVED = "invoice_approved"
    INVOICE_REJECTED = "invoice_rejected"
    INVOICE_POSTED = "invoice_posted"
    INVOICE_PAID = "invoice_paid"
    INVOICE_MARKED_PAID = "invoice_marked_paid"
    INVOICE_REOPENED = "invoice_reopened"
    INVOICE_PAYMENT_STATE_CHANGED = "invoice_payment_state_changed"
    INVOICE_CANCELLED = "invoice_cancelled"
    INVOICE_OVERDUE_FLAGGED = "invoice_overdue_flagged"

    # Payment lifecycle
    PAYMENT_SUBMITTED = "payment_submitted"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_REVERSED = "payment_reversed"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.  Each row's
        hash includes the previous row's hash for the same invoice.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        UniqueConstraint("invoice_id", "seq", name="uq_audit_invoice_seq"),
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    # Invoice whose chain this event belongs to
    invoice_id: Mapped[UUID] = mapped_column(nullable=False)

    # Per-invoice monotonic sequence
    seq: Mapped[int] = mapped_column(nullable=False)

    # "invoice" or "payment"
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    from_state: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_state: Mapped[str] = mapped_column(String(30), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<AuditEvent #{self.seq} {self.action} on "
            f"{self.entity_type}:{self.entity_id}>"
        )
