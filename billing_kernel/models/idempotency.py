"""
Module: billing_kernel.models.idempotency
Responsibility: ORM persistence for payment submission idempotency keys.
Architecture position: Kernel > Models.

Invariants enforced:
    - ``key`` is unique: the database rejects a second claim of the same key
      even when two processes race past the application-level check.
    - ``request_fingerprint`` pins the key to one (invoice, amount, method)
      request; replays with a different request are conflicts.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base


class IdempotencyRecord(Base):
    """A claimed idempotency key and the payment it produced."""

    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    payment_id: Mapped[UUID] = mapped_column(ForeignKey("payments.id"), nullable=False)
    request_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.key} -> payment {self.payment_id}>"
