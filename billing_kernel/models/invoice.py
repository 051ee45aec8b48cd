"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for course invoices.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain layer (for ``to_view``).

Invariants enforced:
    - course_reference is unique: one invoice per billing-ready course.
    - invoice_number is unique.
    - Money columns are BigInteger minor units with a single ``currency``.
    - ``amount_paid`` is materialized by the reconciliation service from the
      verified payment history; nothing else writes it.
    - Invoices are never deleted (see db/immutability.py).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.invoice import (
    ApprovalStatus,
    InvoiceStatus,
    InvoiceView,
    derive_payment_status,
)
from billing_kernel.domain.values import Money


class InvoiceModel(TrackedBase):
    """
    ORM model for course invoices.

    Maps to the ``InvoiceView`` frozen dataclass.  Payments are a separate
    append-only child table reached via ``payments``.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        UniqueConstraint("course_reference", name="uq_invoices_course_reference"),
        Index("idx_invoices_org_issued", "organization_id", "issued_at"),
        Index("idx_invoices_status", "status"),
        Index("idx_invoices_due_at", "due_at"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    organization_id: Mapped[UUID] = mapped_column(nullable=False)
    course_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    issued_at: Mapped[datetime] = mapped_column(nullable=False)
    due_at: Mapped[datetime] = mapped_column(nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    base_cost: Mapped[int] = mapped_column(nullable=False)
    tax_amount: Mapped[int] = mapped_column(nullable=False)
    amount_paid: Mapped[int] = mapped_column(nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default=InvoiceStatus.DRAFT.value)
    approval_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ApprovalStatus.PENDING_APPROVAL.value
    )

    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    overdue_notified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    payments: Mapped[list["PaymentModel"]] = relationship(  # noqa: F821
        back_populates="invoice",
        order_by="PaymentModel.submitted_at",
        lazy="selectin",
    )

    @property
    def total(self) -> int:
        return self.base_cost + self.tax_amount

    @property
    def balance_due(self) -> int:
        return self.total - self.amount_paid

    @property
    def status_enum(self) -> InvoiceStatus:
        return InvoiceStatus(self.status)

    def to_view(self, now: datetime) -> InvoiceView:
        """Convert ORM model to frozen dataclass, deriving payment_status at ``now``."""
        status = InvoiceStatus(self.status)
        return InvoiceView(
            id=self.id,
            invoice_number=self.invoice_number,
            organization_id=self.organization_id,
            course_reference=self.course_reference,
            issued_at=self.issued_at,
            due_at=self.due_at,
            base_cost=Money.of(self.base_cost, self.currency),
            tax_amount=Money.of(self.tax_amount, self.currency),
            amount_paid=Money.of(self.amount_paid, self.currency),
            status=status,
            approval_status=ApprovalStatus(self.approval_status),
            payment_status=derive_payment_status(status, self.due_at, now),
            description=self.description,
            approved_at=self.approved_at,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
            posted_at=self.posted_at,
            paid_at=self.paid_at,
            cancelled_at=self.cancelled_at,
            overdue_notified_at=self.overdue_notified_at,
            notes=self.notes,
        )

    def __repr__(self) -> str:
        return (
            f"<InvoiceModel {self.invoice_number} "
            f"status={self.status} balance={self.balance_due}>"
        )
