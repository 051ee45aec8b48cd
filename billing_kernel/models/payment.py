"""
Module: billing_kernel.models.payment
Responsibility: ORM persistence for organization payments.
Architecture position: Kernel > Models.

Invariants enforced:
    - Append-only history: payments are never deleted.
    - ``amount``, ``currency`` and ``invoice_id`` never change after insert
      (db/immutability.py).
    - Verification, rejection and reversal notes are appended to ``notes``;
      the submitter's text is kept.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase
from billing_kernel.domain.payment import PaymentMethod, PaymentState, PaymentView
from billing_kernel.domain.values import Money


class PaymentModel(TrackedBase):
    """
    ORM model for organization payments.

    Maps to the ``PaymentView`` frozen dataclass.
    """

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payments_invoice_id", "invoice_id"),
        Index("idx_payments_state", "state"),
        Index("idx_payments_idempotency_key", "idempotency_key"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    state: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PaymentState.PENDING_VERIFICATION.value
    )
    decided_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reversal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    invoice: Mapped["InvoiceModel"] = relationship(  # noqa: F821
        back_populates="payments",
        lazy="raise_on_sql",
    )

    @property
    def money(self) -> Money:
        return Money.of(self.amount, self.currency)

    def append_note(self, label: str, text: str | None) -> None:
        """Append a labelled note, keeping whatever was there before."""
        if not text:
            return
        entry = f"[{label}] {text}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry

    def to_view(self) -> PaymentView:
        """Convert ORM model to frozen dataclass."""
        return PaymentView(
            id=self.id,
            invoice_id=self.invoice_id,
            amount=self.money,
            method=PaymentMethod(self.method),
            state=PaymentState(self.state),
            submitted_at=self.submitted_at,
            payment_date=self.payment_date,
            reference_number=self.reference_number,
            notes=self.notes,
            idempotency_key=self.idempotency_key,
            submitted_by_id=self.created_by_id,
            decided_by_id=self.decided_by_id,
            verified_at=self.verified_at,
            rejected_at=self.rejected_at,
            rejection_reason=self.rejection_reason,
            reversed_at=self.reversed_at,
            reversal_reason=self.reversal_reason,
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentModel {self.id} invoice={self.invoice_id} "
            f"amount={self.amount} {self.currency} state={self.state}>"
        )
