"""Small builders shared by the billing test modules."""

from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from billing_kernel.domain.invoice import (
    ApprovalStatus,
    InvoiceStatus,
    InvoiceView,
    derive_payment_status,
)
from billing_kernel.domain.payment import PaymentMethod, PaymentState, PaymentView
from billing_kernel.domain.values import Money

# Scenario clock: after the January invoices were issued, before they fall due.
TEST_NOW = datetime(2024, 1, 20, 12, 0, 0, tzinfo=UTC)


def jan(day: int, hour: int = 9) -> datetime:
    """A January 2024 timestamp in UTC."""
    return datetime(2024, 1, day, hour, 0, 0, tzinfo=UTC)


def usd(value: str) -> Money:
    return Money.from_decimal(value, "USD")


def invoice_view(
    *,
    total: str = "40.68",
    amount_paid: str = "0.00",
    status: InvoiceStatus = InvoiceStatus.POSTED,
    issued_at: datetime | None = None,
    due_at: datetime | None = None,
    organization_id: UUID | None = None,
    invoice_id: UUID | None = None,
    now: datetime = TEST_NOW,
) -> InvoiceView:
    """An InvoiceView with no tax line, for the pure domain tests."""
    issued_at = issued_at or jan(1)
    due_at = due_at or issued_at + timedelta(days=30)
    return InvoiceView(
        id=invoice_id or uuid4(),
        invoice_number="INV-2024-000001",
        organization_id=organization_id or uuid4(),
        course_reference=f"course-{uuid4()}",
        issued_at=issued_at,
        due_at=due_at,
        base_cost=usd(total),
        tax_amount=usd("0.00"),
        amount_paid=usd(amount_paid),
        status=status,
        approval_status=ApprovalStatus.APPROVED,
        payment_status=derive_payment_status(status, due_at, now),
    )


def payment_view(
    amount: str,
    state: PaymentState,
    *,
    invoice_id: UUID | None = None,
    submitted_at: datetime | None = None,
) -> PaymentView:
    return PaymentView(
        id=uuid4(),
        invoice_id=invoice_id or uuid4(),
        amount=usd(amount),
        method=PaymentMethod.CHECK,
        state=state,
        submitted_at=submitted_at or TEST_NOW,
    )
