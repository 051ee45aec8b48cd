"""
Organization billing and payment summaries (``billing_kernel.domain.summary``).

Pure folds over invoice and payment read models.  Amounts are summed in a
single currency; invoices and payments in other currencies are left out by
the caller.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from billing_kernel.domain.invoice import (
    BILLED_STATES,
    InvoiceView,
    PaymentStatus,
)
from billing_kernel.domain.ordering import oldest_unpaid
from billing_kernel.domain.payment import PaymentState, PaymentView
from billing_kernel.domain.values import Currency, Money


@dataclass(frozen=True)
class OrganizationBillingSummary:
    """What an organization has been billed and what it still owes."""
    organization_id: UUID
    currency: str
    invoice_count: int
    open_invoice_count: int
    overdue_invoice_count: int
    total_billed: Money
    total_paid: Money
    total_outstanding: Money
    overdue_amount: Money
    oldest_unpaid_invoice_id: UUID | None = None


@dataclass(frozen=True)
class OrganizationPaymentSummary:
    """Payments an organization has submitted, by verification state."""
    organization_id: UUID
    currency: str
    payment_count: int
    pending_count: int
    verified_count: int
    rejected_count: int
    reversed_count: int
    pending_amount: Money
    verified_amount: Money
    reversed_amount: Money
    last_submitted_at: datetime | None = None


def summarize_invoices(
    organization_id: UUID,
    currency: Currency | str,
    invoices: Sequence[InvoiceView],
) -> OrganizationBillingSummary:
    """
    Summarize billed invoices (posted, payment_submitted, paid).

    ``payment_status`` on each view must already be derived at the desired
    "now"; overdue figures come from it.
    """
    currency = Currency(currency) if isinstance(currency, str) else currency
    zero = Money.zero(currency)
    billed = [
        inv for inv in invoices
        if inv.status in BILLED_STATES and inv.total.currency == currency
    ]
    total_billed = sum((inv.total for inv in billed), zero)
    total_paid = sum((inv.amount_paid for inv in billed), zero)
    open_invoices = [inv for inv in billed if inv.is_receivable and inv.balance_due.is_positive]
    overdue = [inv for inv in open_invoices if inv.payment_status is PaymentStatus.OVERDUE]
    oldest = oldest_unpaid(billed)
    return OrganizationBillingSummary(
        organization_id=organization_id,
        currency=currency.code,
        invoice_count=len(billed),
        open_invoice_count=len(open_invoices),
        overdue_invoice_count=len(overdue),
        total_billed=total_billed,
        total_paid=total_paid,
        total_outstanding=total_billed - total_paid,
        overdue_amount=sum((inv.balance_due for inv in overdue), zero),
        oldest_unpaid_invoice_id=oldest.id if oldest else None,
    )


def summarize_payments(
    organization_id: UUID,
    currency: Currency | str,
    payments: Iterable[PaymentView],
) -> OrganizationPaymentSummary:
    currency = Currency(currency) if isinstance(currency, str) else currency
    zero = Money.zero(currency)
    selected = [p for p in payments if p.amount.currency == currency]

    def _of(*states: PaymentState) -> list[PaymentView]:
        return [p for p in selected if p.state in states]

    pending = _of(PaymentState.SUBMITTED, PaymentState.PENDING_VERIFICATION)
    verified = _of(PaymentState.VERIFIED)
    reversed_ = _of(PaymentState.REVERSED)
    return OrganizationPaymentSummary(
        organization_id=organization_id,
        currency=currency.code,
        payment_count=len(selected),
        pending_count=len(pending),
        verified_count=len(verified),
        rejected_count=len(_of(PaymentState.REJECTED)),
        reversed_count=len(reversed_),
        pending_amount=sum((p.amount for p in pending), zero),
        verified_amount=sum((p.amount for p in verified), zero),
        reversed_amount=sum((p.amount for p in reversed_), zero),
        last_submitted_at=max((p.submitted_at for p in selected), default=None),
    )
