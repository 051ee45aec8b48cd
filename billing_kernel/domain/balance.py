"""
Balance calculator (``billing_kernel.domain.balance``).

Responsibility
--------------
Pure functions that answer "what would this payment do to the invoice?"
and "how much has actually been paid?".

Architecture position
---------------------
**Kernel domain layer** -- pure functions, ZERO I/O.  The reconciliation
service calls them inside its transaction; UIs call ``preview`` through
``ReconciliationService.preview_payment`` before submitting.

Invariants enforced
-------------------
* ``amount_paid`` is a fold over verified payments only.
* Full payment is exact minor-unit equality; there is no tolerance.
* Overpayment is flagged, never silently capped.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from billing_kernel.domain.payment import PaymentState
from billing_kernel.domain.values import Currency, Money


class _HasBalance(Protocol):
    @property
    def total(self) -> Money: ...

    @property
    def amount_paid(self) -> Money: ...


class _HasAmountAndState(Protocol):
    amount: Money
    state: PaymentState


@dataclass(frozen=True)
class PaymentPreview:
    """Effect of a candidate payment on an invoice's balance."""
    current_balance: Money
    candidate_amount: Money
    resulting_balance: Money
    is_overpayment: bool
    is_full_payment: bool
    is_valid_amount: bool


def preview(invoice: _HasBalance, candidate_amount: Money) -> PaymentPreview:
    """
    Preview a candidate payment against an invoice.

    Raises:
        ValueError: If the candidate is in a different currency.
    """
    current_balance = invoice.total - invoice.amount_paid
    resulting_balance = current_balance - candidate_amount
    is_overpayment = candidate_amount > current_balance
    return PaymentPreview(
        current_balance=current_balance,
        candidate_amount=candidate_amount,
        resulting_balance=resulting_balance,
        is_overpayment=is_overpayment,
        is_full_payment=candidate_amount == current_balance,
        is_valid_amount=candidate_amount.is_positive and not is_overpayment,
    )


def compute_amount_paid(
    payments: Iterable[_HasAmountAndState],
    currency: Currency | str,
) -> Money:
    """Sum of verified payment amounts."""
    total = Money.zero(currency)
    for payment in payments:
        if payment.state is PaymentState.VERIFIED:
            total = total + payment.amount
    return total


def count_pending(payments: Iterable[_HasAmountAndState]) -> int:
    return sum(
        1 for p in payments
        if p.state in (PaymentState.SUBMITTED, PaymentState.PENDING_VERIFICATION)
    )
