"""
Payment domain model (``billing_kernel.domain.payment``).

Responsibility
--------------
Frozen read model for payments, the payment verification workflow, and the
recognised payment methods.

Architecture position
---------------------
**Kernel domain layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* A payment's amount never changes after submission.
* Only ``verified`` payments count toward an invoice's ``amount_paid``.
* ``reversed`` and ``rejected`` are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from billing_kernel.domain.values import Money
from billing_kernel.domain.workflow import Guard, Transition, Workflow


class PaymentState(str, Enum):
    """Payment verification states."""
    SUBMITTED = "submitted"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REVERSED = "reversed"


class PaymentMethod(str, Enum):
    """How the organization says it paid. Recorded, never processed."""
    CHECK = "check"
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    CASH = "cash"
    OTHER = "other"


PENDING_STATES: frozenset[PaymentState] = frozenset({
    PaymentState.SUBMITTED,
    PaymentState.PENDING_VERIFICATION,
})

# Payments that keep an invoice from being cancelled.
HELD_STATES: frozenset[PaymentState] = PENDING_STATES | {PaymentState.VERIFIED}


def parse_method(method: str | PaymentMethod | None) -> PaymentMethod | None:
    """Normalise a method name; ``None`` when absent or unknown."""
    if isinstance(method, PaymentMethod):
        return method
    if not method or not isinstance(method, str) or not method.strip():
        return None
    try:
        return PaymentMethod(method.strip().lower())
    except ValueError:
        return None


# -----------------------------------------------------------------------------
# Payment Workflow
# -----------------------------------------------------------------------------

WITHIN_REVERSAL_WINDOW = Guard(
    name="within_reversal_window",
    description="Verification happened within the configured reversal window",
)

NO_OVERPAYMENT = Guard(
    name="no_overpayment",
    description="Verified amount does not exceed the invoice balance",
)

_P = PaymentState

PAYMENT_WORKFLOW = Workflow(
    name="organization_payment",
    description="Organization payment verification lifecycle",
    initial_state=_P.SUBMITTED.value,
    states=tuple(s.value for s in PaymentState),
    transitions=(
        Transition(_P.SUBMITTED.value, _P.PENDING_VERIFICATION.value, action="submit"),
        Transition(_P.PENDING_VERIFICATION.value, _P.VERIFIED.value, action="verify", guard=NO_OVERPAYMENT),
        Transition(_P.PENDING_VERIFICATION.value, _P.REJECTED.value, action="reject"),
        Transition(_P.VERIFIED.value, _P.REVERSED.value, action="reverse", guard=WITHIN_REVERSAL_WINDOW),
    ),
    terminal_states=(_P.REJECTED.value, _P.REVERSED.value),
)


@dataclass(frozen=True)
class PaymentView:
    """Read model of a payment at a point in time."""
    id: UUID
    invoice_id: UUID
    amount: Money
    method: PaymentMethod
    state: PaymentState
    submitted_at: datetime
    payment_date: date | None = None
    reference_number: str | None = None
    notes: str | None = None
    idempotency_key: str | None = None
    submitted_by_id: UUID | None = None
    decided_by_id: UUID | None = None
    verified_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    reversed_at: datetime | None = None
    reversal_reason: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.state in PENDING_STATES

    @property
    def counts_toward_balance(self) -> bool:
        return self.state is PaymentState.VERIFIED
