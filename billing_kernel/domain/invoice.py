"""
Invoice domain model (``billing_kernel.domain.invoice``).

Responsibility
--------------
Frozen value objects for course invoices, the invoice lifecycle workflow,
and the derived ``payment_status`` label.

Architecture position
---------------------
**Kernel domain layer** -- pure data definitions with ZERO I/O.  Returned to
callers by ``ReconciliationService``; consumed by the balance calculator and
the ordering policy.

Invariants enforced
-------------------
* ``total == base_cost + tax_amount``; all amounts share one currency.
* ``balance_due == total - amount_paid`` and is never negative.
* ``overdue`` is derived from ``due_at`` and "now"; it is never stored.
* ``paid``, ``rejected`` and ``cancelled`` accept no invoice commands.
* An ``approved`` invoice holding payments cannot be cancelled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from billing_kernel.domain.values import Money
from billing_kernel.domain.workflow import Guard, Transition, Workflow


class InvoiceStatus(str, Enum):
    """Stored invoice lifecycle states."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    POSTED = "posted"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAID = "paid"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ApprovalStatus(str, Enum):
    """Stored approval decision."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    """Derived payment label shown to the organization."""
    UNBILLED = "unbilled"
    PENDING = "pending"
    PAYMENT_SUBMITTED = "payment_submitted"
    PAID = "paid"
    OVERDUE = "overdue"


# States in which an invoice is an open receivable of its organization.
RECEIVABLE_STATES: frozenset[InvoiceStatus] = frozenset({
    InvoiceStatus.POSTED,
    InvoiceStatus.PAYMENT_SUBMITTED,
})

BILLED_STATES: frozenset[InvoiceStatus] = RECEIVABLE_STATES | {InvoiceStatus.PAID}


def payable_states(require_posting_before_payment: bool = True) -> frozenset[InvoiceStatus]:
    """States in which ``submit_payment`` is accepted."""
    if require_posting_before_payment:
        return RECEIVABLE_STATES
    return RECEIVABLE_STATES | {InvoiceStatus.APPROVED}


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

BALANCE_ZERO = Guard(
    name="balance_zero",
    description="Invoice balance due is zero",
)

REASON_GIVEN = Guard(
    name="reason_given",
    description="A non-empty reason accompanies the command",
)

POSTING_NOT_REQUIRED = Guard(
    name="posting_not_required",
    description="Configuration allows payments on approved, unposted invoices",
)

BALANCE_REOPENED = Guard(
    name="balance_reopened",
    description="A reversal left a positive balance due",
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

_S = InvoiceStatus

INVOICE_WORKFLOW = Workflow(
    name="course_invoice",
    description="Course invoice lifecycle from draft to settlement",
    initial_state=_S.DRAFT.value,
    states=tuple(s.value for s in InvoiceStatus),
    transitions=(
        Transition(_S.DRAFT.value, _S.PENDING_APPROVAL.value, action="submit_for_approval"),
        Transition(_S.PENDING_APPROVAL.value, _S.APPROVED.value, action="approve"),
        Transition(_S.PENDING_APPROVAL.value, _S.REJECTED.value, action="reject", guard=REASON_GIVEN),
        Transition(_S.APPROVED.value, _S.POSTED.value, action="post_to_organization"),
        Transition(_S.POSTED.value, _S.PAID.value, action="mark_as_paid", guard=BALANCE_ZERO),
        Transition(_S.PAYMENT_SUBMITTED.value, _S.PAID.value, action="mark_as_paid", guard=BALANCE_ZERO),
        Transition(_S.APPROVED.value, _S.PAID.value, action="mark_as_paid", guard=POSTING_NOT_REQUIRED),
        Transition(_S.DRAFT.value, _S.CANCELLED.value, action="cancel", guard=REASON_GIVEN),
        Transition(_S.PENDING_APPROVAL.value, _S.CANCELLED.value, action="cancel", guard=REASON_GIVEN),
        Transition(_S.APPROVED.value, _S.CANCELLED.value, action="cancel", guard=REASON_GIVEN),
        # Payment-driven transitions
        Transition(_S.POSTED.value, _S.PAYMENT_SUBMITTED.value, action="payment_submitted", system=True),
        Transition(_S.PAYMENT_SUBMITTED.value, _S.PAYMENT_SUBMITTED.value, action="payment_submitted", system=True),
        Transition(_S.APPROVED.value, _S.PAYMENT_SUBMITTED.value, action="payment_submitted",
                   guard=POSTING_NOT_REQUIRED, system=True),
        Transition(_S.PAYMENT_SUBMITTED.value, _S.PAID.value, action="payment_settled", guard=BALANCE_ZERO, system=True),
        Transition(_S.PAYMENT_SUBMITTED.value, _S.PAYMENT_SUBMITTED.value, action="payment_settled", system=True),
        Transition(_S.PAYMENT_SUBMITTED.value, _S.POSTED.value, action="payment_settled", system=True),
        Transition(_S.PAYMENT_SUBMITTED.value, _S.APPROVED.value, action="payment_settled",
                   guard=POSTING_NOT_REQUIRED, system=True),
        Transition(_S.POSTED.value, _S.PAID.value, action="payment_settled", guard=BALANCE_ZERO, system=True),
        Transition(_S.APPROVED.value, _S.PAID.value, action="payment_settled",
                   guard=POSTING_NOT_REQUIRED, system=True),
        Transition(_S.POSTED.value, _S.POSTED.value, action="payment_settled", system=True),
        Transition(_S.APPROVED.value, _S.APPROVED.value, action="payment_settled",
                   guard=POSTING_NOT_REQUIRED, system=True),
        Transition(_S.PAID.value, _S.PAID.value, action="payment_settled", system=True),
        Transition(_S.PAID.value, _S.POSTED.value, action="payment_settled", guard=BALANCE_REOPENED, system=True),
        Transition(_S.PAID.value, _S.PAYMENT_SUBMITTED.value, action="payment_settled",
                   guard=BALANCE_REOPENED, system=True),
        Transition(_S.PAID.value, _S.APPROVED.value, action="payment_settled",
                   guard=BALANCE_REOPENED, system=True),
    ),
    terminal_states=(_S.PAID.value, _S.REJECTED.value, _S.CANCELLED.value),
)


# -----------------------------------------------------------------------------
# Value objects
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class BillingReadyCourse:
    """
    A completed course that is ready to be invoiced.

    Produced by the scheduling side of the system.  ``base_cost`` and
    ``tax_amount`` arrive precomputed; the engine never computes tax.
    """
    course_reference: str
    organization_id: UUID
    base_cost: Money
    tax_amount: Money
    issued_at: datetime | None = None
    due_at: datetime | None = None
    payment_terms_days: int | None = None
    description: str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if not self.course_reference or not self.course_reference.strip():
            raise ValueError("course_reference is required")
        if self.base_cost.currency != self.tax_amount.currency:
            raise ValueError("base_cost and tax_amount must share a currency")
        if self.base_cost.is_negative or self.tax_amount.is_negative:
            raise ValueError("base_cost and tax_amount must be non-negative")
        if self.payment_terms_days is not None and self.payment_terms_days < 0:
            raise ValueError("payment_terms_days must be non-negative")
        for name in ("issued_at", "due_at"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                raise ValueError(f"{name} must be timezone-aware")

    @property
    def total(self) -> Money:
        return self.base_cost + self.tax_amount


@dataclass(frozen=True)
class InvoiceView:
    """Read model of an invoice at a point in time."""
    id: UUID
    invoice_number: str
    organization_id: UUID
    course_reference: str
    issued_at: datetime
    due_at: datetime
    base_cost: Money
    tax_amount: Money
    amount_paid: Money
    status: InvoiceStatus
    approval_status: ApprovalStatus
    payment_status: PaymentStatus
    description: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    posted_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    overdue_notified_at: datetime | None = None
    notes: str | None = None

    @property
    def total(self) -> Money:
        return self.base_cost + self.tax_amount

    @property
    def balance_due(self) -> Money:
        return self.total - self.amount_paid

    @property
    def currency(self) -> str:
        return self.total.currency.code

    @property
    def is_receivable(self) -> bool:
        return self.status in RECEIVABLE_STATES


# -----------------------------------------------------------------------------
# Derivations
# -----------------------------------------------------------------------------


def derive_payment_status(
    status: InvoiceStatus,
    due_at: datetime,
    now: datetime,
) -> PaymentStatus:
    """
    Derive the payment label from stored state and the current time.

    Precedence: unbilled, paid, overdue, payment_submitted, pending.  An
    invoice with a payment awaiting verification still reads ``overdue``
    once its due date has passed.
    """
    if status not in BILLED_STATES:
        return PaymentStatus.UNBILLED
    if status is InvoiceStatus.PAID:
        return PaymentStatus.PAID
    if now > due_at:
        return PaymentStatus.OVERDUE
    if status is InvoiceStatus.PAYMENT_SUBMITTED:
        return PaymentStatus.PAYMENT_SUBMITTED
    return PaymentStatus.PENDING


def settled_status(
    balance_due: int,
    pending_payments: int,
    was_posted: bool,
) -> InvoiceStatus:
    """
    Invoice state after a payment decision (verify, reject, reverse).

    Zero balance settles the invoice; otherwise outstanding verifications
    keep it in ``payment_submitted``; otherwise it returns to ``posted``
    (or ``approved`` when it was paid before ever being posted).
    """
    if balance_due <= 0:
        return InvoiceStatus.PAID
    if pending_payments > 0:
        return InvoiceStatus.PAYMENT_SUBMITTED
    return InvoiceStatus.POSTED if was_posted else InvoiceStatus.APPROVED
