"""
Pure domain layer.

Value objects, state machines and policy functions with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Time enters only through the ``Clock`` abstraction.
"""

from billing_kernel.domain.balance import (
    PaymentPreview,
    compute_amount_paid,
    count_pending,
    preview,
)
from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from billing_kernel.domain.invoice import (
    INVOICE_WORKFLOW,
    RECEIVABLE_STATES,
    ApprovalStatus,
    BillingReadyCourse,
    InvoiceStatus,
    InvoiceView,
    PaymentStatus,
    derive_payment_status,
    payable_states,
    settled_status,
)
from billing_kernel.domain.ordering import (
    OrderingDecision,
    can_accept_payment,
    oldest_unpaid,
)
from billing_kernel.domain.organization import (
    InMemoryOrganizationDirectory,
    OrganizationDirectory,
)
from billing_kernel.domain.payment import (
    PAYMENT_WORKFLOW,
    PaymentMethod,
    PaymentState,
    PaymentView,
    parse_method,
)
from billing_kernel.domain.values import Currency, Money
from billing_kernel.domain.workflow import Guard, Transition, Workflow

__all__ = [
    "ApprovalStatus",
    "BillingReadyCourse",
    "Clock",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "Guard",
    "INVOICE_WORKFLOW",
    "InMemoryOrganizationDirectory",
    "InvoiceStatus",
    "InvoiceView",
    "Money",
    "OrderingDecision",
    "OrganizationDirectory",
    "PAYMENT_WORKFLOW",
    "PaymentMethod",
    "PaymentPreview",
    "PaymentState",
    "PaymentStatus",
    "PaymentView",
    "RECEIVABLE_STATES",
    "SystemClock",
    "Transition",
    "Workflow",
    "can_accept_payment",
    "compute_amount_paid",
    "count_pending",
    "derive_payment_status",
    "oldest_unpaid",
    "parse_method",
    "payable_states",
    "preview",
    "settled_status",
]
