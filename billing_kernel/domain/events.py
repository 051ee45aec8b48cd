"""Domain events emitted by the reconciliation service.

All events are versioned, immutable facts about invoice and payment state
changes.  They are delivered to subscribers only after the producing
transaction has committed.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID

from billing_kernel.domain.values import Money


@dataclass(frozen=True)
class DomainEvent:
    """Base for all billing events."""

    event_type: ClassVar[str] = "domain_event"
    __version__: ClassVar[str] = "v1"

    invoice_id: UUID
    occurred_at: datetime

    def to_payload(self) -> dict[str, Any]:
        """JSON-friendly dict (Money as minor units plus currency)."""
        payload: dict[str, Any] = {"event_type": self.event_type, "version": self.__version__}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Money):
                payload[f.name] = value.amount
                payload[f"{f.name}_currency"] = value.currency.code
            elif isinstance(value, UUID):
                payload[f.name] = str(value)
            elif isinstance(value, datetime):
                payload[f.name] = value.isoformat()
            else:
                payload[f.name] = value
        return payload


@dataclass(frozen=True)
class PaymentSubmitted(DomainEvent):
    """An organization submitted a payment for verification."""

    event_type: ClassVar[str] = "payment_submitted"

    payment_id: UUID
    organization_id: UUID
    amount: Money
    method: str


@dataclass(frozen=True)
class PaymentVerified(DomainEvent):
    """Accounting confirmed a payment; it now counts toward amount_paid."""

    event_type: ClassVar[str] = "payment_verified"

    payment_id: UUID
    organization_id: UUID
    amount: Money
    balance_due: Money


@dataclass(frozen=True)
class PaymentRejected(DomainEvent):
    """A submitted payment was rejected; the ledger is unchanged."""

    event_type: ClassVar[str] = "payment_rejected"

    payment_id: UUID
    organization_id: UUID
    amount: Money
    reason: str


@dataclass(frozen=True)
class PaymentReversed(DomainEvent):
    """A verified payment was reversed; amount_paid went down."""

    event_type: ClassVar[str] = "payment_reversed"

    payment_id: UUID
    organization_id: UUID
    amount: Money
    balance_due: Money
    reason: str


@dataclass(frozen=True)
class InvoicePosted(DomainEvent):
    """An approved invoice was made visible and payable to its organization."""

    event_type: ClassVar[str] = "invoice_posted"

    organization_id: UUID
    invoice_number: str
    total: Money
    due_at: datetime


@dataclass(frozen=True)
class InvoicePaid(DomainEvent):
    """An invoice reached zero balance."""

    event_type: ClassVar[str] = "invoice_paid"

    organization_id: UUID
    invoice_number: str
    total: Money


@dataclass(frozen=True)
class InvoiceOverdue(DomainEvent):
    """An open invoice passed its due date (emitted once per invoice)."""

    event_type: ClassVar[str] = "invoice_overdue"

    organization_id: UUID
    invoice_number: str
    balance_due: Money
    due_at: datetime
