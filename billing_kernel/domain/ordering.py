"""
Payment ordering policy (``billing_kernel.domain.ordering``).

Within one organization, open invoices are settled oldest-first.  An invoice
may accept a new payment only when no other payable invoice of the same
organization sorts before it with a positive balance.  Which states count
as payable is configuration (``payable_states``); the default is the
receivable states, posted and payment_submitted.

Sort key is ``(issued_at, str(id))`` so invoices issued at the same instant
still have a deterministic order.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from billing_kernel.domain.invoice import RECEIVABLE_STATES, InvoiceStatus
from billing_kernel.domain.values import Money


class _Orderable(Protocol):
    id: UUID
    organization_id: UUID
    issued_at: datetime
    status: InvoiceStatus

    @property
    def balance_due(self) -> Money: ...


@dataclass(frozen=True)
class OrderingDecision:
    allowed: bool
    blocking_invoice_id: UUID | None = None


def sort_key(invoice: _Orderable) -> tuple[datetime, str]:
    return (invoice.issued_at, str(invoice.id))


def _is_open(invoice: _Orderable, open_states: Collection[InvoiceStatus]) -> bool:
    return invoice.status in open_states and invoice.balance_due.is_positive


def oldest_unpaid(
    org_invoices: Iterable[_Orderable],
    open_states: Collection[InvoiceStatus] = RECEIVABLE_STATES,
) -> _Orderable | None:
    """The payable invoice with the smallest sort key and a balance, if any."""
    candidates = [inv for inv in org_invoices if _is_open(inv, open_states)]
    if not candidates:
        return None
    return min(candidates, key=sort_key)


def can_accept_payment(
    invoice: _Orderable,
    org_invoices: Iterable[_Orderable],
    open_states: Collection[InvoiceStatus] = RECEIVABLE_STATES,
) -> OrderingDecision:
    """
    Decide whether ``invoice`` may take a new payment.

    ``org_invoices`` is every invoice of the organization; invoices of other
    organizations are ignored.  ``open_states`` are the states in which an
    invoice with a balance blocks newer ones.  When denied,
    ``blocking_invoice_id`` is the oldest open invoice that must be settled
    first.
    """
    own_key = sort_key(invoice)
    blockers = [
        other for other in org_invoices
        if other.id != invoice.id
        and other.organization_id == invoice.organization_id
        and _is_open(other, open_states)
        and sort_key(other) < own_key
    ]
    if not blockers:
        return OrderingDecision(allowed=True)
    oldest = min(blockers, key=sort_key)
    return OrderingDecision(allowed=False, blocking_invoice_id=oldest.id)
