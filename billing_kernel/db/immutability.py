"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The payment history is the ledger: ``amount_paid`` is a fold over it, and the
audit chain replays it.  Editing a payment's amount or deleting a row would
make both silently wrong.  Corrections happen through new transitions
(reject, reverse), never through edits.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
Listeners registered here check the rules and raise
ImmutabilityViolationError; the transaction is aborted and the database is
never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity        | Rule
--------------|---------------------------------------------------------
PaymentModel  | amount, currency, invoice_id, method never change; no delete
InvoiceModel  | base_cost, tax_amount, currency, organization_id and
              | course_reference never change; no delete
AuditEvent    | No update, no delete

===============================================================================
"""

from sqlalchemy import event, inspect

from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

PAYMENT_FROZEN_FIELDS = frozenset({"amount", "currency", "invoice_id", "method"})
INVOICE_FROZEN_FIELDS = frozenset({
    "base_cost",
    "tax_amount",
    "currency",
    "organization_id",
    "course_reference",
    "invoice_number",
})


def _changed_fields(target, fields: frozenset[str]) -> list[str]:
    state = inspect(target)
    changed = []
    for name in sorted(fields):
        history = state.attrs[name].history
        if history.deleted and history.added and history.deleted != history.added:
            changed.append(name)
    return changed


def _blocked(entity_type: str, target, operation: str, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_payment_immutability(mapper, connection, target):
    changed = _changed_fields(target, PAYMENT_FROZEN_FIELDS)
    if changed:
        raise _blocked(
            "Payment", target, "UPDATE",
            f"Payment fields {changed} cannot change after submission",
        )


def _check_payment_delete(mapper, connection, target):
    raise _blocked("Payment", target, "DELETE", "Payments cannot be deleted")


def _check_invoice_immutability(mapper, connection, target):
    changed = _changed_fields(target, INVOICE_FROZEN_FIELDS)
    if changed:
        raise _blocked(
            "Invoice", target, "UPDATE",
            f"Invoice fields {changed} cannot change after creation",
        )


def _check_invoice_delete(mapper, connection, target):
    raise _blocked("Invoice", target, "DELETE", "Invoices cannot be deleted")


def _check_audit_event_immutability(mapper, connection, target):
    raise _blocked(
        "AuditEvent", target, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    raise _blocked("AuditEvent", target, "DELETE", "Audit events cannot be deleted")


def _listeners():
    from billing_kernel.models.audit_event import AuditEvent
    from billing_kernel.models.invoice import InvoiceModel
    from billing_kernel.models.payment import PaymentModel

    return (
        (PaymentModel, "before_update", _check_payment_immutability),
        (PaymentModel, "before_delete", _check_payment_delete),
        (InvoiceModel, "before_update", _check_invoice_immutability),
        (InvoiceModel, "before_delete", _check_invoice_delete),
        (AuditEvent, "before_update", _check_audit_event_immutability),
        (AuditEvent, "before_delete", _check_audit_event_delete),
    )


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners (idempotent).

    Call this after all models are imported but before any database
    operations begin.  ``create_tables`` calls it.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)

