"""ORM models for the billing kernel."""

from billing_kernel.models.audit_event import AuditAction, AuditEvent
from billing_kernel.models.idempotency import IdempotencyRecord
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.models.payment import PaymentModel
from billing_kernel.models.sequence import SequenceCounter

__all__ = [
    "AuditAction",
    "AuditEvent",
    "IdempotencyRecord",
    "InvoiceModel",
    "PaymentModel",
    "SequenceCounter",
]
