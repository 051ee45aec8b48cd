"""Services for the billing kernel (write side and reconciliation facade)."""

from billing_kernel.services.auditor_service import (
    AuditorService,
    AuditTrace,
    AuditTraceEntry,
    LedgerCheck,
)
from billing_kernel.services.event_publisher import DomainEventPublisher
from billing_kernel.services.idempotency_service import IdempotencyService
from billing_kernel.services.lock_manager import InvoiceLockManager
from billing_kernel.services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    ReconciliationResult,
    ReconciliationService,
    ResultStatus,
)
from billing_kernel.services.sequence_service import SequenceService

__all__ = [
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "DomainEventPublisher",
    "IdempotencyService",
    "InvoiceLockManager",
    "LedgerCheck",
    "ReconciliationResult",
    "ReconciliationService",
    "ResultStatus",
    "SYSTEM_ACTOR_ID",
    "SequenceService",
]
