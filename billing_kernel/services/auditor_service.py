"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every invoice and
    payment state transition.  Provides per-invoice chain validation, trace
    queries, and an independent replay of ``amount_paid``.

Architecture position:
    Kernel > Services -- imperative shell, called by ReconciliationService
    inside its transaction, under the invoice lock.

Invariants enforced:
    - Audit chain integrity per invoice: ``hash = H(entity_type | entity_id |
      action | payload_hash | prev_hash)``; every event links to the previous
      event of the same invoice.
    - seq is 1, 2, 3 ... per invoice.  The caller holds the invoice lock, so
      reading the chain tip and appending cannot interleave with another
      writer of the same invoice; ``uq_audit_invoice_seq`` backs this up.
    - Append-only: audit events are never modified or deleted.

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match stored hash,
      or prev_hash does not match the predecessor's hash.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.balance import compute_amount_paid
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import AuditChainBrokenError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_event import AuditAction, AuditEvent
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.models.payment import PaymentModel
from billing_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    entity_type: str
    entity_id: UUID
    action: AuditAction
    from_state: str | None
    to_state: str
    occurred_at: datetime
    actor_id: UUID
    reason: str | None
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """Complete audit trace for one invoice and its payments, oldest first."""

    invoice_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(e.action for e in self.entries)


@dataclass(frozen=True)
class LedgerCheck:
    """
    Three independent views of an invoice's ``amount_paid``.

    ``materialized`` is the stored column, ``recomputed`` folds the payments
    table, ``replayed`` folds the audit trail.  All three agree and the
    chain validates when the ledger is consistent.
    """

    invoice_id: UUID
    materialized: int
    recomputed: int
    replayed: int
    chain_valid: bool

    @property
    def is_consistent(self) -> bool:
        return self.chain_valid and self.materialized == self.recomputed == self.replayed


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT acquire the invoice lock -- caller must hold it.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()

    def _chain_tip(self, invoice_id: UUID) -> AuditEvent | None:
        return self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.invoice_id == invoice_id)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        invoice_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        from_state: str | None,
        to_state: str,
        actor_id: UUID,
        reason: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append an event to the invoice's chain and flush it."""
        tip = self._chain_tip(invoice_id)
        seq = tip.seq + 1 if tip else 1
        prev_hash = tip.hash if tip else None

        payload_data = {
            "from_state": from_state,
            "to_state": to_state,
            "reason": reason,
            **(payload or {}),
        }
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            invoice_id=invoice_id,
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            from_state=from_state,
            to_state=to_state,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            reason=reason,
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Domain-specific recording methods

    def record_invoice_transition(
        self,
        invoice: InvoiceModel,
        action: AuditAction,
        from_state: str | None,
        actor_id: UUID,
        reason: str | None = None,
    ) -> AuditEvent:
        """Record an invoice moving from ``from_state`` to its current status."""
        return self._create_audit_event(
            invoice_id=invoice.id,
            entity_type="invoice",
            entity_id=invoice.id,
            action=action,
            from_state=from_state,
            to_state=invoice.status,
            actor_id=actor_id,
            reason=reason,
            payload={
                "invoice_number": invoice.invoice_number,
                "amount_paid": invoice.amount_paid,
                "total": invoice.total,
                "currency": invoice.currency,
            },
        )

    def record_payment_transition(
        self,
        payment: PaymentModel,
        action: AuditAction,
        from_state: str | None,
        actor_id: UUID,
        reason: str | None = None,
    ) -> AuditEvent:
        """
        Record a payment transition.

        The payload carries the payment amount so ``replay_amount_paid`` does
        not need the payments table.
        """
        return self._create_audit_event(
            invoice_id=payment.invoice_id,
            entity_type="payment",
            entity_id=payment.id,
            action=action,
            from_state=from_state,
            to_state=payment.state,
            actor_id=actor_id,
            reason=reason,
            payload={
                "amount": payment.amount,
                "currency": payment.currency,
                "method": payment.method,
            },
        )

    # Validation

    def _events(self, invoice_id: UUID) -> list[AuditEvent]:
        return list(
            self._session.execute(
                select(AuditEvent)
                .where(AuditEvent.invoice_id == invoice_id)
                .order_by(AuditEvent.seq)
            ).scalars().all()
        )

    def validate_chain(self, invoice_id: UUID) -> bool:
        """
        Validate the audit chain of one invoice.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._events(invoice_id)
        prev: AuditEvent | None = None

        for event in events:
            expected_prev = prev.hash if prev else None
            if event.prev_hash != expected_prev or event.seq != (prev.seq + 1 if prev else 1):
                logger.critical(
                    "audit_chain_broken",
                    extra={"invoice_id": str(invoice_id), "seq": event.seq},
                )
                raise AuditChainBrokenError(
                    str(invoice_id), event.seq, str(expected_prev), str(event.prev_hash),
                )

            expected_payload_hash = hash_payload(event.payload or {})
            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action,
                payload_hash=expected_payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash or event.payload_hash != expected_payload_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"invoice_id": str(invoice_id), "seq": event.seq},
                )
                raise AuditChainBrokenError(
                    str(invoice_id), event.seq, expected_hash, event.hash,
                )
            prev = event

        logger.info(
            "audit_chain_valid",
            extra={"invoice_id": str(invoice_id), "event_count": len(events)},
        )
        return True

    # Trace and replay

    def get_trace(self, invoice_id: UUID) -> AuditTrace:
        """All audit events of an invoice and its payments, in chain order."""
        entries = tuple(
            AuditTraceEntry(
                seq=event.seq,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=AuditAction(event.action),
                from_state=event.from_state,
                to_state=event.to_state,
                occurred_at=event.occurred_at,
                actor_id=event.actor_id,
                reason=event.reason,
                payload=event.payload or {},
                hash=event.hash,
            )
            for event in self._events(invoice_id)
        )
        return AuditTrace(invoice_id=invoice_id, entries=entries)

    def replay_amount_paid(self, invoice_id: UUID) -> int:
        """Fold payment transitions: verified adds, reversed subtracts."""
        total = 0
        for event in self._events(invoice_id):
            if event.entity_type != "payment":
                continue
            amount = (event.payload or {}).get("amount", 0)
            if event.action == AuditAction.PAYMENT_VERIFIED.value:
                total += amount
            elif event.action == AuditAction.PAYMENT_REVERSED.value:
                total -= amount
        return total

    def check_ledger(
        self,
        invoice: InvoiceModel,
        payments: Iterable[PaymentModel],
    ) -> LedgerCheck:
        """
        Compare materialized, recomputed and replayed ``amount_paid``.

        ``payments`` is the full payment history of ``invoice``.
        """
        recomputed = compute_amount_paid(
            (p.to_view() for p in payments), invoice.currency
        ).amount
        try:
            chain_valid = self.validate_chain(invoice.id)
        except AuditChainBrokenError:
            chain_valid = False
        check = LedgerCheck(
            invoice_id=invoice.id,
            materialized=invoice.amount_paid,
            recomputed=recomputed,
            replayed=self.replay_amount_paid(invoice.id),
            chain_valid=chain_valid,
        )
        if not check.is_consistent:
            logger.error(
                "ledger_inconsistent",
                extra={
                    "invoice_id": str(invoice.id),
                    "materialized": check.materialized,
                    "recomputed": check.recomputed,
                    "replayed": check.replayed,
                    "chain_valid": check.chain_valid,
                },
            )
        return check
