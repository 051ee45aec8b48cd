"""
IdempotencyService -- exactly-once payment submission per idempotency key.

Responsibility:
    Looks up and claims idempotency keys in ``idempotency_records``.  A key
    maps to exactly one payment and one request fingerprint (invoice,
    amount, currency, method).

Architecture position:
    Kernel > Services.  Called by ReconciliationService.submit_payment inside
    its transaction and under the invoice lock.

Invariants enforced:
    - Same key, same request, inside the window: the original payment is
      returned and nothing new is written.
    - Same key, different request: IdempotencyKeyConflictError.
    - A key older than the window is released (its record deleted) and may
      be claimed again.
    - The unique constraint on ``key`` is the cross-process backstop; the
      IntegrityError it raises propagates to the caller.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.exceptions import IdempotencyKeyConflictError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.idempotency import IdempotencyRecord

logger = get_logger("services.idempotency")


class IdempotencyService:
    """Session-scoped idempotency key store."""

    def __init__(self, session: Session, window_seconds: int = 86400):
        self._session = session
        self._window = timedelta(seconds=window_seconds)

    def _get(self, key: str) -> IdempotencyRecord | None:
        return self._session.execute(
            select(IdempotencyRecord).where(IdempotencyRecord.key == key)
        ).scalar_one_or_none()

    def lookup(self, key: str, fingerprint: str, now: datetime) -> UUID | None:
        """
        Return the payment id already produced by ``key``, if any.

        Raises:
            IdempotencyKeyConflictError: The key was used for another request.
        """
        record = self._get(key)
        if record is None:
            return None

        if now - record.created_at > self._window:
            logger.info(
                "idempotency_key_expired",
                extra={"idempotency_key": key, "payment_id": str(record.payment_id)},
            )
            self._session.delete(record)
            self._session.flush()
            return None

        if record.request_fingerprint != fingerprint:
            logger.warning(
                "idempotency_key_conflict",
                extra={"idempotency_key": key, "payment_id": str(record.payment_id)},
            )
            raise IdempotencyKeyConflictError(key, record.request_fingerprint, fingerprint)

        logger.info(
            "idempotency_key_replayed",
            extra={"idempotency_key": key, "payment_id": str(record.payment_id)},
        )
        return record.payment_id

    def claim(
        self,
        key: str,
        invoice_id: UUID,
        payment_id: UUID,
        fingerprint: str,
        now: datetime,
    ) -> IdempotencyRecord:
        """Record that ``key`` produced ``payment_id``.  Flushes immediately."""
        record = IdempotencyRecord(
            key=key,
            invoice_id=invoice_id,
            payment_id=payment_id,
            request_fingerprint=fingerprint,
            created_at=now,
        )
        self._session.add(record)
        self._session.flush()
        return record
