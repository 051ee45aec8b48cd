"""
InvoiceLockManager -- per-invoice mutual exclusion within one process.

Contract:
    ``hold(invoice_id)`` is a context manager that admits one holder per
    invoice id at a time.  Acquisition waits at most ``timeout_seconds``
    and then raises LockTimeoutError (status LOCKED at the service
    boundary).  Different invoices never contend.

Architecture: Kernel > Services.  Paired with ``SELECT ... FOR UPDATE`` on
    the invoice row, which extends the serialization across processes on
    PostgreSQL.

Invariants enforced:
    - Per-invoice linearization: verify, reject, reverse and submit on the
      same invoice never interleave inside one process.
    - Lock entries are reference counted and dropped when unused, so the
      registry does not grow with the number of invoices ever touched.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from billing_kernel.exceptions import LockTimeoutError
from billing_kernel.logging_config import get_logger

logger = get_logger("services.lock_manager")


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class InvoiceLockManager:
    """Registry of per-invoice locks with bounded acquisition time."""

    def __init__(self, timeout_seconds: float = 5.0):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout = timeout_seconds
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(
        self,
        invoice_id: UUID | str,
        timeout_seconds: float | None = None,
    ) -> Iterator[None]:
        """
        Hold the lock for ``invoice_id`` for the duration of the block.

        Raises:
            LockTimeoutError: The lock was not acquired in time.
        """
        key = str(invoice_id)
        timeout = self._timeout if timeout_seconds is None else timeout_seconds
        entry = self._checkout(key)
        acquired = False
        try:
            acquired = entry.lock.acquire(timeout=timeout)
            if not acquired:
                logger.warning(
                    "invoice_lock_timeout",
                    extra={"invoice_id": key, "timeout_seconds": timeout},
                )
                raise LockTimeoutError(key, timeout)
            logger.debug("invoice_lock_acquired", extra={"invoice_id": key})
            yield
        finally:
            if acquired:
                entry.lock.release()
                logger.debug("invoice_lock_released", extra={"invoice_id": key})
            self._checkin(key, entry)

    def is_locked(self, invoice_id: UUID | str) -> bool:
        with self._guard:
            entry = self._entries.get(str(invoice_id))
            return entry is not None and entry.lock.locked()
