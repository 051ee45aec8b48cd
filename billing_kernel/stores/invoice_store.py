"""
InvoiceStore -- persistence access for invoices.

Responsibility:
    Keyed reads, organization-scoped listings, row-locked reads and inserts
    of ``InvoiceModel`` rows.  No business rules live here.

Architecture position:
    Kernel > Stores.  Session-scoped; the reconciliation service owns the
    session and its transaction and is the only writer.

Failure modes:
    - LockTimeoutError when PostgreSQL cannot grant the row lock within
      ``lock_timeout_seconds`` (SQLSTATE 55P03).
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from billing_kernel.domain.invoice import RECEIVABLE_STATES, InvoiceStatus
from billing_kernel.exceptions import LockTimeoutError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import InvoiceModel

logger = get_logger("stores.invoice")

_LOCK_NOT_AVAILABLE = "55P03"

_RECEIVABLE_VALUES = tuple(s.value for s in RECEIVABLE_STATES)


def _sqlstate(exc: OperationalError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


class InvoiceStore:
    """Session-scoped access to the ``invoices`` table."""

    def __init__(self, session: Session):
        self._session = session

    @property
    def _is_postgres(self) -> bool:
        return self._session.get_bind().dialect.name == "postgresql"

    def add(self, invoice: InvoiceModel) -> InvoiceModel:
        self._session.add(invoice)
        self._session.flush()
        return invoice

    def get(self, invoice_id: UUID) -> InvoiceModel | None:
        return self._session.get(InvoiceModel, invoice_id)

    def get_for_update(
        self,
        invoice_id: UUID,
        lock_timeout_seconds: float,
    ) -> InvoiceModel | None:
        """
        Read the invoice with ``SELECT ... FOR UPDATE``.

        ``populate_existing`` refreshes any copy already in the identity map
        so the caller sees the latest committed ``amount_paid``.

        Raises:
            LockTimeoutError: The row lock was not granted in time.
        """
        if self._is_postgres:
            timeout_ms = max(1, int(lock_timeout_seconds * 1000))
            self._session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
        try:
            return self._session.execute(
                select(InvoiceModel)
                .where(InvoiceModel.id == invoice_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        except OperationalError as exc:
            if _sqlstate(exc) == _LOCK_NOT_AVAILABLE:
                logger.warning(
                    "invoice_row_lock_timeout",
                    extra={"invoice_id": str(invoice_id), "timeout_seconds": lock_timeout_seconds},
                )
                raise LockTimeoutError(str(invoice_id), lock_timeout_seconds) from exc
            raise

    def get_by_course_reference(self, course_reference: str) -> InvoiceModel | None:
        return self._session.execute(
            select(InvoiceModel).where(InvoiceModel.course_reference == course_reference)
        ).scalar_one_or_none()

    def list_for_organization(self, organization_id: UUID) -> Sequence[InvoiceModel]:
        """All invoices of an organization in ``(issued_at, id)`` order."""
        rows = self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.organization_id == organization_id)
            .order_by(InvoiceModel.issued_at, InvoiceModel.id)
        ).scalars().all()
        # UUIDs are stored as strings, so the database order matches str(id).
        return rows

    def list_receivables(
        self,
        states: Collection[InvoiceStatus] = RECEIVABLE_STATES,
    ) -> Sequence[InvoiceModel]:
        """Unpaid invoices of every organization in one of ``states``."""
        return self._session.execute(
            select(InvoiceModel)
            .where(InvoiceModel.status.in_([s.value for s in states]))
            .order_by(InvoiceModel.organization_id, InvoiceModel.issued_at, InvoiceModel.id)
        ).scalars().all()

    def list_past_due_unflagged(self, now: datetime) -> Sequence[InvoiceModel]:
        """Receivable invoices past their due date with no overdue notice yet."""
        return self._session.execute(
            select(InvoiceModel)
            .where(
                InvoiceModel.status.in_(_RECEIVABLE_VALUES),
                InvoiceModel.due_at < now,
                InvoiceModel.overdue_notified_at.is_(None),
            )
            .order_by(InvoiceModel.due_at, InvoiceModel.id)
        ).scalars().all()
