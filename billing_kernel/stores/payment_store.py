"""
PaymentStore -- append-only persistence access for payments.

Responsibility:
    Keyed reads, per-invoice history, pending and verified listings and
    inserts of ``PaymentModel`` rows.  There is no delete.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from billing_kernel.domain.payment import PENDING_STATES, PaymentState
from billing_kernel.models.payment import PaymentModel

_PENDING_VALUES = tuple(s.value for s in PENDING_STATES)


class PaymentStore:
    """Session-scoped access to the ``payments`` table."""

    def __init__(self, session: Session):
        self._session = session

    def append(self, payment: PaymentModel) -> PaymentModel:
        self._session.add(payment)
        self._session.flush()
        return payment

    def get(self, payment_id: UUID) -> PaymentModel | None:
        return self._session.get(PaymentModel, payment_id)

    def get_fresh(self, payment_id: UUID) -> PaymentModel | None:
        """Re-read a payment from the database, replacing any cached copy."""
        return self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.id == payment_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_for_invoice(self, invoice_id: UUID) -> Sequence[PaymentModel]:
        """Full payment history of an invoice, oldest first."""
        return self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.invoice_id == invoice_id)
            .order_by(PaymentModel.submitted_at, PaymentModel.id)
            .execution_options(populate_existing=True)
        ).scalars().all()

    def list_pending_verification(self) -> Sequence[PaymentModel]:
        return self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.state.in_(_PENDING_VALUES))
            .order_by(PaymentModel.submitted_at, PaymentModel.id)
        ).scalars().all()

    def list_verified(self) -> Sequence[PaymentModel]:
        return self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.state == PaymentState.VERIFIED.value)
            .order_by(PaymentModel.verified_at, PaymentModel.id)
        ).scalars().all()

    def list_for_invoices(self, invoice_ids: Sequence[UUID]) -> Sequence[PaymentModel]:
        if not invoice_ids:
            return ()
        return self._session.execute(
            select(PaymentModel)
            .where(PaymentModel.invoice_id.in_(list(invoice_ids)))
            .order_by(PaymentModel.submitted_at, PaymentModel.id)
        ).scalars().all()
