"""
ReconciliationService -- the single writer of invoices and payments.

Responsibility:
    Executes every billing command (invoice lifecycle, payment submission
    and verification decisions) as one atomic unit and answers the read
    queries of collaborators.  Pure policy lives in the domain layer
    (balance calculator, ordering policy, state machines); this service
    sequences it.

Architecture position:
    Kernel > Services -- imperative shell.  Callers (web handlers, jobs,
    tests) hold a ReconciliationService and never touch the stores.

Command pipeline:
    1. Acquire the per-invoice lock (InvoiceLockManager, bounded wait).
    2. Open a session and read the invoice ``FOR UPDATE`` together with its
       full payment history.
    3. Validate with the workflows, the ordering policy and the balance
       calculator.
    4. Write the change, recompute ``amount_paid`` from the verified
       payments and append audit events.
    5. Commit, then publish domain events.

Invariants enforced:
    - ``amount_paid`` is always the fold over verified payments, written
      only here.
    - Payment order: a payment is accepted only on the organization's
      oldest open receivable.
    - Exactly-once submission per idempotency key.
    - No partial writes: a failure at any step rolls the whole unit back.

Failure modes:
    - Typed domain failures are returned as ``ReconciliationResult`` with a
      ``ResultStatus``; they never escape as exceptions.
    - Infrastructure failures roll back, are logged with traceback and
      propagate.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from billing_config.schema import ReconciliationConfig
from billing_kernel.db.immutability import register_immutability_listeners
from billing_kernel.domain.balance import (
    PaymentPreview,
    compute_amount_paid,
    count_pending,
    preview,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.events import (
    DomainEvent,
    InvoiceOverdue,
    InvoicePaid,
    InvoicePosted,
    PaymentRejected,
    PaymentReversed,
    PaymentSubmitted,
    PaymentVerified,
)
from billing_kernel.domain.invoice import (
    INVOICE_WORKFLOW,
    RECEIVABLE_STATES,
    ApprovalStatus,
    BillingReadyCourse,
    InvoiceStatus,
    InvoiceView,
    payable_states,
    settled_status,
)
from billing_kernel.domain.ordering import can_accept_payment, oldest_unpaid
from billing_kernel.domain.organization import OrganizationDirectory
from billing_kernel.domain.payment import (
    PAYMENT_WORKFLOW,
    HELD_STATES,
    PaymentMethod,
    PaymentView,
    parse_method,
)
from billing_kernel.domain.summary import (
    OrganizationBillingSummary,
    OrganizationPaymentSummary,
    summarize_invoices,
    summarize_payments,
)
from billing_kernel.domain.values import Currency, Money
from billing_kernel.exceptions import (
    BalanceNotZeroError,
    BillingKernelError,
    IdempotencyKeyConflictError,
    InvalidAmountError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    LockTimeoutError,
    MissingMethodError,
    MissingReasonError,
    NotFoundError,
    OrderingViolationError,
    OrganizationNotFoundError,
    PaymentNotFoundError,
    ReversalWindowExpiredError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.models.idempotency import IdempotencyRecord
from billing_kernel.models.invoice import InvoiceModel
from billing_kernel.models.payment import PaymentModel
from billing_kernel.services.auditor_service import AuditorService, AuditTrace, LedgerCheck
from billing_kernel.services.event_publisher import DomainEventPublisher
from billing_kernel.services.idempotency_service import IdempotencyService
from billing_kernel.services.lock_manager import InvoiceLockManager
from billing_kernel.services.sequence_service import SequenceService
from billing_kernel.stores.invoice_store import InvoiceStore
from billing_kernel.stores.payment_store import PaymentStore
from billing_kernel.utils.hashing import fingerprint_payment_request

logger = get_logger("services.reconciliation")

T = TypeVar("T")

# Actor recorded for transitions made by scheduled jobs.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


class ResultStatus(str, Enum):
    """Outcome of a reconciliation command or keyed read."""

    SUCCESS = "success"
    DUPLICATE_SUBMISSION = "duplicate_submission"
    NOT_FOUND = "not_found"
    INVALID_AMOUNT = "invalid_amount"
    MISSING_METHOD = "missing_method"
    MISSING_REASON = "missing_reason"
    ORDERING_VIOLATION = "ordering_violation"
    INVALID_TRANSITION = "invalid_transition"
    BALANCE_NOT_ZERO = "balance_not_zero"
    REVERSAL_WINDOW_EXPIRED = "reversal_window_expired"
    IDEMPOTENCY_KEY_CONFLICT = "idempotency_key_conflict"
    LOCKED = "locked"


_SUCCESS_STATUSES = frozenset({ResultStatus.SUCCESS, ResultStatus.DUPLICATE_SUBMISSION})

# Most specific class first.
_STATUS_BY_ERROR: tuple[tuple[type[BillingKernelError], ResultStatus], ...] = (
    (NotFoundError, ResultStatus.NOT_FOUND),
    (InvalidAmountError, ResultStatus.INVALID_AMOUNT),
    (MissingMethodError, ResultStatus.MISSING_METHOD),
    (MissingReasonError, ResultStatus.MISSING_REASON),
    (OrderingViolationError, ResultStatus.ORDERING_VIOLATION),
    (BalanceNotZeroError, ResultStatus.BALANCE_NOT_ZERO),
    (ReversalWindowExpiredError, ResultStatus.REVERSAL_WINDOW_EXPIRED),
    (InvalidTransitionError, ResultStatus.INVALID_TRANSITION),
    (IdempotencyKeyConflictError, ResultStatus.IDEMPOTENCY_KEY_CONFLICT),
    (LockTimeoutError, ResultStatus.LOCKED),
)


def _status_for(error: BillingKernelError) -> ResultStatus | None:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return None


@dataclass(frozen=True)
class ReconciliationResult(Generic[T]):
    """Result of a reconciliation command or keyed read."""

    status: ResultStatus
    value: T | None = None
    error: BillingKernelError | None = None

    @property
    def is_success(self) -> bool:
        return self.status in _SUCCESS_STATUSES

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error is not None else None


@dataclass
class _UnitOfWork:
    """Collaborators bound to one command's session."""

    session: Session
    now: datetime
    invoices: InvoiceStore
    payments: PaymentStore
    auditor: AuditorService
    idempotency: IdempotencyService
    sequences: SequenceService
    events: list[DomainEvent] = field(default_factory=list)
    status: ResultStatus = ResultStatus.SUCCESS


def _require_reason(reason: str | None, action: str) -> str:
    if reason is None or not reason.strip():
        raise MissingReasonError(action)
    return reason.strip()


class ReconciliationService:
    """
    Facade over invoice and payment reconciliation.

    Contract:
        Every command returns a ``ReconciliationResult``.  Commands on the
        same invoice are serialized; commands on different invoices run in
        parallel.  Domain events are delivered after commit.

    Non-goals:
        - Does NOT send notifications (subscribers of the publisher do).
        - Does NOT compute tax or talk to payment gateways.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        clock: Clock | None = None,
        config: ReconciliationConfig | None = None,
        publisher: DomainEventPublisher | None = None,
        lock_manager: InvoiceLockManager | None = None,
        organization_directory: OrganizationDirectory | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or ReconciliationConfig()
        self._publisher = publisher or DomainEventPublisher()
        self._locks = lock_manager or InvoiceLockManager(self._config.lock_timeout_seconds)
        self._organizations = organization_directory
        self._payable_states = payable_states(self._config.require_posting_before_payment)
        register_immutability_listeners()

    @property
    def config(self) -> ReconciliationConfig:
        return self._config

    @property
    def publisher(self) -> DomainEventPublisher:
        return self._publisher

    @property
    def lock_manager(self) -> InvoiceLockManager:
        return self._locks

    # =========================================================================
    # Execution plumbing
    # =========================================================================

    def _unit_of_work(self, session: Session) -> _UnitOfWork:
        return _UnitOfWork(
            session=session,
            now=self._clock.now(),
            invoices=InvoiceStore(session),
            payments=PaymentStore(session),
            auditor=AuditorService(session, self._clock),
            idempotency=IdempotencyService(session, self._config.idempotency_window_seconds),
            sequences=SequenceService(session),
        )

    def _transaction(self, work: Callable[[_UnitOfWork], T]) -> tuple[T, _UnitOfWork]:
        session = self._session_factory()
        try:
            uow = self._unit_of_work(session)
            value = work(uow)
            session.commit()
            return value, uow
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _execute(
        self,
        command: str,
        work: Callable[[_UnitOfWork], T],
        actor_id: UUID,
        lock_key: Callable[[], object] | None = None,
        on_integrity_error: Callable[[], ReconciliationResult[T] | None] | None = None,
        **log_fields: Any,
    ) -> ReconciliationResult[T]:
        """
        Run ``work`` as one atomic command.

        ``lock_key`` resolves the per-invoice lock to hold; it runs before
        the lock is taken and may raise a NotFoundError.  When a unique
        constraint fires, ``on_integrity_error`` may turn it into a result
        (a concurrent duplicate); otherwise the IntegrityError propagates.
        """
        with LogContext.bind(
            correlation_id=uuid4(),
            command=command,
            actor_id=actor_id,
            invoice_id=log_fields.get("invoice_id"),
            payment_id=log_fields.get("payment_id"),
        ):
            logger.info("command_started", extra=log_fields)
            t0 = time.monotonic()
            try:
                if lock_key is None:
                    value, uow = self._transaction(work)
                else:
                    with self._locks.hold(lock_key()):
                        value, uow = self._transaction(work)
            except BillingKernelError as exc:
                status = _status_for(exc)
                if status is None:
                    logger.exception("command_failed", extra={"error_code": exc.code})
                    raise
                logger.warning(
                    "command_rejected",
                    extra={
                        "status": status.value,
                        "error_code": exc.code,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                return ReconciliationResult(status=status, error=exc)
            except IntegrityError:
                recovered = on_integrity_error() if on_integrity_error else None
                if recovered is None:
                    logger.exception("command_failed", extra={"error_code": "INTEGRITY_ERROR"})
                    raise
                if recovered.is_success:
                    logger.info(
                        "command_completed",
                        extra={"status": recovered.status.value, "concurrent_duplicate": True},
                    )
                else:
                    logger.warning(
                        "command_rejected",
                        extra={
                            "status": recovered.status.value,
                            "error_code": recovered.error.code if recovered.error else None,
                        },
                    )
                return recovered
            except Exception:
                logger.exception("command_failed")
                raise

            logger.info(
                "command_completed",
                extra={
                    "status": uow.status.value,
                    "event_count": len(uow.events),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            if uow.events:
                self._publisher.publish(uow.events)
            return ReconciliationResult(status=uow.status, value=value)

    def _read(self, query: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return query(session)
        finally:
            session.close()

    def _read_result(self, query: Callable[[Session], T]) -> ReconciliationResult[T]:
        try:
            return ReconciliationResult(status=ResultStatus.SUCCESS, value=self._read(query))
        except BillingKernelError as exc:
            status = _status_for(exc)
            if status is None:
                raise
            logger.debug("query_rejected", extra={"status": status.value, "error_code": exc.code})
            return ReconciliationResult(status=status, error=exc)

    def _require_organization(self, organization_id: UUID) -> None:
        if self._organizations is not None and not self._organizations.exists(organization_id):
            raise OrganizationNotFoundError(str(organization_id))

    def _invoice_for_payment(self, payment_id: UUID) -> UUID:
        """Invoice id of a payment (immutable, so safe to read before locking)."""
        def query(session: Session) -> UUID:
            payment = PaymentStore(session).get(payment_id)
            if payment is None:
                raise PaymentNotFoundError(str(payment_id))
            return payment.invoice_id
        return self._read(query)

    def _lock_invoice(self, uow: _UnitOfWork, invoice_id: UUID) -> InvoiceModel:
        invoice = uow.invoices.get_for_update(invoice_id, self._config.lock_timeout_seconds)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def _history(self, uow: _UnitOfWork, invoice: InvoiceModel) -> list[PaymentView]:
        return [p.to_view() for p in uow.payments.list_for_invoice(invoice.id)]

    def _recompute_amount_paid(self, uow: _UnitOfWork, invoice: InvoiceModel) -> list[PaymentView]:
        """Re-derive ``amount_paid`` from the verified payments; return the history."""
        uow.session.flush()
        history = self._history(uow, invoice)
        invoice.amount_paid = compute_amount_paid(history, invoice.currency).amount
        return history

    def _settle_invoice(
        self,
        uow: _UnitOfWork,
        invoice: InvoiceModel,
        history: Sequence[PaymentView],
        actor_id: UUID,
    ) -> None:
        """Move the invoice to the state its balance and pending payments call for."""
        current = invoice.status
        target = settled_status(
            balance_due=invoice.balance_due,
            pending_payments=count_pending(history),
            was_posted=invoice.posted_at is not None,
        )
        INVOICE_WORKFLOW.require("invoice", invoice.id, current, "payment_settled", target.value)
        if target.value == current:
            return

        invoice.status = target.value
        invoice.updated_by_id = actor_id
        if target is InvoiceStatus.PAID:
            invoice.paid_at = uow.now
            action = AuditAction.INVOICE_PAID
            uow.events.append(InvoicePaid(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                organization_id=invoice.organization_id,
                invoice_number=invoice.invoice_number,
                total=Money.of(invoice.total, invoice.currency),
            ))
        elif current == InvoiceStatus.PAID.value:
            invoice.paid_at = None
            action = AuditAction.INVOICE_REOPENED
        else:
            action = AuditAction.INVOICE_PAYMENT_STATE_CHANGED
        uow.auditor.record_invoice_transition(invoice, action, current, actor_id)
        logger.info(
            "invoice_settlement_changed",
            extra={"from_state": current, "to_state": target.value, "balance_due": invoice.balance_due},
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_invoice(self, invoice_id: UUID) -> ReconciliationResult[InvoiceView]:
        def query(session: Session) -> InvoiceView:
            invoice = InvoiceStore(session).get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(str(invoice_id))
            return invoice.to_view(self._clock.now())
        return self._read_result(query)

    def list_invoices(self, organization_id: UUID) -> tuple[InvoiceView, ...]:
        """Every invoice of an organization, ordered by ``(issued_at, id)``."""
        now = self._clock.now()
        return self._read(lambda session: tuple(
            inv.to_view(now) for inv in InvoiceStore(session).list_for_organization(organization_id)
        ))

    def get_oldest_unpaid_invoice(self, organization_id: UUID) -> InvoiceView | None:
        """The invoice the organization must pay next, if any."""
        return oldest_unpaid(self.list_invoices(organization_id), self._payable_states)

    def preview_payment(
        self,
        invoice_id: UUID,
        amount: Money,
    ) -> ReconciliationResult[PaymentPreview]:
        """Balance effect of a candidate payment; nothing is written."""
        def query(session: Session) -> PaymentPreview:
            invoice = InvoiceStore(session).get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(str(invoice_id))
            view = invoice.to_view(self._clock.now())
            if amount.currency != view.total.currency:
                raise InvalidAmountError(amount.amount, "currency_mismatch", view.balance_due.amount)
            return preview(view, amount)
        return self._read_result(query)

    def get_payment(self, payment_id: UUID) -> ReconciliationResult[PaymentView]:
        def query(session: Session) -> PaymentView:
            payment = PaymentStore(session).get(payment_id)
            if payment is None:
                raise PaymentNotFoundError(str(payment_id))
            return payment.to_view()
        return self._read_result(query)

    def list_payments(self, invoice_id: UUID) -> tuple[PaymentView, ...]:
        """Full payment history of an invoice, oldest first."""
        return self._read(lambda session: tuple(
            p.to_view() for p in PaymentStore(session).list_for_invoice(invoice_id)
        ))

    def list_pending_verifications(self) -> tuple[PaymentView, ...]:
        """Payments awaiting an accounting decision, oldest first."""
        return self._read(lambda session: tuple(
            p.to_view() for p in PaymentStore(session).list_pending_verification()
        ))

    def list_verified_payments(self) -> tuple[PaymentView, ...]:
        """Payments counted in ``amount_paid``, in verification order."""
        return self._read(lambda session: tuple(
            p.to_view() for p in PaymentStore(session).list_verified()
        ))

    def list_receivables(self) -> tuple[InvoiceView, ...]:
        """Unpaid invoices that accept payments, across organizations."""
        now = self._clock.now()
        return self._read(lambda session: tuple(
            inv.to_view(now)
            for inv in InvoiceStore(session).list_receivables(self._payable_states)
        ))

    def organization_billing_summary(
        self,
        organization_id: UUID,
        currency: str | None = None,
    ) -> ReconciliationResult[OrganizationBillingSummary]:
        """Billed, paid, outstanding and overdue totals in one currency."""
        def query(session: Session) -> OrganizationBillingSummary:
            self._require_organization(organization_id)
            now = self._clock.now()
            invoices = [
                inv.to_view(now)
                for inv in InvoiceStore(session).list_for_organization(organization_id)
            ]
            return summarize_invoices(
                organization_id, Currency(currency or self._config.currency), invoices,
            )
        return self._read_result(query)

    def organization_payment_summary(
        self,
        organization_id: UUID,
        currency: str | None = None,
    ) -> ReconciliationResult[OrganizationPaymentSummary]:
        def query(session: Session) -> OrganizationPaymentSummary:
            self._require_organization(organization_id)
            invoice_ids = [
                inv.id for inv in InvoiceStore(session).list_for_organization(organization_id)
            ]
            payments = [p.to_view() for p in PaymentStore(session).list_for_invoices(invoice_ids)]
            return summarize_payments(
                organization_id, Currency(currency or self._config.currency), payments,
            )
        return self._read_result(query)

    def get_audit_trail(self, invoice_id: UUID) -> ReconciliationResult[AuditTrace]:
        def query(session: Session) -> AuditTrace:
            if InvoiceStore(session).get(invoice_id) is None:
                raise InvoiceNotFoundError(str(invoice_id))
            return AuditorService(session, self._clock).get_trace(invoice_id)
        return self._read_result(query)

    def verify_ledger(self, invoice_id: UUID) -> ReconciliationResult[LedgerCheck]:
        """Compare stored, recomputed and audit-replayed ``amount_paid``."""
        def query(session: Session) -> LedgerCheck:
            invoice = InvoiceStore(session).get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(str(invoice_id))
            payments = PaymentStore(session).list_for_invoice(invoice_id)
            return AuditorService(session, self._clock).check_ledger(invoice, payments)
        return self._read_result(query)

    # =========================================================================
    # Invoice commands
    # =========================================================================

    def create_invoice(
        self,
        course: BillingReadyCourse,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[InvoiceView]:
        """
        Create a draft invoice for a billing-ready course.

        One invoice per course: a second call for the same
        ``course_reference`` returns the existing invoice with status
        DUPLICATE_SUBMISSION.
        """
        def work(uow: _UnitOfWork) -> InvoiceView:
            existing = uow.invoices.get_by_course_reference(course.course_reference)
            if existing is not None:
                uow.status = ResultStatus.DUPLICATE_SUBMISSION
                return existing.to_view(uow.now)

            self._require_organization(course.organization_id)
            issued_at = course.issued_at or uow.now
            if course.due_at is not None:
                due_at = course.due_at
            else:
                terms = course.payment_terms_days
                if terms is None:
                    terms = self._config.default_payment_terms_days
                due_at = issued_at + timedelta(days=terms)

            invoice = InvoiceModel(
                invoice_number=uow.sequences.next_invoice_number(
                    self._config.invoice_number_prefix, issued_at.year,
                ),
                organization_id=course.organization_id,
                course_reference=course.course_reference,
                description=course.description,
                issued_at=issued_at,
                due_at=due_at,
                currency=course.total.currency.code,
                base_cost=course.base_cost.amount,
                tax_amount=course.tax_amount.amount,
                amount_paid=0,
                status=INVOICE_WORKFLOW.initial_state,
                approval_status=ApprovalStatus.PENDING_APPROVAL.value,
                notes=course.notes,
                created_by_id=actor_id,
            )
            uow.invoices.add(invoice)
            uow.auditor.record_invoice_transition(invoice, AuditAction.INVOICE_CREATED, None, actor_id)
            logger.info(
                "invoice_created",
                extra={
                    "invoice_number": invoice.invoice_number,
                    "course_reference": course.course_reference,
                    "total": invoice.total,
                    "currency": invoice.currency,
                },
            )
            return invoice.to_view(uow.now)

        def recover() -> ReconciliationResult[InvoiceView] | None:
            def query(session: Session) -> InvoiceView | None:
                existing = InvoiceStore(session).get_by_course_reference(course.course_reference)
                return existing.to_view(self._clock.now()) if existing else None
            view = self._read(query)
            if view is None:
                return None
            return ReconciliationResult(status=ResultStatus.DUPLICATE_SUBMISSION, value=view)

        return self._execute(
            "create_invoice",
            work,
            actor_id,
            lock_key=lambda: f"course:{course.course_reference}",
            on_integrity_error=recover,
            course_reference=course.course_reference,
        )

    def _invoice_command(
        self,
        command: str,
        invoice_id: UUID,
        actor_id: UUID,
        apply: Callable[[_UnitOfWork, InvoiceModel], None],
    ) -> ReconciliationResult[InvoiceView]:
        def work(uow: _UnitOfWork) -> InvoiceView:
            invoice = self._lock_invoice(uow, invoice_id)
            apply(uow, invoice)
            invoice.updated_by_id = actor_id
            return invoice.to_view(uow.now)

        return self._execute(
            command, work, actor_id, lock_key=lambda: invoice_id, invoice_id=invoice_id,
        )

    def submit_invoice_for_approval(
        self,
        invoice_id: UUID,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[InvoiceView]:
        def apply(uow: _UnitOfWork, invoice: InvoiceModel) -> None:
            current = invoice.status
            invoice.status = INVOICE_WORKFLOW.require(
                "invoice", invoice.id, current, "submit_for_approval",
            )
            invoice.approval_status = ApprovalStatus.PENDING_APPROVAL.value
            uow.auditor.record_invoice_transition(
                invoice, AuditAction.INVOICE_SUBMITTED_FOR_APPROVAL, current, actor_id,
            )

        return self._invoice_command("submit_invoice_for_approval", invoice_id, actor_id, apply)

    def approve_invoice(
        self,
        invoice_id: UUID,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[InvoiceView]:
        def apply(uow: _UnitOfWork, invoice: InvoiceModel) -> None:
            current = invoice.status
            invoice.status = INVOICE_WORKFLOW.require("invoice", invoice.id, current, "approve")
            invoice.approval_status = ApprovalStatus.APPROVED.value
            invoice.approved_at = uow.now
            invoice.approved_by_id = actor_id
            uow.auditor.record_invoice_transition(invoice, AuditAction.INVOICE_APPROVED, current, actor_id)

        return self._invoice_command("approve_invoice", invoice_id, actor_id, apply)

    def reject_invoice(
        self,
        invoice_id: UUID,
        reason: str,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[InvoiceView]:
        """Reject an invoice awaiting approval.  It never becomes a receivable."""
        def apply(uow: _UnitOfWork, invoice: InvoiceModel) -> None:
            current = invoice.status
            target = INVOICE_WORKFLOW.require("invoice", invoice.id, current, "reject")
            clean_reason = _require_reason(reason, "reject invoice")
            invoice.status = target
            invoice.approval_status = ApprovalStatus.REJECTED.value
            invoice.rejected_at = uow.now
            invoice.rejection_reason = clean_reason
            uow.auditor.record_invoice_transition(
                invoice, AuditAction.INVOICE_REJECTED, current, actor_id, reason=clean_reason,
            )

        return self._invoice_command("reject_invoice", invoice_id, actor_id, apply)

    def post_invoice_to_organization(
        self,
        invoice_id: UUID,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[InvoiceView]:
        """Make an approved invoice visible and payable to its organization."""
        def apply(uow: _UnitOfWork, invoice: InvoiceModel) -> None:
            current = invoice.status
            invoice.status = INVOICE_WORKFLOW.require(
                "invoice", invoice.id, current, "post_to_organization",
            )
            invoice.posted_at = uow.now
            uow.auditor.record_invoice_transition(invoice, AuditAction.INVOICE_POSTED, current, actor_id)
            uow.events.append(InvoicePosted(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                organization_id=invoice.organization_id,
                invoice_number=invoice.invoice_number,
                total=Money.of(invoice.total, invoice.currency),
                due_at=invoice.due_at,
            ))

        return self._invoice_command("post_invoice_to_organization", invoice_id, actor_id, apply)

    def mark_invoice_as_paid(
        self,
        invoice_id: UUID,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> ReconciliationResult[InvoiceView]:
        """
        Close an invoice manually; only when nothing is owed.

        Posted invoices qualify always; approved ones only when posting is
        not required before payment.
        """
        def apply(uow: _UnitOfWork, invoice: InvoiceModel) -> None:
            current = invoice.status
            target = INVOICE_WORKFLOW.require("invoice", invoice.id, current, "mark_as_paid")
            if invoice.status_enum not in self._payable_states:
                raise InvalidTransitionError("invoice", str(invoice.id), current, "mark_as_paid")
            self._recompute_amount_paid(uow, invoice)
            if invoice.balance_due > 0:
                raise BalanceNotZeroError(str(invoice.id), invoice.balance_due)
            invoice.status = target
            invoice.paid_at = uow.now
            if notes:
                invoice.notes = f"{invoice.notes}\n{notes}" if invoice.notes else notes
            uow.auditor.record_invoice_transition(
                invoice, AuditAction.INVOICE_MARKED_PAID, current, actor_id, reason=notes,
            )
            uow.events.append(InvoicePaid(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                organization_id=invoice.organization_id,
                invoice_number=invoice.invoice_number,
                total=Money.of(invoice.total, invoice.currency),
            ))

        return self._invoice_command("mark_invoice_as_paid", invoice_id, actor_id, apply)

    def cancel_invoice(
        self,
        invoice_id: UUID,
        reason: str,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[InvoiceView]:
        """
        Cancel an invoice that has not been posted.

        An approved invoice that already holds verified or pending payments
        (possible when posting is not required) is refused with
        INVALID_TRANSITION; reject or reverse those payments first.
        """
        def apply(uow: _UnitOfWork, invoice: InvoiceModel) -> None:
            current = invoice.status
            target = INVOICE_WORKFLOW.require("invoice", invoice.id, current, "cancel")
            if any(p.state in HELD_STATES for p in self._history(uow, invoice)):
                raise InvalidTransitionError("invoice", str(invoice.id), current, "cancel")
            clean_reason = _require_reason(reason, "cancel invoice")
            invoice.status = target
            invoice.cancelled_at = uow.now
            invoice.cancellation_reason = clean_reason
            uow.auditor.record_invoice_transition(
                invoice, AuditAction.INVOICE_CANCELLED, current, actor_id, reason=clean_reason,
            )

        return self._invoice_command("cancel_invoice", invoice_id, actor_id, apply)

    # =========================================================================
    # Payment commands
    # =========================================================================

    def submit_payment(
        self,
        invoice_id: UUID,
        amount: Money,
        method: str | PaymentMethod | None,
        reference: str | None = None,
        payment_date: date | None = None,
        notes: str | None = None,
        idempotency_key: str | None = None,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[PaymentView]:
        """
        Record a payment the organization says it made.

        The payment waits in ``pending_verification``; ``amount_paid`` does
        not move until accounting verifies it.  Checks run in order:
        invoice exists and is payable, payment order, amount, method.

        With ``idempotency_key``, a repeat of the same request returns the
        original payment with status DUPLICATE_SUBMISSION.
        """
        parsed_method = parse_method(method)
        method_value = parsed_method.value if parsed_method else str(method or "")
        fingerprint = fingerprint_payment_request(
            invoice_id, amount.amount, amount.currency.code, method_value,
        )

        def work(uow: _UnitOfWork) -> PaymentView:
            invoice = self._lock_invoice(uow, invoice_id)

            if idempotency_key:
                existing_id = uow.idempotency.lookup(idempotency_key, fingerprint, uow.now)
                if existing_id is not None:
                    existing = uow.payments.get(existing_id)
                    if existing is None:
                        raise PaymentNotFoundError(str(existing_id))
                    uow.status = ResultStatus.DUPLICATE_SUBMISSION
                    return existing.to_view()

            current = invoice.status
            balance = self._check_new_payment(
                uow, invoice, amount, method, parsed_method, "submit_payment",
            )
            assert parsed_method is not None, "method checked above"

            payment = PaymentModel(
                invoice_id=invoice.id,
                amount=amount.amount,
                currency=amount.currency.code,
                method=parsed_method.value,
                reference_number=reference,
                payment_date=payment_date,
                submitted_at=uow.now,
                notes=notes,
                idempotency_key=idempotency_key,
                state=PAYMENT_WORKFLOW.require(
                    "payment", "new", PAYMENT_WORKFLOW.initial_state, "submit",
                ),
                created_by_id=actor_id,
            )
            uow.payments.append(payment)
            if idempotency_key:
                uow.idempotency.claim(idempotency_key, invoice.id, payment.id, fingerprint, uow.now)
            uow.auditor.record_payment_transition(
                payment, AuditAction.PAYMENT_SUBMITTED, PAYMENT_WORKFLOW.initial_state, actor_id,
            )

            target = INVOICE_WORKFLOW.require("invoice", invoice.id, current, "payment_submitted")
            if target != current:
                invoice.status = target
                invoice.updated_by_id = actor_id
                uow.auditor.record_invoice_transition(
                    invoice, AuditAction.INVOICE_PAYMENT_STATE_CHANGED, current, actor_id,
                )

            uow.events.append(PaymentSubmitted(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                payment_id=payment.id,
                organization_id=invoice.organization_id,
                amount=amount,
                method=parsed_method.value,
            ))
            logger.info(
                "payment_submitted",
                extra={
                    "payment_id": str(payment.id),
                    "amount": amount.amount,
                    "currency": amount.currency.code,
                    "method": parsed_method.value,
                    "balance_due": balance,
                },
            )
            return payment.to_view()

        def recover() -> ReconciliationResult[PaymentView] | None:
            if not idempotency_key:
                return None
            found = self._payment_for_key(idempotency_key)
            if found is None:
                return None
            view, stored_fingerprint = found
            if stored_fingerprint != fingerprint:
                return ReconciliationResult(
                    status=ResultStatus.IDEMPOTENCY_KEY_CONFLICT,
                    error=IdempotencyKeyConflictError(idempotency_key, stored_fingerprint, fingerprint),
                )
            return ReconciliationResult(status=ResultStatus.DUPLICATE_SUBMISSION, value=view)

        return self._execute(
            "submit_payment",
            work,
            actor_id,
            lock_key=lambda: invoice_id,
            on_integrity_error=recover if idempotency_key else None,
            invoice_id=invoice_id,
            amount=amount.amount,
            currency=amount.currency.code,
            idempotency_key=idempotency_key,
        )

    def _payment_for_key(self, idempotency_key: str) -> tuple[PaymentView, str] | None:
        """The payment a key was claimed for, with the fingerprint of that request."""
        def query(session: Session) -> tuple[PaymentView, str] | None:
            record = session.execute(
                select(IdempotencyRecord).where(IdempotencyRecord.key == idempotency_key)
            ).scalar_one_or_none()
            if record is None:
                return None
            payment = PaymentStore(session).get(record.payment_id)
            if payment is None:
                return None
            return payment.to_view(), record.request_fingerprint
        return self._read(query)

    def _check_new_payment(
        self,
        uow: _UnitOfWork,
        invoice: InvoiceModel,
        amount: Money,
        method: str | PaymentMethod | None,
        parsed_method: PaymentMethod | None,
        command: str,
    ) -> int:
        """
        Checks shared by every command that adds a payment, in order: the
        invoice is payable, it is the oldest unpaid one of its organization,
        the amount fits the balance, a method was given.  Returns the
        balance due before the payment.
        """
        if invoice.status_enum not in self._payable_states:
            raise InvalidTransitionError("invoice", str(invoice.id), invoice.status, command)

        view = invoice.to_view(uow.now)
        org_invoices = [
            inv.to_view(uow.now)
            for inv in uow.invoices.list_for_organization(invoice.organization_id)
        ]
        decision = can_accept_payment(view, org_invoices, self._payable_states)
        if not decision.allowed:
            raise OrderingViolationError(str(invoice.id), str(decision.blocking_invoice_id))

        balance = view.balance_due.amount
        if amount.currency != view.total.currency:
            raise InvalidAmountError(amount.amount, "currency_mismatch", balance)
        if not amount.is_positive:
            raise InvalidAmountError(amount.amount, "non_positive", balance)
        if preview(view, amount).is_overpayment:
            raise InvalidAmountError(amount.amount, "overpayment", balance)

        if parsed_method is None:
            raise MissingMethodError(None if method is None else str(method))
        return balance

    def record_payment(
        self,
        invoice_id: UUID,
        amount: Money,
        method: str | PaymentMethod | None,
        reference: str | None = None,
        payment_date: date | None = None,
        notes: str | None = None,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[PaymentView]:
        """
        Record a payment accounting received directly (a check in the mail,
        a wire seen on the bank statement).

        The payment is created already verified: it passes the same checks
        as ``submit_payment``, then counts toward ``amount_paid`` at once and
        may settle the invoice.  Both steps are in the audit trail.
        """
        parsed_method = parse_method(method)

        def work(uow: _UnitOfWork) -> PaymentView:
            invoice = self._lock_invoice(uow, invoice_id)
            balance = self._check_new_payment(
                uow, invoice, amount, method, parsed_method, "record_payment",
            )
            assert parsed_method is not None, "method checked above"

            submitted = PAYMENT_WORKFLOW.require(
                "payment", "new", PAYMENT_WORKFLOW.initial_state, "submit",
            )
            payment = PaymentModel(
                invoice_id=invoice.id,
                amount=amount.amount,
                currency=amount.currency.code,
                method=parsed_method.value,
                reference_number=reference,
                payment_date=payment_date,
                submitted_at=uow.now,
                notes=notes,
                state=submitted,
                created_by_id=actor_id,
            )
            uow.payments.append(payment)
            uow.auditor.record_payment_transition(
                payment, AuditAction.PAYMENT_SUBMITTED, PAYMENT_WORKFLOW.initial_state, actor_id,
                reason="recorded_by_accounting",
            )

            payment.state = PAYMENT_WORKFLOW.require("payment", payment.id, submitted, "verify")
            payment.verified_at = uow.now
            payment.decided_by_id = actor_id
            uow.auditor.record_payment_transition(payment, AuditAction.PAYMENT_VERIFIED, submitted, actor_id)

            history = self._recompute_amount_paid(uow, invoice)
            uow.events.append(PaymentVerified(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                payment_id=payment.id,
                organization_id=invoice.organization_id,
                amount=amount,
                balance_due=Money.of(invoice.balance_due, invoice.currency),
            ))
            self._settle_invoice(uow, invoice, history, actor_id)
            logger.info(
                "payment_recorded",
                extra={
                    "payment_id": str(payment.id),
                    "amount": amount.amount,
                    "method": parsed_method.value,
                    "previous_balance_due": balance,
                    "balance_due": invoice.balance_due,
                },
            )
            return payment.to_view()

        return self._execute(
            "record_payment",
            work,
            actor_id,
            lock_key=lambda: invoice_id,
            invoice_id=invoice_id,
            amount=amount.amount,
            currency=amount.currency.code,
        )

    def _payment_command(
        self,
        command: str,
        payment_id: UUID,
        actor_id: UUID,
        apply: Callable[[_UnitOfWork, InvoiceModel, PaymentModel], None],
    ) -> ReconciliationResult[PaymentView]:
        resolved: dict[str, UUID] = {}

        def lock_key() -> UUID:
            resolved["invoice_id"] = self._invoice_for_payment(payment_id)
            return resolved["invoice_id"]

        def work(uow: _UnitOfWork) -> PaymentView:
            invoice = self._lock_invoice(uow, resolved["invoice_id"])
            payment = uow.payments.get_fresh(payment_id)
            if payment is None:
                raise PaymentNotFoundError(str(payment_id))
            apply(uow, invoice, payment)
            payment.updated_by_id = actor_id
            return payment.to_view()

        return self._execute(command, work, actor_id, lock_key=lock_key, payment_id=payment_id)

    def verify_payment(
        self,
        payment_id: UUID,
        notes: str | None = None,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[PaymentView]:
        """
        Confirm a pending payment.

        ``amount_paid`` is recomputed; at zero balance the invoice becomes
        ``paid``.  A verification that would overpay the current balance is
        refused with INVALID_AMOUNT.
        """
        def apply(uow: _UnitOfWork, invoice: InvoiceModel, payment: PaymentModel) -> None:
            current = payment.state
            target = PAYMENT_WORKFLOW.require("payment", payment.id, current, "verify")
            self._recompute_amount_paid(uow, invoice)
            if payment.amount > invoice.balance_due:
                raise InvalidAmountError(payment.amount, "overpayment", invoice.balance_due)

            payment.state = target
            payment.verified_at = uow.now
            payment.decided_by_id = actor_id
            payment.append_note("verification", notes)
            uow.auditor.record_payment_transition(payment, AuditAction.PAYMENT_VERIFIED, current, actor_id)

            history = self._recompute_amount_paid(uow, invoice)
            uow.events.append(PaymentVerified(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                payment_id=payment.id,
                organization_id=invoice.organization_id,
                amount=payment.money,
                balance_due=Money.of(invoice.balance_due, invoice.currency),
            ))
            self._settle_invoice(uow, invoice, history, actor_id)
            logger.info(
                "payment_verified",
                extra={"amount": payment.amount, "amount_paid": invoice.amount_paid,
                       "balance_due": invoice.balance_due},
            )

        return self._payment_command("verify_payment", payment_id, actor_id, apply)

    def reject_payment(
        self,
        payment_id: UUID,
        reason: str,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[PaymentView]:
        """Reject a pending payment.  The ledger is unchanged."""
        def apply(uow: _UnitOfWork, invoice: InvoiceModel, payment: PaymentModel) -> None:
            current = payment.state
            target = PAYMENT_WORKFLOW.require("payment", payment.id, current, "reject")
            clean_reason = _require_reason(reason, "reject payment")
            payment.state = target
            payment.rejected_at = uow.now
            payment.rejection_reason = clean_reason
            payment.decided_by_id = actor_id
            payment.append_note("rejection", clean_reason)
            uow.auditor.record_payment_transition(
                payment, AuditAction.PAYMENT_REJECTED, current, actor_id, reason=clean_reason,
            )

            history = self._recompute_amount_paid(uow, invoice)
            uow.events.append(PaymentRejected(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                payment_id=payment.id,
                organization_id=invoice.organization_id,
                amount=payment.money,
                reason=clean_reason,
            ))
            self._settle_invoice(uow, invoice, history, actor_id)
            logger.info("payment_rejected", extra={"amount": payment.amount})

        return self._payment_command("reject_payment", payment_id, actor_id, apply)

    def reverse_payment(
        self,
        payment_id: UUID,
        reason: str,
        *,
        actor_id: UUID,
    ) -> ReconciliationResult[PaymentView]:
        """
        Reverse a verified payment.

        ``amount_paid`` goes down by the payment amount and a paid invoice
        reopens.  Fails with REVERSAL_WINDOW_EXPIRED once the configured
        window after verification has passed.
        """
        def apply(uow: _UnitOfWork, invoice: InvoiceModel, payment: PaymentModel) -> None:
            current = payment.state
            target = PAYMENT_WORKFLOW.require("payment", payment.id, current, "reverse")
            clean_reason = _require_reason(reason, "reverse payment")
            window_hours = self._config.reversal_window_hours
            if (
                window_hours is not None
                and payment.verified_at is not None
                and uow.now - payment.verified_at > timedelta(hours=window_hours)
            ):
                raise ReversalWindowExpiredError(
                    str(payment.id), payment.verified_at.isoformat(), window_hours,
                )

            payment.state = target
            payment.reversed_at = uow.now
            payment.reversal_reason = clean_reason
            payment.decided_by_id = actor_id
            payment.append_note("reversal", clean_reason)
            uow.auditor.record_payment_transition(
                payment, AuditAction.PAYMENT_REVERSED, current, actor_id, reason=clean_reason,
            )

            history = self._recompute_amount_paid(uow, invoice)
            uow.events.append(PaymentReversed(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                payment_id=payment.id,
                organization_id=invoice.organization_id,
                amount=payment.money,
                balance_due=Money.of(invoice.balance_due, invoice.currency),
                reason=clean_reason,
            ))
            self._settle_invoice(uow, invoice, history, actor_id)
            logger.info(
                "payment_reversed",
                extra={"amount": payment.amount, "amount_paid": invoice.amount_paid,
                       "balance_due": invoice.balance_due},
            )

        return self._payment_command("reverse_payment", payment_id, actor_id, apply)

    # =========================================================================
    # Scheduled jobs
    # =========================================================================

    def sweep_overdue(self, *, actor_id: UUID = SYSTEM_ACTOR_ID) -> tuple[UUID, ...]:
        """
        Flag open invoices whose due date has passed.

        Each invoice is flagged once (``overdue_notified_at``) and produces
        one ``InvoiceOverdue`` event.  ``overdue`` itself stays a derived
        label.  An invoice whose lock is busy is left for the next sweep.
        """
        now = self._clock.now()
        candidates = self._read(lambda session: [
            inv.id for inv in InvoiceStore(session).list_past_due_unflagged(now)
        ])
        flagged: list[UUID] = []
        for invoice_id in candidates:
            result = self._flag_overdue(invoice_id, actor_id)
            if result.status is ResultStatus.LOCKED:
                logger.warning("overdue_sweep_skipped_locked", extra={"invoice_id": str(invoice_id)})
            elif result.is_success and result.value:
                flagged.append(invoice_id)
        logger.info(
            "overdue_sweep_completed",
            extra={"candidate_count": len(candidates), "flagged_count": len(flagged)},
        )
        return tuple(flagged)

    def _flag_overdue(self, invoice_id: UUID, actor_id: UUID) -> ReconciliationResult[bool]:
        def work(uow: _UnitOfWork) -> bool:
            invoice = self._lock_invoice(uow, invoice_id)
            if (
                invoice.status_enum not in RECEIVABLE_STATES
                or invoice.overdue_notified_at is not None
                or not uow.now > invoice.due_at
                or invoice.balance_due <= 0
            ):
                return False
            invoice.overdue_notified_at = uow.now
            invoice.updated_by_id = actor_id
            uow.auditor.record_invoice_transition(
                invoice, AuditAction.INVOICE_OVERDUE_FLAGGED, invoice.status, actor_id,
            )
            uow.events.append(InvoiceOverdue(
                invoice_id=invoice.id,
                occurred_at=uow.now,
                organization_id=invoice.organization_id,
                invoice_number=invoice.invoice_number,
                balance_due=Money.of(invoice.balance_due, invoice.currency),
                due_at=invoice.due_at,
            ))
            return True

        return self._execute(
            "flag_overdue", work, actor_id, lock_key=lambda: invoice_id, invoice_id=invoice_id,
        )
