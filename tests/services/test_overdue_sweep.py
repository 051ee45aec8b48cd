"""
Overdue sweep: flags each past-due open invoice once and emits one
InvoiceOverdue event.  ``overdue`` itself stays a derived label.
"""

from datetime import timedelta

from billing_kernel.domain.events import InvoiceOverdue
from billing_kernel.domain.invoice import PaymentStatus
from billing_kernel.models.audit_event import AuditAction
from billing_kernel.services.reconciliation_service import SYSTEM_ACTOR_ID
from tests.helpers import jan, usd


class TestSweepOverdue:
    def test_flags_past_due_invoices_once(
        self, service, create_posted_invoice, deterministic_clock, published_events,
    ):
        invoice = create_posted_invoice(issued_at=jan(1), due_at=jan(31))
        published_events.clear()
        deterministic_clock.set_time(jan(31) + timedelta(days=1))

        flagged = service.sweep_overdue()
        again = service.sweep_overdue()

        assert flagged == (invoice.id,)
        assert again == ()
        assert [type(e) for e in published_events] == [InvoiceOverdue]
        assert published_events[0].balance_due == usd("40.68")
        view = service.get_invoice(invoice.id).value
        assert view.payment_status is PaymentStatus.OVERDUE
        assert view.overdue_notified_at == deterministic_clock.now()

    def test_audited_as_system_actor(self, service, create_posted_invoice, deterministic_clock):
        invoice = create_posted_invoice(issued_at=jan(1), due_at=jan(31))
        deterministic_clock.set_time(jan(31) + timedelta(days=1))

        service.sweep_overdue()

        last = service.get_audit_trail(invoice.id).value.entries[-1]
        assert last.action is AuditAction.INVOICE_OVERDUE_FLAGGED
        assert last.actor_id == SYSTEM_ACTOR_ID
        assert last.from_state == last.to_state == "posted"

    def test_ignores_current_paid_and_unposted(
        self, service, create_posted_invoice, create_draft_invoice, submit_and_verify,
        deterministic_clock,
    ):
        paid = create_posted_invoice(issued_at=jan(1), due_at=jan(31))
        submit_and_verify(paid.id, usd("40.68"))
        create_draft_invoice(issued_at=jan(2), due_at=jan(31))
        create_posted_invoice(issued_at=jan(3), due_at=jan(31) + timedelta(days=30))
        deterministic_clock.set_time(jan(31) + timedelta(days=1))

        assert service.sweep_overdue() == ()

    def test_locked_invoice_left_for_next_sweep(
        self, session_factory, deterministic_clock, publisher, organization_directory,
        create_posted_invoice, captured_logs,
    ):
        from billing_config import ReconciliationConfig
        from billing_kernel.services.reconciliation_service import ReconciliationService

        invoice = create_posted_invoice(issued_at=jan(1), due_at=jan(31))
        impatient = ReconciliationService(
            session_factory=session_factory,
            clock=deterministic_clock,
            config=ReconciliationConfig(lock_timeout_seconds=0.05),
            publisher=publisher,
            organization_directory=organization_directory,
        )
        deterministic_clock.set_time(jan(31) + timedelta(days=1))

        with impatient.lock_manager.hold(invoice.id):
            assert impatient.sweep_overdue() == ()

        assert any(r["message"] == "overdue_sweep_skipped_locked" for r in captured_logs())
        assert impatient.sweep_overdue() == (invoice.id,)
