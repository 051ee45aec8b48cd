"""
Hash-chained audit trail and the three-way ledger check.

Every invoice and payment transition appends one audit event to the
invoice's chain.  ``verify_ledger`` compares the stored amount_paid, the
fold over the payments table and the replay of the audit trail.
"""

from uuid import uuid4

from sqlalchemy import text

from billing_kernel.models.audit_event import AuditAction
from billing_kernel.services.reconciliation_service import ResultStatus
from tests.helpers import usd

A = AuditAction


class TestAuditTrail:
    def test_trail_of_a_settled_invoice(
        self, service, create_posted_invoice, submit_and_verify, test_actor_id,
    ):
        invoice = create_posted_invoice()
        submit_and_verify(invoice.id, usd("40.68"))

        trace = service.get_audit_trail(invoice.id).value

        assert trace.actions() == (
            A.INVOICE_CREATED,
            A.INVOICE_SUBMITTED_FOR_APPROVAL,
            A.INVOICE_APPROVED,
            A.INVOICE_POSTED,
            A.PAYMENT_SUBMITTED,
            A.INVOICE_PAYMENT_STATE_CHANGED,
            A.PAYMENT_VERIFIED,
            A.INVOICE_PAID,
        )
        assert [e.seq for e in trace.entries] == list(range(1, 9))
        assert all(e.actor_id == test_actor_id for e in trace.entries)
        assert trace.entries[-1].from_state == "payment_submitted"
        assert trace.entries[-1].to_state == "paid"

    def test_reversal_reopens_in_trail(
        self, service, create_posted_invoice, submit_and_verify, test_actor_id,
    ):
        invoice = create_posted_invoice()
        payment = submit_and_verify(invoice.id, usd("40.68"))

        service.reverse_payment(payment.id, "Bounced", actor_id=test_actor_id)

        trace = service.get_audit_trail(invoice.id).value
        assert trace.actions()[-2:] == (A.PAYMENT_REVERSED, A.INVOICE_REOPENED)
        assert trace.entries[-2].reason == "Bounced"

    def test_failed_command_leaves_no_trace(self, service, create_posted_invoice, test_actor_id):
        invoice = create_posted_invoice()
        before = len(service.get_audit_trail(invoice.id).value.entries)

        service.submit_payment(invoice.id, usd("99.00"), "check", actor_id=test_actor_id)

        assert len(service.get_audit_trail(invoice.id).value.entries) == before

    def test_unknown_invoice(self, service):
        assert service.get_audit_trail(uuid4()).status is ResultStatus.NOT_FOUND


class TestLedgerCheck:
    def test_consistent_after_verify_and_reverse(
        self, service, create_posted_invoice, submit_and_verify, test_actor_id,
    ):
        invoice = create_posted_invoice()
        first = submit_and_verify(invoice.id, usd("20.00"))
        submit_and_verify(invoice.id, usd("5.00"))
        service.reverse_payment(first.id, "Bounced", actor_id=test_actor_id)

        check = service.verify_ledger(invoice.id).value

        assert check.is_consistent
        assert check.materialized == check.recomputed == check.replayed == 500

    def test_tampered_payload_breaks_chain(
        self, service, session, create_posted_invoice, submit_and_verify,
    ):
        invoice = create_posted_invoice()
        submit_and_verify(invoice.id, usd("40.68"))

        session.execute(
            text("UPDATE audit_events SET payload_hash = :h WHERE invoice_id = :i AND seq = 1"),
            {"h": "0" * 64, "i": str(invoice.id)},
        )
        session.commit()

        check = service.verify_ledger(invoice.id).value
        assert not check.chain_valid
        assert not check.is_consistent

    def test_tampered_amount_paid_is_detected(
        self, service, session, create_posted_invoice, submit_and_verify,
    ):
        invoice = create_posted_invoice()
        submit_and_verify(invoice.id, usd("20.00"))

        session.execute(
            text("UPDATE invoices SET amount_paid = 4068 WHERE id = :i"),
            {"i": str(invoice.id)},
        )
        session.commit()

        check = service.verify_ledger(invoice.id).value
        assert check.chain_valid
        assert check.materialized == 4068
        assert check.recomputed == check.replayed == 2000
        assert not check.is_consistent

    def test_unknown_invoice(self, service):
        assert service.verify_ledger(uuid4()).status is ResultStatus.NOT_FOUND
