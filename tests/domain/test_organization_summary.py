"""
Organization billing and payment summaries.

Only billed invoices (posted, payment_submitted, paid) in the summary
currency are counted; drafts and cancelled invoices are ignored.
"""

from datetime import timedelta
from uuid import uuid4

from billing_kernel.domain.invoice import InvoiceStatus
from billing_kernel.domain.payment import PaymentState
from billing_kernel.domain.summary import summarize_invoices, summarize_payments
from billing_kernel.domain.values import Money
from tests.helpers import TEST_NOW, invoice_view, jan, payment_view, usd


class TestSummarizeInvoices:
    def test_totals(self):
        org = uuid4()
        invoices = [
            invoice_view(organization_id=org, issued_at=jan(1), total="40.68", amount_paid="20.00"),
            invoice_view(
                organization_id=org, issued_at=jan(2), total="10.00",
                amount_paid="10.00", status=InvoiceStatus.PAID,
            ),
            invoice_view(organization_id=org, issued_at=jan(3), total="99.00",
                         status=InvoiceStatus.DRAFT),
            invoice_view(organization_id=org, issued_at=jan(4), total="5.00",
                         status=InvoiceStatus.CANCELLED),
        ]

        summary = summarize_invoices(org, "USD", invoices)

        assert summary.invoice_count == 2
        assert summary.open_invoice_count == 1
        assert summary.total_billed == usd("50.68")
        assert summary.total_paid == usd("30.00")
        assert summary.total_outstanding == usd("20.68")
        assert summary.oldest_unpaid_invoice_id == invoices[0].id

    def test_overdue_comes_from_derived_status(self):
        org = uuid4()
        overdue = invoice_view(
            organization_id=org, issued_at=jan(1), due_at=TEST_NOW - timedelta(days=1),
        )
        current = invoice_view(organization_id=org, issued_at=jan(2), due_at=TEST_NOW + timedelta(days=1))

        summary = summarize_invoices(org, "USD", [overdue, current])

        assert summary.overdue_invoice_count == 1
        assert summary.overdue_amount == overdue.balance_due

    def test_other_currencies_excluded(self):
        org = uuid4()

        summary = summarize_invoices(org, "EUR", [invoice_view(organization_id=org)])

        assert summary.invoice_count == 0
        assert summary.total_billed == Money.zero("EUR")
        assert summary.oldest_unpaid_invoice_id is None


class TestSummarizePayments:
    def test_counts_and_amounts(self):
        org = uuid4()
        payments = [
            payment_view("10.00", PaymentState.VERIFIED, submitted_at=jan(2)),
            payment_view("5.00", PaymentState.PENDING_VERIFICATION, submitted_at=jan(5)),
            payment_view("7.00", PaymentState.REJECTED, submitted_at=jan(3)),
            payment_view("3.00", PaymentState.REVERSED, submitted_at=jan(4)),
        ]

        summary = summarize_payments(org, "USD", payments)

        assert summary.payment_count == 4
        assert summary.pending_count == 1
        assert summary.verified_count == 1
        assert summary.rejected_count == 1
        assert summary.reversed_count == 1
        assert summary.pending_amount == usd("5.00")
        assert summary.verified_amount == usd("10.00")
        assert summary.reversed_amount == usd("3.00")
        assert summary.last_submitted_at == jan(5)

    def test_empty(self):
        summary = summarize_payments(uuid4(), "USD", [])

        assert summary.payment_count == 0
        assert summary.last_submitted_at is None
