"""
Property-based checks of the payment ledger.

Random sequences of submit / verify / reject / reverse commands are driven
against one invoice.  Whatever the sequence, afterwards:

- 0 <= amount_paid <= total
- amount_paid equals the sum of verified payments
- the invoice is ``paid`` exactly when its balance is zero
- stored, recomputed and replayed amount_paid agree and the audit chain validates
"""

from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from billing_kernel.domain.invoice import InvoiceStatus
from billing_kernel.domain.payment import PaymentState
from billing_kernel.domain.values import Money

FUZZ_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)

submit_op = st.tuples(st.just("submit"), st.integers(min_value=1, max_value=5000))
decision_op = st.tuples(
    st.sampled_from(["verify", "reject", "reverse"]),
    st.integers(min_value=0, max_value=20),
)
operations = st.lists(st.one_of(submit_op, decision_op), min_size=1, max_size=12)


def _fresh_invoice(organization_directory, create_posted_invoice):
    # Each example gets its own organization so earlier invoices never block it.
    organization_id = uuid4()
    organization_directory.register(organization_id)
    return create_posted_invoice(organization_id=organization_id)


def _apply(service, invoice_id, op, payment_ids, actor_id):
    kind, arg = op
    if kind == "submit":
        result = service.submit_payment(invoice_id, Money.of(arg, "USD"), "check", actor_id=actor_id)
        if result.is_success:
            payment_ids.append(result.value.id)
        return
    if not payment_ids:
        return
    payment_id = payment_ids[arg % len(payment_ids)]
    if kind == "verify":
        service.verify_payment(payment_id, actor_id=actor_id)
    elif kind == "reject":
        service.reject_payment(payment_id, "Not received", actor_id=actor_id)
    else:
        service.reverse_payment(payment_id, "Bank returned funds", actor_id=actor_id)


@FUZZ_SETTINGS
@given(ops=operations)
def test_ledger_invariants_hold(
    ops, service, organization_directory, create_posted_invoice, test_actor_id,
):
    invoice = _fresh_invoice(organization_directory, create_posted_invoice)
    payment_ids: list = []

    for op in ops:
        _apply(service, invoice.id, op, payment_ids, test_actor_id)

    after = service.get_invoice(invoice.id).value
    payments = service.list_payments(invoice.id)
    verified_total = sum(p.amount.amount for p in payments if p.state is PaymentState.VERIFIED)

    assert 0 <= after.amount_paid.amount <= after.total.amount
    assert after.amount_paid.amount == verified_total
    assert (after.status is InvoiceStatus.PAID) == after.balance_due.is_zero
    assert service.verify_ledger(invoice.id).value.is_consistent


@FUZZ_SETTINGS
@given(amounts=st.lists(st.integers(min_value=1, max_value=4068), min_size=1, max_size=6))
def test_verifying_everything_never_overpays(
    amounts, service, organization_directory, create_posted_invoice, test_actor_id,
):
    invoice = _fresh_invoice(organization_directory, create_posted_invoice)
    submitted = [
        service.submit_payment(invoice.id, Money.of(cents, "USD"), "bank_transfer", actor_id=test_actor_id)
        for cents in amounts
    ]

    for result in submitted:
        if result.is_success:
            service.verify_payment(result.value.id, actor_id=test_actor_id)

    after = service.get_invoice(invoice.id).value
    assert after.amount_paid.amount <= after.total.amount
    assert after.balance_due.amount == after.total.amount - after.amount_paid.amount
