"""
Exactly-once payment submission per idempotency key.

Tests cover:
- Replay of the same request returns the original payment
- Reuse of a key for a different request is a conflict
- Keys expire after the configured window
- Replays are answered even after the invoice has settled
"""

from uuid import uuid4

import pytest

from billing_kernel.services.reconciliation_service import ResultStatus
from billing_kernel.utils.idempotency import generate_idempotency_key, parse_idempotency_key
from tests.helpers import usd


@pytest.fixture
def posted_invoice(create_posted_invoice):
    return create_posted_invoice()


@pytest.fixture
def key(posted_invoice):
    return generate_idempotency_key(posted_invoice.id, 4068, "form-7f3a")


class TestIdempotentSubmission:
    def test_replay_returns_original_payment(self, service, posted_invoice, key, test_actor_id):
        first = service.submit_payment(
            posted_invoice.id, usd("40.68"), "check", idempotency_key=key, actor_id=test_actor_id,
        )
        second = service.submit_payment(
            posted_invoice.id, usd("40.68"), "check", idempotency_key=key, actor_id=test_actor_id,
        )

        assert first.status is ResultStatus.SUCCESS
        assert second.status is ResultStatus.DUPLICATE_SUBMISSION
        assert second.is_success
        assert second.value.id == first.value.id
        assert len(service.list_payments(posted_invoice.id)) == 1

    def test_method_spelling_does_not_change_fingerprint(
        self, service, posted_invoice, key, test_actor_id,
    ):
        first = service.submit_payment(
            posted_invoice.id, usd("40.68"), "check", idempotency_key=key, actor_id=test_actor_id,
        )
        second = service.submit_payment(
            posted_invoice.id, usd("40.68"), " CHECK ", idempotency_key=key, actor_id=test_actor_id,
        )

        assert second.status is ResultStatus.DUPLICATE_SUBMISSION
        assert second.value.id == first.value.id

    def test_different_request_conflicts(self, service, posted_invoice, key, test_actor_id):
        service.submit_payment(
            posted_invoice.id, usd("40.68"), "check", idempotency_key=key, actor_id=test_actor_id,
        )

        result = service.submit_payment(
            posted_invoice.id, usd("20.00"), "check", idempotency_key=key, actor_id=test_actor_id,
        )

        assert result.status is ResultStatus.IDEMPOTENCY_KEY_CONFLICT
        assert not result.is_success
        assert len(service.list_payments(posted_invoice.id)) == 1

    def test_key_expires_after_window(
        self, service, posted_invoice, key, test_actor_id, deterministic_clock, config,
    ):
        first = service.submit_payment(
            posted_invoice.id, usd("20.00"), "check", idempotency_key=key, actor_id=test_actor_id,
        )
        deterministic_clock.advance(config.idempotency_window_seconds + 1)

        second = service.submit_payment(
            posted_invoice.id, usd("20.00"), "check", idempotency_key=key, actor_id=test_actor_id,
        )

        assert second.status is ResultStatus.SUCCESS
        assert second.value.id != first.value.id

    def test_replay_after_settlement(
        self, service, posted_invoice, key, test_actor_id,
    ):
        first = service.submit_payment(
            posted_invoice.id, usd("40.68"), "check", idempotency_key=key, actor_id=test_actor_id,
        )
        service.verify_payment(first.value.id, actor_id=test_actor_id)

        replay = service.submit_payment(
            posted_invoice.id, usd("40.68"), "check", idempotency_key=key, actor_id=test_actor_id,
        )

        assert replay.status is ResultStatus.DUPLICATE_SUBMISSION
        assert replay.value.id == first.value.id

    def test_failed_submission_does_not_claim_key(self, service, posted_invoice, test_actor_id):
        key = f"retry-{uuid4()}"
        failed = service.submit_payment(
            posted_invoice.id, usd("40.68"), "bitcoin", idempotency_key=key, actor_id=test_actor_id,
        )

        retried = service.submit_payment(
            posted_invoice.id, usd("40.68"), "bitcoin", idempotency_key=key, actor_id=test_actor_id,
        )

        assert failed.status is ResultStatus.MISSING_METHOD
        assert retried.status is ResultStatus.MISSING_METHOD


class TestIdempotencyKeyFormat:
    def test_round_trip(self):
        invoice_id = uuid4()

        key = generate_idempotency_key(invoice_id, 4068, "form:7f3a")

        assert parse_idempotency_key(key) == (str(invoice_id), 4068, "form:7f3a")

    def test_nonce_required(self):
        with pytest.raises(ValueError):
            generate_idempotency_key(uuid4(), 4068, "")

    def test_malformed_key(self):
        with pytest.raises(ValueError):
            parse_idempotency_key("no-separators")
