"""Utility modules for the billing kernel."""

from billing_kernel.utils.hashing import (
    canonicalize_json,
    fingerprint_payment_request,
    hash_audit_event,
    hash_payload,
)
from billing_kernel.utils.idempotency import generate_idempotency_key

__all__ = [
    "hash_payload",
    "hash_audit_event",
    "canonicalize_json",
    "fingerprint_payment_request",
    "generate_idempotency_key",
]
