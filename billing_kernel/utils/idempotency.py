"""
Idempotency key generation utilities.

Idempotency keys let a client retry a payment submission (double click,
network retry) without creating a second payment.
"""

from uuid import UUID


def generate_idempotency_key(
    invoice_id: UUID | str,
    amount: int,
    nonce: str,
) -> str:
    """
    Generate an idempotency key for a payment submission.

    Format: invoice_id:amount:nonce

    ``nonce`` identifies one user intent (for example a form render id), so
    resubmitting the same form reuses the key while a deliberate second
    payment of the same amount gets a fresh one.

    Example:
        >>> generate_idempotency_key(uuid, 4068, "form-7f3a")
        "550e8400-e29b-41d4-a716-446655440000:4068:form-7f3a"
    """
    if not nonce:
        raise ValueError("nonce is required")
    return f"{invoice_id}:{amount}:{nonce}"


def parse_idempotency_key(key: str) -> tuple[str, int, str]:
    """
    Parse an idempotency key into (invoice_id, amount, nonce).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid idempotency key format: {key}")
    try:
        amount = int(parts[1])
    except ValueError as e:
        raise ValueError(f"Invalid idempotency key format: {key}") from e
    return parts[0], amount, parts[2]
