"""
ReconciliationConfig schema.

The typed, frozen runtime settings of the reconciliation engine.  YAML
files are parsed into this type by ``billing_config.loader``; services
receive an instance and never read files or environment variables.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from billing_kernel.domain.currency import CurrencyRegistry

# Keys accepted in a configuration file, in declaration order.
CONFIG_KEYS = (
    "currency",
    "lock_timeout_seconds",
    "idempotency_window_seconds",
    "reversal_window_hours",
    "default_payment_terms_days",
    "require_posting_before_payment",
    "invoice_number_prefix",
)


@dataclass(frozen=True)
class ReconciliationConfig:
    """
    Settings governing invoice and payment reconciliation.

    Attributes:
        currency: Default ISO 4217 currency for new invoices.
        lock_timeout_seconds: Bound on per-invoice lock acquisition, both the
            in-process lock and the PostgreSQL row lock.
        idempotency_window_seconds: How long an idempotency key maps to its
            original payment.
        reversal_window_hours: Maximum age of a verification that can still
            be reversed.  ``None`` disables the window.
        default_payment_terms_days: Due date offset when a billing-ready
            course carries neither ``due_at`` nor its own terms.
        require_posting_before_payment: When False, ``approved`` invoices
            accept payments before they are posted.
        invoice_number_prefix: Prefix of generated invoice numbers.
    """

    currency: str = "USD"
    lock_timeout_seconds: float = 5.0
    idempotency_window_seconds: int = 86400
    reversal_window_hours: int | None = 48
    default_payment_terms_days: int = 30
    require_posting_before_payment: bool = True
    invoice_number_prefix: str = "INV"

    def __post_init__(self) -> None:
        if not CurrencyRegistry.is_valid(self.currency):
            raise ValueError(f"Unknown currency: {self.currency!r}")
        if isinstance(self.lock_timeout_seconds, bool) or not isinstance(
            self.lock_timeout_seconds, (int, float)
        ):
            raise ValueError("lock_timeout_seconds must be a number")
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        _require_int("idempotency_window_seconds", self.idempotency_window_seconds, minimum=1)
        if self.reversal_window_hours is not None:
            _require_int("reversal_window_hours", self.reversal_window_hours, minimum=1)
        _require_int("default_payment_terms_days", self.default_payment_terms_days, minimum=0)
        if not isinstance(self.require_posting_before_payment, bool):
            raise ValueError("require_posting_before_payment must be a boolean")
        if not isinstance(self.invoice_number_prefix, str) or not self.invoice_number_prefix.strip():
            raise ValueError("invoice_number_prefix must be a non-empty string")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _require_int(name: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
