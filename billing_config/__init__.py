"""
billing_config -- single public entrypoint for reconciliation configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains a
    ``ReconciliationConfig``.  Services receive the resulting object and
    never read files or environment variables themselves.

Resolution order:
    1. An explicit ``path`` argument.
    2. The ``BILLING_CONFIG_PATH`` environment variable.
    3. Built-in defaults.

Audit relevance:
    Every call emits a ``billing_config_loaded`` log entry with the source
    and the SHA-256 checksum of the effective settings, tying each run to
    the exact configuration that governed it.
"""

from __future__ import annotations

import os
from pathlib import Path

from billing_config.loader import compute_checksum, config_from_dict, load_config
from billing_config.schema import ReconciliationConfig
from billing_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "BILLING_CONFIG_PATH"


def get_active_config(path: Path | str | None = None) -> ReconciliationConfig:
    """
    Resolve the active configuration.

    Raises:
        FileNotFoundError: The explicit or environment-provided path does
            not exist.
        ValueError: The file contains unknown keys or invalid values.
    """
    source = "defaults"
    if path is None:
        path = os.environ.get(CONFIG_PATH_ENV) or None

    if path is not None:
        config = load_config(path)
        source = str(path)
    else:
        config = ReconciliationConfig()

    _logger.info(
        "billing_config_loaded",
        extra={
            "config_source": source,
            "checksum": compute_checksum(config.to_dict()),
            "currency": config.currency,
            "require_posting_before_payment": config.require_posting_before_payment,
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "ReconciliationConfig",
    "compute_checksum",
    "config_from_dict",
    "get_active_config",
    "load_config",
]
