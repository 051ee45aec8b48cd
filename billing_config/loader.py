"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Reads a YAML configuration file and parses it into a frozen
``ReconciliationConfig``.  Runtime code obtains configuration through
``billing_config.get_active_config()``; the loader is the file-level
tooling underneath it.

Invariants enforced
-------------------
* Unknown keys are rejected, so a misspelled setting never silently falls
  back to its default.
* Every parsed object is a validated ``ReconciliationConfig``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Top level not a mapping, unknown keys or invalid values -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import CONFIG_KEYS, ReconciliationConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.  An empty file yields an empty mapping."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def config_from_dict(data: dict[str, Any]) -> ReconciliationConfig:
    """
    Build a ``ReconciliationConfig`` from a plain mapping.

    A ``reconciliation:`` wrapper key is accepted so that the settings can
    live in a shared application file.
    """
    if set(data) == {"reconciliation"}:
        data = data["reconciliation"] or {}
        if not isinstance(data, dict):
            raise ValueError("'reconciliation' section must be a mapping")

    unknown = sorted(set(data) - set(CONFIG_KEYS))
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    kwargs = dict(data)
    if "currency" in kwargs and isinstance(kwargs["currency"], str):
        kwargs["currency"] = kwargs["currency"].strip().upper()
    return ReconciliationConfig(**kwargs)


def load_config(path: Path | str) -> ReconciliationConfig:
    return config_from_dict(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
