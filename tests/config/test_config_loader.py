"""
Configuration loading and validation.

Tests cover:
- Defaults
- YAML parsing, including the ``reconciliation:`` wrapper
- Rejection of unknown keys and invalid values
- Resolution order of get_active_config and its audit log entry
"""

from dataclasses import replace

import pytest
import yaml

from billing_config import (
    CONFIG_PATH_ENV,
    ReconciliationConfig,
    compute_checksum,
    config_from_dict,
    get_active_config,
    load_config,
)


def _write(tmp_path, data, name="billing.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestReconciliationConfig:
    def test_defaults(self):
        config = ReconciliationConfig()

        assert config.currency == "USD"
        assert config.lock_timeout_seconds == 5.0
        assert config.idempotency_window_seconds == 86400
        assert config.reversal_window_hours == 48
        assert config.default_payment_terms_days == 30
        assert config.require_posting_before_payment is True
        assert config.invoice_number_prefix == "INV"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"currency": "XYZ"},
            {"lock_timeout_seconds": 0},
            {"lock_timeout_seconds": True},
            {"idempotency_window_seconds": 0},
            {"idempotency_window_seconds": 1.5},
            {"reversal_window_hours": 0},
            {"default_payment_terms_days": -1},
            {"require_posting_before_payment": "yes"},
            {"invoice_number_prefix": " "},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValueError):
            ReconciliationConfig(**overrides)

    def test_reversal_window_can_be_disabled(self):
        assert ReconciliationConfig(reversal_window_hours=None).reversal_window_hours is None

    def test_frozen(self):
        config = ReconciliationConfig()

        with pytest.raises(AttributeError):
            config.currency = "EUR"
        assert replace(config, currency="EUR").currency == "EUR"


class TestLoader:
    def test_load_yaml(self, tmp_path):
        path = _write(tmp_path, {"currency": "cad", "reversal_window_hours": 24})

        config = load_config(path)

        assert config.currency == "CAD"
        assert config.reversal_window_hours == 24
        assert config.lock_timeout_seconds == 5.0

    def test_wrapper_section(self, tmp_path):
        path = _write(tmp_path, {"reconciliation": {"require_posting_before_payment": False}})

        assert load_config(path).require_posting_before_payment is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == ReconciliationConfig()

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown configuration keys: lock_timout"):
            config_from_dict({"lock_timout": 3})

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- currency\n- USD\n")

        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")


class TestChecksum:
    def test_key_order_independent(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_value_sensitive(self):
        assert compute_checksum({"a": 1}) != compute_checksum({"a": 2})


class TestGetActiveConfig:
    def test_defaults_without_path_or_env(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)

        assert get_active_config() == ReconciliationConfig()

    def test_env_var(self, monkeypatch, tmp_path):
        path = _write(tmp_path, {"invoice_number_prefix": "CRS"})
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        assert get_active_config().invoice_number_prefix == "CRS"

    def test_explicit_path_wins_over_env(self, monkeypatch, tmp_path):
        env_path = _write(tmp_path, {"currency": "EUR"}, name="env.yaml")
        explicit = _write(tmp_path, {"currency": "GBP"}, name="explicit.yaml")
        monkeypatch.setenv(CONFIG_PATH_ENV, str(env_path))

        assert get_active_config(explicit).currency == "GBP"

    def test_logs_source_and_checksum(self, monkeypatch, tmp_path, captured_logs):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        path = _write(tmp_path, {"currency": "EUR"})

        config = get_active_config(path)

        records = [r for r in captured_logs() if r["message"] == "billing_config_loaded"]
        assert len(records) == 1
        assert records[0]["config_source"] == str(path)
        assert records[0]["checksum"] == compute_checksum(config.to_dict())
        assert records[0]["currency"] == "EUR"
