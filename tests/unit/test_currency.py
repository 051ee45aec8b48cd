"""Unit tests for the ISO 4217 currency registry."""

import pytest

from billing_kernel.domain.currency import CurrencyRegistry
from billing_kernel.domain.values import Currency


class TestCurrencyRegistry:
    def test_get_decimal_places_usd(self):
        assert CurrencyRegistry.get_decimal_places("USD") == 2

    def test_get_decimal_places_jpy(self):
        assert CurrencyRegistry.get_decimal_places("JPY") == 0

    def test_get_decimal_places_kwd(self):
        assert CurrencyRegistry.get_decimal_places("KWD") == 3

    def test_unknown_code_is_invalid(self):
        assert not CurrencyRegistry.is_valid("ABC")

    def test_unknown_code_decimal_places_raises(self):
        with pytest.raises(ValueError):
            CurrencyRegistry.get_decimal_places("ABC")


class TestCurrency:
    def test_normalizes_case_and_whitespace(self):
        assert Currency(" cad ").code == "CAD"

    def test_rejects_unknown(self):
        with pytest.raises(ValueError, match="Invalid ISO 4217"):
            Currency("ZZZ")

    def test_minor_unit_information(self):
        currency = Currency("USD")
        assert currency.decimal_places == 2
        assert currency.name == "US Dollar"
