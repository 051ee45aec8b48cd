"""
Currencies the billing kernel can invoice in (``billing_kernel.domain.currency``).

Money is stored in integer minor units, so the only thing the kernel needs
to know about a currency is how many decimal places its minor unit has.
"""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    decimal_places: int
    name: str


def _table(*rows: tuple[str, int, str]) -> dict[str, CurrencyInfo]:
    return {code: CurrencyInfo(code, places, name) for code, places, name in rows}


class CurrencyRegistry:
    """Lookup of supported ISO 4217 codes; codes are matched case-insensitively."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = _table(
        ("USD", 2, "US Dollar"),
        ("CAD", 2, "Canadian Dollar"),
        ("EUR", 2, "Euro"),
        ("GBP", 2, "Pound Sterling"),
        ("AUD", 2, "Australian Dollar"),
        ("MXN", 2, "Mexican Peso"),
        ("JPY", 0, "Japanese Yen"),
        ("KRW", 0, "South Korean Won"),
        ("KWD", 3, "Kuwaiti Dinar"),
        ("BHD", 3, "Bahraini Dinar"),
    )

    @staticmethod
    def _normalize(code: object) -> str:
        return code.upper().strip() if isinstance(code, str) else ""

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        return cls._CURRENCIES.get(cls._normalize(code))

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return cls.get_info(code) is not None

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Minor-unit exponent of ``code`` (2 for USD, 0 for JPY, 3 for KWD)."""
        info = cls.get_info(code)
        if info is None:
            raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
        return info.decimal_places
