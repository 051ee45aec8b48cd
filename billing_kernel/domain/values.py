"""
Values -- Immutable, self-validating money value objects.

Responsibility:
    Provides Currency and Money for every amount the billing kernel touches:
    invoice totals, payment amounts, balances.  Amounts are held as integer
    minor units (cents for USD) so all arithmetic is exact.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module.  No outward dependencies except
    billing_kernel.domain.currency (CurrencyRegistry).

Invariants enforced:
    - Money pairs an int amount with a Currency; they are never separated
    - Floats are rejected at construction (TypeError)
    - Arithmetic and comparison never mix currencies (ValueError)
    - Conversion from decimal text is exact; sub-minor-unit precision
      is rejected, never rounded

Failure modes:
    - TypeError on float or other non-int amounts
    - ValueError on invalid currency codes or mixed-currency arithmetic
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from billing_kernel.domain.currency import CurrencyRegistry


@dataclass(frozen=True, slots=True)
class Currency:
    """
    ISO 4217 currency code value object.

    Validated and normalized (uppercased) on construction.  Invalid codes are
    rejected immediately.
    """

    code: str

    def __post_init__(self) -> None:
        normalized = self.code.upper().strip() if isinstance(self.code, str) else ""
        if not CurrencyRegistry.is_valid(normalized):
            raise ValueError(f"Invalid ISO 4217 currency code: {self.code}")
        object.__setattr__(self, "code", normalized)

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def name(self) -> str:
        info = CurrencyRegistry.get_info(self.code)
        return info.name if info else self.code

    def __str__(self) -> str:
        return self.code

    def __repr__(self) -> str:
        return f"Currency({self.code!r})"


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount in integer minor units.

    Contract:
        ``amount`` is an ``int`` count of minor units (4068 == 40.68 USD).
        Pairs with its Currency; same-currency rules are enforced on every
        binary operation.

    Guarantees:
        - Immutable and hashable (frozen dataclass with slots)
        - amount is always an int (never float, never bool)
        - currency is always a valid Currency (ISO 4217)

    Non-goals:
        - Does NOT perform currency conversion
        - Does NOT round; fractional minor units are an error
    """

    amount: int
    currency: Currency

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise TypeError(
                f"Money amount must be int minor units, got {type(self.amount).__name__}"
            )

        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: int, currency: str | Currency) -> Money:
        """Create Money from an integer count of minor units."""
        if isinstance(currency, str):
            currency = Currency(currency)
        return cls(amount=amount, currency=currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        """Create a zero amount in the given currency."""
        return cls.of(0, currency)

    @classmethod
    def from_decimal(cls, value: Decimal | str | int, currency: str | Currency) -> Money:
        """
        Convert a major-unit decimal value to minor units.

        ``Money.from_decimal("40.68", "USD")`` is ``Money(4068, USD)``.

        Raises:
            TypeError: If ``value`` is a float.
            ValueError: If ``value`` is not a number or carries more precision
                than the currency's minor unit.
        """
        if isinstance(value, float):
            raise TypeError("Money cannot be built from float; pass a str or Decimal")
        if isinstance(currency, str):
            currency = Currency(currency)
        try:
            dec = value if isinstance(value, Decimal) else Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {value!r}") from e
        if not dec.is_finite():
            raise ValueError(f"Invalid amount: {value!r}")

        scaled = dec.scaleb(currency.decimal_places)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"Amount {value} has more precision than {currency.code} allows"
            )
        return cls(amount=int(scaled), currency=currency)

    def to_decimal(self) -> Decimal:
        """Return the major-unit value (4068 USD cents -> Decimal('40.68'))."""
        return Decimal(self.amount).scaleb(-self.currency.decimal_places)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def _check_currency(self, other: Money, op: str) -> None:
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {op} Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount, currency=self.currency)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount), currency=self.currency)

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.to_decimal()} {self.currency.code}"

    def __repr__(self) -> str:
        return f"Money({self.amount!r}, {self.currency!r})"
