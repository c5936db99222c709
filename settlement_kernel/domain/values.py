"""
Currency and Money value types.

An amount never travels without its currency once it leaves the database
layer.  Both types are frozen; Money refuses floats outright and refuses to
combine or compare amounts in different currencies.  Rounding is explicit:
call ``Money.round()`` to quantize to the currency's minor unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from functools import total_ordering

from settlement_kernel.domain.currency import CurrencyRegistry


@dataclass(frozen=True, slots=True)
class Currency:
    """Validated, upper-cased ISO 4217 code."""

    code: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", CurrencyRegistry.validate(self.code))

    @property
    def decimal_places(self) -> int:
        return CurrencyRegistry.get_decimal_places(self.code)

    @property
    def rounding_tolerance(self) -> Decimal:
        return CurrencyRegistry.get_rounding_tolerance(self.code)

    def __str__(self) -> str:
        return self.code


def _as_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, float):
        raise TypeError("Money amount must not be a float")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc


@total_ordering
@dataclass(frozen=True, slots=True)
class Money:
    """Decimal amount bound to a Currency."""

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _as_decimal(self.amount))
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency).__name__}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        return cls(_as_decimal(amount), currency)

    @classmethod
    def zero(cls, currency: str | Currency) -> Money:
        return cls(Decimal("0"), currency)

    @property
    def is_zero(self) -> bool:
        return self.amount.is_zero()

    @property
    def is_negative(self) -> bool:
        return self.amount.is_signed() and not self.amount.is_zero()

    def round(self, rounding: str = ROUND_HALF_UP) -> Money:
        """Quantize to one minor unit of the currency."""
        quantum = self.currency.rounding_tolerance
        return Money(self.amount.quantize(quantum, rounding=rounding), self.currency)

    def _same_currency(self, other: Money) -> Money:
        if self.currency != other.currency:
            raise ValueError(
                f"Money in different currencies: {self.currency} and {other.currency}"
            )
        return other

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.amount + self._same_currency(other).amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.amount - self._same_currency(other).amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __mul__(self, factor: Decimal | int | str) -> Money:
        if isinstance(factor, float):
            return NotImplemented
        return Money(self.amount * _as_decimal(factor), self.currency)

    __rmul__ = __mul__

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount < self._same_currency(other).amount

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"
