"""Fixed-precision money type for payroll amounts."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import Numeric
from sqlalchemy.types import TypeDecorator

CENT = Decimal("0.01")


class Money:
    """An amount of currency with exactly two decimal places.

    Values are quantized with ROUND_HALF_UP on construction, so addition and
    subtraction of Money values are always exact. Binary floats are refused.
    """

    __slots__ = ("_amount",)

    def __init__(self, amount: Decimal | int | str = 0):
        if isinstance(amount, (bool, float)):
            raise TypeError(f"Money cannot be built from {type(amount).__name__}")
        try:
            value = Decimal(amount)
        except InvalidOperation as exc:
            raise ValueError(f"Invalid money amount: {amount!r}") from exc
        if not value.is_finite():
            raise ValueError(f"Invalid money amount: {amount!r}")
        self._amount = value.quantize(CENT, rounding=ROUND_HALF_UP)

    @classmethod
    def of(cls, value: Money | Decimal | int | str) -> Money:
        """Coerce a value into Money (Money instances pass through)."""
        if isinstance(value, Money):
            return value
        return cls(value)

    @classmethod
    def zero(cls) -> Money:
        return cls(0)

    @classmethod
    def total(cls, values: Iterable[Money]) -> Money:
        """Sum an iterable of Money values, starting from zero."""
        result = cls.zero()
        for value in values:
            result = result + value
        return result

    @property
    def amount(self) -> Decimal:
        return self._amount

    @property
    def is_zero(self) -> bool:
        return self._amount == 0

    @property
    def is_negative(self) -> bool:
        return self._amount < 0

    def __add__(self, other: Any) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self._amount + other._amount)

    def __radd__(self, other: Any) -> Money:
        # sum() starts from int 0
        if isinstance(other, int) and not isinstance(other, bool) and other == 0:
            return self
        return NotImplemented

    def __sub__(self, other: Any) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self._amount - other._amount)

    def __neg__(self) -> Money:
        return Money(-self._amount)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self._amount == other._amount

    def __hash__(self) -> int:
        return hash(self._amount)

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self._amount < other._amount

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self._amount <= other._amount

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self._amount > other._amount

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self._amount >= other._amount

    def __str__(self) -> str:
        return str(self._amount)

    def __repr__(self) -> str:
        return f"Money('{self._amount}')"


def net_amount(gross: Money, deductions: Money, bonuses: Money) -> Money:
    """Derive net pay: gross - deductions + bonuses."""
    return gross - deductions + bonuses


class MoneyType(TypeDecorator):
    """Stores Money as NUMERIC(14, 2)."""

    impl = Numeric(14, 2)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Decimal | None:
        if value is None:
            return None
        return Money.of(value).amount

    def process_result_value(self, value: Any, dialect: Any) -> Money | None:
        if value is None:
            return None
        if isinstance(value, float):
            value = Decimal(str(value))
        return Money.of(value)
