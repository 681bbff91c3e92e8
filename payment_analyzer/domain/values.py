"""Immutable value objects: money, consignment counts and date ranges."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class Money:
    """Exact decimal amount. Arithmetic never rounds; rounding is a display concern."""

    amount: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            raise TypeError(f"Money amount must be Decimal, got {type(self.amount).__name__}")
        if not self.amount.is_finite():
            raise ValueError(f"Invalid money amount: {self.amount}")

    @classmethod
    def zero(cls) -> Money:
        return cls(Decimal("0"))

    @classmethod
    def of(cls, value: Money | Decimal | int | str) -> Money:
        if isinstance(value, Money):
            return value
        if isinstance(value, (bool, float)):
            raise TypeError(f"Refusing to build Money from {type(value).__name__}: {value!r}")
        if isinstance(value, Decimal):
            return cls(value)
        if isinstance(value, int):
            return cls(Decimal(value))
        try:
            return cls(Decimal(str(value).strip()))
        except InvalidOperation as exc:
            raise ValueError(f"Invalid money amount: {value!r}") from exc

    def add(self, other: Money) -> Money:
        return Money(self.amount + other.amount)

    def subtract(self, other: Money) -> Money:
        return Money(self.amount - other.amount)

    def multiply(self, factor: int) -> Money:
        if isinstance(factor, bool) or not isinstance(factor, int):
            raise TypeError("Money can only be multiplied by an integer count")
        return Money(self.amount * factor)

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def quantize_2dp(self) -> Decimal:
        return self.amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    def format_plain(self) -> str:
        return f"{self.quantize_2dp():.2f}"

    def __str__(self) -> str:
        return f"£{self.format_plain()}"

    def __lt__(self, other: Money) -> bool:
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        return self.amount <= other.amount


def sum_money(values: Iterable[Money]) -> Money:
    total = Money.zero()
    for value in values:
        total = total.add(value)
    return total


@dataclass(frozen=True, slots=True)
class ConsignmentCount:
    """Non-negative integer count of delivered consignments."""

    count: int

    def __post_init__(self) -> None:
        if isinstance(self.count, bool) or not isinstance(self.count, int):
            raise ValueError(f"Invalid consignment count {self.count!r}: must be an integer")
        if self.count < 0:
            raise ValueError(f"Invalid consignment count {self.count}: must be non-negative")

    @classmethod
    def zero(cls) -> ConsignmentCount:
        return cls(0)

    @classmethod
    def of(cls, value: ConsignmentCount | int) -> ConsignmentCount:
        if isinstance(value, ConsignmentCount):
            return value
        return cls(value)

    def add(self, other: ConsignmentCount) -> ConsignmentCount:
        return ConsignmentCount(self.count + other.count)

    def is_zero(self) -> bool:
        return self.count == 0

    def __int__(self) -> int:
        return self.count

    def __str__(self) -> str:
        return str(self.count)


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"Start date {self.start.isoformat()} must be before or equal to end date {self.end.isoformat()}"
            )

    @classmethod
    def single_day(cls, day: date) -> DateRange:
        return cls(day, day)

    @classmethod
    def covering(cls, dates: Iterable[date]) -> DateRange:
        ordered = sorted(dates)
        if not ordered:
            raise ValueError("Cannot build a date range from no dates")
        return cls(ordered[0], ordered[-1])

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def day_count(self) -> int:
        return (self.end - self.start).days + 1

    def days(self) -> list[date]:
        return [self.start + timedelta(days=offset) for offset in range(self.day_count())]

    def working_days(self) -> list[date]:
        # Sunday is the only non-working day.
        return [day for day in self.days() if day.isoweekday() != 7]

    def union(self, other: DateRange) -> DateRange:
        return DateRange(min(self.start, other.start), max(self.end, other.end))

    def format_range(self) -> str:
        return f"{self.start:%d/%m/%Y} - {self.end:%d/%m/%Y}"

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> DateRange:
        return cls(date.fromisoformat(data["start"]), date.fromisoformat(data["end"]))


def day_of_week(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return day.isoweekday() % 7
