"""Versioned payment rules: per-day rates and bonus eligibility."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping

from payment_analyzer.config import SETTINGS
from payment_analyzer.exceptions import RulesNotFoundError

from .values import Money

SATURDAY = 6

# Day of week (0=Sunday ... 6=Saturday) -> (unloading, attendance, early).
BONUS_TABLE: Mapping[int, tuple[bool, bool, bool]] = {
    0: (False, False, False),
    1: (False, True, True),
    2: (True, True, True),
    3: (True, True, True),
    4: (True, True, True),
    5: (True, True, True),
    6: (True, False, False),
}


@dataclass(frozen=True)
class BonusSet:
    unloading: Money
    attendance: Money
    early: Money

    @property
    def total(self) -> Money:
        return self.unloading.add(self.attendance).add(self.early)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PaymentRules:
    """One version of an owner's rate card, valid over a date window."""

    owner_id: str
    weekday_rate: Money
    saturday_rate: Money
    unloading_bonus: Money
    attendance_bonus: Money
    early_bonus: Money
    pickup_rate: Money = field(default_factory=Money.zero)
    version: int = 1
    valid_from: date = date.min
    valid_until: date | None = None
    is_active: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def defaults(cls, owner_id: str, **overrides: Any) -> PaymentRules:
        rates = SETTINGS.default_rates
        values: dict[str, Any] = {
            "weekday_rate": Money(rates.weekday_rate),
            "saturday_rate": Money(rates.saturday_rate),
            "unloading_bonus": Money(rates.unloading_bonus),
            "attendance_bonus": Money(rates.attendance_bonus),
            "early_bonus": Money(rates.early_bonus),
            "pickup_rate": Money(rates.pickup_rate),
        }
        values.update(overrides)
        return cls(owner_id=owner_id, **values)

    def rate_for_day(self, day_of_week: int) -> Money:
        return self.saturday_rate if day_of_week == SATURDAY else self.weekday_rate

    def applicable_bonuses(self, day_of_week: int) -> BonusSet:
        unloading, attendance, early = BONUS_TABLE[day_of_week]
        return BonusSet(
            unloading=self.unloading_bonus if unloading else Money.zero(),
            attendance=self.attendance_bonus if attendance else Money.zero(),
            early=self.early_bonus if early else Money.zero(),
        )

    def is_valid_for(self, on_date: date) -> bool:
        if not self.is_active:
            return False
        if on_date < self.valid_from:
            return False
        if self.valid_until is not None and on_date > self.valid_until:
            return False
        return True

    def new_version(self, valid_from: date, **changes: Money) -> PaymentRules:
        return replace(
            self,
            version=self.version + 1,
            valid_from=valid_from,
            valid_until=None,
            is_active=True,
            id=str(uuid.uuid4()),
            created_at=_utcnow(),
            **changes,
        )

    def deactivate(self, on: date) -> PaymentRules:
        return replace(self, is_active=False, valid_until=on)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.owner_id,
            "version": self.version,
            "weekdayRate": str(self.weekday_rate.amount),
            "saturdayRate": str(self.saturday_rate.amount),
            "unloadingBonus": str(self.unloading_bonus.amount),
            "attendanceBonus": str(self.attendance_bonus.amount),
            "earlyBonus": str(self.early_bonus.amount),
            "pickupRate": str(self.pickup_rate.amount),
            "validFrom": self.valid_from.isoformat(),
            "validUntil": self.valid_until.isoformat() if self.valid_until else None,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PaymentRules:
        valid_until = data.get("validUntil")
        return cls(
            id=data["id"],
            owner_id=data["userId"],
            version=int(data.get("version", 1)),
            weekday_rate=Money.of(data["weekdayRate"]),
            saturday_rate=Money.of(data["saturdayRate"]),
            unloading_bonus=Money.of(data["unloadingBonus"]),
            attendance_bonus=Money.of(data["attendanceBonus"]),
            early_bonus=Money.of(data["earlyBonus"]),
            pickup_rate=Money.of(data.get("pickupRate", "0")),
            valid_from=date.fromisoformat(data["validFrom"]),
            valid_until=date.fromisoformat(valid_until) if valid_until else None,
            is_active=bool(data.get("isActive", True)),
            created_at=datetime.fromisoformat(data["createdAt"]),
        )


class RulesBook:
    """Selects the rule version that governs a given date."""

    def __init__(self, versions: Iterable[PaymentRules]) -> None:
        self._versions = tuple(versions)
        if not self._versions:
            raise RulesNotFoundError("No payment rule versions supplied")

    @property
    def versions(self) -> tuple[PaymentRules, ...]:
        return self._versions

    def select(self, on_date: date) -> PaymentRules:
        candidates = [rules for rules in self._versions if rules.is_valid_for(on_date)]
        if not candidates:
            raise RulesNotFoundError(f"No active payment rules for {on_date.isoformat()}")
        # Last writer wins by creation order.
        return max(candidates, key=lambda rules: (rules.created_at, rules.version))

    def latest(self) -> PaymentRules:
        return max(self._versions, key=lambda rules: (rules.created_at, rules.version))
