"""Domain services computing daily entries from extracted data and payment rules."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Sequence

from .models import DailyEntry
from .rules import BonusSet, PaymentRules, RulesBook
from .values import ConsignmentCount, Money, day_of_week, sum_money


def build_entry(
    analysis_id: str,
    on_date: date,
    consignments: int,
    paid_amount: Money,
    pickups: int,
    rules: PaymentRules,
) -> DailyEntry:
    """Compute one day's entry. Pure: the same inputs always give the same entry.

    expected = consignments x rate + bonuses + pickups x pickup rate, and the
    difference is paid minus expected.
    """
    weekday = day_of_week(on_date)
    rate = rules.rate_for_day(weekday)
    bonuses = rules.applicable_bonuses(weekday)
    count = ConsignmentCount.of(consignments)
    pickup_count = ConsignmentCount.of(pickups)
    return DailyEntry(
        analysis_id=analysis_id,
        date=on_date,
        consignments=count,
        rate=rate,
        base_payment=rate.multiply(count.count),
        paid_amount=paid_amount,
        pickups=pickup_count,
        pickup_total=rules.pickup_rate.multiply(pickup_count.count),
        unloading_bonus=bonuses.unloading,
        attendance_bonus=bonuses.attendance,
        early_bonus=bonuses.early,
    )


@dataclass(frozen=True)
class WeeklyStats:
    working_days: int
    total_consignments: int
    base_total: Money
    bonus_total: Money
    pickup_total: Money
    expected_total: Money
    paid_total: Money
    difference: Money
    average_consignments_per_day: float
    average_paid_per_day: Money


class PaymentCalculator:
    """Builds entries using whichever rule version governs each date."""

    def __init__(self, rule_versions: Iterable[PaymentRules]) -> None:
        self._book = RulesBook(rule_versions)

    @property
    def book(self) -> RulesBook:
        return self._book

    def rules_for(self, on_date: date) -> PaymentRules:
        return self._book.select(on_date)

    def build_entry(
        self,
        analysis_id: str,
        on_date: date,
        consignments: int = 0,
        paid_amount: Money | None = None,
        pickups: int = 0,
    ) -> DailyEntry:
        return build_entry(
            analysis_id,
            on_date,
            consignments,
            paid_amount or Money.zero(),
            pickups,
            self.rules_for(on_date),
        )

    def bonuses_for(self, on_date: date) -> BonusSet:
        return self.rules_for(on_date).applicable_bonuses(day_of_week(on_date))

    def expected_total_for(self, on_date: date, consignments: int, pickups: int = 0) -> Money:
        return self.build_entry("", on_date, consignments, Money.zero(), pickups).expected_total

    @staticmethod
    def weekly_stats(entries: Sequence[DailyEntry]) -> WeeklyStats:
        working = [entry for entry in entries if entry.is_working_day]
        days = len(working)
        paid = sum_money(entry.paid_amount for entry in working)
        expected = sum_money(entry.expected_total for entry in working)
        consignments = sum(entry.consignments.count for entry in working)
        return WeeklyStats(
            working_days=days,
            total_consignments=consignments,
            base_total=sum_money(entry.base_payment for entry in working),
            bonus_total=sum_money(entry.total_bonus for entry in working),
            pickup_total=sum_money(entry.pickup_total for entry in working),
            expected_total=expected,
            paid_total=paid,
            difference=paid.subtract(expected),
            average_consignments_per_day=consignments / days if days else 0.0,
            average_paid_per_day=Money(paid.amount / days) if days else Money.zero(),
        )
