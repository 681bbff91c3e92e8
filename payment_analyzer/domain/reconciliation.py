"""Merge newly extracted documents into an existing analysis.

Runsheet data always overwrites the expected side of an entry. Invoice data is
combined with what is already recorded using a ``MergeStrategy``:

* ``replace`` and ``max`` are idempotent: applying the same batch twice leaves
  the paid amount where the first application put it.
* ``add`` is not idempotent: every application adds the batch total again.
* ``smart`` behaves as ``replace`` when exactly one invoice line maps to a date
  and as ``add`` when several do, so it is only idempotent for single-line
  dates. Prefer an explicit strategy when the intent is known.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import date
from enum import Enum
from typing import Sequence

from .analysis import compute_totals, get_daily_entry, replace_entries
from .models import Analysis, DailyEntry, InvoiceLine
from .results import ExtractionBatch, MergeResult
from .services import PaymentCalculator
from .values import DateRange, Money, sum_money


class MergeStrategy(str, Enum):
    REPLACE = "replace"
    ADD = "add"
    MAX = "max"
    SMART = "smart"

    def resolve(self, line_count: int) -> MergeStrategy:
        if self is not MergeStrategy.SMART:
            return self
        return MergeStrategy.REPLACE if line_count == 1 else MergeStrategy.ADD


def merge_paid_amount(
    existing: Money,
    incoming_total: Money,
    line_count: int,
    strategy: MergeStrategy,
) -> Money:
    """Combine a stored paid amount with a new invoice total for one date."""
    effective = strategy.resolve(line_count)
    if effective is MergeStrategy.REPLACE:
        return incoming_total
    if effective is MergeStrategy.ADD:
        return existing.add(incoming_total)
    return incoming_total if existing < incoming_total else existing


def _merge_pickups(existing: int, incoming: int, line_count: int, strategy: MergeStrategy) -> int:
    effective = strategy.resolve(line_count)
    if effective is MergeStrategy.REPLACE:
        return incoming
    if effective is MergeStrategy.ADD:
        return existing + incoming
    return max(existing, incoming)


def _pickup_count(lines: Sequence[InvoiceLine]) -> int:
    return sum(1 for line in lines if line.is_pickup)


def reconcile(
    analysis: Analysis,
    batch: ExtractionBatch,
    calculator: PaymentCalculator,
    strategy: MergeStrategy = MergeStrategy.SMART,
) -> MergeResult:
    """Apply ``batch`` to ``analysis`` and return the new snapshot with fresh totals.

    Every touched entry is rebuilt through the calculator so that rates,
    bonuses, difference and status follow the rules in force for its date.
    Dates outside the analysis period widen it to cover them; they are listed
    in ``extended`` as well as in ``created``.
    """
    lines_by_date = batch.lines_by_date()
    entries: dict[date, DailyEntry] = {entry.date: entry for entry in analysis.entries}
    created: list[date] = []
    updated: list[date] = []
    extended = tuple(day for day in batch.dates if not analysis.period.contains(day))
    if extended:
        analysis = replace(analysis, period=analysis.period.union(DateRange.covering(extended)))

    for day in batch.dates:

        lines = lines_by_date.get(day, [])
        incoming_paid = sum_money(line.amount for line in lines)
        incoming_pickups = _pickup_count(lines)
        existing = get_daily_entry(analysis, day)

        if existing is None:
            entries[day] = calculator.build_entry(
                analysis.id,
                day,
                consignments=batch.consignments.get(day, 0),
                paid_amount=incoming_paid,
                pickups=incoming_pickups,
            )
            created.append(day)
            continue

        consignments = batch.consignments.get(day, existing.consignments.count)
        paid = existing.paid_amount
        pickups = existing.pickups.count
        if lines:
            paid = merge_paid_amount(paid, incoming_paid, len(lines), strategy)
            pickups = _merge_pickups(pickups, incoming_pickups, len(lines), strategy)
        entries[day] = calculator.build_entry(
            analysis.id,
            day,
            consignments=consignments,
            paid_amount=paid,
            pickups=pickups,
        )
        updated.append(day)

    merged = replace_entries(analysis, entries.values())
    return MergeResult(
        analysis=merged,
        totals=compute_totals(merged.entries),
        created=tuple(created),
        updated=tuple(updated),
        extended=extended,
    )
