"""Analysis aggregate: pure transformations over immutable snapshots.

Every function returns a new ``Analysis``; callers persist the version they
want to keep. Entries are held date-unique and sorted ascending after every
change, and totals are always folded from the complete entry set.
"""
from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping

from payment_analyzer.exceptions import EntryOutsidePeriodError, InvalidTransitionError

from .models import Analysis, AnalysisSource, AnalysisStatus, DailyEntry
from .results import AnalysisTotals
from .values import DateRange, sum_money

ALLOWED_TRANSITIONS: Mapping[AnalysisStatus, frozenset[AnalysisStatus]] = {
    AnalysisStatus.PENDING: frozenset({AnalysisStatus.PROCESSING, AnalysisStatus.ERROR}),
    AnalysisStatus.PROCESSING: frozenset({AnalysisStatus.COMPLETED, AnalysisStatus.ERROR}),
    AnalysisStatus.COMPLETED: frozenset({AnalysisStatus.PROCESSING}),
    AnalysisStatus.ERROR: frozenset({AnalysisStatus.PROCESSING}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_analysis(
    owner_id: str,
    period: DateRange,
    rules_version: int,
    source: AnalysisSource = AnalysisSource.UPLOAD,
    fingerprint: str | None = None,
    metadata: Mapping[str, Any] | None = None,
    analysis_id: str | None = None,
) -> Analysis:
    now = _utcnow()
    return Analysis(
        id=analysis_id or str(uuid.uuid4()),
        owner_id=owner_id,
        source=source,
        period=period,
        rules_version=rules_version,
        created_at=now,
        updated_at=now,
        fingerprint=fingerprint,
        metadata=dict(metadata or {}),
    )


def _touch(analysis: Analysis, **changes: Any) -> Analysis:
    return replace(analysis, updated_at=_utcnow(), **changes)


def _sorted_unique(entries: Iterable[DailyEntry]) -> tuple[DailyEntry, ...]:
    by_date: dict[date, DailyEntry] = {}
    for entry in entries:
        by_date[entry.date] = entry
    return tuple(by_date[day] for day in sorted(by_date))


def add_daily_entry(analysis: Analysis, entry: DailyEntry) -> Analysis:
    """Add ``entry``, replacing any existing entry for the same date."""
    if not analysis.period.contains(entry.date):
        raise EntryOutsidePeriodError(entry.date, analysis.period.format_range())
    if entry.analysis_id != analysis.id:
        entry = replace(entry, analysis_id=analysis.id)
    return _touch(analysis, entries=_sorted_unique((*analysis.entries, entry)))


def replace_entries(analysis: Analysis, entries: Iterable[DailyEntry]) -> Analysis:
    result = _touch(analysis, entries=())
    for entry in entries:
        result = add_daily_entry(result, entry)
    return result


def remove_daily_entry(analysis: Analysis, day: date) -> Analysis:
    remaining = tuple(entry for entry in analysis.entries if entry.date != day)
    return _touch(analysis, entries=remaining)


def get_daily_entry(analysis: Analysis, day: date) -> DailyEntry | None:
    for entry in analysis.entries:
        if entry.date == day:
            return entry
    return None


def update_metadata(analysis: Analysis, **metadata: Any) -> Analysis:
    merged = dict(analysis.metadata)
    merged.update(metadata)
    return _touch(analysis, metadata=merged)


def transition(analysis: Analysis, status: AnalysisStatus, error: str | None = None) -> Analysis:
    if status not in ALLOWED_TRANSITIONS[analysis.status]:
        raise InvalidTransitionError(analysis.status.value, status.value)
    message = error if status is AnalysisStatus.ERROR else None
    return _touch(analysis, status=status, error_message=message)


def compute_totals(entries: Iterable[DailyEntry]) -> AnalysisTotals:
    entries = tuple(entries)
    expected = sum_money(entry.expected_total for entry in entries)
    paid = sum_money(entry.paid_amount for entry in entries)
    return AnalysisTotals(
        base_total=sum_money(entry.base_payment for entry in entries),
        bonus_total=sum_money(entry.total_bonus for entry in entries),
        pickup_total=sum_money(entry.pickup_total for entry in entries),
        expected_total=expected,
        paid_total=paid,
        difference_total=paid.subtract(expected),
        total_consignments=sum(entry.consignments.count for entry in entries),
        working_days=sum(1 for entry in entries if entry.is_working_day),
    )


def to_dict(analysis: Analysis) -> dict[str, Any]:
    totals = compute_totals(analysis.entries)
    return {
        "id": analysis.id,
        "userId": analysis.owner_id,
        "fingerprint": analysis.fingerprint,
        "source": analysis.source.value,
        "status": analysis.status.value,
        "periodStart": analysis.period.start.isoformat(),
        "periodEnd": analysis.period.end.isoformat(),
        "rulesVersion": analysis.rules_version,
        "workingDays": totals.working_days,
        "totalConsignments": totals.total_consignments,
        "dailyEntries": [entry.to_dict() for entry in analysis.entries],
        "totals": totals.to_dict(),
        "metadata": dict(analysis.metadata),
        "errorMessage": analysis.error_message,
        "createdAt": analysis.created_at.isoformat(),
        "updatedAt": analysis.updated_at.isoformat(),
    }


def from_dict(data: Mapping[str, Any]) -> Analysis:
    """Rebuild an analysis from ``to_dict`` output.

    Stored totals are ignored; they are derived again from the entries.
    """
    entries = tuple(DailyEntry.from_dict(item) for item in data.get("dailyEntries") or ())
    analysis = Analysis(
        id=str(data["id"]),
        owner_id=str(data["userId"]),
        source=AnalysisSource(data.get("source", AnalysisSource.UPLOAD.value)),
        period=DateRange(
            date.fromisoformat(str(data["periodStart"])[:10]),
            date.fromisoformat(str(data["periodEnd"])[:10]),
        ),
        rules_version=int(data.get("rulesVersion", 1)),
        created_at=datetime.fromisoformat(str(data["createdAt"])),
        updated_at=datetime.fromisoformat(str(data["updatedAt"])),
        fingerprint=data.get("fingerprint"),
        status=AnalysisStatus(data.get("status", AnalysisStatus.PENDING.value)),
        metadata=dict(data.get("metadata") or {}),
        error_message=data.get("errorMessage"),
    )
    for entry in entries:
        if not analysis.period.contains(entry.date):
            raise EntryOutsidePeriodError(entry.date, analysis.period.format_range())
    return replace(analysis, entries=_sorted_unique(entries))
