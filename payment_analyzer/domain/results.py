"""Domain-level results: aggregate totals, extraction batches and merge outcomes."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping, Sequence

from .models import Analysis, DocumentKind, InvoiceLine, PaymentStatus
from .values import Money


@dataclass(frozen=True)
class AnalysisTotals:
    base_total: Money
    bonus_total: Money
    pickup_total: Money
    expected_total: Money
    paid_total: Money
    difference_total: Money
    total_consignments: int
    working_days: int

    @property
    def overall_status(self) -> PaymentStatus:
        return PaymentStatus.for_difference(self.difference_total)

    def to_dict(self) -> dict[str, str]:
        return {
            "baseTotal": str(self.base_total.amount),
            "bonusTotal": str(self.bonus_total.amount),
            "pickupTotal": str(self.pickup_total.amount),
            "expectedTotal": str(self.expected_total.amount),
            "paidTotal": str(self.paid_total.amount),
            "differenceTotal": str(self.difference_total.amount),
        }


@dataclass(frozen=True)
class FileOutcome:
    """What happened to one submitted file during extraction."""

    filename: str
    kind: DocumentKind
    records: int = 0
    warnings: tuple[str, ...] = ()
    error: str | None = None

    @property
    def usable(self) -> bool:
        return self.error is None and self.records > 0


@dataclass(frozen=True)
class ExtractionBatch:
    """Structured records extracted from one submission, grouped by source."""

    consignments: Mapping[date, int] = field(default_factory=dict)
    invoice_lines: Sequence[InvoiceLine] = field(default_factory=tuple)
    files: Sequence[FileOutcome] = field(default_factory=tuple)
    warnings: Sequence[str] = field(default_factory=tuple)
    rejected_records: int = 0

    @property
    def dates(self) -> list[date]:
        return sorted(set(self.consignments) | {line.date for line in self.invoice_lines})

    def lines_by_date(self) -> dict[date, list[InvoiceLine]]:
        grouped: dict[date, list[InvoiceLine]] = {}
        for line in self.invoice_lines:
            grouped.setdefault(line.date, []).append(line)
        return grouped

    def is_empty(self) -> bool:
        return not self.consignments and not self.invoice_lines

    def iter_failures(self) -> Iterable[FileOutcome]:
        return (outcome for outcome in self.files if not outcome.usable)


@dataclass(frozen=True)
class MergeResult:
    analysis: Analysis
    totals: AnalysisTotals
    created: tuple[date, ...] = ()
    updated: tuple[date, ...] = ()
    extended: tuple[date, ...] = ()

    def summary(self) -> dict[str, Any]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "extended": [day.isoformat() for day in self.extended],
        }
