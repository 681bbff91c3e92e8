"""Application-level DTOs for the analysis workflows."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from payment_analyzer.domain.models import Analysis
from payment_analyzer.domain.results import AnalysisTotals, FileOutcome
from payment_analyzer.domain.values import Money


@dataclass(slots=True, frozen=True)
class ManualEntry:
    date: date
    consignments: int
    paid_amount: Money = field(default_factory=Money.zero)
    pickups: int = 0


@dataclass(slots=True, frozen=True)
class AnalysisResponse:
    analysis: Analysis
    totals: AnalysisTotals
    warnings: Sequence[str] = ()
    files: Sequence[FileOutcome] = ()
    rejected_records: int = 0
    created: Sequence[date] = ()
    updated: Sequence[date] = ()
    extended: Sequence[date] = ()

    @property
    def warning_count(self) -> int:
        return len(self.warnings)
