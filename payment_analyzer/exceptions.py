"""Payment analyzer exception hierarchy."""
from __future__ import annotations

from datetime import date, datetime


class PaymentAnalyzerError(Exception):
    """Base exception for all payment analyzer errors."""


class ParseError(PaymentAnalyzerError):
    """A single document could not be turned into dated records."""

    def __init__(self, filename: str, reason: str) -> None:
        self.filename = filename
        self.reason = reason
        super().__init__(f"{filename}: {reason}")


class NoDataExtractedError(PaymentAnalyzerError):
    """No document in a submission produced usable records."""

    def __init__(self, warnings: list[str] | None = None) -> None:
        self.warnings = list(warnings or [])
        super().__init__("No data extracted from any submitted document")


class DuplicateSubmissionError(PaymentAnalyzerError):
    """The same file set was already submitted by this owner."""

    def __init__(self, existing_id: str, created_at: datetime) -> None:
        self.existing_id = existing_id
        self.created_at = created_at
        super().__init__(
            f"These files were already analysed in analysis {existing_id} "
            f"on {created_at.isoformat()}"
        )


class AnalysisNotFoundError(PaymentAnalyzerError):
    """No analysis with the given id exists for the owner."""


class EntryOutsidePeriodError(PaymentAnalyzerError):
    """A daily entry's date falls outside the analysis period."""

    def __init__(self, entry_date: date, period: str) -> None:
        self.entry_date = entry_date
        super().__init__(f"Daily entry {entry_date.isoformat()} is outside analysis period {period}")


class InvalidTransitionError(PaymentAnalyzerError):
    """An analysis status change not allowed by the lifecycle."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move analysis from {current} to {requested}")


class RulesNotFoundError(PaymentAnalyzerError):
    """No payment rule version is active for a date."""
