"""Raw per-record output of the parsers and the boundary filter applied to it."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from payment_analyzer.domain.models import DocumentKind, InvoiceLine
from payment_analyzer.domain.values import Money


@dataclass(frozen=True)
class RawCount:
    date: date | None
    count: int
    source: str = ""


@dataclass(frozen=True)
class RawPayment:
    date: date | None
    amount: Decimal
    time: str | None = None
    service_type: str = "Standard"
    is_pickup: bool = False
    source: str = ""


@dataclass(frozen=True)
class SanitizedRecords:
    counts: dict[date, int] = field(default_factory=dict)
    lines: list[InvoiceLine] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)


@dataclass(frozen=True)
class ParsedDocument:
    """Everything read from one document, already sanitized."""

    filename: str
    kind: DocumentKind
    counts: dict[date, int] = field(default_factory=dict)
    lines: list[InvoiceLine] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rejected: int = 0

    @property
    def record_count(self) -> int:
        return len(self.counts) + len(self.lines)


def sanitize_records(
    counts: Iterable[RawCount] = (),
    payments: Iterable[RawPayment] = (),
) -> SanitizedRecords:
    """Drop undated records, negative counts and negative amounts.

    Counts for the same date are summed. Each dropped record produces one
    warning so callers can surface how much was discarded.
    """
    result = SanitizedRecords()
    for record in counts:
        label = f" in {record.source}" if record.source else ""
        if record.date is None:
            result.warnings.append(f"Skipped undated consignment count{label}")
            continue
        if record.count < 0:
            result.warnings.append(
                f"Skipped negative consignment count {record.count} on {record.date.isoformat()}{label}"
            )
            continue
        result.counts[record.date] = result.counts.get(record.date, 0) + record.count
    for payment in payments:
        label = f" in {payment.source}" if payment.source else ""
        if payment.date is None:
            result.warnings.append(f"Skipped undated payment of {payment.amount}{label}")
            continue
        if payment.amount < 0:
            result.warnings.append(
                f"Skipped negative payment {payment.amount} on {payment.date.isoformat()}{label}"
            )
            continue
        result.lines.append(
            InvoiceLine(
                date=payment.date,
                amount=Money(payment.amount),
                time=payment.time,
                service_type=payment.service_type,
                is_pickup=payment.is_pickup,
            )
        )
    return result
