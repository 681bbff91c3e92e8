"""Domain models for the payment reconciliation pipeline.

Entities are frozen snapshots. Changes produce new instances through the
functions in ``payment_analyzer.domain.analysis``; nothing here is mutated in
place.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .values import ConsignmentCount, DateRange, Money, day_of_week

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


class PaymentStatus(str, Enum):
    BALANCED = "balanced"
    OVERPAID = "overpaid"
    UNDERPAID = "underpaid"

    @classmethod
    def for_difference(cls, difference: Money) -> PaymentStatus:
        if difference.is_zero():
            return cls.BALANCED
        return cls.OVERPAID if difference.is_positive() else cls.UNDERPAID


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class AnalysisSource(str, Enum):
    UPLOAD = "upload"
    MANUAL = "manual"
    IMPORT = "import"


class DocumentKind(str, Enum):
    RUNSHEET = "runsheet"
    INVOICE = "invoice"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FileIdentity:
    """What a submitted file is known by for duplicate detection."""

    name: str
    size: int
    last_modified: int = 0


@dataclass(frozen=True)
class UploadedDocument:
    name: str
    content: bytes
    last_modified: int = 0

    @property
    def size(self) -> int:
        return len(self.content)

    def identity(self) -> FileIdentity:
        return FileIdentity(name=self.name, size=self.size, last_modified=self.last_modified)


@dataclass(frozen=True)
class InvoiceLine:
    """One payment line-item read from an invoice."""

    date: date
    amount: Money
    time: str | None = None
    service_type: str = "Standard"
    is_pickup: bool = False


@dataclass(frozen=True)
class DailyEntry:
    """Fully computed reconciliation record for a single date."""

    analysis_id: str
    date: date
    consignments: ConsignmentCount
    rate: Money
    base_payment: Money
    paid_amount: Money
    pickups: ConsignmentCount = field(default_factory=ConsignmentCount.zero)
    pickup_total: Money = field(default_factory=Money.zero)
    unloading_bonus: Money = field(default_factory=Money.zero)
    attendance_bonus: Money = field(default_factory=Money.zero)
    early_bonus: Money = field(default_factory=Money.zero)

    @property
    def key(self) -> tuple[str, date]:
        return (self.analysis_id, self.date)

    @property
    def day_of_week(self) -> int:
        return day_of_week(self.date)

    @property
    def day_name(self) -> str:
        return DAY_NAMES[self.day_of_week]

    @property
    def is_working_day(self) -> bool:
        return self.day_of_week != 0

    @property
    def total_bonus(self) -> Money:
        return self.unloading_bonus.add(self.attendance_bonus).add(self.early_bonus)

    @property
    def expected_total(self) -> Money:
        return self.base_payment.add(self.total_bonus).add(self.pickup_total)

    @property
    def difference(self) -> Money:
        return self.paid_amount.subtract(self.expected_total)

    @property
    def status(self) -> PaymentStatus:
        return PaymentStatus.for_difference(self.difference)

    def with_paid_amount(self, paid_amount: Money) -> DailyEntry:
        return replace(self, paid_amount=paid_amount)

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysisId": self.analysis_id,
            "date": self.date.isoformat(),
            "dayOfWeek": self.day_of_week,
            "consignments": self.consignments.count,
            "rate": str(self.rate.amount),
            "basePayment": str(self.base_payment.amount),
            "pickups": self.pickups.count,
            "pickupTotal": str(self.pickup_total.amount),
            "unloadingBonus": str(self.unloading_bonus.amount),
            "attendanceBonus": str(self.attendance_bonus.amount),
            "earlyBonus": str(self.early_bonus.amount),
            "totalBonus": str(self.total_bonus.amount),
            "expectedTotal": str(self.expected_total.amount),
            "paidAmount": str(self.paid_amount.amount),
            "difference": str(self.difference.amount),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DailyEntry:
        consignments = int(data["consignments"])
        rate = Money.of(data["rate"])
        base = data.get("basePayment")
        return cls(
            analysis_id=str(data["analysisId"]),
            date=date.fromisoformat(str(data["date"])[:10]),
            consignments=ConsignmentCount(consignments),
            rate=rate,
            base_payment=Money.of(base) if base is not None else rate.multiply(consignments),
            paid_amount=Money.of(data.get("paidAmount", "0")),
            pickups=ConsignmentCount(int(data.get("pickups", 0))),
            pickup_total=Money.of(data.get("pickupTotal", "0")),
            unloading_bonus=Money.of(data.get("unloadingBonus", "0")),
            attendance_bonus=Money.of(data.get("attendanceBonus", "0")),
            early_bonus=Money.of(data.get("earlyBonus", "0")),
        )


@dataclass(frozen=True)
class Analysis:
    """One reconciliation period and its per-day entries."""

    id: str
    owner_id: str
    source: AnalysisSource
    period: DateRange
    rules_version: int
    created_at: datetime
    updated_at: datetime
    fingerprint: str | None = None
    status: AnalysisStatus = AnalysisStatus.PENDING
    entries: tuple[DailyEntry, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    error_message: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def dates(self) -> tuple[date, ...]:
        return tuple(entry.date for entry in self.entries)

    def is_complete(self) -> bool:
        return self.status is AnalysisStatus.COMPLETED and bool(self.entries)

    def has_errors(self) -> bool:
        return self.status is AnalysisStatus.ERROR
