"""Central configuration for the payment analyzer package."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timezone
from decimal import Context, Decimal
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("PAYMENT_ANALYZER_DATA_DIR", BASE_DIR / "data"))
ANALYSES_DIR = DATA_DIR / "analyses"


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


@dataclass(slots=True, frozen=True)
class RateCard:
    weekday_rate: Decimal
    saturday_rate: Decimal
    unloading_bonus: Decimal
    attendance_bonus: Decimal
    early_bonus: Decimal
    pickup_rate: Decimal


@dataclass(slots=True, frozen=True)
class Settings:
    decimal_context: Context
    timezone: timezone.__class__
    default_rates: RateCard
    invoice_min_amount: Decimal
    invoice_max_amount: Decimal
    invoice_total_tolerance: Decimal
    stage_timeout_buffer: float
    progress_ttl: float
    background_workers: int
    log_level: str
    data_dir: Path
    analyses_dir: Path


SETTINGS = Settings(
    decimal_context=Context(prec=28),
    timezone=timezone.utc,
    default_rates=RateCard(
        weekday_rate=_env_decimal("PAYMENT_ANALYZER_WEEKDAY_RATE", "2.00"),
        saturday_rate=_env_decimal("PAYMENT_ANALYZER_SATURDAY_RATE", "3.00"),
        unloading_bonus=_env_decimal("PAYMENT_ANALYZER_UNLOADING_BONUS", "30.00"),
        attendance_bonus=_env_decimal("PAYMENT_ANALYZER_ATTENDANCE_BONUS", "25.00"),
        early_bonus=_env_decimal("PAYMENT_ANALYZER_EARLY_BONUS", "50.00"),
        pickup_rate=_env_decimal("PAYMENT_ANALYZER_PICKUP_RATE", "0.00"),
    ),
    invoice_min_amount=Decimal("3.00"),
    invoice_max_amount=Decimal("500.00"),
    invoice_total_tolerance=Decimal("0.01"),
    stage_timeout_buffer=_env_float("PAYMENT_ANALYZER_STAGE_BUFFER", 5.0),
    progress_ttl=_env_float("PAYMENT_ANALYZER_PROGRESS_TTL", 3600.0),
    background_workers=_env_int("PAYMENT_ANALYZER_WORKERS", 2),
    log_level=os.getenv("PAYMENT_ANALYZER_LOG_LEVEL", "INFO"),
    data_dir=DATA_DIR,
    analyses_dir=ANALYSES_DIR,
)
