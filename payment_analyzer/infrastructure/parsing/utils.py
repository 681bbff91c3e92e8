"""Shared parsing utilities for document ingestion."""
from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO
from pathlib import Path
from typing import Iterable, Protocol

import pandas as pd

from payment_analyzer.domain.models import DocumentKind
from payment_analyzer.exceptions import ParseError

PAGE_BREAK = "\f"

RUNSHEET_MARKERS = ("runsheet", "run_sheet", "run-sheet")
INVOICE_MARKERS = ("invoice", "bill", "dv_")

TABULAR_SUFFIXES = {".csv", ".xlsx", ".xls"}

_ISO_DATE = re.compile(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})")
_DMY_DATE = re.compile(r"(\d{1,2})[-/](\d{1,2})[-/](\d{2,4})")


class TextExtractor(Protocol):
    """Turns a binary document (typically a PDF) into text, pages split by form feed."""

    def extract_text(self, content: bytes, filename: str) -> str:
        ...


def classify_document(filename: str) -> DocumentKind:
    name = filename.lower()
    if any(marker in name for marker in RUNSHEET_MARKERS):
        return DocumentKind.RUNSHEET
    if any(marker in name for marker in INVOICE_MARKERS):
        return DocumentKind.INVOICE
    return DocumentKind.UNKNOWN


def is_tabular(filename: str) -> bool:
    return Path(filename).suffix.lower() in TABULAR_SUFFIXES


def _expand_year(year: int) -> int:
    if year < 100:
        return year + (2000 if year < 50 else 1900)
    return year


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_dmy(token: str) -> date | None:
    """Parse ``dd/mm/yyyy``, ``dd-mm-yy`` and friends; ``None`` when invalid."""
    match = _DMY_DATE.fullmatch(token.strip())
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    return _safe_date(_expand_year(year), month, day)


def find_date(text: str) -> date | None:
    """First plausible calendar date anywhere in ``text``: ISO first, then day-first."""
    for match in _ISO_DATE.finditer(text):
        year, month, day = (int(part) for part in match.groups())
        found = _safe_date(year, month, day)
        if found is not None:
            return found
    for match in _DMY_DATE.finditer(text):
        day, month, year = (int(part) for part in match.groups())
        found = _safe_date(_expand_year(year), month, day)
        if found is not None:
            return found
    return None


def parse_date_value(value: object) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text or text.upper() in {"NAN", "NAT", "NONE"}:
        return None
    return find_date(text)


def parse_amount(value: object) -> Decimal | None:
    """Decimal from a cell or token, stripping currency symbols; ``None`` when unparseable."""
    if value is None:
        return None
    s = str(value).strip()
    if not s or s.upper() == "NAN":
        return None
    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1]
    for ch in [",", "£", "$", "€", " "]:
        s = s.replace(ch, "")
    if s.upper().startswith("GBP"):
        s = s[3:]
    try:
        result = Decimal(s)
    except InvalidOperation:
        return None
    if not result.is_finite():
        return None
    return -result if negative else result


def parse_count(value: object) -> int | None:
    amount = parse_amount(value)
    if amount is None or amount != amount.to_integral_value():
        return None
    return int(amount)


def decode_text(content: bytes, filename: str, text_extractor: TextExtractor | None = None) -> str:
    if Path(filename).suffix.lower() == ".pdf":
        if text_extractor is None:
            raise ParseError(filename, "PDF documents need a text extractor")
        try:
            return text_extractor.extract_text(content, filename)
        except ParseError:
            raise
        except Exception as exc:  # PDF libraries raise their own error types
            raise ParseError(filename, f"text extraction failed ({exc})") from exc
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(filename, "content is not UTF-8 text") from exc


def split_pages(text: str) -> list[str]:
    return [page for page in text.split(PAGE_BREAK) if page.strip()]


def read_table(content: bytes, filename: str) -> pd.DataFrame:
    suffix = Path(filename).suffix.lower()
    source = BytesIO(content)
    try:
        if suffix == ".csv":
            frame = pd.read_csv(source, dtype=str, skipinitialspace=True)
        elif suffix == ".xls":
            frame = pd.read_excel(source, engine="xlrd", dtype=str)
        else:
            frame = pd.read_excel(source, engine="openpyxl", dtype=str)
    except Exception as exc:  # each engine raises its own error types
        raise ParseError(filename, f"unreadable table ({exc})") from exc
    frame.columns = [str(column).strip() for column in frame.columns]
    return frame.dropna(how="all")


def pick_column(frame: pd.DataFrame, candidates: Iterable[str]) -> str | None:
    lower_map = {column.lower(): column for column in frame.columns}
    candidates = list(candidates)
    for candidate in candidates:
        if candidate.lower() in lower_map:
            return lower_map[candidate.lower()]
    for candidate in candidates:
        pattern = re.compile(rf"\b{re.escape(candidate.lower())}\b")
        for column in frame.columns:
            if pattern.search(column.lower()):
                return column
    return None
