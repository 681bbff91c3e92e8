"""Runsheet parser producing consignment counts per delivery date."""
from __future__ import annotations

import re
from datetime import date

import pandas as pd

from payment_analyzer.domain.models import DocumentKind
from payment_analyzer.exceptions import ParseError
from payment_analyzer.infrastructure.parsing.records import ParsedDocument, RawCount, sanitize_records
from payment_analyzer.infrastructure.parsing.utils import (
    TextExtractor,
    decode_text,
    find_date,
    is_tabular,
    parse_count,
    parse_date_value,
    parse_dmy,
    pick_column,
    read_table,
    split_pages,
)

_PAGE_DATE = re.compile(r"Date:\s*(\d{2}[-/]\d{2}[-/]\d{4})")
_ANY_DMY_FULL_YEAR = re.compile(r"(\d{2}[-/]\d{2}[-/]\d{4})")
_ISO_DATE = re.compile(r"(\d{4}[-/]\d{2}[-/]\d{2})")
_FLEXIBLE_DATE = re.compile(r"Date[\s:]*(\d{1,2}[-/]\d{1,2}[-/]\d{2,4})", re.IGNORECASE)
_CONSIGNMENT_ID = re.compile(r"^(\d{7}|AH\d+)$")
_SEQUENCE = re.compile(r"^\d+$")
_LOOKAHEAD_TOKENS = 10

KNOWN_DATE_COLUMNS = ["Date", "Delivery Date", "Run Date"]
KNOWN_COUNT_COLUMNS = ["Consignments", "Consignment Count", "Count", "Deliveries"]


def page_date(text: str) -> date | None:
    """Date printed on a runsheet page, trying the strict header pattern first."""
    match = _PAGE_DATE.search(text)
    if match:
        found = parse_dmy(match.group(1))
        if found is not None:
            return found
    match = _ANY_DMY_FULL_YEAR.search(text)
    if match:
        found = parse_dmy(match.group(1))
        if found is not None:
            return found
    match = _ISO_DATE.search(text)
    if match:
        found = find_date(match.group(1))
        if found is not None:
            return found
    match = _FLEXIBLE_DATE.search(text)
    if match:
        return parse_dmy(match.group(1))
    return None


def consignment_ids(text: str) -> list[str]:
    """Ids of delivery or collection line items on one page.

    A line item is a sequence number followed by a seven digit or ``AH`` id,
    with ``Delivery`` or ``Collection`` within the next few tokens.
    """
    tokens = text.split()
    found: list[str] = []
    for index in range(len(tokens) - 1):
        if not _SEQUENCE.match(tokens[index]):
            continue
        candidate = tokens[index + 1]
        if not _CONSIGNMENT_ID.match(candidate):
            continue
        nearby = " ".join(tokens[index:index + _LOOKAHEAD_TOKENS])
        if "Delivery" in nearby or "Collection" in nearby:
            found.append(candidate)
    return found


def runsheet_records_from_text(text: str, filename: str) -> tuple[list[RawCount], list[str]]:
    records: list[RawCount] = []
    warnings: list[str] = []
    fallback = find_date(filename)
    for number, page in enumerate(split_pages(text), start=1):
        ids = consignment_ids(page)
        if not ids:
            continue
        on_date = page_date(page) or fallback
        if on_date is None:
            warnings.append(f"{filename}: page {number} has {len(ids)} consignments but no date; skipped")
            continue
        records.append(RawCount(date=on_date, count=len(ids), source=filename))
    return records, warnings


def runsheet_records_from_frame(frame: pd.DataFrame, filename: str) -> tuple[list[RawCount], list[str]]:
    date_column = pick_column(frame, KNOWN_DATE_COLUMNS)
    if date_column is None:
        raise ParseError(filename, "no date column found")
    dates = frame[date_column].map(parse_date_value)
    count_column = pick_column(frame, KNOWN_COUNT_COLUMNS)
    if count_column is None:
        # One row per consignment.
        return [RawCount(date=value, count=1, source=filename) for value in dates], []
    records: list[RawCount] = []
    warnings: list[str] = []
    for index, on_date, raw in zip(frame.index, dates, frame[count_column]):
        count = parse_count(raw)
        if count is None:
            warnings.append(f"{filename}: row {index + 2} has unreadable consignment count {raw!r}; dropped")
            continue
        records.append(RawCount(date=on_date, count=count, source=filename))
    return records, warnings


def read_runsheet(
    content: bytes,
    filename: str,
    text_extractor: TextExtractor | None = None,
) -> ParsedDocument:
    warnings: list[str] = []
    if is_tabular(filename):
        records, warnings = runsheet_records_from_frame(read_table(content, filename), filename)
    else:
        text = decode_text(content, filename, text_extractor)
        records, warnings = runsheet_records_from_text(text, filename)

    dropped = len(warnings)
    sanitized = sanitize_records(counts=records)
    warnings.extend(sanitized.warnings)
    for on_date, count in sorted(sanitized.counts.items()):
        if on_date.isoweekday() == 7:
            warnings.append(f"{filename}: Sunday deliveries detected on {on_date.isoformat()}")
        if count > 200:
            warnings.append(f"{filename}: very high consignment count ({count}) on {on_date.isoformat()}")
    if not sanitized.counts:
        raise ParseError(filename, "no dated consignments found")
    return ParsedDocument(
        filename=filename,
        kind=DocumentKind.RUNSHEET,
        counts=dict(sanitized.counts),
        warnings=warnings,
        rejected=dropped + sanitized.warning_count,
    )


def extract_runsheet(
    content: bytes,
    filename: str,
    text_extractor: TextExtractor | None = None,
) -> dict[date, int]:
    return read_runsheet(content, filename, text_extractor).counts
