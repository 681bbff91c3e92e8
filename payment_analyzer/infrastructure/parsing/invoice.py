"""Invoice parser producing dated payment line items."""
from __future__ import annotations

import re
from decimal import Decimal

import pandas as pd

from payment_analyzer.config import SETTINGS
from payment_analyzer.domain.models import DocumentKind, InvoiceLine
from payment_analyzer.domain.values import Money, sum_money
from payment_analyzer.exceptions import ParseError
from payment_analyzer.infrastructure.parsing.records import ParsedDocument, RawPayment, sanitize_records
from payment_analyzer.infrastructure.parsing.utils import (
    TextExtractor,
    decode_text,
    is_tabular,
    parse_amount,
    parse_date_value,
    parse_dmy,
    pick_column,
    read_table,
)

_LINE_DATE = re.compile(r"^\d{2}/\d{2}/\d{2}$")
_LINE_TIME = re.compile(r"^\d{2}:\d{2}$")
_AMOUNT = re.compile(r"^(\d+\.\d{2})")
_AMOUNT_WINDOW = 28
PICKUP_MARKER = "-PickUp"

_TOTAL_PATTERNS = (
    re.compile(r"docket\s+total:\s*£(\d+(?:,\d{3})*\.?\d{0,2})", re.IGNORECASE),
    re.compile(r"total:\s*gbp\s*£(\d+(?:,\d{3})*\.?\d{0,2})", re.IGNORECASE),
    re.compile(r"gbp\s*£(\d+(?:,\d{3})*\.?\d{0,2})\s*total:", re.IGNORECASE),
)

KNOWN_DATE_COLUMNS = ["Date", "Payment Date", "Delivery Date", "Docket Date"]
KNOWN_AMOUNT_COLUMNS = ["Amount", "Paid Amount", "Paid", "Value", "Total"]
KNOWN_SERVICE_COLUMNS = ["Service", "Service Type", "Type", "Description"]


def document_total(text: str) -> Decimal | None:
    for pattern in _TOTAL_PATTERNS:
        match = pattern.search(text)
        if match:
            return parse_amount(match.group(1))
    return None


def invoice_records_from_text(text: str, filename: str) -> tuple[list[RawPayment], list[str]]:
    """Scan tokens up to ``Docket Total:`` for ``dd/mm/yy HH:MM`` line items.

    The first ``123.45`` style token within the following window is the line
    amount. Amounts outside the configured bounds are dropped with a warning.
    """
    tokens = text.split()
    records: list[RawPayment] = []
    warnings: list[str] = []
    low, high = SETTINGS.invoice_min_amount, SETTINGS.invoice_max_amount

    for index, token in enumerate(tokens):
        if token == "Docket" and index + 1 < len(tokens) and tokens[index + 1] == "Total:":
            break
        if not _LINE_DATE.match(token):
            continue
        if index + 1 >= len(tokens) or not _LINE_TIME.match(tokens[index + 1]):
            continue
        on_date = parse_dmy(token)
        line_time = tokens[index + 1]
        is_pickup = index + 2 < len(tokens) and tokens[index + 2] == PICKUP_MARKER
        for candidate in tokens[index + 2:index + 2 + _AMOUNT_WINDOW]:
            match = _AMOUNT.match(candidate)
            if not match:
                continue
            amount = Decimal(match.group(1))
            if low <= amount <= high:
                records.append(
                    RawPayment(
                        date=on_date,
                        amount=amount,
                        time=line_time,
                        service_type="Pickup Service" if is_pickup else "Standard",
                        is_pickup=is_pickup,
                        source=filename,
                    )
                )
            else:
                warnings.append(f"{filename}: amount £{amount} on {token} outside £{low}-£{high}; dropped")
            break
    return records, warnings


def check_document_total(lines: list[InvoiceLine], total: Decimal | None, filename: str) -> str | None:
    """Warning text when the stated document total disagrees with the lines."""
    if total is None:
        return f"{filename}: could not find document total for validation"
    calculated = sum_money(line.amount for line in lines)
    difference = calculated.subtract(Money(total))
    if abs(difference.amount) <= SETTINGS.invoice_total_tolerance:
        return None
    return (
        f"{filename}: total mismatch, calculated {calculated}, document shows {Money(total)} "
        f"(difference: {difference})"
    )


def invoice_records_from_frame(frame: pd.DataFrame, filename: str) -> tuple[list[RawPayment], list[str]]:
    date_column = pick_column(frame, KNOWN_DATE_COLUMNS)
    amount_column = pick_column(frame, KNOWN_AMOUNT_COLUMNS)
    if date_column is None or amount_column is None:
        raise ParseError(filename, "expected date and amount columns")
    service_column = pick_column(frame, KNOWN_SERVICE_COLUMNS)

    records: list[RawPayment] = []
    warnings: list[str] = []
    for index, row in frame.iterrows():
        raw = row.get(amount_column)
        amount = parse_amount(raw)
        if amount is None:
            warnings.append(f"{filename}: row {index + 2} has unreadable amount {raw!r}; dropped")
            continue
        service = str(row.get(service_column) or "").strip() if service_column else ""
        if service.upper() == "NAN":
            service = ""
        is_pickup = "pickup" in service.lower().replace(" ", "").replace("-", "")
        records.append(
            RawPayment(
                date=parse_date_value(row.get(date_column)),
                amount=amount,
                service_type=service or "Standard",
                is_pickup=is_pickup,
                source=filename,
            )
        )
    return records, warnings


def read_invoice(
    content: bytes,
    filename: str,
    text_extractor: TextExtractor | None = None,
) -> ParsedDocument:
    warnings: list[str] = []
    total: Decimal | None = None
    if is_tabular(filename):
        records, warnings = invoice_records_from_frame(read_table(content, filename), filename)
    else:
        text = decode_text(content, filename, text_extractor)
        records, warnings = invoice_records_from_text(text, filename)
        total = document_total(text)

    dropped = len(warnings)
    sanitized = sanitize_records(payments=records)
    warnings.extend(sanitized.warnings)
    if not sanitized.lines:
        raise ParseError(filename, "no payment entries found")
    if not is_tabular(filename):
        mismatch = check_document_total(sanitized.lines, total, filename)
        if mismatch:
            warnings.append(mismatch)
    return ParsedDocument(
        filename=filename,
        kind=DocumentKind.INVOICE,
        lines=sorted(sanitized.lines, key=lambda line: (line.date, line.time or "")),
        warnings=warnings,
        rejected=dropped + sanitized.warning_count,
    )


def extract_invoice(
    content: bytes,
    filename: str,
    text_extractor: TextExtractor | None = None,
) -> list[InvoiceLine]:
    return read_invoice(content, filename, text_extractor).lines
