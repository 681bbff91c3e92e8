"""CSV, JSON and HTML renderings of an analysis."""
from __future__ import annotations

import csv
import html
import io
import json
from typing import Sequence

from payment_analyzer.domain import analysis as analysis_ops
from payment_analyzer.domain.models import Analysis, DailyEntry

CSV_COLUMNS = [
    "Date",
    "Day",
    "Consignments",
    "Rate",
    "Base Payment",
    "Pickups",
    "Pickup Total",
    "Unloading Bonus",
    "Attendance Bonus",
    "Early Bonus",
    "Total Bonus",
    "Expected Total",
    "Paid Amount",
    "Difference",
    "Status",
]


def entries_to_rows(entries: Sequence[DailyEntry]) -> list[dict[str, str]]:
    rows: list[dict[str, str]] = []
    for entry in entries:
        rows.append(
            {
                "Date": entry.date.isoformat(),
                "Day": entry.day_name,
                "Consignments": str(entry.consignments),
                "Rate": entry.rate.format_plain(),
                "Base Payment": entry.base_payment.format_plain(),
                "Pickups": str(entry.pickups),
                "Pickup Total": entry.pickup_total.format_plain(),
                "Unloading Bonus": entry.unloading_bonus.format_plain(),
                "Attendance Bonus": entry.attendance_bonus.format_plain(),
                "Early Bonus": entry.early_bonus.format_plain(),
                "Total Bonus": entry.total_bonus.format_plain(),
                "Expected Total": entry.expected_total.format_plain(),
                "Paid Amount": entry.paid_amount.format_plain(),
                "Difference": entry.difference.format_plain(),
                "Status": entry.status.value,
            }
        )
    return rows


def render_csv(analysis: Analysis) -> bytes:
    """One row per daily entry. Fields holding quotes, commas or newlines are quoted."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writeheader()
    writer.writerows(entries_to_rows(analysis.entries))
    return buffer.getvalue().encode("utf-8")


def render_json(analysis: Analysis, indent: int | None = 2) -> str:
    return json.dumps(analysis_ops.to_dict(analysis), ensure_ascii=False, indent=indent)


def render_html(analysis: Analysis) -> str:
    rows = entries_to_rows(analysis.entries)
    if not rows:
        return "<p>No daily entries.</p>"
    totals = analysis_ops.compute_totals(analysis.entries)
    header = "".join(f"<th>{html.escape(column)}</th>" for column in CSV_COLUMNS)
    body = "".join(
        "<tr>" + "".join(f"<td>{html.escape(row[column])}</td>" for column in CSV_COLUMNS) + "</tr>"
        for row in rows
    )
    summary = (
        f"<p>{html.escape(analysis.period.format_range())}: expected {totals.expected_total}, "
        f"paid {totals.paid_total}, difference {totals.difference_total} "
        f"({totals.overall_status.value})</p>"
    )
    return f"{summary}<table><thead><tr>{header}</tr></thead><tbody>{body}</tbody></table>"
