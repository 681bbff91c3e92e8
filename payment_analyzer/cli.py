"""Command-line entrypoint for payment analysis."""
from __future__ import annotations

import argparse
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from payment_analyzer.application.dto import AnalysisResponse
from payment_analyzer.application.use_cases import (
    AnalysisContext,
    DeleteAnalysisUseCase,
    SubmitDocumentsUseCase,
    UpdateAnalysisUseCase,
)
from payment_analyzer.config import SETTINGS
from payment_analyzer.domain.models import UploadedDocument
from payment_analyzer.domain.reconciliation import MergeStrategy
from payment_analyzer.domain.repositories import AnalysisRepository
from payment_analyzer.domain.rules import PaymentRules
from payment_analyzer.domain.values import Money
from payment_analyzer.exceptions import PaymentAnalyzerError
from payment_analyzer.infrastructure.parsing.extractor import DocumentExtractor
from payment_analyzer.infrastructure.parsing.pdf import PdfTextExtractor
from payment_analyzer.infrastructure.repositories.memory_repositories import (
    InMemoryAnalysisRepository,
    InMemoryRulesRepository,
)
from payment_analyzer.infrastructure.storage.json_repository import FileSystemAnalysisRepository
from payment_analyzer.logging_setup import configure_logging
from payment_analyzer.presentation.export import render_csv, render_json

RATE_OPTIONS = {
    "weekday_rate": "--weekday-rate",
    "saturday_rate": "--saturday-rate",
    "unloading_bonus": "--unloading-bonus",
    "attendance_bonus": "--attendance-bonus",
    "early_bonus": "--early-bonus",
    "pickup_rate": "--pickup-rate",
}


def _money(value: str) -> Money:
    try:
        return Money(Decimal(value))
    except (InvalidOperation, ValueError) as exc:
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}") from exc


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile runsheets against invoices")
    parser.add_argument("--owner", default="local", help="Owner id the analyses belong to")
    parser.add_argument("--store", type=Path, help="Directory holding saved analyses")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    analyze = commands.add_parser("analyze", help="Create an analysis from documents")
    analyze.add_argument("files", nargs="+", type=Path, help="Runsheet and invoice files")
    for field_name, flag in RATE_OPTIONS.items():
        analyze.add_argument(flag, dest=field_name, type=_money, help=f"Override the {field_name.replace('_', ' ')}")
    analyze.add_argument("--csv", type=Path, help="Write the CSV export here")
    analyze.add_argument("--json", type=Path, help="Write the JSON export here")

    update = commands.add_parser("update", help="Merge further documents into an analysis")
    update.add_argument("analysis_id")
    update.add_argument("files", nargs="+", type=Path)
    update.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in MergeStrategy],
        default=MergeStrategy.SMART.value,
        help="How invoice amounts combine with recorded ones",
    )
    update.add_argument("--csv", type=Path)
    update.add_argument("--json", type=Path)

    delete = commands.add_parser("delete", help="Delete an analysis and its entries")
    delete.add_argument("analysis_id")
    return parser.parse_args(argv)


def _load_documents(paths: list[Path]) -> list[UploadedDocument]:
    return [
        UploadedDocument(name=path.name, content=path.read_bytes(), last_modified=int(path.stat().st_mtime * 1000))
        for path in paths
    ]


def _repository(store: Path | None) -> AnalysisRepository:
    if store is None:
        return InMemoryAnalysisRepository()
    return FileSystemAnalysisRepository(store)


def _rules(args: argparse.Namespace) -> list[PaymentRules]:
    overrides = {name: getattr(args, name) for name in RATE_OPTIONS if getattr(args, name, None) is not None}
    return [PaymentRules.defaults(args.owner, **overrides)]


def _write_exports(args: argparse.Namespace, response: AnalysisResponse) -> None:
    if args.csv:
        args.csv.write_bytes(render_csv(response.analysis))
        print(f"CSV written to {args.csv}")
    if args.json:
        args.json.write_text(render_json(response.analysis), encoding="utf-8")
        print(f"JSON written to {args.json}")


def print_summary(response: AnalysisResponse) -> None:
    analysis = response.analysis
    totals = response.totals
    print("Analysis Summary")
    print("================")
    print(f"Analysis id: {analysis.id}")
    print(f"Period: {analysis.period.format_range()}")
    print(f"Working days: {totals.working_days}")
    print(f"Consignments: {totals.total_consignments}")
    print(f"Expected: {totals.expected_total}")
    print(f"Paid: {totals.paid_total}")
    print(f"Difference: {totals.difference_total} ({totals.overall_status.value})")
    if response.created or response.updated:
        print(
            f"Dates created: {len(response.created)}, updated: {len(response.updated)}, "
            f"outside period: {len(response.extended)}"
        )

    if response.warnings:
        print(f"\nWarnings ({response.warning_count}):")
        for warning in response.warnings:
            print(f"- {warning}")

    print("\nDaily entries:")
    for entry in analysis.entries:
        print(
            f"- {entry.date.isoformat()} {entry.day_name[:3]}: {entry.consignments} consignments, "
            f"expected {entry.expected_total}, paid {entry.paid_amount}, "
            f"difference {entry.difference} ({entry.status.value})"
        )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging(args.log_level, stream=sys.stderr)

    context = AnalysisContext(
        analyses=_repository(args.store),
        rules=InMemoryRulesRepository(),
        extractor=DocumentExtractor(PdfTextExtractor()),
    )

    try:
        if args.command == "analyze":
            response = SubmitDocumentsUseCase(context).execute(
                args.owner,
                _load_documents(args.files),
                rules_versions=_rules(args),
            )
        elif args.command == "update":
            if args.store is None:
                print("update needs --store", file=sys.stderr)
                return 2
            response = UpdateAnalysisUseCase(context).execute(
                args.analysis_id,
                args.owner,
                _load_documents(args.files),
                MergeStrategy(args.strategy),
            )
        else:
            DeleteAnalysisUseCase(context).execute(args.analysis_id, args.owner)
            print(f"Deleted analysis {args.analysis_id}")
            return 0
    except PaymentAnalyzerError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print_summary(response)
    _write_exports(args, response)
    if args.store is None:
        print(f"\nNot saved; pass --store (for example {SETTINGS.analyses_dir}) to keep it.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
