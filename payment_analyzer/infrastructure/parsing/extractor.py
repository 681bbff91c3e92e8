"""Batch extraction over a submission's documents."""
from __future__ import annotations

from datetime import date
from typing import Callable, Sequence

from payment_analyzer.domain.models import DocumentKind, InvoiceLine, UploadedDocument
from payment_analyzer.domain.results import ExtractionBatch, FileOutcome
from payment_analyzer.exceptions import NoDataExtractedError, ParseError
from payment_analyzer.infrastructure.parsing.invoice import read_invoice
from payment_analyzer.infrastructure.parsing.records import ParsedDocument
from payment_analyzer.infrastructure.parsing.runsheet import read_runsheet
from payment_analyzer.infrastructure.parsing.utils import TextExtractor, classify_document
from payment_analyzer.logging_setup import get_logger

logger = get_logger(__name__)

FileCallback = Callable[[int, int, str], None]


class DocumentExtractor:
    """Turns uploaded documents into one ``ExtractionBatch``.

    Files are read one after another so only a single decoded document is held
    in memory at a time. A failing or unrecognised file becomes a warning; the
    batch fails only when nothing usable was found.
    """

    def __init__(self, text_extractor: TextExtractor | None = None) -> None:
        self._text_extractor = text_extractor

    def extract_document(self, document: UploadedDocument) -> ParsedDocument:
        kind = classify_document(document.name)
        if kind is DocumentKind.RUNSHEET:
            return read_runsheet(document.content, document.name, self._text_extractor)
        if kind is DocumentKind.INVOICE:
            return read_invoice(document.content, document.name, self._text_extractor)
        raise ParseError(document.name, "unrecognised document type")

    def extract_batch(
        self,
        documents: Sequence[UploadedDocument],
        on_file: FileCallback | None = None,
    ) -> ExtractionBatch:
        consignments: dict[date, int] = {}
        lines: list[InvoiceLine] = []
        outcomes: list[FileOutcome] = []
        warnings: list[str] = []
        rejected = 0

        for position, document in enumerate(documents, start=1):
            if on_file is not None:
                on_file(position, len(documents), document.name)
            kind = classify_document(document.name)
            try:
                parsed = self.extract_document(document)
            except ParseError as exc:
                logger.warning("Skipping %s: %s", document.name, exc.reason)
                warnings.append(str(exc))
                outcomes.append(FileOutcome(filename=document.name, kind=kind, error=exc.reason))
                continue

            for on_date, count in parsed.counts.items():
                consignments[on_date] = consignments.get(on_date, 0) + count
            lines.extend(parsed.lines)
            warnings.extend(parsed.warnings)
            rejected += parsed.rejected
            for message in parsed.warnings:
                logger.warning(message)
            outcomes.append(
                FileOutcome(
                    filename=document.name,
                    kind=parsed.kind,
                    records=parsed.record_count,
                    warnings=tuple(parsed.warnings),
                )
            )

        if not any(outcome.usable for outcome in outcomes):
            raise NoDataExtractedError(warnings)

        logger.info(
            "Extracted %d runsheet dates and %d invoice lines from %d files",
            len(consignments),
            len(lines),
            len(documents),
        )
        return ExtractionBatch(
            consignments=consignments,
            invoice_lines=tuple(lines),
            files=tuple(outcomes),
            warnings=tuple(warnings),
            rejected_records=rejected,
        )
