"""Application services orchestrating submission, update and housekeeping workflows."""
from __future__ import annotations

import threading
from collections.abc import Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Hashable, Sequence

from payment_analyzer.application.dto import AnalysisResponse, ManualEntry
from payment_analyzer.application.progress import ProgressSnapshot, ProgressStore, ProgressTracker, Stage
from payment_analyzer.config import SETTINGS
from payment_analyzer.domain import analysis as analysis_ops
from payment_analyzer.domain.fingerprint import compute_fingerprint, identities_for
from payment_analyzer.domain.models import Analysis, AnalysisSource, AnalysisStatus, UploadedDocument
from payment_analyzer.domain.reconciliation import MergeStrategy, reconcile
from payment_analyzer.domain.repositories import AnalysisRepository, RulesRepository
from payment_analyzer.domain.results import ExtractionBatch
from payment_analyzer.domain.rules import PaymentRules
from payment_analyzer.domain.services import PaymentCalculator
from payment_analyzer.domain.values import DateRange
from payment_analyzer.exceptions import (
    AnalysisNotFoundError,
    DuplicateSubmissionError,
)
from payment_analyzer.infrastructure.parsing.extractor import DocumentExtractor
from payment_analyzer.logging_setup import get_logger

logger = get_logger(__name__)


class KeyedLocks:
    """One lock per key, created on demand and dropped when no longer held."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, tuple[threading.Lock, int]] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (threading.Lock(), 0))
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)


@dataclass(slots=True)
class AnalysisContext:
    analyses: AnalysisRepository
    rules: RulesRepository
    extractor: DocumentExtractor


def _resolve_rules(
    context: AnalysisContext,
    owner_id: str,
    rules_versions: Sequence[PaymentRules] | None,
) -> list[PaymentRules]:
    if rules_versions:
        return list(rules_versions)
    stored = list(context.rules.list_versions(owner_id))
    return stored or [PaymentRules.defaults(owner_id)]


def _extract(
    context: AnalysisContext,
    documents: Sequence[UploadedDocument],
    tracker: ProgressTracker,
) -> ExtractionBatch:
    tracker.advance_to(Stage.READING_DOCUMENTS, f"{len(documents)} files")
    tracker.advance_to(Stage.EXTRACTING_DATA)

    def on_file(position: int, total: int, name: str) -> None:
        tracker.update_details(Stage.EXTRACTING_DATA, f"File {position} of {total}: {name}")

    batch = context.extractor.extract_batch(documents, on_file=on_file)
    tracker.advance_to(Stage.PROCESSING, f"{len(batch.dates)} dates found")
    tracker.advance_to(Stage.VALIDATING, f"{len(batch.warnings)} warnings")
    return batch


def _current_stage(tracker: ProgressTracker) -> Stage:
    return tracker.snapshot().current_stage or Stage.INITIALIZING


def _check_duplicate(context: AnalysisContext, owner_id: str, fingerprint: str) -> None:
    existing = context.analyses.find_by_fingerprint(owner_id, fingerprint)
    if existing is not None:
        raise DuplicateSubmissionError(existing.id, existing.created_at)


class SubmitDocumentsUseCase:
    """First submission of a document set: creates and stores a new analysis."""

    def __init__(self, context: AnalysisContext, locks: KeyedLocks | None = None) -> None:
        self._context = context
        self._locks = locks or KeyedLocks()

    def execute(
        self,
        owner_id: str,
        documents: Sequence[UploadedDocument],
        rules_versions: Sequence[PaymentRules] | None = None,
        source: AnalysisSource = AnalysisSource.UPLOAD,
        tracker: ProgressTracker | None = None,
    ) -> AnalysisResponse:
        if not documents:
            raise ValueError("No documents submitted")
        tracker = tracker or ProgressTracker(auto_advance=False)
        tracker.start()
        fingerprint = compute_fingerprint(identities_for(documents))

        with self._locks.hold((owner_id, fingerprint)):
            try:
                # Rejected before any document is read.
                _check_duplicate(self._context, owner_id, fingerprint)
            except DuplicateSubmissionError as exc:
                tracker.fail(Stage.INITIALIZING, str(exc))
                raise
            return self._run(owner_id, documents, rules_versions, source, fingerprint, tracker)

    def _run(
        self,
        owner_id: str,
        documents: Sequence[UploadedDocument],
        rules_versions: Sequence[PaymentRules] | None,
        source: AnalysisSource,
        fingerprint: str,
        tracker: ProgressTracker,
    ) -> AnalysisResponse:
        analysis: Analysis | None = None
        try:
            tracker.advance_to(Stage.LOADING_RULES)
            calculator = PaymentCalculator(_resolve_rules(self._context, owner_id, rules_versions))
            batch = _extract(self._context, documents, tracker)

            analysis = analysis_ops.new_analysis(
                owner_id=owner_id,
                period=DateRange.covering(batch.dates),
                rules_version=calculator.book.latest().version,
                source=source,
                fingerprint=fingerprint,
                metadata={
                    "files": [document.name for document in documents],
                    "warningCount": len(batch.warnings),
                    "rejectedRecords": batch.rejected_records,
                },
            )
            analysis = analysis_ops.transition(analysis, AnalysisStatus.PROCESSING)

            tracker.advance_to(Stage.CALCULATING)
            merged = reconcile(analysis, batch, calculator, MergeStrategy.REPLACE)
            analysis = merged.analysis

            tracker.advance_to(Stage.GENERATING_REPORT)
            analysis = analysis_ops.transition(analysis, AnalysisStatus.COMPLETED)
            self._context.analyses.add(analysis)
        except Exception as exc:
            tracker.fail(_current_stage(tracker), str(exc))
            if analysis is not None and analysis.status is AnalysisStatus.PROCESSING:
                self._context.analyses.add(analysis_ops.transition(analysis, AnalysisStatus.ERROR, str(exc)))
            raise

        tracker.complete()
        logger.info("Created analysis %s with %d entries", analysis.id, len(analysis.entries))
        return AnalysisResponse(
            analysis=analysis,
            totals=merged.totals,
            warnings=tuple(batch.warnings),
            files=tuple(batch.files),
            rejected_records=batch.rejected_records,
            created=merged.created,
            extended=merged.extended,
        )


class UpdateAnalysisUseCase:
    """Merges a later document set into an existing analysis.

    Merges against the same analysis id never overlap; the stored snapshot is
    replaced in one write after the merge, so totals are never partially
    updated.
    """

    def __init__(self, context: AnalysisContext, locks: KeyedLocks | None = None) -> None:
        self._context = context
        self._locks = locks or KeyedLocks()

    def execute(
        self,
        analysis_id: str,
        owner_id: str,
        documents: Sequence[UploadedDocument],
        strategy: MergeStrategy = MergeStrategy.SMART,
        rules_versions: Sequence[PaymentRules] | None = None,
        tracker: ProgressTracker | None = None,
    ) -> AnalysisResponse:
        if not documents:
            raise ValueError("No documents submitted")
        tracker = tracker or ProgressTracker(auto_advance=False)

        with self._locks.hold(analysis_id):
            existing = self._context.analyses.get(analysis_id, owner_id)
            if existing is None:
                raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")
            tracker.start()
            processing = analysis_ops.transition(existing, AnalysisStatus.PROCESSING)
            self._context.analyses.update(processing)

            try:
                tracker.advance_to(Stage.LOADING_RULES)
                calculator = PaymentCalculator(_resolve_rules(self._context, owner_id, rules_versions))
                batch = _extract(self._context, documents, tracker)

                tracker.advance_to(Stage.CALCULATING, f"strategy {strategy.value}")
                merged = reconcile(processing, batch, calculator, strategy)
                if merged.extended:
                    logger.info(
                        "Analysis %s period widened to %s for %d date(s)",
                        analysis_id,
                        merged.analysis.period.format_range(),
                        len(merged.extended),
                    )

                tracker.advance_to(Stage.GENERATING_REPORT)
                history = list(processing.metadata.get("updates", []))
                history.append({"strategy": strategy.value, **merged.summary()})
                updated = analysis_ops.update_metadata(
                    merged.analysis,
                    updates=history,
                    files=[*processing.metadata.get("files", []), *(document.name for document in documents)],
                )
                updated = analysis_ops.transition(updated, AnalysisStatus.COMPLETED)
                self._context.analyses.update(updated)
            except Exception as exc:
                tracker.fail(_current_stage(tracker), str(exc))
                self._context.analyses.update(
                    analysis_ops.transition(processing, AnalysisStatus.ERROR, str(exc))
                )
                raise

        tracker.complete()
        logger.info(
            "Updated analysis %s: %d created, %d updated",
            analysis_id,
            len(merged.created),
            len(merged.updated),
        )
        return AnalysisResponse(
            analysis=updated,
            totals=merged.totals,
            warnings=tuple(batch.warnings),
            files=tuple(batch.files),
            rejected_records=batch.rejected_records,
            created=merged.created,
            updated=merged.updated,
            extended=merged.extended,
        )


class ManualEntryUseCase:
    """Builds an analysis from typed-in daily figures; no documents, no fingerprint."""

    def __init__(self, context: AnalysisContext) -> None:
        self._context = context

    def execute(
        self,
        owner_id: str,
        entries: Sequence[ManualEntry],
        rules_versions: Sequence[PaymentRules] | None = None,
    ) -> AnalysisResponse:
        if not entries:
            raise ValueError("No entries supplied")
        calculator = PaymentCalculator(_resolve_rules(self._context, owner_id, rules_versions))
        analysis = analysis_ops.new_analysis(
            owner_id=owner_id,
            period=DateRange.covering(entry.date for entry in entries),
            rules_version=calculator.book.latest().version,
            source=AnalysisSource.MANUAL,
        )
        analysis = analysis_ops.transition(analysis, AnalysisStatus.PROCESSING)
        analysis = analysis_ops.replace_entries(
            analysis,
            (
                calculator.build_entry(
                    analysis.id,
                    entry.date,
                    consignments=entry.consignments,
                    paid_amount=entry.paid_amount,
                    pickups=entry.pickups,
                )
                for entry in entries
            ),
        )
        analysis = analysis_ops.transition(analysis, AnalysisStatus.COMPLETED)
        self._context.analyses.add(analysis)
        return AnalysisResponse(
            analysis=analysis,
            totals=analysis_ops.compute_totals(analysis.entries),
            created=analysis.dates,
        )


class DeleteAnalysisUseCase:
    def __init__(self, context: AnalysisContext, locks: KeyedLocks | None = None) -> None:
        self._context = context
        self._locks = locks or KeyedLocks()

    def execute(self, analysis_id: str, owner_id: str) -> None:
        with self._locks.hold(analysis_id):
            if not self._context.analyses.delete(analysis_id, owner_id):
                raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")
        logger.info("Deleted analysis %s", analysis_id)


class AnalysisService:
    """Runs submissions and updates as background work observed through a ``ProgressStore``.

    Abandoning a submission only discards its tracker; a parse already in
    progress runs to completion.
    """

    def __init__(
        self,
        context: AnalysisContext,
        progress: ProgressStore | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._context = context
        self._progress = progress or ProgressStore()
        self._locks = KeyedLocks()
        self._submit = SubmitDocumentsUseCase(context, self._locks)
        self._update = UpdateAnalysisUseCase(context, self._locks)
        self._delete = DeleteAnalysisUseCase(context, self._locks)
        self._manual = ManualEntryUseCase(context)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or SETTINGS.background_workers,
            thread_name_prefix="payment-analyzer",
        )
        self._futures: dict[str, Future[AnalysisResponse]] = {}
        self._futures_lock = threading.Lock()

    @property
    def progress_store(self) -> ProgressStore:
        return self._progress

    def submit(self, owner_id: str, documents: Sequence[UploadedDocument], **kwargs) -> AnalysisResponse:
        return self._submit.execute(owner_id, documents, **kwargs)

    def update(
        self,
        analysis_id: str,
        owner_id: str,
        documents: Sequence[UploadedDocument],
        strategy: MergeStrategy = MergeStrategy.SMART,
        **kwargs,
    ) -> AnalysisResponse:
        return self._update.execute(analysis_id, owner_id, documents, strategy, **kwargs)

    def add_manual(self, owner_id: str, entries: Sequence[ManualEntry], **kwargs) -> AnalysisResponse:
        return self._manual.execute(owner_id, entries, **kwargs)

    def delete(self, analysis_id: str, owner_id: str) -> None:
        self._delete.execute(analysis_id, owner_id)

    def history(self, owner_id: str) -> Sequence[Analysis]:
        return self._context.analyses.list_for_owner(owner_id)

    def submit_in_background(
        self,
        owner_id: str,
        documents: Sequence[UploadedDocument],
        rules_versions: Sequence[PaymentRules] | None = None,
        source: AnalysisSource = AnalysisSource.UPLOAD,
    ) -> str:
        """Schedule a submission and return its id; duplicates are rejected right away."""
        if not documents:
            raise ValueError("No documents submitted")
        _check_duplicate(self._context, owner_id, compute_fingerprint(identities_for(documents)))
        submission_id, tracker = self._progress.create()
        future = self._executor.submit(
            self._submit.execute,
            owner_id,
            documents,
            rules_versions=rules_versions,
            source=source,
            tracker=tracker,
        )
        return self._track(submission_id, future)

    def update_in_background(
        self,
        analysis_id: str,
        owner_id: str,
        documents: Sequence[UploadedDocument],
        strategy: MergeStrategy = MergeStrategy.SMART,
        rules_versions: Sequence[PaymentRules] | None = None,
    ) -> str:
        if self._context.analyses.get(analysis_id, owner_id) is None:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")
        submission_id, tracker = self._progress.create()
        future = self._executor.submit(
            self._update.execute,
            analysis_id,
            owner_id,
            documents,
            strategy,
            rules_versions=rules_versions,
            tracker=tracker,
        )
        return self._track(submission_id, future)

    def _track(self, submission_id: str, future: Future[AnalysisResponse]) -> str:
        with self._futures_lock:
            self._futures[submission_id] = future

        def log_failure(done: Future[AnalysisResponse]) -> None:
            if not done.cancelled() and done.exception() is not None:
                logger.warning("Submission %s failed: %s", submission_id, done.exception())

        future.add_done_callback(log_failure)
        return submission_id

    def progress(self, submission_id: str) -> ProgressSnapshot | None:
        tracker = self._progress.get(submission_id)
        return tracker.snapshot() if tracker else None

    def is_done(self, submission_id: str) -> bool:
        with self._futures_lock:
            future = self._futures.get(submission_id)
        if future is None:
            raise KeyError(submission_id)
        return future.done()

    def result(self, submission_id: str, timeout: float | None = None) -> AnalysisResponse:
        """Block for the outcome; re-raises whatever the background work raised."""
        with self._futures_lock:
            future = self._futures.get(submission_id)
        if future is None:
            raise KeyError(submission_id)
        return future.result(timeout=timeout)

    def abandon(self, submission_id: str) -> None:
        with self._futures_lock:
            future = self._futures.pop(submission_id, None)
        if future is not None:
            future.cancel()
        self._progress.discard(submission_id)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
