import threading
from datetime import date

import pytest

from payment_analyzer.application.dto import ManualEntry
from payment_analyzer.application.progress import ProgressStore, ProgressTracker, Stage
from payment_analyzer.application.use_cases import (
    AnalysisContext,
    AnalysisService,
    DeleteAnalysisUseCase,
    ManualEntryUseCase,
    SubmitDocumentsUseCase,
    UpdateAnalysisUseCase,
)
from payment_analyzer.domain import analysis as analysis_ops
from payment_analyzer.domain.models import AnalysisSource, AnalysisStatus, UploadedDocument
from payment_analyzer.domain.reconciliation import MergeStrategy
from payment_analyzer.domain.rules import PaymentRules
from payment_analyzer.domain.values import Money
from payment_analyzer.exceptions import AnalysisNotFoundError, DuplicateSubmissionError, NoDataExtractedError
from payment_analyzer.infrastructure.parsing.extractor import DocumentExtractor
from payment_analyzer.infrastructure.repositories.memory_repositories import (
    InMemoryAnalysisRepository,
    InMemoryRulesRepository,
)

RUNSHEET_TEXT = (
    "Date: 02/01/2024\n"
    "1 1234567 Delivery\n"
    "2 7654321 Delivery\n"
    "\f"
    "Date: 03/01/2024\n"
    "1 1111111 Collection\n"
)

INVOICE_TEXT = (
    "02/01/24 08:30 Parcel 45.50\n"
    "02/01/24 09:15 -PickUp 12.00\n"
    "Docket Total: £57.50\n"
)


def make_rules() -> PaymentRules:
    return PaymentRules(
        owner_id="owner-1",
        weekday_rate=Money.of("100"),
        saturday_rate=Money.of("120"),
        unloading_bonus=Money.of("30"),
        attendance_bonus=Money.of("25"),
        early_bonus=Money.of("50"),
        pickup_rate=Money.of("10"),
    )


def make_context() -> AnalysisContext:
    return AnalysisContext(
        analyses=InMemoryAnalysisRepository(),
        rules=InMemoryRulesRepository([make_rules()]),
        extractor=DocumentExtractor(),
    )


def make_documents(last_modified: int = 1700000000000) -> list[UploadedDocument]:
    return [
        UploadedDocument("runsheet.txt", RUNSHEET_TEXT.encode("utf-8"), last_modified),
        UploadedDocument("invoice.txt", INVOICE_TEXT.encode("utf-8"), last_modified),
    ]


def test_submit_creates_completed_analysis():
    context = make_context()
    tracker = ProgressTracker(auto_advance=False)

    response = SubmitDocumentsUseCase(context).execute("owner-1", make_documents(), tracker=tracker)

    analysis = response.analysis
    assert analysis.status is AnalysisStatus.COMPLETED
    assert analysis.dates == (date(2024, 1, 2), date(2024, 1, 3))
    tuesday = analysis_ops.get_daily_entry(analysis, date(2024, 1, 2))
    assert tuesday.consignments.count == 2
    assert tuesday.paid_amount == Money.of("57.50")
    assert tuesday.pickups.count == 1
    assert response.totals.expected_total == Money.of("520")
    assert context.analyses.get(analysis.id, "owner-1") == analysis
    assert tracker.snapshot().finished


def test_resubmitting_same_files_is_rejected():
    context = make_context()
    use_case = SubmitDocumentsUseCase(context)
    first = use_case.execute("owner-1", make_documents())
    tracker = ProgressTracker(auto_advance=False)

    with pytest.raises(DuplicateSubmissionError) as info:
        use_case.execute("owner-1", list(reversed(make_documents())), tracker=tracker)

    assert info.value.existing_id == first.analysis.id
    assert first.analysis.id in str(info.value)
    assert tracker.snapshot().failed
    assert len(context.analyses.list_for_owner("owner-1")) == 1


def test_touched_files_are_a_new_submission():
    context = make_context()
    use_case = SubmitDocumentsUseCase(context)
    use_case.execute("owner-1", make_documents())

    use_case.execute("owner-1", make_documents(last_modified=1700000009999))

    assert len(context.analyses.list_for_owner("owner-1")) == 2


def test_submit_without_usable_documents_stores_nothing():
    context = make_context()
    tracker = ProgressTracker(auto_advance=False)

    with pytest.raises(NoDataExtractedError):
        SubmitDocumentsUseCase(context).execute(
            "owner-1", [UploadedDocument("notes.txt", b"hello")], tracker=tracker
        )

    assert context.analyses.list_for_owner("owner-1") == []
    assert tracker.snapshot().stage(Stage.EXTRACTING_DATA).error


def test_update_merges_with_strategy_and_widens_period():
    context = make_context()
    created = SubmitDocumentsUseCase(context).execute("owner-1", make_documents())
    later = [
        UploadedDocument(
            "invoice_2.txt",
            b"03/01/24 08:00 Parcel 80.00\n09/01/24 08:00 Parcel 20.00\nDocket Total: \xc2\xa3100.00\n",
        )
    ]

    response = UpdateAnalysisUseCase(context).execute(
        created.analysis.id, "owner-1", later, MergeStrategy.REPLACE
    )

    analysis = response.analysis
    assert analysis_ops.get_daily_entry(analysis, date(2024, 1, 3)).paid_amount == Money.of("80.00")
    assert response.updated == (date(2024, 1, 3),)
    assert response.created == (date(2024, 1, 9),)
    assert response.extended == (date(2024, 1, 9),)
    assert analysis.period.end == date(2024, 1, 9)
    assert analysis_ops.get_daily_entry(analysis, date(2024, 1, 9)).paid_amount == Money.of("20.00")
    assert analysis.metadata["updates"][0]["strategy"] == "replace"
    assert analysis.metadata["files"] == ["runsheet.txt", "invoice.txt", "invoice_2.txt"]
    assert context.analyses.get(analysis.id, "owner-1").status is AnalysisStatus.COMPLETED


def test_update_unknown_analysis_raises():
    with pytest.raises(AnalysisNotFoundError):
        UpdateAnalysisUseCase(make_context()).execute("missing", "owner-1", make_documents())


def test_manual_entry_builds_analysis_without_fingerprint():
    context = make_context()
    entries = [
        ManualEntry(date(2024, 1, 6), 2, Money.of("270")),
        ManualEntry(date(2024, 1, 2), 5, Money.of("560")),
    ]

    response = ManualEntryUseCase(context).execute("owner-1", entries)

    assert response.analysis.source is AnalysisSource.MANUAL
    assert response.analysis.fingerprint is None
    assert response.analysis.period.start == date(2024, 1, 2)
    assert response.totals.difference_total == Money.of("-45")


def test_delete_removes_analysis():
    context = make_context()
    created = SubmitDocumentsUseCase(context).execute("owner-1", make_documents())
    use_case = DeleteAnalysisUseCase(context)

    use_case.execute(created.analysis.id, "owner-1")

    assert context.analyses.get(created.analysis.id, "owner-1") is None
    with pytest.raises(AnalysisNotFoundError):
        use_case.execute(created.analysis.id, "owner-1")
    SubmitDocumentsUseCase(context).execute("owner-1", make_documents())


def test_service_runs_submission_in_background():
    store = ProgressStore(tracker_factory=lambda: ProgressTracker(auto_advance=False))
    service = AnalysisService(make_context(), progress=store, max_workers=1)
    try:
        submission_id = service.submit_in_background("owner-1", make_documents())
        response = service.result(submission_id, timeout=10)

        assert service.is_done(submission_id)
        assert service.progress(submission_id).finished
        assert [item.id for item in service.history("owner-1")] == [response.analysis.id]
        with pytest.raises(DuplicateSubmissionError):
            service.submit_in_background("owner-1", make_documents())

        service.abandon(submission_id)
        assert service.progress(submission_id) is None
    finally:
        service.shutdown()


class StallingTextExtractor:
    """Lets the stage guard run ahead while a document is being read."""

    def __init__(self, tracker: ProgressTracker, text: str) -> None:
        self.tracker = tracker
        self.text = text

    def extract_text(self, content: bytes, filename: str) -> str:
        for _ in range(10):
            self.tracker.check_timeouts(now=1000.0)
        return self.text


class FailingExtractor:
    def extract_batch(self, documents, on_file=None):
        raise RuntimeError("storage went away")


def test_submission_survives_auto_advance_during_extraction():
    context = make_context()
    tracker = ProgressTracker(clock=lambda: 0.0, auto_advance=False)
    context.extractor = DocumentExtractor(StallingTextExtractor(tracker, RUNSHEET_TEXT))
    documents = [
        UploadedDocument("runsheet.pdf", b"%PDF-1.4", 1700000000000),
        UploadedDocument("invoice.txt", INVOICE_TEXT.encode("utf-8"), 1700000000000),
    ]

    response = SubmitDocumentsUseCase(context).execute("owner-1", documents, tracker=tracker)

    assert response.analysis.status is AnalysisStatus.COMPLETED
    assert response.totals.expected_total == Money.of("520")
    assert context.analyses.get(response.analysis.id, "owner-1").status is AnalysisStatus.COMPLETED
    assert tracker.snapshot().finished


def test_unexpected_update_failure_leaves_analysis_in_error():
    context = make_context()
    created = SubmitDocumentsUseCase(context).execute("owner-1", make_documents())
    context.extractor = FailingExtractor()
    tracker = ProgressTracker(auto_advance=False)
    later = [UploadedDocument("invoice_2.txt", b"03/01/24 08:00 Parcel 80.00\nDocket Total: \xc2\xa380.00\n")]

    with pytest.raises(RuntimeError):
        UpdateAnalysisUseCase(context).execute(created.analysis.id, "owner-1", later, tracker=tracker)

    assert context.analyses.get(created.analysis.id, "owner-1").status is AnalysisStatus.ERROR
    assert tracker.snapshot().failed

    context.extractor = DocumentExtractor()
    retried = UpdateAnalysisUseCase(context).execute(created.analysis.id, "owner-1", later)

    assert retried.analysis.status is AnalysisStatus.COMPLETED


def test_concurrent_add_updates_are_not_lost():
    context = make_context()
    created = SubmitDocumentsUseCase(context).execute("owner-1", make_documents())
    use_case = UpdateAnalysisUseCase(context)
    errors = []

    def apply(name: str, amount: str) -> None:
        text = f"02/01/24 10:00 Parcel {amount}\nDocket Total: £{amount}\n"
        try:
            use_case.execute(
                created.analysis.id, "owner-1", [UploadedDocument(name, text.encode("utf-8"))], MergeStrategy.ADD
            )
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    threads = [
        threading.Thread(target=apply, args=("invoice_a.txt", "10.00")),
        threading.Thread(target=apply, args=("invoice_b.txt", "20.00")),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    stored = context.analyses.get(created.analysis.id, "owner-1")
    assert analysis_ops.get_daily_entry(stored, date(2024, 1, 2)).paid_amount == Money.of("87.50")
    assert len(stored.metadata["updates"]) == 2
