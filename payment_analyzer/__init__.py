"""Payment reconciliation for per-consignment delivery contractors."""
from payment_analyzer.application.dto import AnalysisResponse, ManualEntry
from payment_analyzer.application.progress import ProgressSnapshot, ProgressStore, ProgressTracker, Stage
from payment_analyzer.application.use_cases import (
    AnalysisContext,
    AnalysisService,
    DeleteAnalysisUseCase,
    ManualEntryUseCase,
    SubmitDocumentsUseCase,
    UpdateAnalysisUseCase,
)
from payment_analyzer.domain.models import Analysis, DailyEntry, UploadedDocument
from payment_analyzer.domain.reconciliation import MergeStrategy
from payment_analyzer.domain.rules import PaymentRules
from payment_analyzer.domain.services import PaymentCalculator
from payment_analyzer.infrastructure.parsing.extractor import DocumentExtractor
from payment_analyzer.infrastructure.parsing.pdf import PdfTextExtractor
from payment_analyzer.infrastructure.repositories.memory_repositories import (
    InMemoryAnalysisRepository,
    InMemoryRulesRepository,
)
from payment_analyzer.infrastructure.storage.json_repository import FileSystemAnalysisRepository

__all__ = [
    "Analysis",
    "AnalysisContext",
    "AnalysisResponse",
    "AnalysisService",
    "DailyEntry",
    "DeleteAnalysisUseCase",
    "DocumentExtractor",
    "FileSystemAnalysisRepository",
    "InMemoryAnalysisRepository",
    "InMemoryRulesRepository",
    "ManualEntry",
    "ManualEntryUseCase",
    "MergeStrategy",
    "PaymentCalculator",
    "PaymentRules",
    "PdfTextExtractor",
    "ProgressSnapshot",
    "ProgressStore",
    "ProgressTracker",
    "Stage",
    "SubmitDocumentsUseCase",
    "UpdateAnalysisUseCase",
    "UploadedDocument",
]
