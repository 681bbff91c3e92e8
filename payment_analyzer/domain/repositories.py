"""Repository interfaces consumed by the application layer."""
from __future__ import annotations

from typing import Protocol, Sequence

from .models import Analysis
from .rules import PaymentRules


class AnalysisRepository(Protocol):
    def add(self, analysis: Analysis) -> None:
        """Persist a new analysis."""

    def get(self, analysis_id: str, owner_id: str) -> Analysis | None:
        """Return the analysis when it exists and belongs to ``owner_id``."""

    def find_by_fingerprint(self, owner_id: str, fingerprint: str) -> Analysis | None:
        """Return the owner's analysis created from the same file set, if any."""

    def update(self, analysis: Analysis) -> None:
        """Replace the stored snapshot, entries included."""

    def delete(self, analysis_id: str, owner_id: str) -> bool:
        """Delete the analysis and all of its entries."""

    def list_for_owner(self, owner_id: str) -> Sequence[Analysis]:
        """Return the owner's analyses, newest first."""


class RulesRepository(Protocol):
    def list_versions(self, owner_id: str) -> Sequence[PaymentRules]:
        """Return every stored rule version for the owner."""

    def save(self, rules: PaymentRules) -> None:
        """Persist a rule version."""


class DocumentStore(Protocol):
    def read(self, reference: str) -> bytes:
        """Return the raw bytes stored under ``reference``."""
