"""In-process repositories used by the CLI, the Streamlit app and tests."""
from __future__ import annotations

import threading
from typing import Sequence

from payment_analyzer.domain.models import Analysis
from payment_analyzer.domain.repositories import AnalysisRepository, RulesRepository
from payment_analyzer.domain.rules import PaymentRules


class InMemoryAnalysisRepository(AnalysisRepository):
    def __init__(self) -> None:
        self._items: dict[str, Analysis] = {}
        self._lock = threading.Lock()

    def add(self, analysis: Analysis) -> None:
        with self._lock:
            if analysis.id in self._items:
                raise ValueError(f"Analysis {analysis.id} already exists")
            self._items[analysis.id] = analysis

    def get(self, analysis_id: str, owner_id: str) -> Analysis | None:
        with self._lock:
            analysis = self._items.get(analysis_id)
        if analysis is None or analysis.owner_id != owner_id:
            return None
        return analysis

    def find_by_fingerprint(self, owner_id: str, fingerprint: str) -> Analysis | None:
        with self._lock:
            for analysis in self._items.values():
                if analysis.owner_id == owner_id and analysis.fingerprint == fingerprint:
                    return analysis
        return None

    def update(self, analysis: Analysis) -> None:
        with self._lock:
            if analysis.id not in self._items:
                raise KeyError(analysis.id)
            self._items[analysis.id] = analysis

    def delete(self, analysis_id: str, owner_id: str) -> bool:
        with self._lock:
            analysis = self._items.get(analysis_id)
            if analysis is None or analysis.owner_id != owner_id:
                return False
            del self._items[analysis_id]
            return True

    def list_for_owner(self, owner_id: str) -> Sequence[Analysis]:
        with self._lock:
            owned = [item for item in self._items.values() if item.owner_id == owner_id]
        return sorted(owned, key=lambda item: item.created_at, reverse=True)


class InMemoryRulesRepository(RulesRepository):
    def __init__(self, versions: Sequence[PaymentRules] = ()) -> None:
        self._versions: list[PaymentRules] = list(versions)
        self._lock = threading.Lock()

    def list_versions(self, owner_id: str) -> Sequence[PaymentRules]:
        with self._lock:
            return [rules for rules in self._versions if rules.owner_id == owner_id]

    def save(self, rules: PaymentRules) -> None:
        with self._lock:
            self._versions = [item for item in self._versions if item.id != rules.id]
            self._versions.append(rules)
