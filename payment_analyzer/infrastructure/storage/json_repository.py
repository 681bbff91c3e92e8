"""Filesystem storage: one JSON document per analysis plus a fingerprint index."""
from __future__ import annotations

import json
import re
import threading
from pathlib import Path
from typing import Any, Sequence

from payment_analyzer.domain import analysis as analysis_ops
from payment_analyzer.domain.models import Analysis
from payment_analyzer.domain.repositories import AnalysisRepository, DocumentStore
from payment_analyzer.logging_setup import get_logger

logger = get_logger(__name__)

INDEX_NAME = "fingerprints.json"
_SAFE_ID = re.compile(r"[A-Za-z0-9][A-Za-z0-9_-]*")


def _index_key(owner_id: str, fingerprint: str) -> str:
    return f"{owner_id}:{fingerprint}"


class FileSystemAnalysisRepository(AnalysisRepository):
    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, analysis_id: str) -> Path:
        if not _SAFE_ID.fullmatch(analysis_id):
            raise ValueError(f"Invalid analysis id {analysis_id!r}")
        return self._root / f"{analysis_id}.json"

    def _index_path(self) -> Path:
        return self._root / INDEX_NAME

    def _load_index(self) -> dict[str, str]:
        path = self._index_path()
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Fingerprint index %s is corrupt; rebuilding", path)
            return self._rebuild_index()
        return data if isinstance(data, dict) else {}

    def _rebuild_index(self) -> dict[str, str]:
        index: dict[str, str] = {}
        for analysis in self._iter_all():
            if analysis.fingerprint:
                index[_index_key(analysis.owner_id, analysis.fingerprint)] = analysis.id
        self._save_index(index)
        return index

    def _save_index(self, index: dict[str, str]) -> None:
        self._index_path().write_text(json.dumps(index, indent=2, sort_keys=True), encoding="utf-8")

    def _write(self, analysis: Analysis) -> None:
        payload: dict[str, Any] = analysis_ops.to_dict(analysis)
        target = self._path(analysis.id)
        temporary = target.with_suffix(".json.tmp")
        temporary.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        temporary.replace(target)

    def _read(self, path: Path) -> Analysis:
        return analysis_ops.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def _iter_all(self) -> list[Analysis]:
        items: list[Analysis] = []
        for path in sorted(self._root.glob("*.json")):
            if path.name == INDEX_NAME:
                continue
            items.append(self._read(path))
        return items

    def add(self, analysis: Analysis) -> None:
        with self._lock:
            if self._path(analysis.id).exists():
                raise ValueError(f"Analysis {analysis.id} already exists")
            self._write(analysis)
            if analysis.fingerprint:
                index = self._load_index()
                index[_index_key(analysis.owner_id, analysis.fingerprint)] = analysis.id
                self._save_index(index)

    def get(self, analysis_id: str, owner_id: str) -> Analysis | None:
        if not _SAFE_ID.fullmatch(analysis_id):
            return None
        path = self._path(analysis_id)
        with self._lock:
            if not path.exists():
                return None
            analysis = self._read(path)
        return analysis if analysis.owner_id == owner_id else None

    def find_by_fingerprint(self, owner_id: str, fingerprint: str) -> Analysis | None:
        with self._lock:
            analysis_id = self._load_index().get(_index_key(owner_id, fingerprint))
        if analysis_id is None:
            return None
        return self.get(analysis_id, owner_id)

    def update(self, analysis: Analysis) -> None:
        with self._lock:
            if not self._path(analysis.id).exists():
                raise KeyError(analysis.id)
            self._write(analysis)

    def delete(self, analysis_id: str, owner_id: str) -> bool:
        if not _SAFE_ID.fullmatch(analysis_id):
            return False
        path = self._path(analysis_id)
        with self._lock:
            if not path.exists():
                return False
            analysis = self._read(path)
            if analysis.owner_id != owner_id:
                return False
            # Entries live inside the analysis document, so removing it removes them.
            path.unlink()
            index = self._load_index()
            stale = [key for key, value in index.items() if value == analysis_id]
            for key in stale:
                del index[key]
            self._save_index(index)
        return True

    def list_for_owner(self, owner_id: str) -> Sequence[Analysis]:
        with self._lock:
            owned = [item for item in self._iter_all() if item.owner_id == owner_id]
        return sorted(owned, key=lambda item: item.created_at, reverse=True)


class FileSystemDocumentStore(DocumentStore):
    """Reads raw document bytes from paths under a root directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def read(self, reference: str) -> bytes:
        path = (self._root / reference).resolve()
        if self._root.resolve() not in path.parents and path != self._root.resolve():
            raise ValueError(f"Reference {reference!r} escapes the document root")
        return path.read_bytes()
