"""Order-independent fingerprints over submitted file sets."""
from __future__ import annotations

import hashlib
import json
from typing import Iterable

from .models import FileIdentity, UploadedDocument


def _sort_key(identity: FileIdentity) -> tuple[str, int, int]:
    return (identity.name, identity.size, identity.last_modified)


def compute_fingerprint(files: Iterable[FileIdentity]) -> str:
    """SHA-256 over the sorted (name, size, last_modified) identities.

    Submission order never changes the result; renaming, resizing or touching
    any file does.
    """
    identities = sorted(files, key=_sort_key)
    if not identities:
        raise ValueError("Cannot create fingerprint for empty file list")
    payload = json.dumps(
        [[item.name, item.size, item.last_modified] for item in identities],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def identities_for(documents: Iterable[UploadedDocument]) -> list[FileIdentity]:
    return [document.identity() for document in documents]
