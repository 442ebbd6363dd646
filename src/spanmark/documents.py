from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

__all__ = [
    "DocumentLoadError",
    "SourceDocument",
    "DocumentLibrary",
    "sample_number",
    "load_documents",
]

_EXAMPLE_NUMBER_RE = re.compile(r"example_(\d+)", re.IGNORECASE)
_DATA_NUMBER_RE = re.compile(r"data_(\d+)", re.IGNORECASE)
_TRAILING_NUMBER_RE = re.compile(r"(\d+)(?:\.json)?$")
_EXAMPLE_FILE_RE = re.compile(r"^(example_|data_)\d+\.json$", re.IGNORECASE)
_EXAMPLE_SUFFIX_RE = re.compile(r"example_\d+\.json$", re.IGNORECASE)


class DocumentLoadError(ValueError):
    """Raised when an input document or bundle cannot be read."""


@dataclass(slots=True)
class SourceDocument:
    document_id: str
    data: Mapping[str, object]
    source: Path


def sample_number(name: str) -> float:
    for pattern in (_EXAMPLE_NUMBER_RE, _DATA_NUMBER_RE, _TRAILING_NUMBER_RE):
        match = pattern.search(name)
        if match:
            return int(match.group(1))
    return math.inf


def _read_json(path: Path) -> object:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise DocumentLoadError(f"Input file not found: {path}") from exc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DocumentLoadError(f"Error loading {path.name}: {exc}") from exc


def _bundle_documents(path: Path, payload: Mapping[str, object]) -> list[SourceDocument]:
    documents: list[SourceDocument] = []
    for key, value in payload.items():
        if not key.startswith("example_") or not isinstance(value, list) or not value:
            continue
        first = value[0]
        if not isinstance(first, Mapping):
            continue
        documents.append(SourceDocument(document_id=f"{key}.json", data=first, source=path))
    return documents


def _is_bundle(payload: object) -> bool:
    return isinstance(payload, Mapping) and any(
        isinstance(key, str) and key.startswith("example_") and isinstance(value, list)
        for key, value in payload.items()
    )


def _folder_candidates(folder: Path) -> list[Path]:
    files = [path for path in sorted(folder.rglob("*.json")) if path.is_file()]
    oversight = [path for path in files if "wooversight" in path.name]
    if oversight:
        return oversight
    return [
        path
        for path in files
        if (_EXAMPLE_FILE_RE.match(path.name) or _EXAMPLE_SUFFIX_RE.search(path.name))
        and "wooversight" not in path.name
    ]


def _single_document(path: Path) -> SourceDocument:
    payload = _read_json(path)
    if not isinstance(payload, Mapping):
        raise DocumentLoadError(f"{path.name} does not contain a JSON object.")
    return SourceDocument(document_id=path.name, data=payload, source=path)


def load_documents(path: Path) -> list[SourceDocument]:
    """
    Load every annotatable document under ``path``.

    ``path`` may be a bundle file with ``example_*`` keys, a single sample
    file, or a folder of sample files. The result is ordered by sample number.
    """
    if path.is_dir():
        bundles = [
            candidate
            for candidate in sorted(path.glob("*.json"))
            if "step3" in candidate.name
        ]
        for bundle in bundles:
            payload = _read_json(bundle)
            if _is_bundle(payload):
                return _sorted(_bundle_documents(bundle, payload))  # type: ignore[arg-type]
        candidates = _folder_candidates(path)
        if not candidates:
            raise DocumentLoadError(
                f"No recognized files found in {path}. Expected a step3 bundle or example files."
            )
        return _sorted(_single_document(candidate) for candidate in candidates)
    if not path.exists():
        raise DocumentLoadError(f"Input path not found: {path}")
    if path.suffix.lower() != ".json":
        raise DocumentLoadError(f"Please select a JSON file: {path.name}")
    payload = _read_json(path)
    if _is_bundle(payload):
        return _sorted(_bundle_documents(path, payload))  # type: ignore[arg-type]
    if not isinstance(payload, Mapping):
        raise DocumentLoadError(f"{path.name} does not contain a JSON object.")
    return [SourceDocument(document_id=path.name, data=payload, source=path)]


def _sorted(documents: Iterable[SourceDocument]) -> list[SourceDocument]:
    return sorted(documents, key=lambda document: sample_number(document.document_id))


class DocumentLibrary:
    """Ordered, id-addressable view over the loaded input documents."""

    def __init__(self, documents: Iterable[SourceDocument]) -> None:
        self._documents: dict[str, SourceDocument] = {}
        for document in documents:
            self._documents.setdefault(document.document_id, document)

    @classmethod
    def from_path(cls, path: Path) -> DocumentLibrary:
        return cls(load_documents(path))

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    def ids(self) -> list[str]:
        return list(self._documents)

    def get(self, document_id: str) -> SourceDocument | None:
        return self._documents.get(document_id)
