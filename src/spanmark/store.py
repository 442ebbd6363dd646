from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping

__all__ = [
    "SCHEMA_VERSION",
    "DEFAULT_SUB_DOCUMENT",
    "AnnotationRecord",
    "AnnotationStore",
    "StoreContents",
    "coerce_record_id",
    "is_bucket_tree",
    "parse_snapshot",
]

SCHEMA_VERSION = 2
DEFAULT_SUB_DOCUMENT = "main"

logger = logging.getLogger("spanmark.store")

Bucket = list["AnnotationRecord"]
ChangeListener = Callable[[str], None]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def coerce_record_id(value: object) -> str | None:
    """Normalise a stored record id; numeric ids from old saves become strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value
    return None


@dataclass
class AnnotationRecord:
    """
    One labelled span of a sub-document.

    ``range_start``/``range_end`` index the sub-document's logical text.
    ``selected_text`` is a snapshot taken when the record was created and is
    only used for display and consistency checks. Records migrated from old
    save files may carry no range at all; they are kept but never painted.
    """

    id: str
    document_id: str
    sub_document_key: str
    category: str
    range_start: int | None = None
    range_end: int | None = None
    selected_text: str = ""
    sub_label: str | None = None
    comment: str = ""
    extra_fields: dict[str, object] = field(default_factory=dict)
    created_at: str = ""

    @property
    def has_range(self) -> bool:
        return (
            isinstance(self.range_start, int)
            and isinstance(self.range_end, int)
            and 0 <= self.range_start < self.range_end
        )

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "sub_document_key": self.sub_document_key,
            "category": self.category,
            "sub_label": self.sub_label,
            "range_start": self.range_start,
            "range_end": self.range_end,
            "selected_text": self.selected_text,
            "comment": self.comment,
            "extra_fields": dict(self.extra_fields),
            "created_at": self.created_at,
            "schema_version": SCHEMA_VERSION,
        }

    @classmethod
    def from_payload(
        cls,
        entry: Mapping[str, object],
        *,
        document_id: str,
        sub_document_key: str,
        category: str,
    ) -> AnnotationRecord | None:
        if not isinstance(entry, Mapping):
            return None
        record_id = coerce_record_id(entry.get("id"))
        if record_id is None:
            return None
        range_start = entry.get("range_start")
        range_end = entry.get("range_end")
        if not isinstance(range_start, int) or isinstance(range_start, bool):
            range_start = None
        if not isinstance(range_end, int) or isinstance(range_end, bool):
            range_end = None
        selected_text = entry.get("selected_text")
        if not isinstance(selected_text, str):
            selected_text = ""
        sub_label = entry.get("sub_label")
        if not isinstance(sub_label, str):
            sub_label = None
        comment = entry.get("comment")
        if not isinstance(comment, str):
            comment = ""
        extra_fields = entry.get("extra_fields")
        if not isinstance(extra_fields, Mapping):
            extra_fields = {}
        created_at = entry.get("created_at")
        if not isinstance(created_at, str):
            created_at = ""
        return cls(
            id=record_id,
            document_id=document_id,
            sub_document_key=sub_document_key,
            category=category,
            range_start=range_start,
            range_end=range_end,
            selected_text=selected_text,
            sub_label=sub_label,
            comment=comment,
            extra_fields=dict(extra_fields),
            created_at=created_at,
        )


class AnnotationStore:
    """
    All annotation records of a session, bucketed by
    document id -> sub-document key -> category.

    Categories are not validated against any taxonomy. Every mutation is
    applied to the in-memory map first and then reported to the change
    listener; listener failures are logged and never undo the mutation.
    """

    def __init__(self, on_change: ChangeListener | None = None) -> None:
        self._buckets: dict[str, dict[str, dict[str, Bucket]]] = {}
        self._passthrough: dict[str, object] = {}
        self.on_change = on_change

    def _notify(self, reason: str) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(reason)
        except Exception as exc:
            logger.warning("Annotation change listener failed after %s: %s", reason, exc)

    def insert(
        self,
        document_id: str,
        sub_document_key: str,
        category: str,
        partial: Mapping[str, object] | None = None,
    ) -> AnnotationRecord:
        fields = dict(partial or {})
        record = AnnotationRecord(
            id=uuid.uuid4().hex,
            document_id=document_id,
            sub_document_key=sub_document_key,
            category=category,
            range_start=fields.get("range_start"),  # type: ignore[arg-type]
            range_end=fields.get("range_end"),  # type: ignore[arg-type]
            selected_text=str(fields.get("selected_text") or ""),
            sub_label=fields.get("sub_label"),  # type: ignore[arg-type]
            comment=str(fields.get("comment") or ""),
            extra_fields=dict(fields.get("extra_fields") or {}),  # type: ignore[arg-type]
            created_at=_utc_timestamp(),
        )
        bucket = (
            self._buckets.setdefault(document_id, {})
            .setdefault(sub_document_key, {})
            .setdefault(category, [])
        )
        bucket.append(record)
        logger.debug(
            "Inserted %s record %s into %s/%s",
            category,
            record.id,
            document_id,
            sub_document_key,
        )
        self._notify("insert")
        return record

    def remove(
        self,
        document_id: str,
        sub_document_key: str,
        category: str,
        record_id: str,
    ) -> bool:
        bucket = self._buckets.get(document_id, {}).get(sub_document_key, {}).get(category)
        if not bucket:
            return False
        filtered = [record for record in bucket if record.id != record_id]
        if len(filtered) == len(bucket):
            return False
        bucket[:] = filtered
        self._notify("remove")
        return True

    def find(self, document_id: str, sub_document_key: str, record_id: str) -> AnnotationRecord | None:
        for bucket in self._buckets.get(document_id, {}).get(sub_document_key, {}).values():
            for record in bucket:
                if record.id == record_id:
                    return record
        return None

    def remove_anywhere(
        self,
        document_id: str,
        sub_document_key: str,
        record_id: str,
    ) -> AnnotationRecord | None:
        """Remove ``record_id`` from whichever category bucket holds it."""
        record = self.find(document_id, sub_document_key, record_id)
        if record is None:
            return None
        self.remove(document_id, sub_document_key, record.category, record_id)
        return record

    def remove_category(self, document_id: str, category: str) -> list[AnnotationRecord]:
        removed: list[AnnotationRecord] = []
        for categories in self._buckets.get(document_id, {}).values():
            bucket = categories.get(category)
            if bucket:
                removed.extend(bucket)
                bucket.clear()
        if removed:
            self._notify("remove")
        return removed

    def list(  # noqa: A003
        self,
        document_id: str,
        sub_document_key: str,
        category: str | None = None,
    ) -> list[AnnotationRecord]:
        categories = self._buckets.get(document_id, {}).get(sub_document_key, {})
        if category is not None:
            return list(categories.get(category, []))
        records: list[AnnotationRecord] = []
        for bucket in categories.values():
            records.extend(bucket)
        return records

    def list_document(self, document_id: str, category: str | None = None) -> list[AnnotationRecord]:
        records: list[AnnotationRecord] = []
        for sub_document_key in self._buckets.get(document_id, {}):
            records.extend(self.list(document_id, sub_document_key, category))
        return records

    def documents(self) -> list[str]:
        return [
            document_id
            for document_id, sub_documents in self._buckets.items()
            if any(bucket for categories in sub_documents.values() for bucket in categories.values())
        ]

    def __len__(self) -> int:
        return sum(
            len(bucket)
            for sub_documents in self._buckets.values()
            for categories in sub_documents.values()
            for bucket in categories.values()
        )

    def export_all(self) -> dict[str, object]:
        snapshot: dict[str, object] = {}
        for document_id, sub_documents in self._buckets.items():
            snapshot[document_id] = {
                sub_document_key: {
                    category: [record.to_payload() for record in bucket]
                    for category, bucket in categories.items()
                }
                for sub_document_key, categories in sub_documents.items()
            }
        for document_id, entry in self._passthrough.items():
            snapshot.setdefault(document_id, entry)
        return snapshot

    def replace_all(self, snapshot: Mapping[str, object]) -> None:
        """
        Swap in the contents of a (migrated) nested snapshot.

        Entries that are not shaped like sub-document buckets are kept
        verbatim and re-emitted by :meth:`export_all`.
        """
        self.install(parse_snapshot(snapshot))

    def install(self, contents: StoreContents) -> None:
        """Replace the whole map with contents built by :func:`parse_snapshot`."""
        self._buckets = contents.buckets
        self._passthrough = contents.passthrough
        self._notify("load")

    def clear_all(self) -> None:
        self._buckets = {}
        self._passthrough = {}
        self._notify("clear")


def _iter_mappings(entries: object) -> Iterable[Mapping[str, object]]:
    if not isinstance(entries, list):
        return []
    return [entry for entry in entries if isinstance(entry, Mapping)]


def is_bucket_tree(value: object) -> bool:
    if not isinstance(value, Mapping):
        return False
    for categories in value.values():
        if not isinstance(categories, Mapping):
            return False
        for entries in categories.values():
            if not isinstance(entries, list):
                return False
    return True


@dataclass(slots=True)
class StoreContents:
    buckets: dict[str, dict[str, dict[str, Bucket]]]
    passthrough: dict[str, object]


def parse_snapshot(snapshot: Mapping[str, object]) -> StoreContents:
    """
    Build store contents from a nested snapshot without touching any store.

    Duplicate ids within a bucket keep their first occurrence.
    """
    buckets: dict[str, dict[str, dict[str, Bucket]]] = {}
    passthrough: dict[str, object] = {}
    for document_id, sub_documents in snapshot.items():
        if not is_bucket_tree(sub_documents):
            passthrough[document_id] = sub_documents
            continue
        doc_entry = buckets.setdefault(document_id, {})
        for sub_document_key, categories in sub_documents.items():  # type: ignore[union-attr]
            sub_entry = doc_entry.setdefault(sub_document_key, {})
            for category, entries in categories.items():
                bucket = sub_entry.setdefault(category, [])
                seen: set[str] = {record.id for record in bucket}
                for entry in _iter_mappings(entries):
                    record = AnnotationRecord.from_payload(
                        entry,
                        document_id=document_id,
                        sub_document_key=sub_document_key,
                        category=category,
                    )
                    if record is None or record.id in seen:
                        continue
                    seen.add(record.id)
                    bucket.append(record)
    return StoreContents(buckets=buckets, passthrough=passthrough)
