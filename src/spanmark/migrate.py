"""
Forward migration of persisted save files.

Save files written before ``schema_version`` existed store one flat dict per
document under ``annotations``. Over time those dicts carried three
different verdict encodings, which are mapped onto the CoT/Action label pair
here (first match wins):

    category 1/2/3                   -> fixed table
    scheming_action + scheming_cot   -> one label per flag
    scheming                         -> both labels from one flag

Their text-only highlight lists become range-less annotation records. Files
that already carry ``schema_version`` are only normalised, so running the
migration twice changes nothing.
"""

from __future__ import annotations

import logging
from typing import Mapping, MutableMapping

from .labels import LABEL_DEFAULTS
from .store import DEFAULT_SUB_DOCUMENT, SCHEMA_VERSION, coerce_record_id, is_bucket_tree

__all__ = [
    "LEGACY_CATEGORY_TABLE",
    "HIGHLIGHT_CATEGORIES",
    "migrate",
    "migrate_document_entry",
    "looks_like_legacy_entry",
]

logger = logging.getLogger("spanmark.migrate")

LEGACY_CATEGORY_TABLE: dict[int, tuple[str, str]] = {
    1: ("scheming_long_term", "malicious"),
    2: ("scheming_long_term", "no_malicious"),
    3: ("no_scheming", "no_malicious"),
}
HIGHLIGHT_CATEGORIES = ("cot", "action")

_HIGHLIGHT_LIST_KEYS = {"cot_highlights": "cot", "action_highlights": "action"}
_RECORD_DEFAULTS: dict[str, object] = {
    "sub_label": None,
    "range_start": None,
    "range_end": None,
    "selected_text": "",
    "comment": "",
    "extra_fields": {},
    "created_at": "",
}
_LABEL_KEYS = set(LABEL_DEFAULTS) | {"startTime", "totalTime"}


def _is_int_category(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value in LEGACY_CATEGORY_TABLE


def looks_like_legacy_entry(entry: object) -> bool:
    if not isinstance(entry, Mapping):
        return False
    keys = set(entry)
    if keys & (_LABEL_KEYS | set(_HIGHLIGHT_LIST_KEYS) | {"highlights", "confidence"}):
        return True
    if isinstance(entry.get("scheming"), bool):
        return True
    if isinstance(entry.get("scheming_action"), bool) and isinstance(entry.get("scheming_cot"), bool):
        return True
    return _is_int_category(entry.get("category"))


def migrate_document_entry(entry: MutableMapping[str, object]) -> MutableMapping[str, object]:
    """
    Rewrite one flat per-document dict in place to the CoT/Action shape.

    Deprecated flags are mapped and then deleted. The follow-up fields and
    both highlight lists are always present afterwards.
    """
    has_labels = bool(entry.get("cot_label")) and bool(entry.get("action_label"))
    category = entry.get("category")
    if _is_int_category(category):
        if not has_labels:
            cot_label, action_label = LEGACY_CATEGORY_TABLE[category]  # type: ignore[index]
            entry["cot_label"] = cot_label
            entry["action_label"] = action_label
        del entry["category"]
        entry.pop("malicious_action_status", None)
    elif isinstance(entry.get("scheming_action"), bool) and isinstance(entry.get("scheming_cot"), bool):
        if not has_labels:
            entry["cot_label"] = "scheming_long_term" if entry["scheming_cot"] else "no_scheming"
            entry["action_label"] = "malicious" if entry["scheming_action"] else "no_malicious"
        del entry["scheming_action"]
        del entry["scheming_cot"]
    elif isinstance(entry.get("scheming"), bool):
        if not has_labels:
            if entry["scheming"]:
                entry["cot_label"] = "scheming_long_term"
                entry["action_label"] = "malicious"
            else:
                entry["cot_label"] = "no_scheming"
                entry["action_label"] = "no_malicious"
        del entry["scheming"]

    for key in ("cot_covert_type", "cot_hide_confidence", "covert_action_confidence"):
        entry[key] = entry.get(key) or None
    for key in _HIGHLIGHT_LIST_KEYS:
        if not isinstance(entry.get(key), list):
            entry[key] = []
    entry.pop("highlights", None)
    entry.pop("confidence", None)
    return entry


def _legacy_highlight_to_record(highlight: Mapping[str, object]) -> dict[str, object] | None:
    record_id = coerce_record_id(highlight.get("id"))
    if record_id is None:
        return None
    text = highlight.get("text")
    record: dict[str, object] = dict(_RECORD_DEFAULTS)
    record["extra_fields"] = {}
    record["id"] = record_id
    record["selected_text"] = text if isinstance(text, str) else ""
    start = highlight.get("start")
    end = highlight.get("end")
    if isinstance(start, int) and isinstance(end, int) and 0 <= start < end:
        record["range_start"] = start
        record["range_end"] = end
    created = highlight.get("created_at")
    if isinstance(created, str):
        record["created_at"] = created
    return record


def _split_legacy_entry(entry: MutableMapping[str, object]) -> tuple[dict[str, object], dict[str, object]]:
    migrate_document_entry(entry)
    buckets: dict[str, list[dict[str, object]]] = {}
    for key, category in _HIGHLIGHT_LIST_KEYS.items():
        records: list[dict[str, object]] = []
        highlights = entry.pop(key, None)
        for highlight in highlights if isinstance(highlights, list) else []:
            if not isinstance(highlight, Mapping):
                continue
            record = _legacy_highlight_to_record(highlight)
            if record is not None:
                records.append(record)
        buckets[category] = records
    labels = dict(LABEL_DEFAULTS)
    for key, value in entry.items():
        if key == "startTime":
            labels["start_time"] = value
        elif key == "totalTime":
            labels["total_time"] = value
        else:
            labels[key] = value
    return labels, {DEFAULT_SUB_DOCUMENT: buckets}


def _normalize_labels(labels: MutableMapping[str, object]) -> None:
    for key, default in LABEL_DEFAULTS.items():
        if key not in labels:
            labels[key] = default
    for key in ("cot_covert_type", "cot_hide_confidence", "covert_action_confidence"):
        labels[key] = labels.get(key) or None


def _normalize_records(tree: Mapping[str, object]) -> None:
    for categories in tree.values():
        for entries in categories.values():  # type: ignore[union-attr]
            for record in entries:
                if not isinstance(record, MutableMapping):
                    continue
                for key, default in _RECORD_DEFAULTS.items():
                    if key not in record:
                        record[key] = {} if key == "extra_fields" else default


def _ensure_highlight_buckets(tree: MutableMapping[str, object]) -> None:
    if not tree:
        tree[DEFAULT_SUB_DOCUMENT] = {}
    for categories in tree.values():
        for category in HIGHLIGHT_CATEGORIES:
            categories.setdefault(category, [])  # type: ignore[union-attr]


def migrate(bag: MutableMapping[str, object]) -> MutableMapping[str, object]:
    """
    Bring a save blob to the current schema, in place.

    Entries of ``annotations`` that are neither a legacy flat dict nor a
    sub-document bucket tree are left exactly as found.
    """
    annotations = bag.get("annotations")
    if annotations is None:
        annotations = {}
        bag["annotations"] = annotations
    elif not isinstance(annotations, MutableMapping):
        logger.warning("Leaving save blob unchanged: annotations is a %s", type(annotations).__name__)
        return bag
    labels = bag.get("labels")
    if not isinstance(labels, MutableMapping):
        labels = {}
        bag["labels"] = labels

    version = bag.get("schema_version")
    if not isinstance(version, int) or version < SCHEMA_VERSION:
        migrated = 0
        for document_id, entry in list(annotations.items()):
            if is_bucket_tree(entry) and not looks_like_legacy_entry(entry):
                continue
            if not looks_like_legacy_entry(entry):
                logger.info("Keeping unrecognised annotation entry for %s unchanged", document_id)
                continue
            doc_labels, tree = _split_legacy_entry(entry)  # type: ignore[arg-type]
            labels[document_id] = doc_labels
            annotations[document_id] = tree
            migrated += 1
        if migrated:
            logger.info("Migrated %d legacy annotation entries", migrated)
    elif version > SCHEMA_VERSION:
        logger.warning(
            "Save file schema_version %s is newer than supported version %s",
            version,
            SCHEMA_VERSION,
        )

    for document_id, doc_labels in labels.items():
        if isinstance(doc_labels, MutableMapping):
            _normalize_labels(doc_labels)
            tree = annotations.setdefault(document_id, {})
            if isinstance(tree, MutableMapping) and is_bucket_tree(tree):
                _ensure_highlight_buckets(tree)
    for tree in annotations.values():
        if is_bucket_tree(tree):
            _normalize_records(tree)  # type: ignore[arg-type]

    if not isinstance(version, int) or version < SCHEMA_VERSION:
        bag["schema_version"] = SCHEMA_VERSION
    return bag
