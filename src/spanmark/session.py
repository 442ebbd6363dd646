from __future__ import annotations

import copy
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from bs4 import BeautifulSoup  # type: ignore

from .controller import Gate, PendingSelection, SelectionController, StatusMessage
from .judge import apply_judge_suggestion
from .labels import DocumentLabels, check_label_value, is_completed
from .migrate import migrate
from .offsets import TextSelection
from .overlay import OverlayRenderer
from .persistence import ProgressFile, utc_timestamp
from .render import render_document
from .store import SCHEMA_VERSION, AnnotationRecord, AnnotationStore, parse_snapshot
from .taxonomy import Taxonomy, default_taxonomy

__all__ = [
    "REQUIRED_SAVE_KEYS",
    "SaveFileError",
    "OpenDocument",
    "AnnotationSession",
    "generate_session_id",
]

logger = logging.getLogger("spanmark.session")

REQUIRED_SAVE_KEYS = ("annotations", "file_names")

_COT_GATE_REASON = (
    "Please select a scheming CoT label (Long-term, Covert, or Unfaithful) before highlighting CoT."
)
_ACTION_GATE_REASON = (
    "Please select a malicious action (Malicious/Harmful or Covert) before highlighting action."
)
_NO_LABELS_REASON = "Please first select CoT and Action labels before highlighting text."


class SaveFileError(ValueError):
    """Raised when a save file is rejected; session state is left untouched."""


def generate_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(slots=True)
class OpenDocument:
    document_id: str
    data: Mapping[str, object]
    containers: dict[str, BeautifulSoup] = field(default_factory=dict)
    opened_at: float = 0.0

    def container(self, sub_document_key: str) -> BeautifulSoup | None:
        return self.containers.get(sub_document_key)

    def html(self, sub_document_key: str) -> str:
        container = self.containers.get(sub_document_key)
        return str(container) if container is not None else ""


class AnnotationSession:
    """
    Everything one annotator works with: the record store, document labels,
    the open document's containers and the selection workflow.

    Opening another document discards the previous containers and their
    overlays; stored records are repainted onto the fresh ones.
    """

    def __init__(
        self,
        *,
        taxonomy: Taxonomy | None = None,
        progress: ProgressFile | None = None,
        file_names: Iterable[str] = (),
        session_id: str | None = None,
    ) -> None:
        self.taxonomy = taxonomy or default_taxonomy()
        self.progress = progress
        self.file_names: list[str] = list(file_names)
        self.session_id = session_id
        self.labels: dict[str, DocumentLabels] = {}
        self.status: StatusMessage | None = None
        self.current: OpenDocument | None = None
        self.store = AnnotationStore(on_change=self._on_store_change)
        self.renderer = OverlayRenderer(self.store)
        self.controller = SelectionController(
            self.store,
            self.renderer,
            gates={
                "cot": Gate(
                    predicate=self._cot_highlights_allowed,
                    reason=lambda: self._gate_reason(_COT_GATE_REASON),
                ),
                "action": Gate(
                    predicate=self._action_highlights_allowed,
                    reason=lambda: self._gate_reason(_ACTION_GATE_REASON),
                ),
            },
            report=self._record_status,
        )

    # status and persistence -------------------------------------------------

    def _record_status(self, message: StatusMessage) -> None:
        self.status = message
        log_level = logging.WARNING if message.level == "warning" else logging.INFO
        logger.log(log_level, message.text)

    def report(self, level: str, text: str) -> StatusMessage:
        message = StatusMessage(level=level, text=text)
        self._record_status(message)
        return message

    def _on_store_change(self, reason: str) -> None:
        self.persist()

    def has_annotations(self) -> bool:
        return bool(self.labels) or len(self.store) > 0

    def persist(self) -> bool:
        if self.progress is None or not self.has_annotations():
            return True
        if self.progress.write(self.save_blob()):
            return True
        self.report("warning", f"Could not save progress to {self.progress.path}.")
        return False

    # documents ----------------------------------------------------------------

    def _update_file_time(self) -> None:
        current = self.current
        if current is None:
            return
        now = time.monotonic()
        labels = self.labels.get(current.document_id)
        if labels is not None:
            labels.total_time += int((now - current.opened_at) * 1000)
        current.opened_at = now

    def open_document(self, document_id: str, data: Mapping[str, object]) -> OpenDocument:
        self._update_file_time()
        self.controller.cancel()
        self.renderer.forget()
        if isinstance(data.get("judge_output"), str):
            labels = self.labels.get(document_id)
            created = labels is None
            if labels is None:
                labels = DocumentLabels.started_now()
            if apply_judge_suggestion(labels, data) or created:
                self.labels[document_id] = labels
                self.persist()
        opened = OpenDocument(
            document_id=document_id,
            data=data,
            containers=render_document(document_id, data),
            opened_at=time.monotonic(),
        )
        self.current = opened
        for sub_document_key, container in opened.containers.items():
            self.renderer.repaint(container, document_id, sub_document_key)
        if document_id not in self.file_names:
            self.file_names.append(document_id)
        return opened

    def close_document(self) -> None:
        self._update_file_time()
        self.controller.cancel()
        self.renderer.forget()
        self.current = None

    def repaint_current(self) -> int:
        current = self.current
        if current is None:
            return 0
        return sum(
            self.renderer.repaint(container, current.document_id, sub_document_key)
            for sub_document_key, container in current.containers.items()
        )

    def _require_current(self) -> OpenDocument | None:
        if self.current is None:
            self.report("warning", "Open a document first.")
        return self.current

    # labels -------------------------------------------------------------------

    def current_labels(self) -> DocumentLabels | None:
        if self.current is None:
            return None
        return self.labels.get(self.current.document_id)

    def _cot_highlights_allowed(self) -> bool:
        labels = self.current_labels()
        return labels is not None and labels.allows_cot_highlights

    def _action_highlights_allowed(self) -> bool:
        labels = self.current_labels()
        return labels is not None and labels.allows_action_highlights

    def _gate_reason(self, reason: str) -> str:
        if self.current_labels() is None:
            return _NO_LABELS_REASON
        return reason

    def _labels_for_update(self) -> DocumentLabels | None:
        current = self._require_current()
        if current is None:
            return None
        self._update_file_time()
        labels = self.labels.get(current.document_id)
        if labels is None:
            labels = DocumentLabels.started_now()
            self.labels[current.document_id] = labels
        return labels

    def _existing_labels(self) -> DocumentLabels | None:
        labels = self.current_labels()
        if labels is None:
            self.report("warning", "Please first select CoT and Action labels.")
        return labels

    def set_cot_label(self, label: str) -> DocumentLabels | None:
        check_label_value("cot_label", label)
        labels = self._labels_for_update()
        if labels is None:
            return None
        labels.set_cot_label(label)
        self.persist()
        return labels

    def set_action_label(self, label: str) -> DocumentLabels | None:
        check_label_value("action_label", label)
        labels = self._labels_for_update()
        if labels is None:
            return None
        if labels.set_action_label(label):
            document_id = self.current.document_id  # type: ignore[union-attr]
            for record in self.store.remove_category(document_id, "action"):
                self.renderer.unwrap(record.id)
        self.persist()
        return labels

    def set_cot_covert_type(self, covert_type: str) -> DocumentLabels | None:
        labels = self._existing_labels()
        if labels is None:
            return None
        labels.set_cot_covert_type(covert_type)
        self.persist()
        return labels

    def set_cot_hide_confidence(self, confidence: str) -> DocumentLabels | None:
        labels = self._existing_labels()
        if labels is None:
            return None
        labels.set_cot_hide_confidence(confidence)
        self.persist()
        return labels

    def set_covert_action_confidence(self, confidence: str) -> DocumentLabels | None:
        labels = self._existing_labels()
        if labels is None:
            return None
        labels.set_covert_action_confidence(confidence)
        self.persist()
        return labels

    def update_comments(self, comments: str) -> DocumentLabels | None:
        labels = self._existing_labels()
        if labels is None:
            return None
        labels.comments = comments
        self.persist()
        return labels

    def is_completed(self, document_id: str) -> bool:
        return is_completed(self.labels.get(document_id))

    # highlighting -------------------------------------------------------------

    def enable_highlighting(self, highlight_type: str) -> StatusMessage:
        if not self.taxonomy.knows(highlight_type):
            logger.info("Highlight type %s is not part of the active taxonomy", highlight_type)
        return self.controller.enable(highlight_type)

    def select(self, sub_document_key: str, selection: TextSelection) -> PendingSelection | None:
        current = self._require_current()
        if current is None:
            return None
        container = current.container(sub_document_key)
        if container is None:
            self.report("warning", f"Unknown sub-document: {sub_document_key}")
            return None
        return self.controller.select(current.document_id, sub_document_key, container, selection)

    def confirm(
        self,
        *,
        comment: str = "",
        extra_fields: Mapping[str, object] | None = None,
    ) -> AnnotationRecord | None:
        pending = self.controller.pending
        sub_label: str | None = None
        labels = self.current_labels()
        if pending is not None and labels is not None:
            if pending.highlight_type == "cot":
                sub_label = labels.cot_label
            elif pending.highlight_type == "action":
                sub_label = labels.action_label
        return self.controller.confirm(sub_label=sub_label, comment=comment, extra_fields=extra_fields)

    def cancel(self) -> None:
        self.controller.cancel()

    def remove_overlay(self, sub_document_key: str, record_id: str) -> bool:
        current = self._require_current()
        if current is None:
            return False
        removed = self.renderer.remove_overlay(current.document_id, sub_document_key, record_id)
        if removed:
            self.report("success", "Highlight removed.")
        else:
            self.report("warning", "Highlight not found.")
        return removed

    # save, load, export -------------------------------------------------------

    def ensure_session_id(self) -> str:
        if not self.session_id:
            self.session_id = generate_session_id()
        return self.session_id

    def labels_payload(self) -> dict[str, object]:
        return {document_id: labels.to_payload() for document_id, labels in self.labels.items()}

    def annotated_file_names(self) -> list[str]:
        annotated = set(self.labels) | set(self.store.documents())
        return [name for name in self.file_names if name in annotated]

    def save_blob(self) -> dict[str, object]:
        return {
            "schema_version": SCHEMA_VERSION,
            "session_id": self.ensure_session_id(),
            "save_timestamp": utc_timestamp(),
            "total_files": len(self.file_names),
            "annotated_files": len(self.labels),
            "file_names": list(self.file_names),
            "labels": self.labels_payload(),
            "annotations": self.store.export_all(),
        }

    def load_blob(self, raw: object) -> StatusMessage:
        """
        Replace the session's labels and records with a saved blob.

        The blob is validated and migrated on a copy; a rejected blob leaves
        the session exactly as it was.
        """
        if not isinstance(raw, Mapping):
            raise SaveFileError("Invalid save file format.")
        missing = [key for key in REQUIRED_SAVE_KEYS if raw.get(key) is None]
        if missing:
            raise SaveFileError(f"Invalid save file format: missing {', '.join(missing)}.")
        if not isinstance(raw["annotations"], Mapping):
            raise SaveFileError("Invalid save file format: annotations must be an object.")
        try:
            bag = migrate(copy.deepcopy(dict(raw)))
            labels: dict[str, DocumentLabels] = {}
            raw_labels = bag.get("labels")
            if isinstance(raw_labels, Mapping):
                for document_id, entry in raw_labels.items():
                    if isinstance(entry, Mapping):
                        labels[document_id] = DocumentLabels.from_payload(entry)
            contents = parse_snapshot(bag["annotations"])  # type: ignore[arg-type]
        except (TypeError, ValueError, OverflowError) as exc:
            raise SaveFileError(f"Invalid save file format: {exc}") from exc

        self.labels = labels
        session_id = bag.get("session_id", bag.get("sessionId"))
        if isinstance(session_id, str) and session_id:
            self.session_id = session_id
        if not self.file_names:
            file_names = bag.get("file_names")
            if isinstance(file_names, list):
                self.file_names = [name for name in file_names if isinstance(name, str)]
        self.store.install(contents)
        self.controller.cancel()
        self.repaint_current()
        return self.report("success", f"Loaded progress: {len(self.labels)} files annotated")

    def resume(self) -> bool:
        """Load the durable progress file if there is a usable one."""
        if self.progress is None:
            return False
        blob = self.progress.read()
        if blob is None:
            return False
        try:
            self.load_blob(blob)
        except SaveFileError as exc:
            logger.warning("Ignoring saved progress in %s: %s", self.progress.path, exc)
            return False
        self.report("info", "Previous progress found. Open a document to continue where you left off.")
        return True

    def export_payload(self) -> dict[str, object]:
        self._update_file_time()
        annotated = self.annotated_file_names()
        return {
            "export_timestamp": utc_timestamp(),
            "session_id": self.session_id,
            "total_files_loaded": len(self.file_names),
            "annotated_files_count": len(annotated),
            "annotated_file_names": annotated,
            "labels": self.labels_payload(),
            "annotations": self.store.export_all(),
        }

    def clear_all(self) -> None:
        self.labels = {}
        self.session_id = None
        self.controller.cancel()
        self.store.clear_all()
        if self.progress is not None:
            self.progress.remove()
        self.repaint_current()
        self.report("info", "All progress cleared.")
