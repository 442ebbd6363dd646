from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping

from bs4 import Tag  # type: ignore

from .offsets import OffsetRange, TextSelection, container_text, selection_to_offsets
from .overlay import OverlayRenderer
from .store import AnnotationRecord, AnnotationStore

__all__ = [
    "PREVIEW_LIMIT",
    "SelectionState",
    "Gate",
    "StatusMessage",
    "PendingSelection",
    "SelectionController",
]

logger = logging.getLogger("spanmark.controller")

PREVIEW_LIMIT = 100

_HIGHLIGHT_NAMES = {"cot": "scheming CoT", "action": "malicious action"}
_HIGHLIGHT_TITLES = {"cot": "CoT", "action": "Action"}


class SelectionState(str, Enum):
    IDLE = "idle"
    PENDING_CONFIRMATION = "pending_confirmation"


@dataclass(slots=True)
class Gate:
    """Caller-supplied check run before a highlight of one type may start."""

    predicate: Callable[[], bool]
    reason: str | Callable[[], str]

    def allows(self) -> bool:
        return bool(self.predicate())

    def describe(self) -> str:
        return self.reason() if callable(self.reason) else self.reason


@dataclass(slots=True)
class StatusMessage:
    level: str
    text: str

    def to_payload(self) -> dict[str, str]:
        return {"level": self.level, "text": self.text}


@dataclass(slots=True)
class PendingSelection:
    document_id: str
    sub_document_key: str
    container: Tag
    offsets: OffsetRange
    highlight_type: str
    text: str

    @property
    def preview(self) -> str:
        if len(self.text) > PREVIEW_LIMIT:
            return self.text[:PREVIEW_LIMIT] + "..."
        return self.text


Reporter = Callable[[StatusMessage], None]


class SelectionController:
    """
    Idle -> PendingConfirmation -> Idle.

    A selection becomes pending only when a highlight type is active, the
    selection covers non-blank text and that type's gate allows it. Only the
    most recent selection is kept while waiting for confirmation.
    """

    def __init__(
        self,
        store: AnnotationStore,
        renderer: OverlayRenderer,
        gates: Mapping[str, Gate] | None = None,
        report: Reporter | None = None,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.gates: dict[str, Gate] = dict(gates or {})
        self._report = report
        self.highlight_type: str | None = None
        self.pending: PendingSelection | None = None

    @property
    def state(self) -> SelectionState:
        if self.pending is None:
            return SelectionState.IDLE
        return SelectionState.PENDING_CONFIRMATION

    def report(self, level: str, text: str) -> StatusMessage:
        message = StatusMessage(level=level, text=text)
        logger.debug("[%s] %s", level, text)
        if self._report is not None:
            self._report(message)
        return message

    def enable(self, highlight_type: str) -> StatusMessage:
        self.highlight_type = highlight_type
        name = _HIGHLIGHT_NAMES.get(highlight_type, highlight_type)
        return self.report("info", f"Click and drag to highlight text where {name} occurs.")

    def disable(self) -> None:
        self.highlight_type = None
        self.pending = None

    def _gate_failure(self, highlight_type: str) -> str | None:
        gate = self.gates.get(highlight_type)
        if gate is None or gate.allows():
            return None
        return gate.describe()

    def select(
        self,
        document_id: str,
        sub_document_key: str,
        container: Tag,
        selection: TextSelection,
    ) -> PendingSelection | None:
        """
        Handle the end of a text selection inside ``container``.

        Malformed or gated selections are reported and leave the controller
        as it was.
        """
        if self.highlight_type is None:
            return None
        offsets = selection_to_offsets(container, selection)
        if offsets is None:
            self.report("warning", "Selection does not cover any text.")
            return None
        text = container_text(container)[offsets.start:offsets.end]
        if not text.strip():
            self.report("warning", "Selection does not cover any text.")
            return None
        reason = self._gate_failure(self.highlight_type)
        if reason is not None:
            self.report("warning", reason)
            return None
        self.pending = PendingSelection(
            document_id=document_id,
            sub_document_key=sub_document_key,
            container=container,
            offsets=offsets,
            highlight_type=self.highlight_type,
            text=text,
        )
        return self.pending

    def cancel(self) -> None:
        self.pending = None

    def confirm(
        self,
        *,
        sub_label: str | None = None,
        comment: str = "",
        extra_fields: Mapping[str, object] | None = None,
    ) -> AnnotationRecord | None:
        pending = self.pending
        if pending is None:
            self.report("warning", "No pending selection to highlight.")
            return None
        self.pending = None
        reason = self._gate_failure(pending.highlight_type)
        if reason is not None:
            self.report("warning", reason)
            return None
        offsets = pending.offsets
        text = container_text(pending.container)[offsets.start:offsets.end]
        record = self.store.insert(
            pending.document_id,
            pending.sub_document_key,
            pending.highlight_type,
            {
                "range_start": offsets.start,
                "range_end": offsets.end,
                "selected_text": text,
                "sub_label": sub_label,
                "comment": comment,
                "extra_fields": dict(extra_fields or {}),
            },
        )
        self.renderer.paint(pending.container, record)
        title = _HIGHLIGHT_TITLES.get(pending.highlight_type, pending.highlight_type)
        self.report("success", f"Text highlighted as {title}. Click highlight to remove.")
        return record
