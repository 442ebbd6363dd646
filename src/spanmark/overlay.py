from __future__ import annotations

import logging

from bs4 import NavigableString, Tag  # type: ignore

from .offsets import RECORD_ID_ATTR, offsets_to_span
from .store import AnnotationRecord, AnnotationStore

__all__ = ["OverlayRenderer", "rendered_record_ids"]

logger = logging.getLogger("spanmark.overlay")

_CATEGORY_TITLES = {"cot": "CoT", "action": "Action"}


def rendered_record_ids(container: Tag) -> set[str]:
    ids: set[str] = set()
    for tag in container.find_all(attrs={RECORD_ID_ATTR: True}):
        value = tag.get(RECORD_ID_ATTR)
        if isinstance(value, str):
            ids.add(value)
    return ids


def _is_plain_string(node: object) -> bool:
    return type(node) is NavigableString


def _merge_strings_around(node: object) -> None:
    """Join the run of adjacent plain strings that contains ``node``."""
    if not _is_plain_string(node) or node.parent is None:  # type: ignore[union-attr]
        return
    first = node
    while _is_plain_string(first.previous_sibling):  # type: ignore[union-attr]
        first = first.previous_sibling  # type: ignore[union-attr]
    run = [first]
    while _is_plain_string(run[-1].next_sibling):  # type: ignore[union-attr]
        run.append(run[-1].next_sibling)  # type: ignore[union-attr]
    if len(run) < 2:
        return
    merged = NavigableString("".join(str(part) for part in run))
    run[0].replace_with(merged)  # type: ignore[union-attr]
    for part in run[1:]:
        part.extract()  # type: ignore[union-attr]


def _overlay_title(record: AnnotationRecord) -> str:
    label = _CATEGORY_TITLES.get(record.category, record.category)
    return f"Click to remove {label} highlight"


class OverlayRenderer:
    """
    Paints annotation records onto containers and takes them off again.

    Overlay tags created here are indexed by record id, so removing one
    record touches only that record's tags instead of walking the container.
    """

    def __init__(self, store: AnnotationStore) -> None:
        self.store = store
        self._overlays: dict[str, list[Tag]] = {}

    def forget(self) -> None:
        """Drop the overlay index, e.g. when every container is discarded."""
        self._overlays.clear()

    def overlays_for(self, record_id: str) -> list[Tag]:
        return [tag for tag in self._overlays.get(record_id, []) if tag.parent is not None]

    def clear(self, container: Tag) -> int:
        """Reduce every overlay in ``container`` back to its plain text."""
        found = container.find_all(attrs={RECORD_ID_ATTR: True})
        if not found:
            return 0
        removed = {id(tag) for tag in found}
        for tag in found:
            if tag.parent is not None:
                tag.unwrap()
        container.smooth()
        for record_id in list(self._overlays):
            remaining = [tag for tag in self._overlays[record_id] if id(tag) not in removed]
            if remaining:
                self._overlays[record_id] = remaining
            else:
                del self._overlays[record_id]
        return len(found)

    def paint(self, container: Tag, record: AnnotationRecord) -> list[Tag]:
        if not record.has_range:
            return []
        tags = offsets_to_span(
            container,
            record.range_start,  # type: ignore[arg-type]
            record.range_end,  # type: ignore[arg-type]
            record.category,
            record.id,
            title=_overlay_title(record),
        )
        if tags:
            self._overlays.setdefault(record.id, []).extend(tags)
        else:
            logger.debug("Record %s produced no overlay (empty range after clamping)", record.id)
        return tags

    def repaint(self, container: Tag, document_id: str, sub_document_key: str) -> int:
        """
        Clear the container and paint every stored record that has a range.

        Safe to call repeatedly; the resulting text and set of rendered
        record ids do not change between calls.
        """
        self.clear(container)
        painted = 0
        for record in self.store.list(document_id, sub_document_key):
            if self.paint(container, record):
                painted += 1
        return painted

    def unwrap(self, record_id: str) -> int:
        """
        Turn every overlay of ``record_id`` back into plain text.

        Overlays already detached from their container are skipped. Only the
        strings on either side of each overlay are merged.
        """
        unwrapped = 0
        for tag in self._overlays.pop(record_id, []):
            if tag.parent is None:
                continue
            edges = [tag.previous_sibling, tag.next_sibling]
            if tag.contents:
                edges[1:1] = [tag.contents[0], tag.contents[-1]]
            tag.unwrap()
            for node in edges:
                _merge_strings_around(node)
            unwrapped += 1
        return unwrapped

    def remove_overlay(self, document_id: str, sub_document_key: str, record_id: str) -> bool:
        """
        Handle a click on an overlay.

        The record is removed from whichever category bucket holds it and its
        overlays are unwrapped locally. Returns whether the store held the
        record; stale overlays are unwrapped either way.
        """
        record = self.store.remove_anywhere(document_id, sub_document_key, record_id)
        self.unwrap(record_id)
        if record is None:
            logger.info("Overlay %s had no backing record in %s/%s", record_id, document_id, sub_document_key)
            return False
        return True
