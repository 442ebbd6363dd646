from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Union

from bs4 import BeautifulSoup, NavigableString, Tag  # type: ignore
from bs4.element import PreformattedString  # type: ignore

__all__ = [
    "OVERLAY_CLASS",
    "RECORD_ID_ATTR",
    "CATEGORY_ATTR",
    "OffsetRange",
    "TextSelection",
    "iter_text_leaves",
    "container_text",
    "selection_to_offsets",
    "offsets_to_span",
    "style_class",
]

OVERLAY_CLASS = "highlight"
RECORD_ID_ATTR = "data-record-id"
CATEGORY_ATTR = "data-category"

_NON_TEXT_PARENTS = {"script", "style", "template", "head", "title"}
_STYLE_KEY_RE = re.compile(r"[^A-Za-z0-9_-]+")

LeafRef = Union[int, NavigableString]


@dataclass(frozen=True, slots=True)
class OffsetRange:
    start: int
    end: int


@dataclass(frozen=True, slots=True)
class TextSelection:
    """
    Boundary points of a user selection inside a container.

    Each boundary names a text leaf, either by its position in the leaf walk
    (what the browser reports after resolving ``Range.startContainer``) or by
    the ``NavigableString`` itself, plus a character offset inside that leaf.
    """

    start_leaf: LeafRef
    start_offset: int
    end_leaf: LeafRef
    end_offset: int


def _is_text_leaf(node: object) -> bool:
    if not isinstance(node, NavigableString):
        return False
    # Comments, CDATA, doctype and processing instructions never render.
    if isinstance(node, PreformattedString):
        return False
    parent = node.parent
    while isinstance(parent, Tag):
        if parent.name in _NON_TEXT_PARENTS:
            return False
        parent = parent.parent
    return True


def iter_text_leaves(container: Tag) -> Iterator[NavigableString]:
    """Yield the container's text-bearing leaves in document order."""
    for node in container.descendants:
        if _is_text_leaf(node):
            yield node


def container_text(container: Tag) -> str:
    return "".join(str(leaf) for leaf in iter_text_leaves(container))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(int(value), high))


def _leaf_index(leaves: list[NavigableString], ref: object) -> int | None:
    if isinstance(ref, bool):
        return None
    if isinstance(ref, int):
        if 0 <= ref < len(leaves):
            return ref
        return None
    if isinstance(ref, NavigableString):
        for index, leaf in enumerate(leaves):
            if leaf is ref:
                return index
    return None


def selection_to_offsets(container: Tag, selection: TextSelection) -> OffsetRange | None:
    """
    Translate a selection into ``[start, end)`` offsets of the container text.

    Returns ``None`` for collapsed selections and for boundaries that do not
    land on one of the container's text leaves. Backward selections (focus
    before anchor) are normalised.
    """
    leaves = list(iter_text_leaves(container))
    if not leaves:
        return None
    start_index = _leaf_index(leaves, selection.start_leaf)
    end_index = _leaf_index(leaves, selection.end_leaf)
    if start_index is None or end_index is None:
        return None
    start: int | None = None
    end: int | None = None
    counter = 0
    for index, leaf in enumerate(leaves):
        length = len(leaf)
        if index == start_index:
            start = counter + _clamp(selection.start_offset, 0, length)
        if index == end_index:
            end = counter + _clamp(selection.end_offset, 0, length)
        counter += length
    if start is None or end is None:
        return None
    if start > end:
        start, end = end, start
    if start == end:
        return None
    return OffsetRange(start=start, end=end)


def style_class(style_key: str) -> str:
    cleaned = _STYLE_KEY_RE.sub("-", style_key.strip()).strip("-")
    return f"{OVERLAY_CLASS}-{cleaned or 'default'}"


def _soup_for(node: Tag) -> BeautifulSoup:
    current: Tag | None = node
    while current is not None:
        if isinstance(current, BeautifulSoup):
            return current
        current = current.parent
    return BeautifulSoup("", "html.parser")


def offsets_to_span(
    container: Tag,
    start: int,
    end: int,
    style_key: str,
    record_id: str,
    *,
    title: str | None = None,
) -> list[Tag]:
    """
    Wrap the text covering ``[start, end)`` in overlay ``<span>`` elements.

    Every intersected leaf is split into before/matched/after parts and the
    matched part is wrapped, so a range crossing several leaves yields several
    overlays sharing ``record_id``. Offsets past the end of the text are
    clamped. The concatenated container text is never changed.
    """
    leaves = list(iter_text_leaves(container))
    total = sum(len(leaf) for leaf in leaves)
    start = _clamp(start, 0, total)
    end = _clamp(end, 0, total)
    if end <= start:
        return []
    soup = _soup_for(container)
    css_class = style_class(style_key)
    created: list[Tag] = []
    leaf_start = 0
    for leaf in leaves:
        text = str(leaf)
        leaf_end = leaf_start + len(text)
        if end <= leaf_start:
            break
        if text and leaf_end > start:
            lo = max(start, leaf_start) - leaf_start
            hi = min(end, leaf_end) - leaf_start
            overlay = soup.new_tag(
                "span",
                attrs={
                    "class": [OVERLAY_CLASS, css_class],
                    RECORD_ID_ATTR: record_id,
                    CATEGORY_ATTR: style_key,
                },
            )
            if title:
                overlay["title"] = title
            overlay.string = text[lo:hi]
            parts: list[object] = []
            if lo > 0:
                parts.append(NavigableString(text[:lo]))
            parts.append(overlay)
            if hi < len(text):
                parts.append(NavigableString(text[hi:]))
            leaf.replace_with(*parts)
            created.append(overlay)
        leaf_start = leaf_end
    return created
