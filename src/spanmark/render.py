from __future__ import annotations

import json
from typing import Mapping

from bs4 import BeautifulSoup, Tag  # type: ignore

from .store import DEFAULT_SUB_DOCUMENT

__all__ = [
    "PAIRED_SUB_DOCUMENTS",
    "CONVERSATION_KEYS",
    "render_document",
    "sub_document_keys",
]

PAIRED_SUB_DOCUMENTS = ("with_oversight", "without_oversight")
CONVERSATION_KEYS = ("o4-mini", "Qwen")

_ROLE_NAMES = {"user": "USER", "assistant": "ASSISTANT"}


def _pretty_json(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2)


def _conversation_turns(payload: Mapping[str, object]) -> list[Mapping[str, object]] | None:
    for key in CONVERSATION_KEYS:
        turns = payload.get(key)
        if isinstance(turns, list) and turns:
            return [turn for turn in turns if isinstance(turn, Mapping)]
    return None


def sub_document_keys(data: Mapping[str, object]) -> tuple[str, ...]:
    payload = data.get("input")
    if isinstance(payload, Mapping) and all(payload.get(key) for key in PAIRED_SUB_DOCUMENTS):
        return PAIRED_SUB_DOCUMENTS
    return (DEFAULT_SUB_DOCUMENT,)


def _new_container(document_id: str, sub_document_key: str) -> tuple[BeautifulSoup, Tag]:
    soup = BeautifulSoup("", "html.parser")
    root = soup.new_tag(
        "div",
        attrs={
            "class": ["content-display"],
            "data-document-id": document_id,
            "data-sub-document": sub_document_key,
        },
    )
    soup.append(root)
    return soup, root


def _append_block(soup: BeautifulSoup, parent: Tag, css_class: str, text: str) -> Tag:
    block = soup.new_tag("div", attrs={"class": [css_class]})
    block.string = text
    parent.append(block)
    return block


def _append_goals(soup: BeautifulSoup, root: Tag, goal: object) -> None:
    if not isinstance(goal, Mapping):
        return
    section = soup.new_tag("section", attrs={"class": ["goals"]})
    _append_block(soup, section, "goal-heading", "GOALS:\n")
    long_term = goal.get("long_term")
    if long_term:
        _append_block(soup, section, "goal-long-term", f"\nLONG-TERM GOAL:\n{long_term}\n")
    short_term = goal.get("short_term")
    if short_term:
        _append_block(soup, section, "goal-short-term", f"\nSHORT-TERM GOAL:\n{short_term}\n")
    _append_block(soup, section, "goal-rule", "\n" + "=" * 80 + "\n\n")
    root.append(section)


def _append_conversation(soup: BeautifulSoup, root: Tag, turns: list[Mapping[str, object]]) -> None:
    _append_block(soup, root, "section-heading", "CONVERSATION:")
    for turn in turns:
        source = str(turn.get("source") or "unknown")
        role = _ROLE_NAMES.get(source, source.upper())
        content = turn.get("content")
        if not isinstance(content, str):
            content = _pretty_json(content)
        article = soup.new_tag("article", attrs={"class": ["turn", f"turn-{source}"]})
        _append_block(soup, article, "turn-role", f"\n{role}:\n")
        _append_block(soup, article, "turn-content", f"{content}\n")
        _append_block(soup, article, "turn-rule", "\n" + "-" * 50 + "\n")
        root.append(article)


def render_document(document_id: str, data: Mapping[str, object]) -> dict[str, BeautifulSoup]:
    """
    Build one container per sub-document of ``data``.

    Paired samples (``input.with_oversight``/``input.without_oversight``)
    yield two containers; everything else yields a single ``main`` one.
    """
    goal = data.get("goal")
    payload = data.get("input")
    containers: dict[str, BeautifulSoup] = {}
    keys = sub_document_keys(data)
    for key in keys:
        soup, root = _new_container(document_id, key)
        _append_goals(soup, root, goal)
        if keys == PAIRED_SUB_DOCUMENTS:
            heading = key.replace("_", " ").upper()
            _append_block(soup, root, "section-heading", f"{heading}:\n")
            _append_block(soup, root, "json-block", _pretty_json(payload[key]))  # type: ignore[index]
        elif isinstance(payload, Mapping) and _conversation_turns(payload):
            _append_conversation(soup, root, _conversation_turns(payload) or [])
        elif payload is not None:
            _append_block(soup, root, "section-heading", "INPUT:\n")
            _append_block(soup, root, "json-block", _pretty_json(payload))
        else:
            _append_block(soup, root, "json-block", _pretty_json(dict(data)))
        containers[key] = soup
    return containers
