from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Mapping

from .labels import ACTION_LABELS, COT_LABELS

__all__ = [
    "TaxonomyError",
    "TaxonomyCategory",
    "Taxonomy",
    "default_taxonomy",
    "load_taxonomy",
]


class TaxonomyError(ValueError):
    """Raised when a taxonomy configuration file cannot be used."""


@dataclass(frozen=True)
class TaxonomyCategory:
    name: str
    display_name: str
    sub_labels: tuple[str, ...] = ()
    extra_fields_schema: tuple[str, ...] = ()


@dataclass(frozen=True)
class Taxonomy:
    """
    Read-only category configuration for one session.

    It is advisory: the annotation store accepts categories missing from it.
    """

    categories: Mapping[str, TaxonomyCategory] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.categories

    def __iter__(self) -> Iterator[TaxonomyCategory]:
        return iter(self.categories.values())

    def __len__(self) -> int:
        return len(self.categories)

    def get(self, name: str) -> TaxonomyCategory | None:
        return self.categories.get(name)

    def knows(self, name: str) -> bool:
        return name in self.categories

    def display_name(self, name: str) -> str:
        category = self.categories.get(name)
        return category.display_name if category else name

    def to_payload(self) -> dict[str, object]:
        return {
            "categories": {
                name: {
                    "display_name": category.display_name,
                    "sub_labels": list(category.sub_labels),
                    "extra_fields": list(category.extra_fields_schema),
                }
                for name, category in self.categories.items()
            }
        }


def default_taxonomy() -> Taxonomy:
    return Taxonomy(
        categories={
            "cot": TaxonomyCategory(
                name="cot",
                display_name="Scheming CoT",
                sub_labels=tuple(label for label in COT_LABELS if label != "no_scheming"),
            ),
            "action": TaxonomyCategory(
                name="action",
                display_name="Malicious Action",
                sub_labels=tuple(label for label in ACTION_LABELS if label != "no_malicious"),
            ),
        }
    )


def _string_tuple(value: object, *, context: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise TaxonomyError(f"{context} must be a list of strings.")
    return tuple(value)


def _parse_taxonomy(payload: object, source: str) -> Taxonomy:
    if not isinstance(payload, Mapping):
        raise TaxonomyError(f"Taxonomy {source} must contain a JSON object.")
    raw_categories = payload.get("categories")
    if not isinstance(raw_categories, Mapping) or not raw_categories:
        raise TaxonomyError(f"Taxonomy {source} has no 'categories' mapping.")
    categories: dict[str, TaxonomyCategory] = {}
    for name, entry in raw_categories.items():
        if not isinstance(name, str) or not name.strip():
            raise TaxonomyError(f"Taxonomy {source} has an empty category name.")
        if entry is None:
            entry = {}
        if not isinstance(entry, Mapping):
            raise TaxonomyError(f"Category '{name}' in {source} must be an object.")
        display_name = entry.get("display_name")
        if not isinstance(display_name, str) or not display_name.strip():
            display_name = name
        categories[name] = TaxonomyCategory(
            name=name,
            display_name=display_name,
            sub_labels=_string_tuple(entry.get("sub_labels"), context=f"{name}.sub_labels"),
            extra_fields_schema=_string_tuple(entry.get("extra_fields"), context=f"{name}.extra_fields"),
        )
    return Taxonomy(categories=categories)


def load_taxonomy(path: Path | None) -> Taxonomy:
    if path is None:
        return default_taxonomy()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise TaxonomyError(f"Taxonomy file not found: {path}") from exc
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TaxonomyError(f"Failed to read taxonomy {path}: {exc}") from exc
    return _parse_taxonomy(payload, str(path))
