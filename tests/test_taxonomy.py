from __future__ import annotations

import json
from pathlib import Path

import pytest

from spanmark.taxonomy import TaxonomyError, default_taxonomy, load_taxonomy


def test_default_taxonomy_has_cot_and_action() -> None:
    taxonomy = default_taxonomy()
    assert [category.name for category in taxonomy] == ["cot", "action"]
    assert taxonomy.display_name("cot") == "Scheming CoT"
    assert "no_scheming" not in taxonomy.get("cot").sub_labels
    assert taxonomy.knows("tone") is False
    assert taxonomy.display_name("tone") == "tone"


def test_load_taxonomy_without_path_uses_default() -> None:
    assert load_taxonomy(None) == default_taxonomy()


def test_load_taxonomy_from_file(tmp_path: Path) -> None:
    path = tmp_path / "taxonomy.json"
    path.write_text(
        json.dumps(
            {
                "categories": {
                    "evidence": {"display_name": "Evidence", "sub_labels": ["strong", "weak"]},
                    "tone": {"extra_fields": ["severity"]},
                }
            }
        ),
        encoding="utf-8",
    )

    taxonomy = load_taxonomy(path)

    assert len(taxonomy) == 2
    assert "evidence" in taxonomy
    assert taxonomy.get("evidence").sub_labels == ("strong", "weak")
    assert taxonomy.display_name("tone") == "tone"
    assert taxonomy.to_payload()["categories"]["tone"]["extra_fields"] == ["severity"]


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        json.dumps([1, 2]),
        json.dumps({"categories": {}}),
        json.dumps({"categories": {"cot": "nope"}}),
        json.dumps({"categories": {"cot": {"sub_labels": "a"}}}),
    ],
)
def test_malformed_taxonomy_raises(tmp_path: Path, content: str) -> None:
    path = tmp_path / "taxonomy.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(TaxonomyError):
        load_taxonomy(path)


def test_missing_taxonomy_file_raises(tmp_path: Path) -> None:
    with pytest.raises(TaxonomyError, match="not found"):
        load_taxonomy(tmp_path / "missing.json")


def test_non_utf8_taxonomy_raises(tmp_path: Path) -> None:
    path = tmp_path / "taxonomy.json"
    path.write_bytes(b'{"categories": {"\xff\xfe": {}}}')
    with pytest.raises(TaxonomyError, match="Failed to read taxonomy"):
        load_taxonomy(path)
