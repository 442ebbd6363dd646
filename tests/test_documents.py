from __future__ import annotations

import json
import math
from pathlib import Path

import pytest

from spanmark.documents import DocumentLibrary, DocumentLoadError, load_documents, sample_number


def _write(path: Path, payload: object) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_sample_number_patterns() -> None:
    assert sample_number("example_12.json") == 12
    assert sample_number("data_3.json") == 3
    assert sample_number("run7.json") == 7
    assert sample_number("notes.json") == math.inf


def test_folder_of_examples_is_sorted_numerically(tmp_path: Path) -> None:
    for number in (10, 2, 1):
        _write(tmp_path / f"example_{number}.json", {"input": {"n": number}})
    _write(tmp_path / "README.json", {"ignored": True})

    documents = load_documents(tmp_path)

    assert [document.document_id for document in documents] == [
        "example_1.json",
        "example_2.json",
        "example_10.json",
    ]
    assert documents[2].data == {"input": {"n": 10}}


def test_folder_prefers_step3_bundle(tmp_path: Path) -> None:
    _write(tmp_path / "example_1.json", {"input": "loose"})
    _write(
        tmp_path / "run_step3_output.json",
        {
            "example_2": [{"input": "two"}],
            "example_1": [{"input": "one"}, {"input": "ignored"}],
            "metadata": {"model": "x"},
            "example_3": [],
        },
    )

    documents = load_documents(tmp_path)

    assert [document.document_id for document in documents] == ["example_1.json", "example_2.json"]
    assert documents[0].data == {"input": "one"}


def test_folder_with_oversight_files_uses_only_those(tmp_path: Path) -> None:
    _write(tmp_path / "example_1.json", {"input": "plain"})
    _write(tmp_path / "sample_2_wooversight.json", {"input": {"with_oversight": 1, "without_oversight": 2}})

    documents = load_documents(tmp_path)

    assert [document.document_id for document in documents] == ["sample_2_wooversight.json"]


def test_single_file_and_bundle_file(tmp_path: Path) -> None:
    single = _write(tmp_path / "one.json", {"input": "x"})
    bundle = _write(tmp_path / "bundle.json", {"example_5": [{"input": "five"}]})

    assert [document.document_id for document in load_documents(single)] == ["one.json"]
    assert [document.document_id for document in load_documents(bundle)] == ["example_5.json"]


@pytest.mark.parametrize("name", ["missing.json", "notes.txt", "broken.json", "list.json"])
def test_bad_inputs_raise(tmp_path: Path, name: str) -> None:
    (tmp_path / "notes.txt").write_text("hello", encoding="utf-8")
    (tmp_path / "broken.json").write_text("{", encoding="utf-8")
    _write(tmp_path / "list.json", [1, 2, 3])
    with pytest.raises(DocumentLoadError):
        load_documents(tmp_path / name)


def test_empty_folder_raises(tmp_path: Path) -> None:
    with pytest.raises(DocumentLoadError, match="No recognized files"):
        load_documents(tmp_path)


def test_library_lookup(tmp_path: Path) -> None:
    _write(tmp_path / "example_1.json", {"input": "a"})
    library = DocumentLibrary.from_path(tmp_path)

    assert len(library) == 1
    assert "example_1.json" in library
    assert library.ids() == ["example_1.json"]
    assert library.get("example_1.json").source == tmp_path / "example_1.json"
    assert library.get("nope.json") is None
