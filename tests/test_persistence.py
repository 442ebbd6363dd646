from __future__ import annotations

import json
from datetime import date
from pathlib import Path

from spanmark.persistence import (
    PROGRESS_ENV,
    ProgressFile,
    backup_filename,
    default_progress_path,
    export_filename,
    write_json,
)


def test_progress_file_round_trip(tmp_path: Path) -> None:
    progress = ProgressFile(tmp_path / "nested" / "progress.json")
    blob = {"schema_version": 2, "annotations": {}, "comment": "日本語"}

    assert progress.write(blob) is True
    assert progress.read() == blob
    assert "日本語" in progress.path.read_text(encoding="utf-8")
    assert list(progress.path.parent.iterdir()) == [progress.path]


def test_progress_file_missing_or_corrupt_reads_none(tmp_path: Path) -> None:
    progress = ProgressFile(tmp_path / "progress.json")
    assert progress.read() is None

    progress.path.write_text("{not json", encoding="utf-8")
    assert progress.read() is None

    progress.path.write_text("[1, 2]", encoding="utf-8")
    assert progress.read() is None


def test_progress_write_failure_is_reported_not_raised(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    progress = ProgressFile(blocker / "progress.json")

    assert progress.write({"annotations": {}}) is False


def test_unserialisable_blob_leaves_previous_file(tmp_path: Path) -> None:
    progress = ProgressFile(tmp_path / "progress.json")
    progress.write({"ok": True})

    assert progress.write({"bad": object()}) is False
    assert progress.read() == {"ok": True}
    assert [path.name for path in tmp_path.iterdir()] == ["progress.json"]


def test_remove(tmp_path: Path) -> None:
    progress = ProgressFile(tmp_path / "progress.json")
    assert progress.remove() is False
    progress.write({})
    assert progress.remove() is True
    assert not progress.path.exists()


def test_default_progress_path_env_override(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv(PROGRESS_ENV, str(tmp_path / "custom.json"))
    assert default_progress_path() == tmp_path / "custom.json"

    monkeypatch.delenv(PROGRESS_ENV)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert default_progress_path() == tmp_path / ".spanmark-progress.json"


def test_export_names() -> None:
    day = date(2024, 3, 9)
    assert export_filename(day) == "spanmark_annotations_2024-03-09.json"
    assert backup_filename(day) == "spanmark_annotations_backup_2024-03-09.json"


def test_write_json_is_pretty_utf8(tmp_path: Path) -> None:
    path = write_json(tmp_path / "out.json", {"a": "é"})
    text = path.read_text(encoding="utf-8")
    assert text == '{\n  "a": "é"\n}'
    assert json.loads(text) == {"a": "é"}
