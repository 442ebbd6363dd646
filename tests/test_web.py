from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi import HTTPException

from spanmark.offsets import iter_text_leaves
from spanmark.web import WebConfig, create_app

SENTENCE = "The agent deleted the audit log to avoid detection."


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


def _create_inputs(root: Path) -> Path:
    inputs = root / "inputs"
    inputs.mkdir()
    for number in (1, 2):
        payload = {"input": {"o4-mini": [{"source": "assistant", "content": f"{SENTENCE} #{number}"}]}}
        (inputs / f"example_{number}.json").write_text(json.dumps(payload), encoding="utf-8")
    return inputs


def _app(tmp_path: Path):
    return create_app(
        WebConfig(input_path=_create_inputs(tmp_path), progress_path=tmp_path / "progress.json")
    )


def _body(response) -> dict:
    return json.loads(response.body)


def _selection_payload(app, word: str) -> dict[str, object]:
    container = app.state.session.current.container("main")
    for index, leaf in enumerate(iter_text_leaves(container)):
        position = str(leaf).find(word)
        if position >= 0:
            return {
                "sub_document": "main",
                "start_leaf": index,
                "start_offset": position,
                "end_leaf": index,
                "end_offset": position + len(word),
            }
    raise AssertionError(word)


def _open_and_label(app) -> None:
    _find_route(app, "/api/documents/{document_id}/open", "POST")("example_1.json")
    _find_route(app, "/api/documents/{document_id}/labels", "POST")(
        "example_1.json", {"cot_label": "scheming_covert", "action_label": "malicious"}
    )


def test_index_serves_html(tmp_path: Path) -> None:
    app = _app(tmp_path)
    assert "<title>spanmark</title>" in _find_route(app, "/", "GET")()


def test_documents_listing(tmp_path: Path) -> None:
    app = _app(tmp_path)
    payload = _body(_find_route(app, "/api/documents", "GET")())

    assert [doc["id"] for doc in payload["documents"]] == ["example_1.json", "example_2.json"]
    assert payload["current"] is None
    assert set(payload["taxonomy"]["categories"]) == {"cot", "action"}


def test_open_document_returns_rendered_html(tmp_path: Path) -> None:
    app = _app(tmp_path)
    payload = _body(_find_route(app, "/api/documents/{document_id}/open", "POST")("example_2.json"))

    assert payload["document_id"] == "example_2.json"
    assert payload["labels"] is None
    assert payload["sub_documents"][0]["key"] == "main"
    assert f"{SENTENCE} #2" in payload["sub_documents"][0]["html"]

    with pytest.raises(HTTPException) as excinfo:
        _find_route(app, "/api/documents/{document_id}/open", "POST")("missing.json")
    assert excinfo.value.status_code == 404


def test_label_updates_validate_values(tmp_path: Path) -> None:
    app = _app(tmp_path)
    update = _find_route(app, "/api/documents/{document_id}/labels", "POST")

    with pytest.raises(HTTPException) as excinfo:
        update("example_1.json", {"cot_label": "no_scheming"})
    assert excinfo.value.status_code == 400

    _open_and_label(app)
    payload = _body(update("example_1.json", {"cot_covert_type": "hide", "comments": "looks covert"}))
    assert payload["labels"]["cot_covert_type"] == "hide"
    assert payload["labels"]["comments"] == "looks covert"
    assert payload["completed"] is False

    with pytest.raises(HTTPException) as excinfo:
        update("example_1.json", {"action_label": "very_bad"})
    assert excinfo.value.status_code == 400

    with pytest.raises(HTTPException) as excinfo:
        update("unknown.json", {"cot_label": "no_scheming"})
    assert excinfo.value.status_code == 404


def test_label_update_with_one_bad_field_changes_nothing(tmp_path: Path) -> None:
    app = _app(tmp_path)
    _find_route(app, "/api/documents/{document_id}/open", "POST")("example_1.json")
    update = _find_route(app, "/api/documents/{document_id}/labels", "POST")

    with pytest.raises(HTTPException) as excinfo:
        update("example_1.json", {"cot_label": "no_scheming", "action_label": "bogus"})
    assert excinfo.value.status_code == 400

    with pytest.raises(HTTPException):
        update("example_1.json", {"cot_label": "no_scheming", "comments": 5})

    assert app.state.session.labels == {}
    assert not (tmp_path / "progress.json").exists()
    listing = _body(_find_route(app, "/api/documents", "GET")())
    assert [doc["completed"] for doc in listing["documents"]] == [False, False]


def test_highlight_flow_and_overlay_removal(tmp_path: Path) -> None:
    app = _app(tmp_path)
    _open_and_label(app)

    mode = _body(_find_route(app, "/api/highlight-mode", "POST")({"type": "action"}))
    assert mode["status"]["text"].startswith("Click and drag")

    selection = _body(_find_route(app, "/api/selection", "POST")(_selection_payload(app, "deleted")))
    assert selection["state"] == "pending_confirmation"
    assert selection["pending"]["preview"] == "deleted"

    confirmed = _body(_find_route(app, "/api/selection/confirm", "POST")({"comment": "wiping logs"}))
    record = confirmed["record"]
    assert record["selected_text"] == "deleted"
    assert record["comment"] == "wiping logs"
    assert f'data-record-id="{record["id"]}"' in confirmed["sub_documents"][0]["html"]

    remove = _find_route(app, "/api/overlays/{record_id}", "DELETE")
    removed = _body(remove(record["id"], sub_document="main"))
    assert "data-record-id" not in removed["sub_documents"][0]["html"]
    assert removed["annotations"] == []

    with pytest.raises(HTTPException) as excinfo:
        remove(record["id"], sub_document="main")
    assert excinfo.value.status_code == 404


def test_selection_validation_and_cancel(tmp_path: Path) -> None:
    app = _app(tmp_path)
    select = _find_route(app, "/api/selection", "POST")

    with pytest.raises(HTTPException):
        select({"start_leaf": 0, "start_offset": 0, "end_leaf": 0, "end_offset": 1})

    _open_and_label(app)
    with pytest.raises(HTTPException):
        select({"start_leaf": "0", "start_offset": 0, "end_leaf": 0, "end_offset": 1})

    _find_route(app, "/api/highlight-mode", "POST")({"type": "cot"})
    select(_selection_payload(app, "agent"))
    cancelled = _body(_find_route(app, "/api/selection/cancel", "POST")())
    assert cancelled["state"] == "idle"


def test_progress_endpoints(tmp_path: Path) -> None:
    app = _app(tmp_path)
    _open_and_label(app)
    _find_route(app, "/api/highlight-mode", "POST")({"type": "cot"})
    _find_route(app, "/api/selection", "POST")(_selection_payload(app, "agent"))
    _find_route(app, "/api/selection/confirm", "POST")(None)

    blob = _body(_find_route(app, "/api/progress", "GET")())
    assert blob["annotated_files"] == 1
    assert (tmp_path / "progress.json").exists()

    cleared = _body(_find_route(app, "/api/progress", "DELETE")())
    assert cleared["status"]["text"] == "All progress cleared."
    assert not (tmp_path / "progress.json").exists()

    load = _find_route(app, "/api/progress", "POST")
    with pytest.raises(HTTPException) as excinfo:
        load({"annotations": {}})
    assert excinfo.value.status_code == 400

    loaded = _body(load(blob))
    assert loaded["annotated_files"] == 1
    html = _body(_find_route(app, "/api/documents/{document_id}/open", "POST")("example_1.json"))
    assert "data-record-id" in html["sub_documents"][0]["html"]


def test_export_sets_download_name(tmp_path: Path) -> None:
    app = _app(tmp_path)
    _open_and_label(app)
    response = _find_route(app, "/api/export", "GET")()

    assert "spanmark_annotations_" in response.headers["content-disposition"]
    payload = _body(response)
    assert payload["annotated_file_names"] == ["example_1.json"]
    assert payload["total_files_loaded"] == 2


def test_resumes_existing_progress(tmp_path: Path) -> None:
    progress = tmp_path / "progress.json"
    progress.write_text(
        json.dumps(
            {
                "file_names": ["example_1.json"],
                "annotations": {"example_1.json": {"scheming": False}},
            }
        ),
        encoding="utf-8",
    )
    app = _app(tmp_path)
    payload = _body(_find_route(app, "/api/documents", "GET")())

    assert payload["documents"][0]["completed"] is True
    assert payload["documents"][1]["completed"] is False
