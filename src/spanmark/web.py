from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse

from .documents import DocumentLibrary
from .labels import check_label_value
from .offsets import TextSelection
from .persistence import ProgressFile, default_progress_path, export_filename
from .session import AnnotationSession, SaveFileError
from .store import DEFAULT_SUB_DOCUMENT
from .taxonomy import load_taxonomy

__all__ = ["WebConfig", "INDEX_HTML", "LABEL_FIELDS", "create_app"]


@dataclass(slots=True)
class WebConfig:
    input_path: Path
    progress_path: Path | None = None
    taxonomy_path: Path | None = None
    host: str = "127.0.0.1"
    port: int = 8000


LABEL_FIELDS = (
    "cot_label",
    "cot_covert_type",
    "cot_hide_confidence",
    "action_label",
    "covert_action_confidence",
)
SELECTION_FIELDS = ("start_leaf", "start_offset", "end_leaf", "end_offset")


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>spanmark</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    body { margin: 0; font-family: -apple-system, BlinkMacSystemFont, "Helvetica Neue", sans-serif; background: #f6f7fb; color: #1f2430; }
    header { padding: 1rem 1.4rem; background: #1f2937; color: #f9fafb; }
    header h1 { margin: 0; font-size: 1.3rem; }
    main { display: grid; grid-template-columns: 260px 1fr 320px; gap: 1rem; padding: 1rem 1.4rem; }
    aside, section { background: #fff; border-radius: 12px; padding: 1rem; box-shadow: 0 6px 18px rgba(15, 23, 42, 0.08); }
    #documents button { display: block; width: 100%; text-align: left; margin-bottom: 0.3rem; border: 0; background: #eef1f7; padding: 0.4rem 0.6rem; border-radius: 8px; cursor: pointer; }
    #documents button.completed { background: #dcfce7; }
    #documents button.active { outline: 2px solid #3b82f6; }
    .content-display { white-space: pre-wrap; font-family: ui-monospace, Menlo, monospace; font-size: 0.85rem; line-height: 1.45; margin-bottom: 1.2rem; }
    .highlight { cursor: pointer; border-radius: 3px; }
    .highlight-cot { background: rgba(250, 204, 21, 0.55); }
    .highlight-action { background: rgba(248, 113, 113, 0.5); }
    .highlight .highlight { filter: brightness(0.9); }
    label { display: block; margin-top: 0.6rem; font-size: 0.85rem; }
    select, textarea { width: 100%; }
    #status { min-height: 1.4rem; font-size: 0.85rem; margin-top: 0.8rem; }
    #status.warning { color: #b45309; }
    #status.success { color: #15803d; }
    #pending { display: none; margin-top: 0.8rem; padding: 0.6rem; background: #eef2ff; border-radius: 8px; }
  </style>
</head>
<body>
  <header><h1>spanmark</h1></header>
  <main>
    <aside><div id="documents"></div></aside>
    <section id="viewer"></section>
    <aside>
      <label>CoT label
        <select data-field="cot_label">
          <option value=""></option>
          <option value="scheming_long_term">Scheming (long-term)</option>
          <option value="scheming_covert">Scheming (covert)</option>
          <option value="unfaithful">Unfaithful</option>
          <option value="no_scheming">No scheming</option>
        </select>
      </label>
      <label>Covert type
        <select data-field="cot_covert_type">
          <option value=""></option><option value="justify">Justify</option><option value="hide">Hide</option>
        </select>
      </label>
      <label>Hide confidence
        <select data-field="cot_hide_confidence">
          <option value=""></option><option value="high">High</option><option value="low">Low</option>
        </select>
      </label>
      <label>Action label
        <select data-field="action_label">
          <option value=""></option>
          <option value="malicious">Malicious/Harmful</option>
          <option value="covert_malicious">Covert</option>
          <option value="no_malicious">Not malicious</option>
        </select>
      </label>
      <label>Covert action confidence
        <select data-field="covert_action_confidence">
          <option value=""></option><option value="high">High</option><option value="low">Low</option>
        </select>
      </label>
      <label>Comments<textarea id="comments" rows="6"></textarea></label>
      <p>
        <button data-mode="cot">Highlight CoT</button>
        <button data-mode="action">Highlight Action</button>
        <button data-mode="">Stop</button>
      </p>
      <div id="pending">
        <div id="pending-text"></div>
        <button id="confirm">Confirm</button>
        <button id="cancel">Cancel</button>
      </div>
      <p><a href="/api/export">Export annotations</a></p>
      <div id="status"></div>
    </aside>
  </main>
  <script>
    let currentDocument = null;

    async function api(method, url, body) {
      const options = { method, headers: { "Content-Type": "application/json" } };
      if (body !== undefined) options.body = JSON.stringify(body);
      const response = await fetch(url, options);
      const payload = await response.json();
      if (!response.ok) throw new Error(payload.detail || response.statusText);
      return payload;
    }

    function showStatus(status) {
      const el = document.getElementById("status");
      el.className = status ? status.level : "";
      el.textContent = status ? status.text : "";
    }

    function renderDocument(payload) {
      currentDocument = payload.document_id;
      const viewer = document.getElementById("viewer");
      viewer.innerHTML = payload.sub_documents.map((sub) => sub.html).join("");
      const labels = payload.labels || {};
      document.querySelectorAll("select[data-field]").forEach((select) => {
        select.value = labels[select.dataset.field] || "";
      });
      document.getElementById("comments").value = labels.comments || "";
      document.getElementById("pending").style.display = "none";
      showStatus(payload.status);
      loadDocuments();
    }

    function textLeaves(container) {
      const walker = document.createTreeWalker(container, NodeFilter.SHOW_TEXT);
      const leaves = [];
      while (walker.nextNode()) leaves.push(walker.currentNode);
      return leaves;
    }

    async function loadDocuments() {
      const payload = await api("GET", "/api/documents");
      const list = document.getElementById("documents");
      list.innerHTML = "";
      payload.documents.forEach((doc) => {
        const button = document.createElement("button");
        button.textContent = doc.id;
        if (doc.completed) button.classList.add("completed");
        if (doc.id === currentDocument) button.classList.add("active");
        button.onclick = async () => renderDocument(await api("POST", `/api/documents/${encodeURIComponent(doc.id)}/open`));
        list.appendChild(button);
      });
    }

    document.querySelectorAll("select[data-field]").forEach((select) => {
      select.addEventListener("change", async () => {
        if (!currentDocument || !select.value) return;
        try {
          renderDocument(await api("POST", `/api/documents/${encodeURIComponent(currentDocument)}/labels`, { [select.dataset.field]: select.value }));
        } catch (error) {
          showStatus({ level: "warning", text: error.message });
        }
      });
    });

    document.getElementById("comments").addEventListener("change", async (event) => {
      if (!currentDocument) return;
      renderDocument(await api("POST", `/api/documents/${encodeURIComponent(currentDocument)}/labels`, { comments: event.target.value }));
    });

    document.querySelectorAll("button[data-mode]").forEach((button) => {
      button.addEventListener("click", async () => {
        const payload = await api("POST", "/api/highlight-mode", { type: button.dataset.mode || null });
        showStatus(payload.status);
      });
    });

    document.getElementById("viewer").addEventListener("mouseup", async () => {
      const selection = window.getSelection();
      if (!selection || selection.isCollapsed) return;
      const container = selection.anchorNode && selection.anchorNode.parentElement
        ? selection.anchorNode.parentElement.closest(".content-display")
        : null;
      if (!container) return;
      const leaves = textLeaves(container);
      const payload = await api("POST", "/api/selection", {
        sub_document: container.dataset.subDocument,
        start_leaf: leaves.indexOf(selection.anchorNode),
        start_offset: selection.anchorOffset,
        end_leaf: leaves.indexOf(selection.focusNode),
        end_offset: selection.focusOffset,
      });
      showStatus(payload.status);
      const pending = document.getElementById("pending");
      if (payload.pending) {
        document.getElementById("pending-text").textContent = `"${payload.pending.preview}"`;
        pending.style.display = "block";
      } else {
        pending.style.display = "none";
      }
    });

    document.getElementById("viewer").addEventListener("click", async (event) => {
      const overlay = event.target.closest(".highlight");
      if (!overlay || !window.getSelection().isCollapsed) return;
      if (!window.confirm("Remove this highlight?")) return;
      const container = overlay.closest(".content-display");
      const sub = encodeURIComponent(container.dataset.subDocument);
      renderDocument(await api("DELETE", `/api/overlays/${encodeURIComponent(overlay.dataset.recordId)}?sub_document=${sub}`));
    });

    document.getElementById("confirm").addEventListener("click", async () => {
      renderDocument(await api("POST", "/api/selection/confirm", {}));
    });

    document.getElementById("cancel").addEventListener("click", async () => {
      await api("POST", "/api/selection/cancel", {});
      document.getElementById("pending").style.display = "none";
    });

    loadDocuments();
  </script>
</body>
</html>
"""


def _status_payload(session: AnnotationSession) -> dict[str, str] | None:
    return session.status.to_payload() if session.status is not None else None


def _document_payload(session: AnnotationSession) -> dict[str, object]:
    current = session.current
    if current is None:
        raise HTTPException(status_code=400, detail="No document is open.")
    labels = session.labels.get(current.document_id)
    return {
        "document_id": current.document_id,
        "sub_documents": [
            {"key": key, "html": current.html(key)} for key in current.containers
        ],
        "labels": labels.to_payload() if labels is not None else None,
        "completed": session.is_completed(current.document_id),
        "annotations": [
            record.to_payload() for record in session.store.list_document(current.document_id)
        ],
        "status": _status_payload(session),
    }


def _parse_selection(payload: Mapping[str, object]) -> TextSelection:
    values: dict[str, int] = {}
    for key in SELECTION_FIELDS:
        value = payload.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            raise HTTPException(status_code=400, detail=f"{key} must be an integer.")
        values[key] = value
    return TextSelection(**values)


def create_app(config: WebConfig) -> FastAPI:
    library = DocumentLibrary.from_path(config.input_path.expanduser())
    taxonomy = load_taxonomy(config.taxonomy_path)
    progress = ProgressFile(config.progress_path or default_progress_path())
    session = AnnotationSession(taxonomy=taxonomy, progress=progress, file_names=library.ids())
    session.resume()

    app = FastAPI(title="spanmark")
    app.state.config = config
    app.state.library = library
    app.state.session = session

    session_lock = threading.Lock()

    def _require_open(document_id: str) -> None:
        if document_id not in library:
            raise HTTPException(status_code=404, detail="Document not found")
        if session.current is None or session.current.document_id != document_id:
            raise HTTPException(status_code=400, detail="Open the document before labelling it.")

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return INDEX_HTML

    @app.get("/api/documents")
    def api_documents() -> JSONResponse:
        with session_lock:
            documents = [
                {
                    "id": document_id,
                    "completed": session.is_completed(document_id),
                    "annotation_count": len(session.store.list_document(document_id)),
                }
                for document_id in library.ids()
            ]
            current = session.current.document_id if session.current is not None else None
        return JSONResponse(
            {"documents": documents, "current": current, "taxonomy": taxonomy.to_payload()}
        )

    @app.post("/api/documents/{document_id}/open")
    def api_open_document(document_id: str) -> JSONResponse:
        document = library.get(document_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Document not found")
        with session_lock:
            session.open_document(document.document_id, document.data)
            return JSONResponse(_document_payload(session))

    @app.post("/api/documents/{document_id}/labels")
    def api_update_labels(
        document_id: str,
        payload: dict[str, object] = Body(...),
    ) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        with session_lock:
            _require_open(document_id)
            setters = {
                "cot_label": session.set_cot_label,
                "cot_covert_type": session.set_cot_covert_type,
                "cot_hide_confidence": session.set_cot_hide_confidence,
                "action_label": session.set_action_label,
                "covert_action_confidence": session.set_covert_action_confidence,
            }
            updates: list[tuple[str, str]] = []
            for field in LABEL_FIELDS:
                if field not in payload:
                    continue
                value = payload[field]
                if not isinstance(value, str):
                    raise HTTPException(status_code=400, detail=f"{field} must be a string.")
                try:
                    updates.append((field, check_label_value(field, value)))
                except ValueError as exc:
                    raise HTTPException(status_code=400, detail=str(exc)) from exc
            comments = payload.get("comments")
            if "comments" in payload and not isinstance(comments, str):
                raise HTTPException(status_code=400, detail="comments must be a string.")
            for field, value in updates:
                setters[field](value)
            if isinstance(comments, str):
                session.update_comments(comments)
            return JSONResponse(_document_payload(session))

    @app.post("/api/highlight-mode")
    def api_highlight_mode(payload: dict[str, object] = Body(...)) -> JSONResponse:
        highlight_type = payload.get("type") if isinstance(payload, dict) else None
        with session_lock:
            if highlight_type is None:
                session.controller.disable()
                return JSONResponse({"type": None, "status": None})
            if not isinstance(highlight_type, str) or not highlight_type:
                raise HTTPException(status_code=400, detail="type must be a string or null.")
            message = session.enable_highlighting(highlight_type)
            return JSONResponse({"type": highlight_type, "status": message.to_payload()})

    @app.post("/api/selection")
    def api_selection(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        sub_document_key = payload.get("sub_document") or DEFAULT_SUB_DOCUMENT
        if not isinstance(sub_document_key, str):
            raise HTTPException(status_code=400, detail="sub_document must be a string.")
        selection = _parse_selection(payload)
        with session_lock:
            if session.current is None:
                raise HTTPException(status_code=400, detail="No document is open.")
            session.status = None
            pending = session.select(sub_document_key, selection)
            return JSONResponse(
                {
                    "state": session.controller.state.value,
                    "pending": (
                        {
                            "type": pending.highlight_type,
                            "sub_document": pending.sub_document_key,
                            "preview": pending.preview,
                        }
                        if pending is not None
                        else None
                    ),
                    "status": _status_payload(session),
                }
            )

    @app.post("/api/selection/confirm")
    def api_confirm_selection(payload: dict[str, object] | None = Body(None)) -> JSONResponse:
        comment = payload.get("comment", "") if isinstance(payload, dict) else ""
        extra_fields = payload.get("extra_fields") if isinstance(payload, dict) else None
        if not isinstance(comment, str):
            raise HTTPException(status_code=400, detail="comment must be a string.")
        if extra_fields is not None and not isinstance(extra_fields, dict):
            raise HTTPException(status_code=400, detail="extra_fields must be an object.")
        with session_lock:
            record = session.confirm(comment=comment, extra_fields=extra_fields)
            body = _document_payload(session)
            body["record"] = record.to_payload() if record is not None else None
            return JSONResponse(body)

    @app.post("/api/selection/cancel")
    def api_cancel_selection() -> JSONResponse:
        with session_lock:
            session.cancel()
            return JSONResponse({"state": session.controller.state.value})

    @app.delete("/api/overlays/{record_id}")
    def api_remove_overlay(
        record_id: str,
        sub_document: str = Query(DEFAULT_SUB_DOCUMENT),
    ) -> JSONResponse:
        with session_lock:
            if session.current is None:
                raise HTTPException(status_code=400, detail="No document is open.")
            if not session.remove_overlay(sub_document, record_id):
                raise HTTPException(status_code=404, detail="Highlight not found.")
            return JSONResponse(_document_payload(session))

    @app.get("/api/export")
    def api_export() -> JSONResponse:
        with session_lock:
            payload = session.export_payload()
        return JSONResponse(
            payload,
            headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
        )

    @app.get("/api/progress")
    def api_progress() -> JSONResponse:
        with session_lock:
            return JSONResponse(session.save_blob())

    @app.post("/api/progress")
    def api_load_progress(payload: dict[str, object] = Body(...)) -> JSONResponse:
        with session_lock:
            try:
                message = session.load_blob(payload)
            except SaveFileError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return JSONResponse(
                {"status": message.to_payload(), "annotated_files": len(session.labels)}
            )

    @app.delete("/api/progress")
    def api_clear_progress() -> JSONResponse:
        with session_lock:
            session.clear_all()
            return JSONResponse({"status": _status_payload(session)})

    return app
