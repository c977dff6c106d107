"""提供瀏覽器前端使用的 API 路由（StyleMix Studio）。"""

from __future__ import annotations

from io import BytesIO
from typing import Any, Dict, List
from uuid import uuid4

from flask import Blueprint, Response, current_app, jsonify, request, send_file, session
from werkzeug.datastructures import FileStorage

from stylemix.common.errors import (
    GenerationError,
    ReadError,
    StyleMixError,
    TransportError,
    UpstreamTimeoutError,
    ValidationError,
)
from stylemix.common.services.logging import log_event
from stylemix.services import RequestStatus, SessionStateMachine


api_bp = Blueprint("stylemix_api", __name__, url_prefix="/api")

_ERROR_STATUS = {
    cls.__name__: cls.http_status
    for cls in (ValidationError, ReadError, GenerationError, TransportError, UpstreamTimeoutError)
}


def _components() -> Dict[str, Any]:
    return current_app.extensions["stylemix_components"]


def _session_id() -> str:
    session_id = session.get("stylemix_session_id")
    if not session_id:
        session_id = uuid4().hex
        session["stylemix_session_id"] = session_id
    return session_id


def _machine() -> SessionStateMachine:
    return _components()["sessions"].get(_session_id())


def _detach(files: List[FileStorage]) -> List[FileStorage]:
    """把上傳檔案複製到記憶體，請求結束後仍可讀取。"""

    detached = []
    for uploaded in files:
        if uploaded is None or not (uploaded.filename or "").strip():
            continue
        detached.append(
            FileStorage(
                stream=BytesIO(uploaded.read()),
                filename=uploaded.filename,
                content_type=uploaded.content_type,
            )
        )
    return detached


@api_bp.errorhandler(StyleMixError)
def handle_stylemix_error(exc: StyleMixError):
    return jsonify({"error": str(exc), "error_kind": exc.kind}), exc.http_status


@api_bp.get("/health")
def health():
    gemini = _components()["gemini"]
    return jsonify({"status": "ok", "gemini": bool(getattr(gemini, "available", True))})


@api_bp.get("/state")
def get_state():
    # 沒有工作階段時回傳空白狀態，不建立新的狀態機
    machine = _components()["sessions"].find(session.get("stylemix_session_id"))
    if machine is None:
        machine = SessionStateMachine(_components()["orchestrator"])
    return jsonify(machine.snapshot())


@api_bp.post("/mode")
def set_mode():
    payload = request.get_json(silent=True) or {}
    machine = _machine()
    machine.set_mode(str(payload.get("mode", "")).strip())
    return jsonify(machine.snapshot())


@api_bp.post("/items")
def add_items():
    files = _detach(request.files.getlist("files"))
    if not files:
        return jsonify({"error": "No files were uploaded."}), 400
    machine = _machine()
    added = machine.add_items(files)
    log_event("info", "items_added", session_id=machine.session_id, count=len(added))
    return jsonify({"added": [item.to_dict() for item in added], "state": machine.snapshot()})


@api_bp.delete("/items/<path:item_id>")
def remove_item(item_id: str):
    machine = _machine()
    machine.remove_item(item_id)
    return jsonify(machine.snapshot())


@api_bp.post("/reference")
def set_reference():
    files = _detach(request.files.getlist("file"))
    machine = _machine()
    reference = machine.set_reference(files)
    if reference is None:
        return jsonify({"error": "No file was uploaded."}), 400
    return jsonify({"reference": reference.to_dict(), "state": machine.snapshot()})


@api_bp.delete("/reference")
def clear_reference():
    machine = _machine()
    machine.clear_reference()
    return jsonify(machine.snapshot())


@api_bp.post("/inputs")
def update_inputs():
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({"error": "Expected a JSON object."}), 400
    machine = _machine()
    machine.update_inputs(**payload)
    return jsonify(machine.snapshot())


@api_bp.post("/submit")
def submit():
    machine = _machine()
    accepted = machine.submit()
    snapshot = machine.snapshot()
    if not accepted:
        log_event("info", "submit_rejected", session_id=machine.session_id, mode=snapshot["mode"])
        return jsonify({"error": "A request is already in progress.", "state": snapshot}), 409

    state = machine.state
    if state.status is RequestStatus.FAILED:
        log_event(
            "warning",
            "submit_failed",
            session_id=machine.session_id,
            mode=snapshot["mode"],
            error_kind=state.error_kind,
            error=state.reason,
        )
        return jsonify({"error": state.reason, "state": snapshot}), _ERROR_STATUS.get(state.error_kind, 500)

    result = snapshot["result"] or {}
    log_event(
        "info",
        "submit_succeeded",
        session_id=machine.session_id,
        mode=snapshot["mode"],
        outcome="partial" if result.get("partial") else "success",
    )
    return jsonify(snapshot)


@api_bp.post("/reset")
def reset():
    payload = request.get_json(silent=True) or {}
    machine = _machine()
    machine.reset(payload.get("mode") or None)
    log_event("info", "session_reset", session_id=machine.session_id, mode=payload.get("mode"))
    return jsonify(machine.snapshot())


@api_bp.post("/zoom")
def zoom():
    payload = request.get_json(silent=True) or {}
    machine = _machine()
    if payload.get("open", True):
        if not machine.open_zoom():
            return jsonify({"error": "There is no image to zoom into yet."}), 404
    else:
        machine.close_zoom()
    return jsonify(machine.snapshot())


@api_bp.get("/result/image")
def result_image():
    result = _machine().result
    if result is None:
        return jsonify({"error": "No image has been generated yet."}), 404
    return Response(result.image.data, mimetype=result.image.media_type)


@api_bp.get("/result/download")
def download_result():
    machine = _machine()
    try:
        download = machine.download()
    except ValidationError as exc:
        return jsonify({"error": str(exc)}), 404
    log_event("info", "result_downloaded", session_id=machine.session_id, filename=download.filename)
    return send_file(
        BytesIO(download.data),
        mimetype=download.media_type,
        as_attachment=True,
        download_name=download.filename,
    )


@api_bp.get("/previews/<token>")
def preview(token: str):
    artifact = _machine().intake.previews.resolve(token)
    if artifact is None:
        return jsonify({"error": "Preview not found."}), 404
    return Response(artifact.data, mimetype=artifact.media_type)
