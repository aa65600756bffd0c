# service/taskflow/routers/tasks.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from fastapi import APIRouter, File, HTTPException, Request, UploadFile

from ..config import Settings
from ..errors import (
    FormStateError,
    FormValidationError,
    SubmissionInFlight,
    TaskflowError,
    TaskNotFound,
)
from ..integrations.script_client import ScriptClient
from ..pipeline.state import AnchorKey, RoleContext
from ..schemas.tasks import AnchorUpdate, EntryUpdate, SessionCreate
from ..session.manager import SessionStore, TaskSession
from ..tools.search_tool import ACTIVE_SEARCH_FIELDS, HISTORY_SEARCH_FIELDS, paginate, search_records
from ..tools.upload_tool import Attachment

logger = logging.getLogger("taskflow.routers.tasks")

router = APIRouter(prefix="/task-sessions", tags=["tasks"])


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore


def _get_store(request: Request) -> SessionStore:
    return request.app.state.sessions  # type: ignore


def _client_factory(request: Request) -> Callable[[Settings], ScriptClient]:
    return getattr(request.app.state, "client_factory", None) or ScriptClient


def _session_or_404(request: Request, sid: str) -> TaskSession:
    s = _get_store(request).get(sid)
    if s is None:
        raise HTTPException(status_code=404, detail=f"Unknown task session: {sid}")
    return s


def _require_anchor(serial_no: str, task_no: str) -> AnchorKey:
    anchor = AnchorKey(serial_no=(serial_no or "").strip(), task_no=(task_no or "").strip())
    if not anchor.serial_no and not anchor.task_no:
        raise HTTPException(status_code=400, detail="Missing serial_no/task_no")
    return anchor


def _raise_http(e: TaskflowError) -> None:
    if isinstance(e, TaskNotFound):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (FormStateError, SubmissionInFlight)):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, FormValidationError):
        raise HTTPException(status_code=422, detail=str(e))
    raise HTTPException(status_code=500, detail=str(e))


def _view_payload(s: TaskSession, *, q: str = "", page: int = 1, page_size: int = 0) -> Dict[str, Any]:
    view = s.view
    out = view.to_dict()

    active = search_records(view.active, q, ACTIVE_SEARCH_FIELDS)
    completed = search_records(view.completed, q, HISTORY_SEARCH_FIELDS)
    items, pages = paginate(active, page, page_size)

    out["active"] = [r.to_dict() for r in items]
    out["completed"] = [r.to_dict() for r in completed]
    out["active_total"] = len(active)
    out["pages"] = pages
    out["forms"] = s.form_states()
    return {"ok": True, "session_id": s.session_id, "view": out}


@router.post("")
def create_session(request: Request, body: SessionCreate) -> Dict[str, Any]:
    settings = _get_settings(request)
    anchor = _require_anchor(body.serial_no, body.task_no)

    s = TaskSession(
        settings,
        role_ctx=RoleContext(role=body.role, username=body.username),
        anchor=anchor,
        client=_client_factory(request)(settings),
    )
    _get_store(request).add(s)
    logger.info("opened session=%s role=%s anchor=%s/%s", s.session_id, body.role, anchor.serial_no, anchor.task_no)

    s.reconcile()
    return _view_payload(s)


@router.get("/{sid}")
def get_session(request: Request, sid: str, q: str = "", page: int = 1, page_size: int = 0) -> Dict[str, Any]:
    return _view_payload(_session_or_404(request, sid), q=q, page=page, page_size=page_size)


@router.post("/{sid}/refresh")
def refresh_session(request: Request, sid: str) -> Dict[str, Any]:
    s = _session_or_404(request, sid)
    s.reconcile()
    return _view_payload(s)


@router.put("/{sid}/anchor")
def move_anchor(request: Request, sid: str, body: AnchorUpdate) -> Dict[str, Any]:
    s = _session_or_404(request, sid)
    s.set_anchor(_require_anchor(body.serial_no, body.task_no))
    return _view_payload(s)


@router.delete("/{sid}")
def close_session(request: Request, sid: str) -> Dict[str, Any]:
    if not _get_store(request).close(sid):
        raise HTTPException(status_code=404, detail=f"Unknown task session: {sid}")
    return {"ok": True, "session_id": sid, "closed": True}


@router.post("/{sid}/tasks/{task_no}/check")
def check_task(request: Request, sid: str, task_no: str) -> Dict[str, Any]:
    s = _session_or_404(request, sid)
    try:
        entry = s.check(task_no)
    except TaskflowError as e:
        _raise_http(e)
    return {"ok": True, "entry": entry.to_dict()}


@router.delete("/{sid}/tasks/{task_no}/check")
def uncheck_task(request: Request, sid: str, task_no: str) -> Dict[str, Any]:
    s = _session_or_404(request, sid)
    try:
        s.uncheck(task_no)
    except TaskflowError as e:
        _raise_http(e)
    return {"ok": True, "task_no": task_no, "checked": False}


@router.patch("/{sid}/tasks/{task_no}")
def edit_task(request: Request, sid: str, task_no: str, body: EntryUpdate) -> Dict[str, Any]:
    s = _session_or_404(request, sid)
    changes = body.model_dump(exclude_none=True)
    try:
        entry = s.update(task_no, **changes)
    except TaskflowError as e:
        _raise_http(e)
    return {"ok": True, "entry": entry.to_dict()}


@router.put("/{sid}/tasks/{task_no}/attachment")
async def attach_file(request: Request, sid: str, task_no: str, file: UploadFile = File(...)) -> Dict[str, Any]:
    s = _session_or_404(request, sid)
    data = await file.read()
    att = Attachment.from_bytes(file.filename or "attachment", data, file.content_type)
    try:
        entry = s.attach(task_no, att)
    except TaskflowError as e:
        _raise_http(e)
    return {"ok": True, "entry": entry.to_dict()}


@router.delete("/{sid}/tasks/{task_no}/attachment")
def detach_file(request: Request, sid: str, task_no: str) -> Dict[str, Any]:
    s = _session_or_404(request, sid)
    try:
        entry = s.attach(task_no, None)
    except TaskflowError as e:
        _raise_http(e)
    return {"ok": True, "entry": entry.to_dict()}


@router.post("/{sid}/tasks/{task_no}/submit")
def submit_task(request: Request, sid: str, task_no: str) -> Dict[str, Any]:
    s = _session_or_404(request, sid)
    try:
        outcome = s.submit(task_no)
    except TaskflowError as e:
        _raise_http(e)

    if not outcome.ok:
        return {"ok": False, "error": outcome.error, "task_no": task_no}

    payload = _view_payload(s)
    payload["task_no"] = task_no
    return payload
