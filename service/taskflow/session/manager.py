# service/taskflow/session/manager.py
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from ..config import Settings
from ..errors import TaskNotFound, UploadError
from ..integrations.script_client import ScriptClient
from ..logctx import bind_session_id
from ..pipeline.graph import run_reconcile_graph
from ..pipeline.nodes.writeback import SubmitAck, build_update_payload, completion_date, submit_update
from ..pipeline.state import AnchorKey, ReconciledView, RoleContext, TaskRecord
from ..tools.mapping_tool import SheetMapping, load_sheet_mapping
from ..tools.upload_tool import Attachment, AttachmentUploader
from .forms import SubmissionEntry, TaskForms

logger = logging.getLogger("taskflow.session")

UPLOAD_REQUIRED_MESSAGE = "Attachment is required for this task but the upload failed"


@dataclass
class SubmitOutcome:
    ok: bool
    error: str = ""
    view: Optional[ReconciledView] = None


class TaskSession:
    """
    State of one task-details screen: the anchor, the role it was opened with,
    the last applied view and the per-task edit buffers.

    Every reconcile() takes a new generation; only the newest generation started
    may replace the view, and nothing is applied after close().
    """

    def __init__(
        self,
        settings: Settings,
        *,
        role_ctx: RoleContext,
        anchor: AnchorKey,
        client: Optional[ScriptClient] = None,
        mapping: Optional[SheetMapping] = None,
        session_id: Optional[str] = None,
    ):
        self.settings = settings
        self.session_id = session_id or uuid4().hex
        self.role_ctx = role_ctx
        self.client = client or ScriptClient(settings)
        self.mapping = mapping or load_sheet_mapping(settings.mapping_path)
        self.uploader = AttachmentUploader(settings, self.client)
        self.forms = TaskForms()

        self._lock = threading.Lock()
        self._anchor = anchor
        self._generation = 0
        self._view = ReconciledView.empty_of("pending")
        self._closed = False

    # ---------- View ----------

    @property
    def anchor(self) -> AnchorKey:
        return self._anchor

    @property
    def view(self) -> ReconciledView:
        with self._lock:
            return self._view

    @property
    def closed(self) -> bool:
        return self._closed

    def reconcile(self) -> ReconciledView:
        with self._lock:
            if self._closed:
                return self._view
            self._generation += 1
            gen = self._generation
            anchor = self._anchor

        with bind_session_id(self.session_id):
            view = run_reconcile_graph(
                self.settings,
                anchor=anchor,
                role_ctx=self.role_ctx,
                client=self.client,
                mapping=self.mapping,
            )
            view.generation = gen
            return self._apply(view)

    def _apply(self, view: ReconciledView) -> ReconciledView:
        with self._lock:
            if self._closed:
                logger.info("session closed; dropping view generation=%d", view.generation)
                return self._view
            if view.generation != self._generation:
                logger.info("stale view generation=%d (latest=%d); dropped", view.generation, self._generation)
                return self._view
            self._view = view
            # only the applied generation may prune forms
            if view.status in ("ok", "not_found"):
                self.forms.sync(view.active)
        return view

    def set_anchor(self, anchor: AnchorKey) -> ReconciledView:
        with self._lock:
            self._anchor = anchor
        return self.reconcile()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.client.close()
        logger.info("session %s closed", self.session_id)

    # ---------- Form edits ----------

    def _active_record(self, task_no: str) -> TaskRecord:
        rec = self.view.find_active(task_no)
        if rec is None:
            raise TaskNotFound(f"task {task_no} is not an active task in this view")
        return rec

    def check(self, task_no: str) -> SubmissionEntry:
        return self.forms.check(self._active_record(task_no))

    def uncheck(self, task_no: str) -> None:
        self.forms.uncheck(task_no)

    def update(self, task_no: str, **changes: Any) -> SubmissionEntry:
        return self.forms.update(self._active_record(task_no), **changes)

    def attach(self, task_no: str, attachment: Optional[Attachment]) -> SubmissionEntry:
        return self.forms.attach(self._active_record(task_no), attachment)

    def form_states(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        entries = self.forms.entries()
        for rec in self.view.active:
            e = entries.get(rec.task_no)
            d = e.to_dict() if e else {"task_no": rec.task_no, "checked": False}
            d["state"] = self.forms.state_of(rec).value
            out[rec.task_no] = d
        return out

    # ---------- Submission ----------

    def submit(self, task_no: str) -> SubmitOutcome:
        """
        Upload (if any) -> partial update -> full reconciliation on success.
        A failed submit keeps the edit buffer so the user can retry.
        """
        rec = self._active_record(task_no)
        entry = self.forms.begin_submit(rec)

        ack = SubmitAck(ok=False)
        with bind_session_id(self.session_id):
            try:
                url = ""
                if entry.attachment is not None:
                    url = self.uploader.upload(entry.attachment)
                if rec.requires_attachment and not url:
                    raise UploadError(UPLOAD_REQUIRED_MESSAGE)

                payload = build_update_payload(
                    self.settings,
                    self.mapping,
                    task_no,
                    entry,
                    today=completion_date(self.settings),
                    upload_url=url,
                    attachment=entry.attachment,
                )
                ack = submit_update(self.client, payload)
            except UploadError as e:
                logger.warning("submit blocked task_no=%s: %s", task_no, e)
                ack = SubmitAck(ok=False, error=str(e))
            finally:
                self.forms.finish_submit(task_no, success=ack.ok)

        if not ack.ok:
            return SubmitOutcome(ok=False, error=ack.error, view=self.view)

        return SubmitOutcome(ok=True, view=self.reconcile())


class SessionStore:
    """
    In-process registry of open task sessions.

    Sessions untouched for idle_seconds are closed on the next add/get, and when
    more than max_sessions are open the least recently used ones are closed.
    """

    def __init__(
        self,
        *,
        idle_seconds: float = 1800,
        max_sessions: int = 200,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_seconds = idle_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: OrderedDict[str, TaskSession] = OrderedDict()
        self._last_used: Dict[str, float] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _evict_locked(self, now: float) -> List[TaskSession]:
        out: List[TaskSession] = []
        if self.idle_seconds > 0:
            for sid in list(self._sessions):
                if now - self._last_used[sid] >= self.idle_seconds:
                    out.append(self._sessions.pop(sid))
                    del self._last_used[sid]
        while self.max_sessions > 0 and len(self._sessions) > self.max_sessions:
            sid, s = self._sessions.popitem(last=False)
            del self._last_used[sid]
            out.append(s)
        return out

    def _close_evicted(self, sessions: List[TaskSession]) -> None:
        for s in sessions:
            logger.info("evicting idle session %s", s.session_id)
            s.close()

    def add(self, session: TaskSession) -> TaskSession:
        now = self._clock()
        with self._lock:
            self._sessions[session.session_id] = session
            self._sessions.move_to_end(session.session_id)
            self._last_used[session.session_id] = now
            evicted = self._evict_locked(now)
        self._close_evicted(evicted)
        return session

    def get(self, session_id: str) -> Optional[TaskSession]:
        now = self._clock()
        with self._lock:
            evicted = self._evict_locked(now)
            s = self._sessions.get(session_id)
            if s is not None:
                self._sessions.move_to_end(session_id)
                self._last_used[session_id] = now
        self._close_evicted(evicted)
        return s

    def close(self, session_id: str) -> bool:
        with self._lock:
            s = self._sessions.pop(session_id, None)
            self._last_used.pop(session_id, None)
        if s is None:
            return False
        s.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._last_used.clear()
        for s in sessions:
            s.close()
