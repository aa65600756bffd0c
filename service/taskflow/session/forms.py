# service/taskflow/session/forms.py
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from ..errors import FormStateError, FormValidationError, SubmissionInFlight
from ..pipeline.state import TaskRecord
from ..tools.upload_tool import Attachment

ALLOWED_STATUSES = ("", "Yes", "No")
EDITABLE_FIELDS = ("status", "remarks", "cost", "sound_status", "temperature")


class FormState(str, Enum):
    UNCHECKED = "unchecked"
    INCOMPLETE = "incomplete"
    READY = "ready"
    SUBMITTING = "submitting"


def submit_ready(checked: bool, status: str, require_attachment: str, has_attachment: bool) -> bool:
    """The one submit-enablement rule."""
    if not checked:
        return False
    if status not in ("Yes", "No"):
        return False
    return (require_attachment or "").strip() != "Yes" or has_attachment


@dataclass
class SubmissionEntry:
    task_no: str
    checked: bool = True
    status: str = ""
    remarks: str = ""
    attachment: Optional[Attachment] = None
    cost: str = ""
    sound_status: str = ""
    temperature: str = ""
    submitting: bool = False

    def clear(self) -> None:
        self.checked = False
        self.status = ""
        self.remarks = ""
        self.attachment = None
        self.cost = ""
        self.sound_status = ""
        self.temperature = ""
        self.submitting = False

    def to_dict(self) -> Dict[str, Any]:
        att = self.attachment
        return {
            "task_no": self.task_no,
            "checked": self.checked,
            "status": self.status,
            "remarks": self.remarks,
            "cost": self.cost,
            "sound_status": self.sound_status,
            "temperature": self.temperature,
            "submitting": self.submitting,
            "attachment": {"file_name": att.file_name, "mime_type": att.mime_type, "size": len(att.data)} if att else None,
        }


class TaskForms:
    """
    Transient edit buffers for the active tasks of one session, keyed by task_no.

    unchecked -> (check) -> incomplete <-> ready -> (begin_submit) -> submitting
    A successful submit removes the entry; a failed one leaves it for retry.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, SubmissionEntry] = {}
        self._lock = threading.RLock()

    # ---------- Reads ----------

    def entry(self, task_no: str) -> Optional[SubmissionEntry]:
        with self._lock:
            e = self._entries.get(task_no)
            return replace(e) if e else None

    def entries(self) -> Dict[str, SubmissionEntry]:
        with self._lock:
            return {k: replace(v) for k, v in self._entries.items()}

    def state_of(self, rec: TaskRecord) -> FormState:
        with self._lock:
            e = self._entries.get(rec.task_no)
            if e is None or not e.checked:
                return FormState.UNCHECKED
            if e.submitting:
                return FormState.SUBMITTING
            if submit_ready(e.checked, e.status, rec.require_attachment, e.attachment is not None):
                return FormState.READY
            return FormState.INCOMPLETE

    def is_ready(self, rec: TaskRecord) -> bool:
        return self.state_of(rec) == FormState.READY

    # ---------- Edits ----------

    def _editable(self, rec: TaskRecord) -> SubmissionEntry:
        e = self._entries.get(rec.task_no)
        if e is None or not e.checked:
            raise FormStateError(f"task {rec.task_no} is not checked")
        if e.submitting:
            raise FormStateError(f"task {rec.task_no} is being submitted")
        if rec.is_done:
            raise FormStateError(f"task {rec.task_no} is already completed")
        return e

    def check(self, rec: TaskRecord) -> SubmissionEntry:
        if rec.is_done:
            raise FormStateError(f"task {rec.task_no} is already completed")
        with self._lock:
            e = self._entries.get(rec.task_no)
            if e is not None and e.checked:
                return replace(e)
            e = SubmissionEntry(
                task_no=rec.task_no,
                checked=True,
                status=rec.task_status if rec.task_status in ALLOWED_STATUSES else "",
                remarks=rec.remarks or "",
            )
            self._entries[rec.task_no] = e
            return replace(e)

    def uncheck(self, task_no: str) -> None:
        with self._lock:
            e = self._entries.get(task_no)
            if e is None:
                return
            if e.submitting:
                raise FormStateError(f"task {task_no} is being submitted")
            del self._entries[task_no]

    def update(self, rec: TaskRecord, **changes: Any) -> SubmissionEntry:
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise FormStateError(f"not editable: {sorted(unknown)}")
        if "status" in changes and changes["status"] not in ALLOWED_STATUSES:
            raise FormStateError(f"status must be one of {ALLOWED_STATUSES}, got {changes['status']!r}")

        with self._lock:
            e = self._editable(rec)
            for name, value in changes.items():
                setattr(e, name, "" if value is None else str(value))
            return replace(e)

    def attach(self, rec: TaskRecord, attachment: Optional[Attachment]) -> SubmissionEntry:
        with self._lock:
            e = self._editable(rec)
            e.attachment = attachment
            return replace(e)

    # ---------- Submission ----------

    def begin_submit(self, rec: TaskRecord) -> SubmissionEntry:
        """Marks the task in flight and returns a snapshot of what to send."""
        with self._lock:
            e = self._entries.get(rec.task_no)
            if e is not None and e.submitting:
                raise SubmissionInFlight(f"task {rec.task_no} already has a submission in flight")
            if rec.is_done or e is None:
                raise FormValidationError(f"task {rec.task_no} is not ready to submit")
            if not submit_ready(e.checked, e.status, rec.require_attachment, e.attachment is not None):
                raise FormValidationError(f"task {rec.task_no} is not ready to submit")
            e.submitting = True
            return replace(e)

    def finish_submit(self, task_no: str, *, success: bool) -> None:
        with self._lock:
            e = self._entries.get(task_no)
            if e is None:
                return
            if success:
                e.clear()
                del self._entries[task_no]
            else:
                e.submitting = False

    # ---------- Reconciliation ----------

    def sync(self, active: Iterable[TaskRecord]) -> None:
        """Drops buffers of tasks that are no longer active (completed or gone)."""
        keep = {r.task_no for r in active}
        with self._lock:
            for task_no in list(self._entries):
                e = self._entries[task_no]
                if task_no not in keep and not e.submitting:
                    del self._entries[task_no]
