from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from ...config import Settings
from ...errors import SchemaError, TransportError
from ...integrations.script_client import ScriptClient, _truthy
from ...session.forms import SubmissionEntry
from ...tools.mapping_tool import SheetMapping
from ...tools.upload_tool import Attachment

logger = logging.getLogger("taskflow.writeback")

GENERIC_FAILURE = "Failed to update task"
GENERIC_ERROR = "Error updating task"


def completion_date(settings: Settings, now: Optional[datetime] = None) -> str:
    """Today as YYYY-MM-DD in the configured completion timezone."""
    tz = ZoneInfo(settings.completion_timezone or "UTC")
    ts = now.astimezone(tz) if now is not None else datetime.now(tz)
    return ts.date().isoformat()


def build_update_payload(
    settings: Settings,
    mapping: SheetMapping,
    task_no: str,
    entry: SubmissionEntry,
    *,
    today: str,
    upload_url: str = "",
    attachment: Optional[Attachment] = None,
) -> Dict[str, Any]:
    """
    Partial update for one task. Only the form's fields are sent;
    Actual Date is added only when the outcome is "Yes".
    """
    cols = mapping.update_columns()
    family = mapping.family_for(task_no)

    payload: Dict[str, Any] = {
        "sheetId": settings.sheet_id,
        "sheetName": mapping.sheet_for(task_no),
        "action": "update",
        "taskNo": task_no,
        cols["task_status"]: entry.status,
        cols["remarks"]: entry.remarks or "",
        mapping.cost_column(family): entry.cost or "",
        cols["sound_status"]: entry.sound_status or "",
        cols["temperature"]: entry.temperature or "",
    }

    if upload_url:
        payload[cols["image_link"]] = upload_url
        payload[cols["file_name"]] = attachment.file_name if attachment else ""
        payload[cols["file_type"]] = attachment.extension if attachment else ""

    if entry.status == "Yes":
        payload[cols["actual_date"]] = today

    return payload


@dataclass
class SubmitAck:
    ok: bool
    error: str = ""


def submit_update(client: ScriptClient, payload: Dict[str, Any]) -> SubmitAck:
    task_no = payload.get("taskNo", "")
    try:
        data = client.post_update(payload)
    except (TransportError, SchemaError) as e:
        logger.warning("update failed task_no=%s: %s", task_no, e)
        return SubmitAck(ok=False, error=GENERIC_ERROR)

    if _truthy(data.get("success")):
        logger.info("updated task_no=%s sheet=%s", task_no, payload.get("sheetName"))
        return SubmitAck(ok=True)

    msg = str(data.get("error") or "").strip() or GENERIC_FAILURE
    logger.warning("update rejected task_no=%s: %s", task_no, msg)
    return SubmitAck(ok=False, error=msg)
