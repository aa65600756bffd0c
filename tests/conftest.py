"""
Shared fixtures: settings, the packaged sheet mapping, gviz-style table payloads
and an in-memory stand-in for the script web app.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from service.taskflow.config import DEFAULT_FAMILY_KEYWORDS, Settings
from service.taskflow.integrations.script_client import TableFetch
from service.taskflow.pipeline.state import TaskRecord
from service.taskflow.tools.mapping_tool import load_sheet_mapping


LABELS = [
    "Task No",
    "Serial No",
    "Machine Name",
    "Department",
    "Description",
    "Task Start Date",
    "Actual Date",
    "Task Status",
    "Remarks",
    "Doer Name",
    "Require Attachment",
    "Maintenance Cost",
]


def make_table(rows: List[Dict[str, Any]], labels: Optional[List[str]] = None, success: Any = True) -> Dict[str, Any]:
    """[{label: value}] -> {"success": .., "table": {"cols": [...], "rows": [{"c": [{"v": ..}]}]}}"""
    labels = labels or LABELS
    return {
        "success": success,
        "table": {
            "cols": [{"label": lb} for lb in labels],
            "rows": [{"c": [{"v": r.get(lb)} for lb in labels]} for r in rows],
        },
    }


def task_row(task_no: str, machine: str, doer: str = "ravi", *, serial: str = "", done: str = "", **extra: Any) -> Dict[str, Any]:
    row = {
        "Task No": task_no,
        "Serial No": serial or f"SN-{task_no}",
        "Machine Name": machine,
        "Department": "Rolling",
        "Description": f"check {machine}",
        "Task Start Date": "2024-03-01",
        "Actual Date": done,
        "Task Status": "",
        "Remarks": "",
        "Doer Name": doer,
        "Require Attachment": "No",
        "Maintenance Cost": "",
    }
    row.update(extra)
    return row


def record(task_no: str, machine: str = "Pump A", **kw: Any) -> TaskRecord:
    return TaskRecord(task_no=task_no, machine_name=machine, **kw)


class FakeScriptClient:
    """
    Serves `rows` split into task tables the way the spreadsheet does: a read of a
    table only returns rows whose Task No prefix belongs to it. Writes are
    MagicMocks so tests can assert on the exact form fields that would be posted.
    """

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows = list(rows or [])
        self.unreadable = False
        self.queries: List[Any] = []
        self.post_update = MagicMock(return_value={"success": True})
        self.upload_file = MagicMock(return_value={"success": True, "fileUrl": "https://drive.example/f/1"})
        self.close = MagicMock()
        self._mapping = load_sheet_mapping()

    def rows_of(self, sheet_name: str) -> List[Dict[str, Any]]:
        return [r for r in self.rows if self._mapping.sheet_for(r.get("Task No", "")) == sheet_name]

    @property
    def sheets_read(self) -> List[str]:
        return [q.sheet_name for q in self.queries]

    def fetch_table(self, q):
        self.queries.append(q)
        if self.unreadable:
            return TableFetch(payload=None, source="none", errors=["primary: boom", "fallback: boom"])
        return TableFetch(payload=make_table(self.rows_of(q.sheet_name)), source="primary")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        script_url="https://script.example/macros/s/abc/exec",
        sheet_id="sheet-123",
        upload_folder_id="folder-9",
        http_timeout=5,
        page_size=1000,
        completion_timezone="UTC",
        family_keywords=DEFAULT_FAMILY_KEYWORDS,
    )


@pytest.fixture
def mapping():
    return load_sheet_mapping()


@pytest.fixture
def fake_client() -> FakeScriptClient:
    return FakeScriptClient()
