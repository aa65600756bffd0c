# service/taskflow/pipeline/state.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, TypedDict

from ..tools.table_tool import _key


_COST_FIELDS = ("maintenance_cost", "repair_cost")


@dataclass
class TaskRecord:
    task_no: str = ""
    serial_no: str = ""
    machine_name: str = ""
    department: str = ""
    description: str = ""
    task_start_date: str = ""
    actual_date: str = ""
    task_status: str = ""
    remarks: str = ""
    doer_name: str = ""
    require_attachment: str = ""
    task_type: str = ""
    given_by: str = ""
    need_sound_test: str = ""
    temperature: str = ""
    cost: str = ""
    image_link: str = ""

    # columns the mapping does not name (label -> value)
    extra: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, str], columns: Dict[str, str]) -> "TaskRecord":
        """
        row: label -> value as produced by the table normalizer
        columns: field -> label from the sheet mapping
        """
        by_key = {_key(label): name for name, label in columns.items()}
        known = {f.name for f in fields(cls)}

        values: Dict[str, str] = {}
        extra: Dict[str, str] = {}
        for label, value in row.items():
            name = by_key.get(_key(label))
            if name in _COST_FIELDS:
                if value and not values.get("cost"):
                    values["cost"] = value
                continue
            if name and name in known and name != "extra":
                values[name] = value
            else:
                extra[label] = value
        return cls(extra=extra, **values)

    @property
    def is_done(self) -> bool:
        return bool((self.actual_date or "").strip())

    @property
    def requires_attachment(self) -> bool:
        return (self.require_attachment or "").strip() == "Yes"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RoleContext:
    role: str = ""
    username: str = ""

    @property
    def normalized_role(self) -> str:
        return (self.role or "").strip().lower()

    @property
    def is_admin(self) -> bool:
        return self.normalized_role == "admin"


@dataclass(frozen=True)
class AnchorKey:
    serial_no: str = ""
    task_no: str = ""

    def matches(self, rec: TaskRecord) -> bool:
        s = (self.serial_no or "").strip()
        t = (self.task_no or "").strip()
        if s and rec.serial_no == s:
            return True
        if t and rec.task_no == t:
            return True
        return False


class ReconcileState(TypedDict, total=False):
    # Inputs
    sheet_name: str
    anchor: AnchorKey
    role_ctx: RoleContext
    logs: List[str]

    # Fetch
    table_payload: Optional[Dict[str, Any]]
    table_source: str
    fetch_error: str

    # Normalize / filter
    records: List[TaskRecord]
    visible: List[TaskRecord]
    degraded_auth: bool

    # Group
    anchor_record: Optional[TaskRecord]
    group: List[TaskRecord]
    not_found: bool

    # Partition
    active: List[TaskRecord]
    completed: List[TaskRecord]
    progress_percent: int
    due_buckets: Dict[str, List[str]]
    total_cost: float

    # Runtime collaborators (set by the graph, not serialised)
    client: Any
    mapping: Any
    today: Any


@dataclass
class ReconciledView:
    """
    Full snapshot produced by one reconciliation pass.
    status: ok | empty (remote unreadable) | not_found (no anchor) | error
    """

    status: str
    active: List[TaskRecord] = field(default_factory=list)
    completed: List[TaskRecord] = field(default_factory=list)
    progress_percent: int = 0

    machine_name: str = ""
    matched_machines: List[str] = field(default_factory=list)
    serial_numbers: List[str] = field(default_factory=list)
    due_buckets: Dict[str, List[str]] = field(default_factory=dict)
    total_cost: float = 0.0

    degraded_auth: bool = False
    table_source: str = ""
    error: str = ""
    generation: int = 0
    logs: List[str] = field(default_factory=list)

    @classmethod
    def empty_of(cls, status: str, *, error: str = "", logs: Optional[List[str]] = None) -> "ReconciledView":
        return cls(status=status, error=error, logs=list(logs or []))

    def find_active(self, task_no: str) -> Optional[TaskRecord]:
        for r in self.active:
            if r.task_no == task_no:
                return r
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "active": [r.to_dict() for r in self.active],
            "completed": [r.to_dict() for r in self.completed],
            "progress_percent": self.progress_percent,
            "machine_name": self.machine_name,
            "matched_machines": list(self.matched_machines),
            "serial_numbers": list(self.serial_numbers),
            "due_buckets": {k: list(v) for k, v in self.due_buckets.items()},
            "total_cost": self.total_cost,
            "degraded_auth": self.degraded_auth,
            "table_source": self.table_source,
            "error": self.error,
            "generation": self.generation,
        }
