from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from ..pipeline.state import TaskRecord


@dataclass
class Partition:
    active: List[TaskRecord]
    completed: List[TaskRecord]
    progress_percent: int


def progress_percent(active_count: int, completed_count: int) -> int:
    total = active_count + completed_count
    if total <= 0:
        return 0
    return (completed_count * 100) // total


def partition(group: Sequence[TaskRecord]) -> Partition:
    """Completed iff Actual Date is non-blank. Always rebuilt from the full group."""
    active = [r for r in group if not r.is_done]
    completed = [r for r in group if r.is_done]
    return Partition(
        active=active,
        completed=completed,
        progress_percent=progress_percent(len(active), len(completed)),
    )


# gviz JSON encodes dates as "Date(2024,2,22)" with a zero-based month
_GVIZ_DATE = re.compile(r"^Date\((\d{4}),\s*(\d{1,2}),\s*(\d{1,2})")
_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%m/%d/%Y")


def parse_sheet_date(raw: str) -> Optional[date]:
    s = (raw or "").strip()
    if not s:
        return None

    m = _GVIZ_DATE.match(s)
    if m:
        y, mo, d = (int(x) for x in m.groups())
        try:
            return date(y, mo + 1, d)
        except ValueError:
            return None

    head = s.split("T", 1)[0].split(" ", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(head, fmt).date()
        except ValueError:
            continue
    return None


@dataclass
class DueBuckets:
    today: List[str] = field(default_factory=list)
    upcoming: List[str] = field(default_factory=list)
    overdue: List[str] = field(default_factory=list)
    undated: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, List[str]]:
        return {
            "today": list(self.today),
            "upcoming": list(self.upcoming),
            "overdue": list(self.overdue),
            "undated": list(self.undated),
        }


def due_buckets(active: Sequence[TaskRecord], today: date) -> DueBuckets:
    """Task numbers of open work split by Task Start Date relative to today."""
    out = DueBuckets()
    for r in active:
        d = parse_sheet_date(r.task_start_date)
        if d is None:
            out.undated.append(r.task_no)
        elif d == today:
            out.today.append(r.task_no)
        elif d > today:
            out.upcoming.append(r.task_no)
        else:
            out.overdue.append(r.task_no)
    return out


def _to_number(raw: str) -> float:
    s = (raw or "").replace(",", "").strip()
    try:
        return float(s)
    except ValueError:
        return 0.0


def total_cost(completed: Sequence[TaskRecord]) -> float:
    return sum(_to_number(r.cost) for r in completed)
