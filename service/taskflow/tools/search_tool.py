from __future__ import annotations

from typing import List, Sequence, Tuple

from ..pipeline.state import TaskRecord

ACTIVE_SEARCH_FIELDS = ("task_no", "description", "department", "task_status")
HISTORY_SEARCH_FIELDS = ("task_no", "description", "remarks", "doer_name")


def search_records(records: Sequence[TaskRecord], query: str, fields: Sequence[str]) -> List[TaskRecord]:
    q = (query or "").strip().lower()
    if not q:
        return list(records)
    return [r for r in records if any(q in (getattr(r, f, "") or "").lower() for f in fields)]


def paginate(records: Sequence[TaskRecord], page: int, page_size: int) -> Tuple[List[TaskRecord], int]:
    """Returns (page items, total pages). page_size <= 0 means everything on one page."""
    items = list(records)
    if page_size <= 0:
        return items, 1 if items else 0
    pages = (len(items) + page_size - 1) // page_size
    page = max(1, page)
    start = (page - 1) * page_size
    return items[start : start + page_size], pages
