from __future__ import annotations

from typing import Any, Dict

from ...config import Settings
from ...tools.partition_tool import due_buckets, partition, total_cost


def partition_status(settings: Settings, state: Dict[str, Any]) -> Dict[str, Any]:
    part = partition(state.get("group") or [])

    state["active"] = part.active
    state["completed"] = part.completed
    state["progress_percent"] = part.progress_percent
    state["due_buckets"] = due_buckets(part.active, state["today"]).as_dict()
    state["total_cost"] = total_cost(part.completed)

    (state.get("logs") or []).append(
        f"Active={len(part.active)} completed={len(part.completed)} progress={part.progress_percent}%"
    )
    return state
