from __future__ import annotations

from typing import Any, Dict

from ...config import Settings
from ...tools.table_tool import normalize


def normalize_rows(settings: Settings, state: Dict[str, Any]) -> Dict[str, Any]:
    mapping = state["mapping"]
    records = normalize(state.get("table_payload"), mapping.task_columns())
    state["records"] = records
    (state.get("logs") or []).append(f"Normalized {len(records)} task rows")
    return state
