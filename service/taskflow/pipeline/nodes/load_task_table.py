from __future__ import annotations

import logging
from typing import Any, Dict, List

from ...config import Settings
from ...integrations.script_client import TableFetch, TableQuery
from ...tools.table_tool import normalize

logger = logging.getLogger("taskflow.nodes.load_task_table")


def _candidate_sheets(state: Dict[str, Any]) -> List[str]:
    """
    Task No prefix picks the table. A serial-only anchor carries no prefix,
    so every task table is a candidate.
    """
    if state.get("sheet_name"):
        return [state["sheet_name"]]
    mapping = state["mapping"]
    task_no = (state["anchor"].task_no or "").strip()
    if task_no:
        return [mapping.sheet_for(task_no)]
    return mapping.sheet_names()


def _holds_anchor(fetched: TableFetch, state: Dict[str, Any]) -> bool:
    anchor = state["anchor"]
    records = normalize(fetched.payload, state["mapping"].task_columns())
    return any(anchor.matches(r) for r in records)


def load_task_table(settings: Settings, state: Dict[str, Any]) -> Dict[str, Any]:
    client = state["client"]
    role_ctx = state["role_ctx"]
    logs = state.setdefault("logs", [])

    sheets = _candidate_sheets(state)
    errors: List[str] = []
    chosen = None
    first = None

    for sheet_name in sheets:
        q = TableQuery(
            sheet_name=sheet_name,
            user_role=role_ctx.role or "",
            username=role_ctx.username or "",
            page_size=settings.page_size,
        )
        fetched = client.fetch_table(q)
        errors.extend(fetched.errors)

        if fetched.empty:
            logger.warning("no usable table for sheet=%s (%s)", sheet_name, "; ".join(fetched.errors))
            continue
        if first is None:
            first = (sheet_name, fetched)
        if len(sheets) == 1 or _holds_anchor(fetched, state):
            chosen = (sheet_name, fetched)
            break

    if chosen is None:
        # anchor in no table: keep the first readable one so grouping reports not_found
        chosen = first

    state["fetch_error"] = "; ".join(errors)

    if chosen is None:
        state["sheet_name"] = sheets[0] if sheets else ""
        state["table_payload"] = None
        state["table_source"] = "none"
        logs.append(f"Table '{', '.join(sheets)}' unreadable; degrading to empty view")
        return state

    sheet_name, fetched = chosen
    state["sheet_name"] = sheet_name
    state["table_payload"] = fetched.payload
    state["table_source"] = fetched.source
    logs.append(f"Loaded table '{sheet_name}' via {fetched.source} query")
    return state
