from __future__ import annotations

import logging
from typing import Any, Dict

from ...config import Settings
from ...tools.visibility_tool import filter_visible

logger = logging.getLogger("taskflow.nodes.filter_visibility")


def filter_visibility(settings: Settings, state: Dict[str, Any]) -> Dict[str, Any]:
    role_ctx = state["role_ctx"]
    records = state.get("records") or []

    res = filter_visible(records, role_ctx)
    state["visible"] = res.records
    state["degraded_auth"] = res.degraded

    if res.degraded:
        # fail-open for unrecognised roles
        logger.warning(
            "unrecognised role=%r for username=%r; showing all %d records",
            role_ctx.role, role_ctx.username, len(res.records),
        )
    (state.get("logs") or []).append(f"Visibility: {len(records)} -> {len(res.records)} records")
    return state
