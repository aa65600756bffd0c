from __future__ import annotations

import logging
from typing import Any, Dict

from ...config import Settings
from ...errors import TaskNotFound
from ...tools.grouping_tool import resolve_group

logger = logging.getLogger("taskflow.nodes.group_machine")


def group_machine(settings: Settings, state: Dict[str, Any]) -> Dict[str, Any]:
    anchor = state["anchor"]
    visible = state.get("visible") or []

    try:
        res = resolve_group(visible, anchor, state["role_ctx"], keywords=settings.family_keywords)
    except TaskNotFound as e:
        logger.warning("%s", e)
        state["not_found"] = True
        state["anchor_record"] = None
        state["group"] = []
        (state.get("logs") or []).append(f"Anchor not found: {e}")
        return state

    state["not_found"] = False
    state["anchor_record"] = res.anchor
    state["group"] = res.records
    (state.get("logs") or []).append(
        f"Grouped {len(res.records)} records for machine '{res.anchor.machine_name}' "
        f"(keywords={sorted(res.identity.keywords)})"
    )
    return state
