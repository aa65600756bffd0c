# service/taskflow/pipeline/graph.py
from __future__ import annotations

import importlib
import logging
import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from ..config import Settings
from ..integrations.script_client import ScriptClient
from ..tools.mapping_tool import SheetMapping, load_sheet_mapping
from .nodes.writeback import completion_date
from .state import AnchorKey, ReconciledView, RoleContext

logger = logging.getLogger("taskflow.graph")

State = Dict[str, Any]
NodeFn = Callable[[Settings, State], State]


def _resolve_node(module_rel: str, candidates: List[str]) -> NodeFn:
    mod = importlib.import_module(module_rel, package=__package__)
    for name in candidates:
        fn = getattr(mod, name, None)
        if callable(fn):
            return fn  # type: ignore
    raise ImportError(
        f"Could not find a callable in {module_rel}. Tried: {candidates}. "
        f"Available: {[x for x in dir(mod) if not x.startswith('_')]}"
    )


load_task_table = _resolve_node(".nodes.load_task_table", ["load_task_table", "run", "node"])
normalize_rows = _resolve_node(".nodes.normalize_rows", ["normalize_rows", "run", "node"])
filter_visibility = _resolve_node(".nodes.filter_visibility", ["filter_visibility", "run", "node"])
group_machine = _resolve_node(".nodes.group_machine", ["group_machine", "run", "node"])
partition_status = _resolve_node(".nodes.partition_status", ["partition_status", "run", "node"])


def _unique(values: List[str]) -> List[str]:
    out: List[str] = []
    seen = set()
    for v in values:
        s = (v or "").strip()
        if s and s not in seen:
            out.append(s)
            seen.add(s)
    return out


def run_reconcile_graph(
    settings: Settings,
    *,
    anchor: AnchorKey,
    role_ctx: RoleContext,
    client: ScriptClient,
    mapping: Optional[SheetMapping] = None,
    today: Optional[date] = None,
) -> ReconciledView:
    """
    One full pass: fetch -> normalize -> visibility -> grouping -> partition.
    Never raises; failures come back as a view with status empty/not_found/error.
    """
    state: State = {
        "anchor": anchor,
        "role_ctx": role_ctx,
        "client": client,
        "logs": [],
    }

    def _timed(name: str, fn: NodeFn) -> State:
        t0 = time.time()
        logger.info("node:start %s", name)
        out = fn(settings, state)
        dt = (time.time() - t0) * 1000
        logger.info("node:end %s ms=%.1f", name, dt)
        return out

    try:
        state["mapping"] = mapping or load_sheet_mapping(settings.mapping_path)
        state["today"] = today or date.fromisoformat(completion_date(settings))

        state = _timed("load_task_table", load_task_table)
        if state.get("table_payload") is None:
            return ReconciledView.empty_of(
                "empty", error=state.get("fetch_error") or "", logs=state.get("logs"),
            )

        state = _timed("normalize_rows", normalize_rows)
        state = _timed("filter_visibility", filter_visibility)
        state = _timed("group_machine", group_machine)

        if state.get("not_found"):
            view = ReconciledView.empty_of("not_found", logs=state.get("logs"))
            view.degraded_auth = bool(state.get("degraded_auth"))
            view.table_source = state.get("table_source") or ""
            return view

        state = _timed("partition_status", partition_status)

        group = state.get("group") or []
        anchor_rec = state.get("anchor_record")
        logger.info(
            "SUCCESS anchor=%s/%s active=%d completed=%d",
            anchor.serial_no, anchor.task_no, len(state["active"]), len(state["completed"]),
        )

        return ReconciledView(
            status="ok",
            active=state["active"],
            completed=state["completed"],
            progress_percent=state["progress_percent"],
            machine_name=anchor_rec.machine_name if anchor_rec else "",
            matched_machines=_unique([r.machine_name for r in group]),
            serial_numbers=_unique([r.serial_no for r in group]),
            due_buckets=state["due_buckets"],
            total_cost=state["total_cost"],
            degraded_auth=bool(state.get("degraded_auth")),
            table_source=state.get("table_source") or "",
            logs=state.get("logs") or [],
        )

    except Exception as e:
        logger.exception("ERROR: %s", e)
        return ReconciledView.empty_of("error", error=str(e), logs=state.get("logs"))
