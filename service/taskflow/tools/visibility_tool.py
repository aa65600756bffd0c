from __future__ import annotations

from dataclasses import dataclass
from typing import List

from ..pipeline.state import RoleContext, TaskRecord


@dataclass
class VisibilityResult:
    records: List[TaskRecord]
    # True when the role was not recognised and everything was let through
    degraded: bool = False


def filter_visible(records: List[TaskRecord], role_ctx: RoleContext) -> VisibilityResult:
    """
    user  -> only rows whose Doer Name equals the username (case-insensitive)
    admin -> everything
    other -> everything, flagged as degraded authorization
    """
    role = role_ctx.normalized_role

    if role == "user":
        who = (role_ctx.username or "").strip().casefold()
        if not who:
            return VisibilityResult(records=[])
        return VisibilityResult(
            records=[r for r in records if (r.doer_name or "").strip().casefold() == who],
        )

    if role == "admin":
        return VisibilityResult(records=list(records))

    return VisibilityResult(records=list(records), degraded=True)
