from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Sequence

from ..config import DEFAULT_FAMILY_KEYWORDS
from ..errors import TaskNotFound
from ..pipeline.state import AnchorKey, RoleContext, TaskRecord


def machine_base_name(name: str) -> str:
    return (name or "").strip().lower()


@dataclass(frozen=True)
class MachineIdentity:
    base_name: str
    keywords: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, machine_name: str, vocabulary: Iterable[str]) -> "MachineIdentity":
        base = machine_base_name(machine_name)
        return cls(base_name=base, keywords=frozenset(k for k in vocabulary if k and k in base))

    def admits(self, rec: TaskRecord) -> bool:
        name = machine_base_name(rec.machine_name)
        if name == self.base_name:
            return True
        return any(k in name for k in self.keywords)


@dataclass
class GroupResult:
    anchor: TaskRecord
    identity: MachineIdentity
    records: List[TaskRecord]


def find_anchor(records: Sequence[TaskRecord], anchor: AnchorKey) -> TaskRecord:
    for r in records:
        if anchor.matches(r):
            return r
    raise TaskNotFound(f"no task matches serial_no='{anchor.serial_no}' task_no='{anchor.task_no}'")


def resolve_group(
    records: Sequence[TaskRecord],
    anchor: AnchorKey,
    role_ctx: RoleContext,
    *,
    keywords: Iterable[str] = DEFAULT_FAMILY_KEYWORDS,
) -> GroupResult:
    """
    Collects the anchor's machine and its sibling machines.

    admin: whole (already filtered) set.
    others: same normalized machine name, or a family keyword contained in both names.
    Each record appears once, in input order.
    """
    rec = find_anchor(records, anchor)
    identity = MachineIdentity.of(rec.machine_name, keywords)

    if role_ctx.is_admin:
        group = list(records)
    else:
        group = [r for r in records if identity.admits(r)]

    seen = set()
    out: List[TaskRecord] = []
    for r in group:
        if id(r) in seen:
            continue
        seen.add(id(r))
        out.append(r)

    return GroupResult(anchor=rec, identity=identity, records=out)
