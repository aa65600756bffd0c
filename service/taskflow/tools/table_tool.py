from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..pipeline.state import TaskRecord


def _norm_header(x: object) -> str:
    """
    Normalize column labels:
    - replace NBSP
    - collapse whitespace
    - strip
    """
    s = str(x or "").replace("\u00A0", " ")
    s = re.sub(r"\s+", " ", s).strip()
    return s


def _norm_value(x: object) -> str:
    """
    Normalize cell values for matching:
    - replace NBSP
    - collapse whitespace
    - strip
    - convert '123.0' -> '123' (sheet numeric formatting)
    """
    s = str(x or "").replace("\u00A0", " ")
    s = re.sub(r"\s+", " ", s).strip()
    if re.fullmatch(r"\d+\.0", s):
        s = s[:-2]
    return s


def _key(x: object) -> str:
    """Case-insensitive key used for robust dict lookups and joins."""
    return _norm_value(x).casefold()


def _cell_value(cell: Any) -> str:
    """
    A cell is {"v": ...} (plus optional "f" formatted text).
    Missing cell / missing, null or falsy v (0, False, "") -> "".
    """
    if not isinstance(cell, dict):
        return ""
    v = cell.get("v")
    if not v:
        return ""
    if v is True:
        return "true"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    return str(v)


def table_columns(payload: Any) -> Optional[List[str]]:
    """
    Returns normalized column labels, or None when payload has no usable table.cols.
    """
    if not isinstance(payload, dict):
        return None
    table = payload.get("table")
    if not isinstance(table, dict):
        return None
    cols = table.get("cols")
    if not isinstance(cols, list):
        return None
    return [_norm_header(c.get("label") if isinstance(c, dict) else "") for c in cols]


def table_to_rows(payload: Any) -> List[Dict[str, str]]:
    """
    {table: {cols: [{label}], rows: [{c: [{v}]}]}} -> [{label: value}]

    Unlabelled columns are skipped. Rows that produce no keys are dropped.
    Never raises: anything malformed yields [].
    """
    labels = table_columns(payload)
    if not labels:
        return []

    rows = payload["table"].get("rows") or []
    if not isinstance(rows, list):
        return []

    out: List[Dict[str, str]] = []
    for row in rows:
        cells = row.get("c") if isinstance(row, dict) else None
        if not isinstance(cells, list):
            continue

        d: Dict[str, str] = {}
        for i, cell in enumerate(cells):
            if i >= len(labels) or not labels[i]:
                continue
            d[labels[i]] = _cell_value(cell)

        if d:
            out.append(d)
    return out


def normalize(payload: Any, columns: Dict[str, str]) -> List["TaskRecord"]:
    from ..pipeline.state import TaskRecord  # state imports helpers from here

    return [TaskRecord.from_row(r, columns) for r in table_to_rows(payload)]
