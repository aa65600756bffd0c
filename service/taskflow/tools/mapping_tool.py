from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List
import os
import yaml


DEFAULT_MAPPING_PATH = Path(__file__).resolve().parent.parent / "contracts" / "task_sheets_mapping.yaml"


@dataclass(frozen=True)
class SheetMapping:
    raw: Dict[str, Any]

    @property
    def tabs(self) -> Dict[str, str]:
        return self.raw["spreadsheet"]["tabs"]

    def tab(self, key: str) -> str:
        return self.tabs[key]

    def sheet_names(self) -> List[str]:
        """Every task table, in mapping order (maintenance first)."""
        return list(self.tabs.values())

    def task_columns(self) -> Dict[str, str]:
        """field name -> column label for the task tables."""
        return dict(self.raw["columns"]["task"])

    @property
    def writeback(self) -> Dict[str, Any]:
        return self.raw.get("writeback", {})

    def update_columns(self) -> Dict[str, Any]:
        return dict(self.writeback.get("update", {}))

    def family_for(self, task_no: str) -> str:
        """
        TM-0012 -> maintenance, anything else -> default family.
        Prefix match is case-sensitive, same as the task numbering.
        """
        fam = self.raw.get("families", {})
        t = (task_no or "").strip()
        for prefix, family in (fam.get("prefixes") or {}).items():
            if t.startswith(str(prefix)):
                return str(family)
        return str(fam.get("default_family", "repair"))

    def sheet_for(self, task_no: str) -> str:
        return self.tab(self.family_for(task_no))

    def cost_column(self, family: str) -> str:
        return str(self.update_columns().get("cost", {}).get(family, ""))


@lru_cache(maxsize=8)
def _load(path_str: str) -> SheetMapping:
    path = Path(path_str)
    if not path.exists():
        raise RuntimeError(f"task_sheets_mapping.yaml not found at: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise RuntimeError("Invalid task_sheets_mapping.yaml format")
    for section in ("spreadsheet", "columns"):
        if section not in data:
            raise RuntimeError(f"task_sheets_mapping.yaml missing section: {section}")
    return SheetMapping(raw=data)


def load_sheet_mapping(path: str = "") -> SheetMapping:
    """
    Loads contracts/task_sheets_mapping.yaml shipped with the package.
    Override with the explicit path or env: TASK_MAPPING_PATH
    """
    override = (path or os.getenv("TASK_MAPPING_PATH", "")).strip()
    if override:
        resolved = Path(override).expanduser().resolve()
    else:
        resolved = DEFAULT_MAPPING_PATH
    return _load(str(resolved))
