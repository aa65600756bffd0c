# service/taskflow/tools/__init__.py
from __future__ import annotations

from .mapping_tool import SheetMapping, load_sheet_mapping
from .table_tool import normalize, table_to_rows

__all__ = ["SheetMapping", "load_sheet_mapping", "normalize", "table_to_rows"]
