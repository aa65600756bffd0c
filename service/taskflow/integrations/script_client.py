from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from ..config import Settings
from ..errors import SchemaError, TransportError
from ..tools.table_tool import table_columns

logger = logging.getLogger("taskflow.script_client")


def _truthy(x: Any) -> bool:
    if isinstance(x, bool):
        return x
    if isinstance(x, (int, float)):
        return x != 0
    if isinstance(x, str):
        return x.strip().lower() in ("1", "true", "yes", "y", "on")
    return bool(x)


def primary_payload_ok(data: Any) -> bool:
    """Paged query answer: needs success=true and table.cols."""
    return isinstance(data, dict) and _truthy(data.get("success")) and table_columns(data) is not None


def fallback_payload_ok(data: Any) -> bool:
    """Legacy answer carries no success flag; table.cols is enough."""
    return table_columns(data) is not None


@dataclass(frozen=True)
class TableQuery:
    sheet_name: str
    user_role: str = ""
    username: str = ""
    page: int = 1
    page_size: int = 1000
    search: str = ""
    department: str = "all"
    status: str = "all"
    location: str = "all"


@dataclass
class TableFetch:
    payload: Optional[Dict[str, Any]]
    source: str  # "primary" | "fallback" | "none"
    errors: List[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return self.payload is None


Validator = Callable[[Any], bool]


class ScriptClient:
    """
    Spreadsheet script web-app caller. One URL serves three actions:

      GET  ?sheetId=..&sheet=..&page=..       -> {"success": true, "table": {"cols": [...], "rows": [...]}}
      POST action=update (form-encoded)       -> {"success": bool, "error"?: str}
      POST action=uploadFile (form-encoded)   -> {"success": bool, "fileUrl"?: str}

    Reads go through two strategies (paged query, then legacy unparameterised query).
    Nothing is cached; each call is a fresh read.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    # ---------- Low-level helpers ----------

    def _decode(self, r: requests.Response, *, what: str) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise SchemaError(f"{what}: response is not JSON ({r.status_code}): {r.text[:200]}") from e

    def _get_json(self, params: Dict[str, Any]) -> Any:
        try:
            r = self._session.get(self.settings.script_url, params=params, timeout=self.settings.http_timeout)
        except requests.RequestException as e:
            raise TransportError(f"query failed: {e}") from e
        if not r.ok:
            raise TransportError(f"query failed: {r.status_code} {r.text[:200]}")
        return self._decode(r, what="query")

    def _post_form(self, data: Dict[str, Any], *, what: str) -> Dict[str, Any]:
        try:
            r = self._session.post(
                self.settings.script_url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.settings.http_timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{what} failed: {e}") from e

        body = self._decode(r, what=what)
        if not isinstance(body, dict):
            raise SchemaError(f"{what}: expected JSON object, got {type(body).__name__}")
        if not r.ok and not body.get("error"):
            raise TransportError(f"{what} failed: {r.status_code} {r.text[:200]}")
        return body

    # ---------- Reads ----------

    def _strategies(self, q: TableQuery) -> List[Tuple[str, Dict[str, Any], Validator]]:
        primary = {
            "sheetId": self.settings.sheet_id,
            "page": str(q.page),
            "pageSize": str(q.page_size),
            "search": q.search,
            "department": q.department,
            "status": q.status,
            "location": q.location,
            "userRole": q.user_role or "",
            "username": q.username or "",
            "sheet": q.sheet_name,
        }
        fallback = {"sheetId": self.settings.sheet_id, "sheet": q.sheet_name}
        return [
            ("primary", primary, primary_payload_ok),
            ("fallback", fallback, fallback_payload_ok),
        ]

    def fetch_table(self, q: TableQuery) -> TableFetch:
        """
        Returns the first payload that passes its strategy's schema check.
        Both strategies failing is reported as an empty TableFetch, not raised.
        """
        errors: List[str] = []
        for name, params, valid in self._strategies(q):
            try:
                data = self._get_json(params)
            except (TransportError, SchemaError) as e:
                errors.append(f"{name}: {e}")
                logger.warning("table query (%s) failed for sheet=%s: %s", name, q.sheet_name, e)
                continue

            if valid(data):
                if name != "primary":
                    logger.info("table query served by %s shape for sheet=%s", name, q.sheet_name)
                return TableFetch(payload=data, source=name, errors=errors)

            errors.append(f"{name}: invalid table payload")
            logger.warning("table query (%s) returned invalid payload for sheet=%s", name, q.sheet_name)

        return TableFetch(payload=None, source="none", errors=errors)

    # ---------- Writes ----------

    def post_update(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(payload)
        data["action"] = "update"
        return self._post_form(data, what="update")

    def upload_file(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(fields)
        data["action"] = "uploadFile"
        return self._post_form(data, what="uploadFile")
