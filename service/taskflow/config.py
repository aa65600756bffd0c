import os
from dataclasses import dataclass
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


DEFAULT_FAMILY_KEYWORDS = ("conveyor", "rolls", "crane", "pump", "stand")


def _get_env(name: str, default: Optional[str] = None, required: bool = False) -> str:
    val = os.getenv(name, default)
    if required and (val is None or str(val).strip() == ""):
        raise RuntimeError(f"Missing required env var: {name}")
    return str(val)  # intentional string coercion


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, default)).strip())
    except Exception:
        return default


@dataclass(frozen=True)
class Settings:
    # Remote script endpoint (query + update + upload share one URL)
    script_url: str
    sheet_id: str
    upload_folder_id: str

    # HTTP
    http_timeout: int
    page_size: int

    # Workflow
    completion_timezone: str
    family_keywords: Tuple[str, ...]

    # Optional override for contracts/task_sheets_mapping.yaml
    mapping_path: str = ""

    # Session registry limits (0 disables)
    session_idle_seconds: int = 1800
    max_sessions: int = 200


def _parse_keywords(raw: str) -> Tuple[str, ...]:
    out = []
    for part in (raw or "").split(","):
        k = part.strip().lower()
        if k and k not in out:
            out.append(k)
    return tuple(out) or DEFAULT_FAMILY_KEYWORDS


def load_settings() -> Settings:
    # -----------------------
    # Remote table endpoint
    # -----------------------
    script_url = _get_env("TASKS_SCRIPT_URL", required=True).strip()
    sheet_id = _get_env("TASKS_SHEET_ID", required=True).strip()
    upload_folder_id = _get_env("TASKS_UPLOAD_FOLDER_ID", "").strip()

    # -----------------------
    # HTTP + paging
    # -----------------------
    http_timeout = max(1, _env_int("HTTP_TIMEOUT_SECONDS", 30))
    page_size = max(1, _env_int("TASKS_PAGE_SIZE", 1000))

    # -----------------------
    # Workflow tuning
    # -----------------------
    completion_timezone = _get_env("COMPLETION_TIMEZONE", "UTC").strip() or "UTC"
    try:
        ZoneInfo(completion_timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise RuntimeError(f"Invalid COMPLETION_TIMEZONE: {completion_timezone}") from e
    family_keywords = _parse_keywords(_get_env("FAMILY_KEYWORDS", ""))

    return Settings(
        script_url=script_url,
        sheet_id=sheet_id,
        upload_folder_id=upload_folder_id,
        http_timeout=http_timeout,
        page_size=page_size,
        completion_timezone=completion_timezone,
        family_keywords=family_keywords,
        mapping_path=_get_env("TASK_MAPPING_PATH", "").strip(),
        session_idle_seconds=max(0, _env_int("SESSION_IDLE_SECONDS", 1800)),
        max_sessions=max(0, _env_int("MAX_SESSIONS", 200)),
    )
