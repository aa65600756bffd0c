# service/taskflow/main.py
from __future__ import annotations

import uuid
from pathlib import Path
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from .config import load_settings, Settings
from .logctx import setup_logging, request_id_var
from .routers import tasks_router
from .session.manager import SessionStore

# Load .env from service/.env (override shell env so local tests match)
load_dotenv(Path(__file__).resolve().parents[1] / ".env", override=True)

setup_logging()
import logging

logger = logging.getLogger("taskflow")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    app.state.settings = settings
    app.state.sessions = SessionStore(
        idle_seconds=settings.session_idle_seconds,
        max_sessions=settings.max_sessions,
    )
    logger.info(
        "startup: loaded settings. sheet_id=%s timeout=%ss page_size=%s keywords=%s",
        settings.sheet_id,
        settings.http_timeout,
        settings.page_size,
        ",".join(settings.family_keywords),
    )

    yield

    app.state.sessions.close_all()


app = FastAPI(title="Maintenance Task Workflow", lifespan=lifespan)

# Routers
app.include_router(tasks_router)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid

    token = request_id_var.set(rid)
    try:
        resp = await call_next(request)
    finally:
        request_id_var.reset(token)

    resp.headers["x-request-id"] = rid
    return resp


def _get_settings(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore


@app.get("/health")
def health(request: Request) -> dict:
    s = _get_settings(request)
    return {
        "ok": True,
        "sheet_id": s.sheet_id,
        "http_timeout": s.http_timeout,
        "page_size": s.page_size,
        "family_keywords": list(s.family_keywords),
    }
