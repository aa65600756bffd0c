# service/taskflow/logctx.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
session_id_var: ContextVar[str] = ContextVar("session_id", default="-")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")
        record.session_id = session_id_var.get("-")
        return True


def setup_logging() -> None:
    root = logging.getLogger()
    root.setLevel(logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s | rid=%(request_id)s sid=%(session_id)s | %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(ContextFilter())

    # avoid duplicate handlers on reload
    root.handlers = [handler]


@contextmanager
def bind_session_id(session_id: str) -> Iterator[None]:
    token = session_id_var.set(session_id or "-")
    try:
        yield
    finally:
        session_id_var.reset(token)
