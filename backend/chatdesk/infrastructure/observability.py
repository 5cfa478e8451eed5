"""Structured Logging — JSON formatter, setup, and request correlation.

Invariants:
    - All logs include timestamp, level, logger name, and message
    - Extra fields (request_id, user_id, error_code, path, ...) surfaced when present
    - request_id is filled from the current request's context when the call site omits it

Design Decisions:
    - JSONFormatter over third-party libs: zero dependencies, full control
    - setup_logging called once on startup via lifespan
    - ContextVar for the request id: survives awaits, isolated per task
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

_EXTRA_KEYS = (
    "request_id", "user_id", "chat_id", "error_code", "details",
    "error_timestamp", "path", "method", "tool_name", "attempt",
    "limiter_key", "input_tokens", "output_tokens", "status_code",
)


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if "request_id" not in log:
            rid = request_id_var.get()
            if rid:
                log["request_id"] = rid
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json"):
    """Configure logging for the application."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level.upper(), logging.INFO))
