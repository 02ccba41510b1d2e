"""Structured logging for the sync engine.

Every record carries the current request id and, inside a merge, import or
rollback, the id of the SyncHistory row being processed. Both come from
context variables so background jobs and request handlers share one format.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from .config import settings

# Set by RequestLoggingMiddleware for the duration of an HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Set by SyncCoordinator while a history row is RUNNING
sync_id_var: ContextVar[str] = ContextVar("sync_id", default="")

# Attributes every LogRecord has; anything else arrived through extra={...}
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}

# Third-party loggers and the level they are capped at
_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "paramiko": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


def _trace_context() -> dict[str, str]:
    context = {}
    if request_id := request_id_var.get():
        context["request_id"] = request_id
    if sync_id := sync_id_var.get():
        context["sync_id"] = sync_id
    return context


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    {
        "timestamp": "2026-03-01T10:15:00.123000+00:00",
        "level": "INFO",
        "logger": "tasksync.services.sync",
        "message": "Merge completed",
        "request_id": "abc-123",
        "sync_id": "42",
        "extra": {"project_id": 1, "added": 2}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_trace_context(),
        }
        extra = _extra_fields(record)
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class SimpleFormatter(logging.Formatter):
    """Human-readable single line, for local development."""

    def format(self, record: logging.LogRecord) -> str:
        context = _trace_context()
        prefix = ""
        if "request_id" in context:
            prefix += f"[{context['request_id'][:8]}] "
        if "sync_id" in context:
            prefix += f"(sync {context['sync_id']}) "

        stamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%d %H:%M:%S")
        line = f"{stamp} | {record.levelname:8} | {prefix}{record.name}: {record.getMessage()}"
        extra = _extra_fields(record)
        if extra:
            line += " " + " ".join(f"{k}={v}" for k, v in extra.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" for log shippers, "simple" for a terminal
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format.lower() == "json" else SimpleFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for name, cap in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(cap)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DATABASE_ECHO else logging.WARNING
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; call as get_logger(__name__)."""
    return logging.getLogger(name)


def generate_request_id() -> str:
    return str(uuid.uuid4())
