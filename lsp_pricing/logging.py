"""Logging setup for the LSP price aggregator.

Two record shapes matter: request records emitted around every API call and
provider records emitted by fetch workers. Both carry a ``request_id``; worker
threads see it through a context variable that the orchestrator copies into
each task, so a provider failure can be traced back to the call that caused it.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from collections.abc import Iterable
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from flask import g, has_request_context, request
from werkzeug.exceptions import HTTPException

REQUEST_ID_HEADER = "X-Request-ID"

LOGGING_CONFIG_FLAG = "_logging_configured"
REQUEST_LOGGING_FLAG = "_request_logging_configured"

# Upstream error bodies can be whole HTML pages.
MAX_FIELD_LENGTH = 2000

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "asctime",
    }
)


class JSONLogFormatter(logging.Formatter):
    """One JSON object per record; extras are flattened into the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.threadName and record.threadName != threading.main_thread().name:
            payload["thread"] = record.threadName
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info

        for key, value in record.__dict__.items():
            if key in RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = _json_safe(value)

        return json.dumps(payload, separators=(",", ":"))


def setup_logging(app) -> None:
    """Install a single root handler, plain text or JSON depending on config."""

    if app.config.get(LOGGING_CONFIG_FLAG):
        return

    level = _resolve_level(app.config.get("LOG_LEVEL", "INFO"))
    handler = logging.StreamHandler()
    handler.setLevel(level)
    if _to_bool(app.config.get("LOG_JSON_ENABLED", False)):
        handler.setFormatter(JSONLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                app.config.get("LOG_FORMAT", "%(asctime)s %(levelname)s [%(name)s] %(message)s")
            )
        )

    root_logger = logging.getLogger()
    _replace_handlers(root_logger, [handler])
    root_logger.setLevel(level)

    # Everything funnels through the root handler.
    for logger in (logging.getLogger("werkzeug"), logging.getLogger("apscheduler"), app.logger):
        logger.handlers = []
        logger.propagate = True
    logging.getLogger("werkzeug").setLevel(level)
    app.logger.setLevel(level)

    app.config[LOGGING_CONFIG_FLAG] = True


def init_request_logging(app) -> None:
    """Assign a request id to every call and log its outcome once."""

    if app.config.get(REQUEST_LOGGING_FLAG):
        return

    @app.before_request
    def _start_request_logging():
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        g.request_id = request_id
        g.request_start = time.perf_counter()
        g._request_logged = False
        request_id_var.set(request_id)

    @app.after_request
    def _log_request(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        app.logger.info(
            "Request handled",
            extra=_request_log_extra("request.completed", response.status_code, request_id),
        )
        g._request_logged = True
        return response

    @app.teardown_request
    def _log_teardown(exc: BaseException | None):
        request_id_var.set(None)
        if exc is None or getattr(g, "_request_logged", False):
            return

        status = getattr(exc, "code", 500) if isinstance(exc, HTTPException) else 500
        app.logger.error(
            "Request failed",
            extra=_request_log_extra(
                "request.failed", status, getattr(g, "request_id", None), error=str(exc)
            ),
        )
        g._request_logged = True

    app.config[REQUEST_LOGGING_FLAG] = True


def current_request_id() -> str | None:
    """Request id of the active request, or the one inherited by a worker task."""

    if has_request_context():
        request_id = getattr(g, "request_id", None)
        if request_id:
            return request_id
    return request_id_var.get()


def provider_log_extra(
    *,
    provider: str,
    channel_size_sat: int,
    event: str,
    status: str,
    duration_ms: float | None,
    stale: bool,
    attempt: int | None = None,
    error_kind: str | None = None,
    error: str | None = None,
) -> dict[str, Any]:
    """Structured fields for a provider fetch, retry, timeout or fallback record."""

    payload: dict[str, Any] = {
        "event": event,
        "provider": provider,
        "channel_size_sat": channel_size_sat,
        "status": status,
        "duration_ms": round(duration_ms, 3) if duration_ms is not None else None,
        "attempt": attempt,
        "request_id": current_request_id(),
        "source": provider,
        "stale": stale,
        "error_kind": error_kind,
        "error": error or None,
    }
    return {key: value for key, value in payload.items() if value is not None}


def _request_log_extra(
    event: str,
    status: int,
    request_id: str | None,
    *,
    error: str | None = None,
) -> dict[str, Any]:
    start = getattr(g, "request_start", None)
    duration_ms = (time.perf_counter() - start) * 1000 if isinstance(start, int | float) else None
    payload: dict[str, Any] = {
        "event": event,
        "route": request.url_rule.rule if request.url_rule else request.path,
        "method": request.method,
        "status": status,
        "duration_ms": round(duration_ms, 3) if duration_ms is not None else None,
        "request_id": request_id,
        "path": request.path,
        "channel_size_sat": request.args.get("channel_size_sat"),
        "source": "api",
        "stale": False,
        "error": error,
        "client_ip": request.remote_addr,
    }
    return {key: value for key, value in payload.items() if value is not None}


def _json_safe(value: Any) -> Any:
    if isinstance(value, str):
        if len(value) > MAX_FIELD_LENGTH:
            return value[:MAX_FIELD_LENGTH] + "...[truncated]"
        return value
    if isinstance(value, int | float | bool) or value is None:
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set):
        return [_json_safe(item) for item in value]
    return _json_safe(str(value))


def _resolve_level(level_name: Any) -> int:
    if isinstance(level_name, int):
        return level_name
    if not level_name:
        return logging.INFO
    return getattr(logging, str(level_name).upper(), logging.INFO)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _replace_handlers(logger: logging.Logger, handlers: Iterable[logging.Handler]) -> None:
    for existing in logger.handlers[:]:
        logger.removeHandler(existing)
    for handler in handlers:
        logger.addHandler(handler)
