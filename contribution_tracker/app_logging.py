"""Application and access logging.

``init_logging`` wires two file loggers, each rotated at midnight:

- ``contribution_tracker`` (``app.log``): every module logs through
  ``logging.getLogger(__name__)`` and inherits this handler. Records are
  stamped with the tenant being served, taken from the request-scoped tenant
  context.
- ``uvicorn.access`` (``access.log``): one JSON line per request, written by
  the HTTP middleware installed on the app. Health and metrics checks are
  skipped. Credentials are masked before anything is written.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import time
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

from .core.rate_limit import get_client_ip
from .core.tenant_context import get_current_tenant_id

APP_LOGGER_NAME = "contribution_tracker"
ACCESS_LOGGER_NAME = "uvicorn.access"
TEXT_FORMAT = "[%(asctime)s] %(levelname)s in %(name)s [%(tenant_id)s]: %(message)s"
UNSCOPED = "-"

SKIP_PATHS = frozenset({"/", "/api/health", "/api/metrics"})
SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "currentpassword",
        "newpassword",
        "confirmpassword",
        "token",
        "access_token",
    }
)


@dataclasses.dataclass(frozen=True)
class LogOptions:
    log_dir: str = "logs"
    level: int = logging.INFO
    json: bool = False
    request_bodies: bool = False
    retention_days: int = 7
    rotate_utc: bool = False

    @classmethod
    def from_env(cls) -> "LogOptions":
        def flag(name: str) -> bool:
            return os.getenv(name, "false").lower() == "true"

        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        return cls(
            log_dir=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, level_name, logging.INFO),
            json=flag("LOG_JSON"),
            request_bodies=flag("LOG_REQUEST_BODIES"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=flag("LOG_ROTATE_UTC"),
        )


class TenantContextFilter(logging.Filter):
    """Attach ``tenant_id`` to every record; ``-`` outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "tenant_id"):
            record.tenant_id = get_current_tenant_id() or UNSCOPED
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "tenant_id": getattr(record, "tenant_id", UNSCOPED),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _scrub(data: object) -> object:
    """Mask sensitive keys in nested dicts and lists."""

    if isinstance(data, dict):
        return {
            key: ("***" if str(key).lower() in SENSITIVE_FIELDS else _scrub(value))
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_scrub(item) for item in data]
    return data


def _file_handler(options: LogOptions, filename: str) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(options.log_dir, filename),
        when="midnight",
        backupCount=options.retention_days,
        utc=options.rotate_utc,
    )
    handler.setFormatter(JsonFormatter() if options.json else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(TenantContextFilter())
    return handler


async def _capture_body(request: Request) -> object | None:
    """Read the body for logging and replay it to the endpoint."""

    body = await request.body()

    async def receive() -> dict:  # pragma: no cover - internal
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]
    if not body:
        return None
    try:
        return _scrub(json.loads(body))
    except ValueError:
        return body.decode("utf-8", errors="replace")


def _install_access_logging(app: FastAPI, options: LogOptions | None = None) -> None:
    """Install the access-log middleware.

    The ``X-Request-Id`` header is reused when the client sends one and
    generated otherwise; it is echoed on the response.
    """

    options = options or LogOptions.from_env()
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        body = await _capture_body(request) if options.request_bodies else None

        response = await call_next(request)

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": get_client_ip(request),
            "tenant_prefix": getattr(request.state, "tenant_prefix", None),
            "user_id": getattr(request.state, "user_id", None),
            "headers": _scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body
        response.headers["X-Request-Id"] = request_id

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        access_logger.log(level, json.dumps(entry, default=str))
        return response


def init_logging(app: FastAPI | None = None) -> None:
    """Configure the application and access loggers and, given an app, its middleware."""

    options = LogOptions.from_env()
    os.makedirs(options.log_dir, exist_ok=True)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(_file_handler(options, "app.log"))
    app_logger.setLevel(options.level)

    # uvicorn installs its own console handler; the file handler replaces it.
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_file_handler(options, "access.log"))
    access_logger.setLevel(options.level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app, options)
