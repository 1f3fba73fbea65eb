import json
import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from contribution_tracker.app_logging import (
    APP_LOGGER_NAME,
    TenantContextFilter,
    _install_access_logging,
    _scrub,
    init_logging,
)
from contribution_tracker.core.tenant_context import reset_tenant_context, set_tenant_context


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


@pytest.fixture
def clean_loggers():
    loggers = [_clear_handlers(APP_LOGGER_NAME), _clear_handlers("uvicorn.access")]
    yield loggers
    for logger in loggers:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()


def test_init_logging_configures_rotating_handlers(monkeypatch, tmp_path, clean_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger, access_logger = clean_loggers

    app = FastAPI()
    init_logging(app)

    for logger in (app_logger, access_logger):
        handler = next(h for h in logger.handlers if isinstance(h, TimedRotatingFileHandler))
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == 5
    assert app.logger is app_logger


def test_init_logging_replaces_existing_access_handlers(monkeypatch, tmp_path, clean_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    _, access_logger = clean_loggers
    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)


def test_scrub_masks_credentials_recursively():
    scrubbed = _scrub(
        {
            "email": "ada@example.com",
            "password": "secret123",
            "confirmPassword": "secret123",
            "nested": [{"newPassword": "x", "currentPassword": "y", "keep": 1}],
        }
    )
    assert scrubbed == {
        "email": "ada@example.com",
        "password": "***",
        "confirmPassword": "***",
        "nested": [{"newPassword": "***", "currentPassword": "***", "keep": 1}],
    }


def test_log_files_and_redaction(tmp_path, app_factory, clean_loggers):
    app = app_factory(tmp_path, log_request_bodies=True)
    app_logger = logging.getLogger(APP_LOGGER_NAME)
    logging.getLogger(f"{APP_LOGGER_NAME}.routers.auth_api").info("hello tracker")

    with TestClient(app) as client:
        resp = client.post(
            "/echo",
            json={"password": "secret123", "value": 1},
            headers={"Authorization": "Bearer secret"},
        )
        assert resp.status_code == 200

    for logger in (app_logger, logging.getLogger("uvicorn.access")):
        for handler in logger.handlers:
            handler.flush()

    app_log = tmp_path / "app.log"
    assert "hello tracker" in app_log.read_text()

    access_line = (tmp_path / "access.log").read_text().splitlines()[-1]
    data = json.loads(access_line.split(": ", 1)[1])
    assert data["headers"]["authorization"] == "***"
    assert data["body"] == {"password": "***", "value": 1}


def _access_app() -> FastAPI:
    app = FastAPI()

    @app.middleware("http")
    async def tenant_state(request: Request, call_next):
        request.state.tenant_prefix = "acme"
        return await call_next(request)

    @app.post("/api/auth/login")
    async def login(request: Request):
        return {"rid": request.state.request_id}

    @app.get("/api/health")
    async def health():  # pragma: no cover - simple
        return {"status": "OK"}

    _install_access_logging(app)
    return app


def test_access_log_carries_request_id_and_tenant(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _access_app()

    with (
        TestClient(app) as client,
        caplog.at_level(logging.INFO, logger="uvicorn.access"),
    ):
        resp = client.post(
            "/api/auth/login",
            json={"email": "ada@example.com", "password": "secret123"},
            headers={"X-Request-Id": "abc", "Authorization": "Bearer secret"},
        )

        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc"}

        data = json.loads(caplog.records[0].getMessage())
        assert data["request_id"] == "abc"
        assert data["path"] == "/api/auth/login"
        assert data["status"] == 200
        assert data["tenant_prefix"] == "acme"
        assert data["body"]["password"] == "***"

        caplog.clear()
        client.get("/api/health")
        assert len(caplog.records) == 0


def test_records_are_stamped_with_the_current_tenant():
    record = logging.LogRecord("contribution_tracker.x", logging.INFO, __file__, 1, "hi", None, None)
    assert TenantContextFilter().filter(record)
    assert record.tenant_id == "-"

    token = set_tenant_context("tenant-acme", "acme")
    try:
        record = logging.LogRecord("contribution_tracker.x", logging.INFO, __file__, 1, "hi", None, None)
        TenantContextFilter().filter(record)
    finally:
        reset_tenant_context(token)
    assert record.tenant_id == "tenant-acme"
