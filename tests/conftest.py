import pathlib
import sys
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from contribution_tracker.app_logging import init_logging
from contribution_tracker.core.config import reset_settings_cache
from contribution_tracker.core.db import Database

ADMIN_EMAIL = "admin@presale.com"
ADMIN_PASSWORD = "password"
GLOBAL_EMAIL = "global@asc.com"
GLOBAL_PASSWORD = "global-secret"
USER_PASSWORD = "secret123"


@dataclass
class ApiContext:
    """Running application plus helpers for authenticating against it."""

    app: FastAPI
    client: TestClient
    tokens: dict[str, str] = field(default_factory=dict)

    @property
    def database(self) -> Database:
        return self.app.state.db

    @staticmethod
    def api(path: str, prefix: str | None = None) -> str:
        return f"/t/{prefix}/api{path}" if prefix else f"/api{path}"

    def login(self, email: str, password: str = USER_PASSWORD, prefix: str | None = None) -> str:
        resp = self.client.post(
            self.api("/auth/login", prefix), json={"email": email, "password": password}
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]["token"]

    @staticmethod
    def bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def admin_headers(self) -> dict[str, str]:
        if "admin" not in self.tokens:
            self.tokens["admin"] = self.login(ADMIN_EMAIL, ADMIN_PASSWORD)
        return self.bearer(self.tokens["admin"])

    def global_headers(self) -> dict[str, str]:
        if "global" not in self.tokens:
            resp = self.client.post(
                "/api/global/login", json={"email": GLOBAL_EMAIL, "password": GLOBAL_PASSWORD}
            )
            assert resp.status_code == 200, resp.text
            self.tokens["global"] = resp.json()["data"]["token"]
        return self.bearer(self.tokens["global"])

    def create_user(
        self,
        email: str,
        staff_id: str,
        *,
        full_name: str = "Test User",
        accounts: list[str] | None = None,
        sales: list[str] | None = None,
        role: str = "user",
        can_view_others: bool = False,
    ) -> str:
        """Create an approved user in the default tenant through the admin API."""

        resp = self.client.post(
            "/api/users",
            json={
                "fullName": full_name,
                "staffId": staff_id,
                "email": email,
                "password": USER_PASSWORD,
                "involvedAccountNames": accounts or ["Acme Corp"],
                "involvedSaleNames": sales or ["Jane Sale"],
                "involvedSaleEmails": ["jane.sale@example.com"],
                "role": role,
                "canViewOthers": can_view_others,
            },
            headers=self.admin_headers(),
        )
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]["id"]


def contribution_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "accountName": "Acme Corp",
        "saleName": "Jane Sale",
        "saleEmail": "jane.sale@example.com",
        "contributionType": "technical",
        "title": "Solution design workshop",
        "description": "Ran the discovery workshop and produced the architecture.",
        "impact": "high",
        "effort": "medium",
        "estimatedImpactValue": 125000,
        "contributionMonth": "2024-05",
        "tags": ["workshop", "design"],
        "status": "draft",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def app_env(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> Iterator[pytest.MonkeyPatch]:
    """Point configuration at a temporary SQLite file and log directory."""

    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("ENABLE_TENANCY", raising=False)
    monkeypatch.delenv("APP_ENV", raising=False)
    monkeypatch.delenv("DEFAULT_TENANT_PREFIX", raising=False)
    monkeypatch.setenv("DB_PATH", str(tmp_path / "contributions.db"))
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("GLOBAL_ADMIN_EMAIL", GLOBAL_EMAIL)
    monkeypatch.setenv("GLOBAL_ADMIN_PASSWORD", GLOBAL_PASSWORD)
    monkeypatch.setenv("BOOTSTRAP_ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("BOOTSTRAP_ADMIN_PASSWORD", ADMIN_PASSWORD)
    reset_settings_cache()
    yield monkeypatch
    reset_settings_cache()


def _start(app_env: pytest.MonkeyPatch) -> Iterator[ApiContext]:
    from contribution_tracker.main import create_app

    app = create_app()
    with TestClient(app) as client:
        yield ApiContext(app=app, client=client)


@pytest.fixture
def api(app_env: pytest.MonkeyPatch) -> Iterator[ApiContext]:
    """Application with tenancy disabled (single default tenant)."""

    yield from _start(app_env)


@pytest.fixture
def tenant_api(app_env: pytest.MonkeyPatch) -> Iterator[ApiContext]:
    """Application with ``ENABLE_TENANCY`` switched on."""

    app_env.setenv("ENABLE_TENANCY", "true")
    reset_settings_cache()
    yield from _start(app_env)


@pytest.fixture
def database(tmp_path: pathlib.Path) -> Iterator[Database]:
    """Bare SQLite client without schema."""

    from contribution_tracker.core.config import Settings

    db = Database.from_settings(Settings(db_path=str(tmp_path / "adapter.db")))
    yield db
    db.dispose()


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
