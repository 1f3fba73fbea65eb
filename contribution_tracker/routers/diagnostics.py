"""Admin self-check run from the functional test page.

Each application keeps the summaries of its most recent runs in memory
(``app.state.self_check_history``); they are listed per tenant by
``GET /test/history`` and lost on restart.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy import inspect

from ..core.bootstrap import BOOTSTRAP_ADMIN_ID
from ..models import Base
from ..schemas import ok
from ..security import (
    AdminUserDep,
    CurrentUserDep,
    DatabaseDep,
    SettingsDep,
    TenantDep,
    create_tenant_token,
    decode_tenant_token,
    hash_password,
    jwt_settings_from,
    verify_password,
)

router = APIRouter(prefix="/test", tags=["diagnostics"])

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50

# A check returns a success message or raises with the failure reason.
Check = Callable[[], str]


def new_history() -> deque[dict[str, Any]]:
    return deque(maxlen=HISTORY_LIMIT)


def _run(name: str, check: Check) -> dict[str, Any]:
    timestamp = dt.datetime.now(dt.timezone.utc).isoformat()
    try:
        message = check()
    except Exception as exc:  # noqa: BLE001 - every failure becomes a reported result
        logger.warning("Self-check %r failed: %s", name, exc)
        return {
            "testName": name,
            "status": "fail",
            "message": f"{name} failed",
            "details": str(exc),
            "timestamp": timestamp,
        }
    return {
        "testName": name,
        "status": "pass",
        "message": message,
        "details": None,
        "timestamp": timestamp,
    }


@router.post("/run-full-test")
def run_full_test(
    request: Request,
    admin: AdminUserDep,
    database: DatabaseDep,
    settings: SettingsDep,
    tenant: TenantDep,
) -> dict[str, Any]:
    """Exercise the store, the schema, the seed data and the credential helpers."""

    def connection() -> str:
        database.ping()
        return f"Connected to {database.backend_name}"

    def tables() -> str:
        present = set(inspect(database.engine).get_table_names())
        missing = sorted(set(Base.metadata.tables) - present)
        if missing:
            raise RuntimeError(f"Missing tables: {', '.join(missing)}")
        return "All tables present"

    def bootstrap_admin() -> str:
        row = database.query_one("SELECT id FROM users WHERE id = ?", [BOOTSTRAP_ADMIN_ID])
        if row is None:
            raise RuntimeError("Bootstrap admin account not found")
        return "Bootstrap admin present"

    def password_hashing() -> str:
        hashed = hash_password("self-check")
        if not verify_password("self-check", hashed) or verify_password("wrong", hashed):
            raise RuntimeError("Hash verification mismatch")
        return "Password hashing works"

    def token_round_trip() -> str:
        jwt_settings = jwt_settings_from(settings)
        token = create_tenant_token(
            admin.id, tenant.tenant_id, tenant.tenant_prefix, jwt_settings=jwt_settings
        )
        payload = decode_tenant_token(token, jwt_settings=jwt_settings)
        if payload.get("userId") != admin.id or payload.get("tenantId") != tenant.tenant_id:
            raise RuntimeError("Decoded claims do not match")
        return "Token issue and verification works"

    checks: list[tuple[str, Check]] = [
        ("Database Connection", connection),
        ("Schema Tables", tables),
        ("Bootstrap Admin", bootstrap_admin),
        ("Password Hashing", password_hashing),
        ("Token Round Trip", token_round_trip),
    ]
    results = [_run(name, check) for name, check in checks]
    passed = sum(1 for result in results if result["status"] == "pass")
    summary = {
        "overallStatus": "pass" if passed == len(results) else "fail",
        "totalTests": len(results),
        "passedTests": passed,
        "failedTests": len(results) - passed,
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
    }
    request.app.state.self_check_history.append(
        {**summary, "tenantId": tenant.tenant_id, "runBy": admin.id}
    )
    logger.info("Admin %s ran the self-check: %d/%d passed", admin.id, passed, len(results))
    return ok(
        {**summary, "results": results},
        f"Functional test completed. {passed}/{len(results)} tests passed.",
    )


@router.get("/history")
def history(request: Request, admin: AdminUserDep, tenant: TenantDep) -> dict[str, Any]:
    """Summaries of this tenant's recent self-check runs, newest first."""

    runs = [
        {key: value for key, value in run.items() if key != "tenantId"}
        for run in reversed(request.app.state.self_check_history)
        if run["tenantId"] == tenant.tenant_id
    ]
    return ok(runs)


@router.get("/health")
def health(user: CurrentUserDep) -> dict[str, Any]:
    body = ok(message="Functional test service is healthy")
    body["status"] = "operational"
    body["timestamp"] = dt.datetime.now(dt.timezone.utc).isoformat()
    return body
