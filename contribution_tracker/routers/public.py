"""Unauthenticated endpoints used by the login page."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from ..schemas import ok
from ..security import DatabaseDep, SettingsDep

router = APIRouter(prefix="/public", tags=["public"])

logger = logging.getLogger(__name__)


@router.get("/tenant-directory")
def tenant_directory(database: DatabaseDep, settings: SettingsDep) -> dict[str, Any]:
    """List ``{tenantPrefix, name}`` for every tenant, ordered by name.

    Falls back to the default tenant alone when the lookup fails so the login
    page can still render.
    """

    try:
        rows = database.query("SELECT tenantPrefix, name FROM tenants ORDER BY name ASC")
    except SQLAlchemyError as exc:
        logger.warning("Tenant directory unavailable, serving the default entry: %s", exc)
        return ok([{"tenantPrefix": settings.default_tenant_prefix, "name": "Default"}])
    return ok([{"tenantPrefix": row["tenantPrefix"], "name": row["name"]} for row in rows])
