"""Middleware resolving the tenant each request is served for."""

from __future__ import annotations

import dataclasses
import enum
import logging
import re
from collections.abc import Awaitable, Callable

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from .config import Settings, get_settings
from .db import Database
from .tenant_context import reset_tenant_context, set_tenant_context

__all__ = [
    "DEFAULT_TENANT_ID",
    "ResolvedTenant",
    "TenantResolution",
    "TenantResolverMiddleware",
    "lookup_tenant",
    "resolve_tenant_prefix",
]

logger = logging.getLogger(__name__)

DEFAULT_TENANT_ID = "tenant-default"
TENANT_HEADER = "x-tenant-prefix"
_PATH_PREFIX = re.compile(r"^/t/([a-zA-Z0-9_-]+)(/|$)")


class TenantResolution(str, enum.Enum):
    """How the tenant of a request was determined."""

    TENANCY_DISABLED = "tenancy-disabled"
    RESOLVED = "resolved"
    FALLBACK_DEFAULT = "fallback-default"
    DEGRADED = "degraded"


@dataclasses.dataclass(frozen=True)
class ResolvedTenant:
    tenant_id: str
    tenant_prefix: str
    resolution: TenantResolution


def resolve_tenant_prefix(request: Request, default_prefix: str) -> str:
    """Pick the tenant slug from prior state, header, ``/t/<prefix>`` path or default."""

    existing = getattr(request.state, "tenant_prefix", None)
    if existing:
        return str(existing)

    header = request.headers.get(TENANT_HEADER)
    if header and header.strip():
        return header.strip()

    match = _PATH_PREFIX.match(request.url.path)
    if match:
        return match.group(1)

    return default_prefix


def lookup_tenant(database: Database | None, prefix: str, settings: Settings) -> ResolvedTenant:
    """Map ``prefix`` to a tenant id, falling back to the default tenant.

    Lookup failures never block the request; they yield the default tenant
    with :attr:`TenantResolution.DEGRADED` so callers can observe the problem.
    """

    if not settings.enable_tenancy:
        return ResolvedTenant(DEFAULT_TENANT_ID, prefix, TenantResolution.TENANCY_DISABLED)

    default_prefix = settings.default_tenant_prefix
    if database is None:
        logger.warning("Tenant lookup skipped for %r: no database configured.", prefix)
        return ResolvedTenant(DEFAULT_TENANT_ID, default_prefix, TenantResolution.DEGRADED)

    try:
        row = database.query_one("SELECT id FROM tenants WHERE tenantPrefix = ?", [prefix])
        if row is not None:
            return ResolvedTenant(str(row["id"]), prefix, TenantResolution.RESOLVED)

        default_row = database.query_one(
            "SELECT id FROM tenants WHERE tenantPrefix = ?", [default_prefix]
        )
    except SQLAlchemyError:
        logger.warning(
            "Tenant lookup failed for %r; serving default tenant.", prefix, exc_info=True
        )
        return ResolvedTenant(DEFAULT_TENANT_ID, default_prefix, TenantResolution.DEGRADED)

    tenant_id = str(default_row["id"]) if default_row is not None else DEFAULT_TENANT_ID
    logger.debug("Unknown tenant prefix %r; using default tenant %s", prefix, tenant_id)
    return ResolvedTenant(tenant_id, default_prefix, TenantResolution.FALLBACK_DEFAULT)


class TenantResolverMiddleware(BaseHTTPMiddleware):
    """Attach ``tenant_id``, ``tenant_prefix`` and ``tenant_resolution`` to request state."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        database: Database | None = None,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(app)
        self._database = database
        self._settings = settings

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        if self._should_bypass(request):
            return await call_next(request)

        settings = self._resolve_settings(request)
        prefix = resolve_tenant_prefix(request, settings.default_tenant_prefix)
        tenant = await run_in_threadpool(
            lookup_tenant, self._resolve_database(request), prefix, settings
        )

        request.state.tenant_id = tenant.tenant_id
        request.state.tenant_prefix = tenant.tenant_prefix
        request.state.tenant_resolution = tenant.resolution

        context_token = set_tenant_context(tenant.tenant_id, tenant.tenant_prefix)
        try:
            return await call_next(request)
        finally:
            reset_tenant_context(context_token)

    def _resolve_settings(self, request: Request) -> Settings:
        if self._settings is not None:
            return self._settings
        return getattr(request.app.state, "settings", None) or get_settings()

    def _resolve_database(self, request: Request) -> Database | None:
        if self._database is not None:
            return self._database
        return getattr(request.app.state, "db", None)

    @staticmethod
    def _should_bypass(request: Request) -> bool:
        if request.method.upper() == "OPTIONS":
            return True

        path = request.url.path
        if path in {"/", "/api/health", "/api/version", "/api/metrics"}:
            return True
        return path.startswith(("/api/global", "/api/public"))
