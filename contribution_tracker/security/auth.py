"""Authentication and authorization dependencies for FastAPI routers."""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, Request, status

from ..core.config import Settings, get_settings
from ..core.db import Database
from ..core.errors import AppError
from ..core.tenant_middleware import DEFAULT_TENANT_ID
from ..schemas import UserRecord
from .tokens import (
    TokenExpiredError,
    TokenInvalidError,
    decode_global_token,
    decode_tenant_token,
    jwt_settings_from,
)

__all__ = [
    "AdminUserDep",
    "CurrentUserDep",
    "DatabaseDep",
    "GlobalAdmin",
    "GlobalAdminDep",
    "RequestTenant",
    "SettingsDep",
    "TenantDep",
    "can_view_user",
    "get_app_settings",
    "get_current_user",
    "get_database",
    "get_global_admin",
    "get_request_tenant",
    "require_admin",
    "require_role",
    "require_user_visibility",
]


@dataclasses.dataclass(frozen=True)
class RequestTenant:
    tenant_id: str
    tenant_prefix: str


@dataclasses.dataclass(frozen=True)
class GlobalAdmin:
    email: str


def get_database(request: Request) -> Database:
    """Return the client created at startup."""

    database = getattr(request.app.state, "db", None)
    if database is None:
        raise AppError(status.HTTP_503_SERVICE_UNAVAILABLE, "Database unavailable")
    return database


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_request_tenant(request: Request) -> RequestTenant:
    """Tenant attached by ``TenantResolverMiddleware``."""

    tenant_id = getattr(request.state, "tenant_id", None) or DEFAULT_TENANT_ID
    settings = get_app_settings(request)
    tenant_prefix = getattr(request.state, "tenant_prefix", None) or settings.default_tenant_prefix
    return RequestTenant(tenant_id=str(tenant_id), tenant_prefix=str(tenant_prefix))


DatabaseDep = Annotated[Database, Depends(get_database)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
TenantDep = Annotated[RequestTenant, Depends(get_request_tenant)]


def _bearer_token(request: Request) -> str | None:
    authorization = request.headers.get("Authorization")
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()


def get_current_user(request: Request, database: DatabaseDep, settings: SettingsDep) -> UserRecord:
    """Resolve the user behind the tenant bearer token.

    Raises 401 when the token is missing, invalid or expired, or when its
    user no longer exists, and 403 when the token was issued for a tenant
    other than the one serving the request.
    """

    token = _bearer_token(request)
    if token is None:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Access token required")

    try:
        payload = decode_tenant_token(token, jwt_settings=jwt_settings_from(settings))
    except TokenExpiredError as exc:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Token expired") from exc
    except TokenInvalidError as exc:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Invalid token") from exc

    row = database.query_one("SELECT * FROM users WHERE id = ?", [payload["userId"]])
    if row is None:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "User not found")
    user = UserRecord.from_row(row)

    token_tenant = payload.get("tenantId")
    request_tenant = getattr(request.state, "tenant_id", None)
    if token_tenant and request_tenant and token_tenant != request_tenant:
        raise AppError(status.HTTP_403_FORBIDDEN, "Tenant mismatch")
    if token_tenant and user.tenant_id and token_tenant != user.tenant_id:
        raise AppError(status.HTTP_403_FORBIDDEN, "Tenant mismatch")

    request.state.user_id = user.id
    return user


CurrentUserDep = Annotated[UserRecord, Depends(get_current_user)]


def require_role(*roles: str) -> Callable[..., UserRecord]:
    """Create a dependency admitting only users whose role is in ``roles``."""

    if not roles:
        raise ValueError("At least one role is required.")
    allowed = frozenset(roles)

    def dependency(user: CurrentUserDep) -> UserRecord:
        if user.role not in allowed:
            raise AppError(status.HTTP_403_FORBIDDEN, "Insufficient permissions")
        return user

    return dependency


require_admin = require_role("admin")

AdminUserDep = Annotated[UserRecord, Depends(require_admin)]


def can_view_user(viewer: UserRecord, target: UserRecord) -> bool:
    """Admins and the user themself always; others need ``canViewOthers`` and a shared account."""

    if viewer.is_admin or viewer.id == target.id:
        return True
    if not viewer.can_view_others:
        return False
    return bool(set(viewer.involved_account_names) & set(target.involved_account_names))


def require_user_visibility(
    user_id: str, user: CurrentUserDep, database: DatabaseDep, tenant: TenantDep
) -> UserRecord:
    """Load the ``user_id`` path target and check the caller may view it."""

    row = database.query_one(
        "SELECT * FROM users WHERE id = ? AND tenantId = ?", [user_id, tenant.tenant_id]
    )
    if row is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "Target user not found")
    target = UserRecord.from_row(row)

    if can_view_user(user, target):
        return target
    if user.can_view_others:
        raise AppError(status.HTTP_403_FORBIDDEN, "Insufficient permissions to view this user")
    raise AppError(status.HTTP_403_FORBIDDEN, "Insufficient permissions to view other users")


def get_global_admin(request: Request, settings: SettingsDep) -> GlobalAdmin:
    """Validate the operator token used by the ``/api/global`` routes."""

    token = _bearer_token(request)
    if token is None:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Access token required")
    try:
        payload = decode_global_token(token, jwt_settings=jwt_settings_from(settings))
    except TokenExpiredError as exc:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Token expired") from exc
    except TokenInvalidError as exc:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Invalid token") from exc

    if payload.get("global") is not True:
        raise AppError(status.HTTP_403_FORBIDDEN, "Global admin only")
    return GlobalAdmin(email=str(payload.get("email", "")))


GlobalAdminDep = Annotated[GlobalAdmin, Depends(get_global_admin)]
