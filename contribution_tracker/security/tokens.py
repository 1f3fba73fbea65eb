"""Issuing and decoding the two kinds of bearer tokens.

Tenant tokens identify a user inside one tenant (audience ``tenant``).
Global-admin tokens identify the operator configured through
``GLOBAL_ADMIN_EMAIL``/``GLOBAL_ADMIN_PASSWORD`` (audience ``global-admin``)
and are never accepted by the tenant endpoints, nor the reverse.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from typing import Any, TypedDict

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from ..core.config import DEFAULT_JWT_SECRET, Settings, get_settings

__all__ = [
    "GLOBAL_AUDIENCE",
    "GlobalTokenPayload",
    "JWTSettings",
    "TENANT_AUDIENCE",
    "TenantTokenPayload",
    "TokenExpiredError",
    "TokenInvalidError",
    "create_global_token",
    "create_tenant_token",
    "decode_global_token",
    "decode_tenant_token",
    "jwt_settings_from",
]

logger = logging.getLogger(__name__)

TENANT_AUDIENCE = "tenant"
GLOBAL_AUDIENCE = "global-admin"


class TokenInvalidError(ValueError):
    """Raised when a token is malformed, badly signed or for another audience."""


class TokenExpiredError(TokenInvalidError):
    """Raised when a token's ``exp`` claim is in the past."""


class TenantTokenPayload(TypedDict, total=False):
    userId: str
    tenantId: str
    tenantPrefix: str
    aud: str
    iat: int
    exp: int


class GlobalTokenPayload(TypedDict, total=False):
    email: str
    # ``global`` is a keyword, so the claim is read with payload["global"].
    aud: str
    iat: int
    exp: int


@dataclasses.dataclass(frozen=True)
class JWTSettings:
    """Signing configuration for both token kinds."""

    secret: str
    algorithm: str = "HS256"
    tenant_ttl: dt.timedelta = dt.timedelta(hours=24)
    global_ttl: dt.timedelta = dt.timedelta(hours=12)


def jwt_settings_from(settings: Settings | None = None) -> JWTSettings:
    settings = settings or get_settings()
    if settings.jwt_secret == DEFAULT_JWT_SECRET and settings.is_production:
        logger.warning("JWT_SECRET is not set; tokens are signed with the development secret.")
    return JWTSettings(
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        tenant_ttl=dt.timedelta(hours=settings.token_ttl_hours),
        global_ttl=dt.timedelta(hours=settings.global_token_ttl_hours),
    )


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _encode(claims: dict[str, Any], ttl: dt.timedelta, jwt_settings: JWTSettings) -> str:
    now = _utcnow()
    payload = {**claims, "iat": int(now.timestamp()), "exp": int((now + ttl).timestamp())}
    return str(jwt.encode(payload, jwt_settings.secret, algorithm=jwt_settings.algorithm))


def _decode(token: str, audience: str, jwt_settings: JWTSettings) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            jwt_settings.secret,
            algorithms=[jwt_settings.algorithm],
            audience=audience,
            options={"require": ["exp", "aud"]},
        )
    except ExpiredSignatureError as exc:
        raise TokenExpiredError("Token expired") from exc
    except InvalidTokenError as exc:
        raise TokenInvalidError("Invalid token") from exc


def create_tenant_token(
    user_id: str,
    tenant_id: str,
    tenant_prefix: str,
    *,
    jwt_settings: JWTSettings | None = None,
) -> str:
    """Issue the 24h token used against the tenant-scoped API."""

    jwt_settings = jwt_settings or jwt_settings_from()
    claims = {
        "userId": user_id,
        "tenantId": tenant_id,
        "tenantPrefix": tenant_prefix,
        "aud": TENANT_AUDIENCE,
    }
    return _encode(claims, jwt_settings.tenant_ttl, jwt_settings)


def decode_tenant_token(token: str, *, jwt_settings: JWTSettings | None = None) -> TenantTokenPayload:
    payload = _decode(token, TENANT_AUDIENCE, jwt_settings or jwt_settings_from())
    if not payload.get("userId"):
        raise TokenInvalidError("Invalid token")
    return payload  # type: ignore[return-value]


def create_global_token(email: str, *, jwt_settings: JWTSettings | None = None) -> str:
    """Issue the 12h cross-tenant operator token."""

    jwt_settings = jwt_settings or jwt_settings_from()
    claims = {"email": email, "global": True, "aud": GLOBAL_AUDIENCE}
    return _encode(claims, jwt_settings.global_ttl, jwt_settings)


def decode_global_token(token: str, *, jwt_settings: JWTSettings | None = None) -> GlobalTokenPayload:
    """Decode an operator token; the ``global`` flag is checked by the caller."""

    return _decode(token, GLOBAL_AUDIENCE, jwt_settings or jwt_settings_from())  # type: ignore[return-value]
