"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

__all__ = [
    "DEFAULT_JWT_SECRET",
    "Settings",
    "get_settings",
    "reset_settings_cache",
]

DEFAULT_JWT_SECRET = "development-only-secret-change-me"
_TRUE_VALUES = {"1", "true", "yes", "on"}


def _to_bool(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def _to_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from exc


def _split_csv(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclasses.dataclass(frozen=True)
class Settings:
    """Process-wide settings resolved once at startup."""

    database_url: str | None = None
    db_path: str = "presale_contributions.db"
    db_pool_size: int = 20
    db_pool_timeout: int = 10
    db_connect_timeout: int = 10
    db_pool_recycle: int = 1800

    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_ttl_hours: int = 24
    global_token_ttl_hours: int = 12

    global_admin_email: str = "global@asc.com"
    global_admin_password: str = "change-me"

    enable_tenancy: bool = False
    default_tenant_prefix: str = "default"

    bootstrap_admin_email: str = "admin@presale.com"
    bootstrap_admin_password: str = "password"

    environment: str = "development"
    port: int = 8080
    cors_origins: tuple[str, ...] = ()
    rate_limit_enabled: bool = True
    login_rate_limit: str = "20/minute"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def uses_postgres(self) -> bool:
        return bool(self.database_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build :class:`Settings` from the environment with development defaults."""

    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        db_path=os.getenv("DB_PATH") or "presale_contributions.db",
        db_pool_size=_to_int("DB_POOL_SIZE", 20),
        db_pool_timeout=_to_int("DB_POOL_TIMEOUT", 10),
        db_connect_timeout=_to_int("DB_CONNECT_TIMEOUT", 10),
        db_pool_recycle=_to_int("DB_POOL_RECYCLE", 1800),
        jwt_secret=os.getenv("JWT_SECRET") or DEFAULT_JWT_SECRET,
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        token_ttl_hours=_to_int("TOKEN_TTL_HOURS", 24),
        global_token_ttl_hours=_to_int("GLOBAL_TOKEN_TTL_HOURS", 12),
        global_admin_email=os.getenv("GLOBAL_ADMIN_EMAIL", "global@asc.com").strip().lower(),
        global_admin_password=os.getenv("GLOBAL_ADMIN_PASSWORD", "change-me"),
        enable_tenancy=_to_bool(os.getenv("ENABLE_TENANCY")),
        default_tenant_prefix=(os.getenv("DEFAULT_TENANT_PREFIX") or "default").strip(),
        bootstrap_admin_email=os.getenv("BOOTSTRAP_ADMIN_EMAIL", "admin@presale.com").strip().lower(),
        bootstrap_admin_password=os.getenv("BOOTSTRAP_ADMIN_PASSWORD", "password"),
        environment=os.getenv("APP_ENV", "development"),
        port=_to_int("PORT", 8080),
        cors_origins=_split_csv(os.getenv("CORS_ORIGINS")),
        rate_limit_enabled=_to_bool(os.getenv("RATE_LIMIT_ENABLED"), default=True),
        login_rate_limit=os.getenv("LOGIN_RATE_LIMIT", "20/minute"),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()
