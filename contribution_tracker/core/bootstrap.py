"""Startup schema creation and seed rows.

``initialize_database`` is called once from the application lifespan. It never
raises: a failure is logged and reported as a degraded
:class:`DatabaseStatus` so that the health endpoints keep answering while
the store is unreachable.
"""

from __future__ import annotations

import dataclasses
import enum
import json
import logging

from sqlalchemy import Column, inspect

from ..models import Base
from ..security.passwords import hash_password
from .config import Settings
from .db import Database
from .tenant_middleware import DEFAULT_TENANT_ID

__all__ = [
    "BOOTSTRAP_ADMIN_ID",
    "DatabaseMode",
    "DatabaseStatus",
    "ensure_bootstrap_admin",
    "ensure_default_tenant",
    "ensure_schema",
    "initialize_database",
]

logger = logging.getLogger(__name__)

BOOTSTRAP_ADMIN_ID = "admin-001"


class DatabaseMode(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    DEGRADED = "degraded"


@dataclasses.dataclass(frozen=True)
class DatabaseStatus:
    """Outcome of startup initialization, exposed by the health endpoints."""

    mode: DatabaseMode
    backend: str | None = None
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.mode is DatabaseMode.READY

    def as_dict(self) -> dict[str, str | None]:
        return {"status": self.mode.value, "backend": self.backend, "error": self.error}


def _column_ddl(column: Column, database: Database) -> str:
    dialect = database.engine.dialect
    ddl = f"{column.name} {column.type.compile(dialect=dialect)}"
    default = column.server_default
    if default is not None:
        arg = getattr(default, "arg", None)
        if arg is not None:
            rendered = str(arg if isinstance(arg, str) else arg.compile(dialect=dialect))
            # SQLite refuses non-constant defaults in ADD COLUMN.
            if not (database.backend_name == "sqlite" and "CURRENT_" in rendered.upper()):
                ddl += f" DEFAULT {rendered}"
    return ddl


def ensure_schema(database: Database) -> list[str]:
    """Create missing tables and add declared columns absent from existing ones.

    Returns the ``table.column`` names that were added. Running it against an
    up-to-date schema is a no-op.
    """

    engine = database.engine
    Base.metadata.create_all(engine, checkfirst=True)

    inspector = inspect(engine)
    added: list[str] = []
    for table in Base.metadata.sorted_tables:
        existing = {column["name"].lower() for column in inspector.get_columns(table.name)}
        for column in table.columns:
            if str(column.name).lower() in existing:
                continue
            if_not_exists = " IF NOT EXISTS" if database.backend_name == "postgresql" else ""
            database.execute(
                f"ALTER TABLE {table.name} ADD COLUMN{if_not_exists} {_column_ddl(column, database)}"
            )
            added.append(f"{table.name}.{column.name}")
    if added:
        logger.info("Added columns to existing tables: %s", ", ".join(added))
    return added


def ensure_default_tenant(database: Database, settings: Settings) -> str:
    """Return the default tenant id, inserting the tenant row when missing."""

    row = database.query_one(
        "SELECT id FROM tenants WHERE tenantPrefix = ?", [settings.default_tenant_prefix]
    )
    if row is not None:
        return str(row["id"])

    database.execute(
        "INSERT INTO tenants (id, tenantPrefix, name, adminEmails) VALUES (?, ?, ?, ?)",
        [DEFAULT_TENANT_ID, settings.default_tenant_prefix, "Default", "[]"],
    )
    logger.info("Created default tenant %r", settings.default_tenant_prefix)
    return DEFAULT_TENANT_ID


def ensure_bootstrap_admin(database: Database, settings: Settings, tenant_id: str) -> bool:
    """Insert the system administrator if no user holds its id or e-mail."""

    existing = database.query_one(
        "SELECT id FROM users WHERE id = ? OR email = ?",
        [BOOTSTRAP_ADMIN_ID, settings.bootstrap_admin_email],
    )
    if existing is not None:
        return False

    database.execute(
        """
        INSERT INTO users (
            id, fullName, staffId, email, password, involvedAccountNames,
            involvedSaleNames, involvedSaleEmails, role, status, canViewOthers, tenantId
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            BOOTSTRAP_ADMIN_ID,
            "System Administrator",
            "ADMIN001",
            settings.bootstrap_admin_email,
            hash_password(settings.bootstrap_admin_password),
            '["System"]',
            '["Admin"]',
            json.dumps([settings.bootstrap_admin_email]),
            "admin",
            "approved",
            True,
            tenant_id,
        ],
    )
    logger.info("Created bootstrap admin %s", settings.bootstrap_admin_email)
    if settings.bootstrap_admin_password == "password":
        logger.warning("Bootstrap admin uses the default password; change it for production.")
    return True


def initialize_database(database: Database, settings: Settings) -> DatabaseStatus:
    """Bootstrap schema and seed rows, reporting failures instead of raising."""

    try:
        ensure_schema(database)
        tenant_id = ensure_default_tenant(database, settings)
        ensure_bootstrap_admin(database, settings, tenant_id)
    except Exception as exc:
        logger.exception("Database initialization failed; continuing in degraded mode.")
        return DatabaseStatus(DatabaseMode.DEGRADED, database.backend_name, str(exc))

    logger.info("Database initialized (%s)", database.backend_name)
    return DatabaseStatus(DatabaseMode.READY, database.backend_name)
