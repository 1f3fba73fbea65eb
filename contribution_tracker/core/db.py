"""Database client shared by every request handler.

A single :class:`Database` is constructed at application startup, stored on
``app.state.db`` and disposed on shutdown. Handlers write plain SQL with
``?`` placeholders; the active backend decides how those are bound:

- :class:`SQLiteBackend` hands the statement to ``sqlite3`` unchanged.
- :class:`PostgresBackend` rewrites each ``?`` to psycopg's positional marker
  in encounter order (psycopg ships them to the server as ``$1..$n``) and
  translates the lowercase keys PostgreSQL returns for unquoted identifiers
  back into the camelCase names declared by the models.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url

from ..models import Base
from .config import Settings

__all__ = [
    "AGGREGATE_ALIASES",
    "Database",
    "ExecuteResult",
    "PostgresBackend",
    "QueryBackend",
    "SQLiteBackend",
    "WhereClause",
    "as_sqlalchemy_url",
    "build_set_clause",
    "build_column_map",
    "safe_url",
]

logger = logging.getLogger(__name__)

Row = dict[str, Any]

# Column aliases produced by aggregate queries; they are not table columns, so
# the declared schema cannot supply their camelCase spelling.
AGGREGATE_ALIASES = (
    "userName",
    "userEmail",
    "tenantName",
    "totalContributions",
    "approvedContributions",
    "submittedContributions",
    "draftContributions",
    "rejectedContributions",
    "criticalImpact",
    "highImpact",
    "mediumImpact",
    "lowImpact",
    "totalUsers",
    "totalTenants",
    "pendingUsers",
    "lastActivity",
    "userCount",
    "contributionCount",
)


def build_column_map(extra: Iterable[str] = AGGREGATE_ALIASES) -> dict[str, str]:
    """Return ``{lowercase: camelCase}`` for every declared column and alias."""

    mapping: dict[str, str] = {}
    for table in Base.metadata.tables.values():
        for column in table.columns:
            name = str(column.name)
            if name.lower() != name:
                mapping[name.lower()] = name
    for alias in extra:
        mapping[alias.lower()] = alias
    return mapping


def as_sqlalchemy_url(db_url: str) -> str:
    """Return a SQLAlchemy URL that uses the ``psycopg`` driver."""

    if db_url.startswith("postgresql+psycopg://"):
        return db_url
    if db_url.startswith("postgresql://"):
        return db_url.replace("postgresql://", "postgresql+psycopg://", 1)
    if db_url.startswith("postgres://"):
        return db_url.replace("postgres://", "postgresql+psycopg://", 1)
    return db_url


def safe_url(db_url: str) -> str:
    """Return ``db_url`` with any password redacted for logging."""

    try:
        parsed = make_url(db_url)
    except Exception:  # pragma: no cover - unparsable URLs are logged verbatim
        return db_url
    if parsed.password is None:
        return db_url
    return parsed.set(password="***").render_as_string(hide_password=False)


@dataclasses.dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a write statement."""

    changes: int
    last_id: int | None = None


class QueryBackend(Protocol):
    """Backend-specific statement preparation and row normalization."""

    name: str

    def prepare(self, sql: str, params: Sequence[Any]) -> tuple[str, tuple[Any, ...]]:
        ...

    def normalize(self, row: Row) -> Row:
        ...


class SQLiteBackend:
    """``sqlite3`` understands ``?`` natively and preserves column case."""

    name = "sqlite"

    def prepare(self, sql: str, params: Sequence[Any]) -> tuple[str, tuple[Any, ...]]:
        return sql, tuple(params)

    def normalize(self, row: Row) -> Row:
        return row


class PostgresBackend:
    """Rewrite placeholders for psycopg and restore camelCase result keys."""

    name = "postgresql"

    def __init__(self, column_map: Mapping[str, str] | None = None) -> None:
        self._column_map = dict(column_map) if column_map is not None else build_column_map()

    def prepare(self, sql: str, params: Sequence[Any]) -> tuple[str, tuple[Any, ...]]:
        values = tuple(params)
        parts: list[str] = []
        count = 0
        for char in sql:
            if char == "?":
                count += 1
                parts.append("%s")
            elif char == "%":
                parts.append("%%")
            else:
                parts.append(char)
        if count != len(values):
            raise ValueError(
                f"Statement has {count} placeholder(s) but {len(values)} parameter(s) were given."
            )
        return "".join(parts), values

    def normalize(self, row: Row) -> Row:
        return {self._column_map.get(key, key): value for key, value in row.items()}


def build_set_clause(values: Mapping[str, Any], *, touch: bool = True) -> tuple[str, list[Any]]:
    """Render ``col = ?`` assignments for an ``UPDATE``.

    Column names come from code, never from request data. ``touch`` appends
    ``updatedAt = CURRENT_TIMESTAMP``.
    """

    assignments = [f"{column} = ?" for column in values]
    if touch:
        assignments.append("updatedAt = CURRENT_TIMESTAMP")
    return ", ".join(assignments), list(values.values())


class WhereClause:
    """Accumulate optional ``WHERE`` conditions together with their parameters.

    >>> where = WhereClause()
    >>> where.add("c.tenantId = ?", "t-1")
    >>> where.add_if(None, "c.status = ?", None)
    >>> where.sql
    'WHERE c.tenantId = ?'
    """

    def __init__(self) -> None:
        self._conditions: list[str] = []
        self.params: list[Any] = []

    def add(self, condition: str, *params: Any) -> None:
        self._conditions.append(condition)
        self.params.extend(params)

    def add_if(self, value: Any, condition: str, *params: Any) -> None:
        """Append ``condition`` only when ``value`` is not empty."""

        if value is None or value == "":
            return
        self.add(condition, *params)

    @property
    def sql(self) -> str:
        if not self._conditions:
            return ""
        return "WHERE " + " AND ".join(self._conditions)

    def __bool__(self) -> bool:
        return bool(self._conditions)


def _create_sqlite_engine(db_path: str) -> Engine:
    if db_path != ":memory:":
        Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite+pysqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


class Database:
    """Pooled database client with a ``query``/``query_one``/``execute`` API.

    Every call checks out a connection, runs a single statement inside its own
    transaction and commits. There is no cross-call transaction; concurrent
    updates to the same row are last-write-wins.
    """

    def __init__(self, engine: Engine, backend: QueryBackend | None = None) -> None:
        self._engine = engine
        if backend is None:
            backend = PostgresBackend() if engine.dialect.name == "postgresql" else SQLiteBackend()
        self._backend = backend

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Select PostgreSQL when ``DATABASE_URL`` is configured, else SQLite."""

        if settings.database_url:
            url = as_sqlalchemy_url(settings.database_url)
            engine = create_engine(
                url,
                pool_size=settings.db_pool_size,
                max_overflow=0,
                pool_timeout=settings.db_pool_timeout,
                pool_recycle=settings.db_pool_recycle,
                pool_pre_ping=True,
                connect_args={"connect_timeout": settings.db_connect_timeout},
            )
            logger.info("Using PostgreSQL database at %s", safe_url(url))
            return cls(engine, PostgresBackend())

        logger.info("Using SQLite database at %s", settings.db_path)
        return cls(_create_sqlite_engine(settings.db_path), SQLiteBackend())

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def backend_name(self) -> str:
        return self._backend.name

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        """Run a ``SELECT`` and return every row as a dict."""

        statement, values = self._backend.prepare(sql, params)
        with self._engine.begin() as conn:
            result = conn.exec_driver_sql(statement, values)
            keys = list(result.keys())
            rows = [dict(zip(keys, row)) for row in result]
        return [self._backend.normalize(row) for row in rows]

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Row | None:
        """Return the first row of ``sql`` or ``None``."""

        rows = self.query(sql, params)
        return rows[0] if rows else None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        """Run a write statement and report the affected row count."""

        statement, values = self._backend.prepare(sql, params)
        with self._engine.begin() as conn:
            result = conn.exec_driver_sql(statement, values)
            changes = result.rowcount if result.rowcount is not None else 0
            last_id = result.lastrowid if self._backend.name == "sqlite" else None
        return ExecuteResult(changes=max(changes, 0), last_id=last_id)

    def ping(self) -> None:
        """Raise when the database cannot answer a trivial query."""

        self.query("SELECT 1 AS ok")

    def dispose(self) -> None:
        self._engine.dispose()
