"""Tests for the database client, its backends and schema bootstrap."""

from __future__ import annotations

import pytest
from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

from contribution_tracker import repository
from contribution_tracker.core.bootstrap import (
    BOOTSTRAP_ADMIN_ID,
    DatabaseMode,
    ensure_bootstrap_admin,
    ensure_default_tenant,
    ensure_schema,
    initialize_database,
)
from contribution_tracker.core.config import Settings
from contribution_tracker.core.db import (
    Database,
    PostgresBackend,
    SQLiteBackend,
    WhereClause,
    as_sqlalchemy_url,
    build_column_map,
    build_set_clause,
    safe_url,
)
from contribution_tracker.core.tenant_middleware import DEFAULT_TENANT_ID
from contribution_tracker.security import verify_password


def test_postgres_backend_rewrites_placeholders_in_order():
    backend = PostgresBackend()
    sql, params = backend.prepare(
        "SELECT * FROM users WHERE email = ? AND tenantId = ?", ["a@example.com", "t-1"]
    )
    assert sql == "SELECT * FROM users WHERE email = %s AND tenantId = %s"
    assert params == ("a@example.com", "t-1")


def test_postgres_backend_escapes_literal_percent():
    sql, _ = PostgresBackend().prepare(
        "SELECT id FROM contributions WHERE contributionMonth LIKE '2024-%' AND id = ?", ["c1"]
    )
    assert sql == "SELECT id FROM contributions WHERE contributionMonth LIKE '2024-%%' AND id = %s"


def test_postgres_backend_rejects_parameter_count_mismatch():
    with pytest.raises(ValueError):
        PostgresBackend().prepare("SELECT * FROM users WHERE id = ? AND email = ?", ["only-one"])


def test_postgres_backend_restores_camel_case_keys():
    backend = PostgresBackend()
    row = backend.normalize(
        {
            "id": "u1",
            "fullname": "Ada",
            "involvedaccountnames": "[]",
            "tenantprefix": "acme",
            "username": "Ada",
            "totalcontributions": 3,
            "mystery": 1,
        }
    )
    assert row == {
        "id": "u1",
        "fullName": "Ada",
        "involvedAccountNames": "[]",
        "tenantPrefix": "acme",
        "userName": "Ada",
        "totalContributions": 3,
        "mystery": 1,
    }


def test_column_map_covers_declared_camel_case_columns():
    mapping = build_column_map()
    assert mapping["saleapprovaldate"] == "saleApprovalDate"
    assert mapping["canviewothers"] == "canViewOthers"
    assert "email" not in mapping


def test_sqlite_backend_passes_statements_through():
    backend = SQLiteBackend()
    assert backend.prepare("SELECT ? AS x", [1]) == ("SELECT ? AS x", (1,))
    assert backend.normalize({"fullName": "Ada"}) == {"fullName": "Ada"}


def test_build_set_clause_touches_updated_at():
    assignments, params = build_set_clause({"role": "admin", "status": "approved"})
    assert assignments == "role = ?, status = ?, updatedAt = CURRENT_TIMESTAMP"
    assert params == ["admin", "approved"]

    assignments, _ = build_set_clause({"role": "admin"}, touch=False)
    assert assignments == "role = ?"


def test_where_clause_skips_empty_values():
    where = WhereClause()
    assert not where
    assert where.sql == ""

    where.add("c.tenantId = ?", "t-1")
    where.add_if(None, "c.status = ?", None)
    where.add_if("", "c.impact = ?", "")
    where.add_if("draft", "c.status = ?", "draft")

    assert where.sql == "WHERE c.tenantId = ? AND c.status = ?"
    assert where.params == ["t-1", "draft"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("postgres://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgresql://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgresql+psycopg://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
    ],
)
def test_as_sqlalchemy_url_selects_psycopg(raw, expected):
    assert as_sqlalchemy_url(raw) == expected


def test_safe_url_redacts_password():
    assert safe_url("postgresql+psycopg://user:hunter2@db:5432/app") == (
        "postgresql+psycopg://user:***@db:5432/app"
    )
    assert safe_url("postgresql+psycopg://user@db/app") == "postgresql+psycopg://user@db/app"


def test_query_returns_dicts_and_execute_reports_changes(database: Database):
    ensure_schema(database)
    result = database.execute(
        "INSERT INTO tenants (id, tenantPrefix, name, adminEmails) VALUES (?, ?, ?, ?)",
        ["t-1", "acme", "Acme", "[]"],
    )
    assert result.changes == 1
    assert result.last_id is not None

    row = database.query_one("SELECT * FROM tenants WHERE tenantPrefix = ?", ["acme"])
    assert row is not None
    assert row["tenantPrefix"] == "acme"
    assert row["name"] == "Acme"
    assert database.query_one("SELECT * FROM tenants WHERE tenantPrefix = ?", ["none"]) is None

    updated = database.execute("UPDATE tenants SET name = ? WHERE id = ?", ["Acme Inc", "missing"])
    assert updated.changes == 0


def test_ensure_schema_is_idempotent(database: Database):
    assert ensure_schema(database) == []
    assert ensure_schema(database) == []
    tables = {row["name"] for row in database.query("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {"tenants", "users", "contributions"} <= tables


def test_tenant_columns_reference_the_tenants_table(database: Database):
    ensure_schema(database)
    inspector = inspect(database.engine)
    for table in ("users", "contributions"):
        references = {
            (tuple(fk["constrained_columns"]), fk["referred_table"])
            for fk in inspector.get_foreign_keys(table)
        }
        assert (("tenantId",), "tenants") in references

    user_columns = {column["name"] for column in inspector.get_columns("users")}
    assert "tenantId" in user_columns
    assert not {name for name in user_columns if name.startswith("emailVerification")}

    with pytest.raises(IntegrityError):
        repository.create_user(
            database,
            tenant_id="tenant-missing",
            full_name="Orphan",
            staff_id="O-1",
            email="orphan@example.com",
            password="secret123",
        )


def test_ensure_schema_adds_columns_missing_from_legacy_tables(database: Database):
    database.execute(
        """
        CREATE TABLE users (
            id TEXT PRIMARY KEY,
            fullName TEXT NOT NULL,
            staffId TEXT UNIQUE NOT NULL,
            email TEXT UNIQUE NOT NULL,
            password TEXT NOT NULL,
            involvedAccountNames TEXT NOT NULL,
            involvedSaleNames TEXT NOT NULL,
            involvedSaleEmails TEXT NOT NULL,
            role TEXT DEFAULT 'user',
            status TEXT DEFAULT 'pending'
        )
        """
    )
    database.execute(
        "INSERT INTO users (id, fullName, staffId, email, password, involvedAccountNames,"
        " involvedSaleNames, involvedSaleEmails) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        ["u1", "Legacy User", "L001", "legacy@example.com", "x", "[]", "[]", "[]"],
    )

    added = ensure_schema(database)

    assert "users.canViewOthers" in added
    assert "users.tenantId" in added
    assert "users.createdAt" in added
    legacy = repository.get_user(database, "u1")
    assert legacy is not None
    assert legacy.can_view_others is False
    assert legacy.tenant_id is None
    assert ensure_schema(database) == []


def test_json_list_columns_round_trip_and_tolerate_garbage(database: Database):
    ensure_schema(database)
    tenant_id = ensure_default_tenant(database, Settings())
    user_id = repository.create_user(
        database,
        tenant_id=tenant_id,
        full_name="Ada Lovelace",
        staff_id="S-1",
        email="Ada@Example.com",
        password="secret123",
        involved_account_names=["Acme Corp", "Globex"],
        involved_sale_names=["Jane Sale"],
        involved_sale_emails=["jane@example.com"],
    )

    user = repository.get_user(database, user_id)
    assert user is not None
    assert user.email == "ada@example.com"
    assert user.involved_account_names == ["Acme Corp", "Globex"]
    assert user.status == "pending"
    assert "passwordHash" not in user.model_dump(by_alias=True)

    database.execute("UPDATE users SET involvedSaleNames = ? WHERE id = ?", ["not json", user_id])
    user = repository.get_user(database, user_id)
    assert user is not None
    assert user.involved_sale_names == []


def test_bootstrap_seeds_default_tenant_and_admin_once(database: Database):
    settings = Settings(bootstrap_admin_password="bootstrap-pass")
    status = initialize_database(database, settings)
    assert status.mode is DatabaseMode.READY
    assert status.as_dict() == {"status": "ready", "backend": "sqlite", "error": None}

    admin = repository.get_user(database, BOOTSTRAP_ADMIN_ID)
    assert admin is not None
    assert admin.role == "admin"
    assert admin.status == "approved"
    assert admin.can_view_others is True
    assert admin.tenant_id == DEFAULT_TENANT_ID
    assert admin.involved_account_names == ["System"]
    assert verify_password("bootstrap-pass", admin.password_hash)

    assert ensure_bootstrap_admin(database, settings, DEFAULT_TENANT_ID) is False
    assert ensure_default_tenant(database, settings) == DEFAULT_TENANT_ID
    assert len(repository.list_tenants(database)) == 1


def test_initialize_database_reports_degraded_mode(tmp_path):
    from sqlalchemy import create_engine

    unreachable = tmp_path / "missing-dir" / "nested" / "db.sqlite"
    database = Database(create_engine(f"sqlite+pysqlite:///{unreachable}"))

    status = initialize_database(database, Settings())

    assert status.mode is DatabaseMode.DEGRADED
    assert status.backend == "sqlite"
    assert status.error
    assert not status.available
    database.dispose()
