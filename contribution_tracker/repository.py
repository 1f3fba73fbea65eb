"""Queries shared by the routers and the admin CLI.

All functions take the :class:`~contribution_tracker.core.db.Database` client
explicitly and return typed records from :mod:`contribution_tracker.schemas`.
Tenant-scoped lookups take a ``tenant_id``; passing ``None`` searches every
tenant and is reserved for the global-admin and bootstrap paths.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from .core.db import Database, WhereClause, build_set_clause
from .schemas import ContributionRecord, TenantRecord, UserRecord, dump_json_list
from .security.passwords import hash_password

CONTRIBUTION_SELECT = """
    SELECT c.*, u.fullName AS userName
    FROM contributions c
    JOIN users u ON c.userId = u.id
"""


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_email(email: str) -> str:
    return email.strip().lower()


# Users -----------------------------------------------------------------------


def get_user(database: Database, user_id: str, tenant_id: str | None = None) -> UserRecord | None:
    if tenant_id is None:
        row = database.query_one("SELECT * FROM users WHERE id = ?", [user_id])
    else:
        row = database.query_one(
            "SELECT * FROM users WHERE id = ? AND tenantId = ?", [user_id, tenant_id]
        )
    return UserRecord.from_row(row) if row is not None else None


def get_user_by_email(database: Database, email: str, tenant_id: str) -> UserRecord | None:
    row = database.query_one(
        "SELECT * FROM users WHERE email = ? AND tenantId = ?",
        [normalize_email(email), tenant_id],
    )
    return UserRecord.from_row(row) if row is not None else None


def list_users(database: Database, tenant_id: str) -> list[UserRecord]:
    rows = database.query(
        "SELECT * FROM users WHERE tenantId = ? ORDER BY fullName", [tenant_id]
    )
    return [UserRecord.from_row(row) for row in rows]


def find_identity_conflicts(
    database: Database,
    *,
    email: str | None = None,
    staff_id: str | None = None,
    exclude_user_id: str | None = None,
) -> set[str]:
    """Return which of ``email``/``staffId`` already belong to another user.

    E-mail and staff id are unique across all tenants.
    """

    conflicts: set[str] = set()
    checks = (("email", normalize_email(email) if email else None), ("staffId", staff_id))
    for column, value in checks:
        if not value:
            continue
        where = WhereClause()
        where.add(f"{column} = ?", value)
        where.add_if(exclude_user_id, "id != ?", exclude_user_id)
        if database.query_one(f"SELECT id FROM users {where.sql}", where.params) is not None:
            conflicts.add(column)
    return conflicts


def create_user(
    database: Database,
    *,
    tenant_id: str,
    full_name: str,
    staff_id: str,
    email: str,
    password: str,
    involved_account_names: Sequence[str] = (),
    involved_sale_names: Sequence[str] = (),
    involved_sale_emails: Sequence[str] = (),
    role: str = "user",
    status: str = "pending",
    can_view_others: bool = False,
    user_id: str | None = None,
) -> str:
    """Insert a user with a freshly hashed password and return its id."""

    user_id = user_id or new_id()
    database.execute(
        """
        INSERT INTO users (
            id, fullName, staffId, email, password, involvedAccountNames,
            involvedSaleNames, involvedSaleEmails, role, status, canViewOthers, tenantId
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            user_id,
            full_name.strip(),
            staff_id.strip(),
            normalize_email(email),
            hash_password(password),
            dump_json_list(list(involved_account_names)),
            dump_json_list(list(involved_sale_names)),
            dump_json_list(list(involved_sale_emails)),
            role,
            status,
            bool(can_view_others),
            tenant_id,
        ],
    )
    return user_id


def update_user(
    database: Database,
    user_id: str,
    values: Mapping[str, Any],
    tenant_id: str | None = None,
) -> bool:
    """Apply ``{column: value}`` to a user; returns whether a row matched."""

    assignments, params = build_set_clause(values)
    where = WhereClause()
    where.add("id = ?", user_id)
    where.add_if(tenant_id, "tenantId = ?", tenant_id)
    result = database.execute(
        f"UPDATE users SET {assignments} {where.sql}", [*params, *where.params]
    )
    return result.changes > 0


def set_user_status(
    database: Database, user_id: str, status: str, tenant_id: str | None = None
) -> bool:
    return update_user(database, user_id, {"status": status}, tenant_id)


def set_user_password(database: Database, user_id: str, password: str) -> bool:
    return update_user(database, user_id, {"password": hash_password(password)})


def delete_user(database: Database, user_id: str, tenant_id: str) -> bool:
    result = database.execute(
        "DELETE FROM users WHERE id = ? AND tenantId = ?", [user_id, tenant_id]
    )
    return result.changes > 0


# Tenants ---------------------------------------------------------------------


def get_tenant(database: Database, tenant_id: str) -> TenantRecord | None:
    row = database.query_one("SELECT * FROM tenants WHERE id = ?", [tenant_id])
    return TenantRecord.from_row(row) if row is not None else None


def get_tenant_by_prefix(database: Database, tenant_prefix: str) -> TenantRecord | None:
    row = database.query_one("SELECT * FROM tenants WHERE tenantPrefix = ?", [tenant_prefix])
    return TenantRecord.from_row(row) if row is not None else None


def list_tenants(database: Database) -> list[TenantRecord]:
    rows = database.query("SELECT * FROM tenants ORDER BY createdAt DESC, name")
    return [TenantRecord.from_row(row) for row in rows]


def create_tenant(
    database: Database, *, tenant_prefix: str, name: str, admin_emails: Sequence[str]
) -> str:
    tenant_id = new_id()
    database.execute(
        "INSERT INTO tenants (id, tenantPrefix, name, adminEmails) VALUES (?, ?, ?, ?)",
        [tenant_id, tenant_prefix, name.strip(), dump_json_list(list(admin_emails))],
    )
    return tenant_id


def update_tenant(database: Database, tenant_id: str, values: Mapping[str, Any]) -> bool:
    assignments, params = build_set_clause(values)
    result = database.execute(
        f"UPDATE tenants SET {assignments} WHERE id = ?", [*params, tenant_id]
    )
    return result.changes > 0


def count_tenant_dependents(database: Database, tenant_id: str) -> tuple[int, int]:
    """Return ``(users, contributions)`` rows attached to ``tenant_id``."""

    users = database.query_one(
        "SELECT COUNT(*) AS userCount FROM users WHERE tenantId = ?", [tenant_id]
    )
    contributions = database.query_one(
        "SELECT COUNT(*) AS contributionCount FROM contributions WHERE tenantId = ?",
        [tenant_id],
    )
    return (
        int((users or {}).get("userCount") or 0),
        int((contributions or {}).get("contributionCount") or 0),
    )


def delete_tenant(database: Database, tenant_id: str) -> bool:
    return database.execute("DELETE FROM tenants WHERE id = ?", [tenant_id]).changes > 0


# Contributions ---------------------------------------------------------------


def get_contribution(
    database: Database, contribution_id: str, tenant_id: str | None
) -> ContributionRecord | None:
    where = WhereClause()
    where.add("c.id = ?", contribution_id)
    where.add_if(tenant_id, "c.tenantId = ?", tenant_id)
    row = database.query_one(f"{CONTRIBUTION_SELECT} {where.sql}", where.params)
    return ContributionRecord.from_row(row) if row is not None else None


def list_contributions(
    database: Database,
    where: WhereClause,
    *,
    limit: int | None = None,
    offset: int | None = None,
) -> list[ContributionRecord]:
    sql = f"{CONTRIBUTION_SELECT} {where.sql} ORDER BY c.createdAt DESC, c.id"
    params = list(where.params)
    if limit is not None:
        sql += " LIMIT ? OFFSET ?"
        params.extend([limit, offset or 0])
    return [ContributionRecord.from_row(row) for row in database.query(sql, params)]


def create_contribution(database: Database, *, user_id: str, tenant_id: str, values: Mapping[str, Any]) -> str:
    """Insert a contribution; ``values`` maps camelCase columns to bound values."""

    contribution_id = new_id()
    columns = ["id", "userId", "tenantId", *values.keys()]
    placeholders = ", ".join("?" for _ in columns)
    database.execute(
        f"INSERT INTO contributions ({', '.join(columns)}) VALUES ({placeholders})",
        [contribution_id, user_id, tenant_id, *values.values()],
    )
    return contribution_id


def update_contribution(
    database: Database, contribution_id: str, values: Mapping[str, Any], tenant_id: str
) -> bool:
    assignments, params = build_set_clause(values)
    result = database.execute(
        f"UPDATE contributions SET {assignments} WHERE id = ? AND tenantId = ?",
        [*params, contribution_id, tenant_id],
    )
    return result.changes > 0


def delete_contribution(database: Database, contribution_id: str, tenant_id: str) -> bool:
    result = database.execute(
        "DELETE FROM contributions WHERE id = ? AND tenantId = ?", [contribution_id, tenant_id]
    )
    return result.changes > 0
