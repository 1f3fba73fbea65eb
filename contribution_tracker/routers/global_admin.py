"""Cross-tenant operator API mounted at ``/api/global``.

Authenticated with a separate operator token (``aud=global-admin``) whose
credentials come from ``GLOBAL_ADMIN_EMAIL``/``GLOBAL_ADMIN_PASSWORD``.
These routes never go through tenant resolution.
"""

import datetime as dt
import hmac
import logging
from typing import Any

from fastapi import APIRouter, Query, Request, status
from pydantic import EmailStr, Field
from slowapi import Limiter

from .. import repository
from ..core.db import Row, WhereClause
from ..core.errors import AppError
from ..core.rate_limit import limited_route
from ..schemas import (
    IMPACT_LEVELS,
    CamelModel,
    ContributionRecord,
    Role,
    UserRecord,
    UserStatus,
    dump_json_list,
    ok,
    to_iso,
)
from ..security import (
    DatabaseDep,
    GlobalAdminDep,
    SettingsDep,
    create_global_token,
    jwt_settings_from,
)

router = APIRouter(prefix="/global", tags=["global"])

logger = logging.getLogger(__name__)

TENANT_PREFIX_PATTERN = r"^[a-z0-9_-]{2,30}$"
MAX_PAGE_SIZE = 500


class GlobalLoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class GlobalCreateUserRequest(CamelModel):
    full_name: str = Field(..., min_length=1, max_length=255)
    staff_id: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    tenant_prefix: str = Field(..., pattern=TENANT_PREFIX_PATTERN)
    role: Role = "user"
    can_view_others: bool = False
    involved_account_names: list[str] = Field(default_factory=list)
    involved_sale_names: list[str] = Field(default_factory=list)
    involved_sale_emails: list[EmailStr] = Field(default_factory=list)


class GlobalUpdateUserRequest(CamelModel):
    role: Role | None = None
    status: UserStatus | None = None
    can_view_others: bool | None = None
    tenant_prefix: str | None = Field(default=None, pattern=TENANT_PREFIX_PATTERN)


class CreateTenantRequest(CamelModel):
    tenant_prefix: str = Field(..., pattern=TENANT_PREFIX_PATTERN)
    name: str = Field(..., min_length=2, max_length=255)
    admin_emails: list[EmailStr] = Field(..., min_length=1)


class UpdateTenantRequest(CamelModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    admin_emails: list[EmailStr] | None = Field(default=None, min_length=1)


def _count(database: DatabaseDep, sql: str, params: list[Any] | None = None) -> int:
    row = database.query_one(sql, params or [])
    return int((row or {}).get("count") or 0)


def _date_range(start: dt.date | None, end: dt.date | None, column: str) -> WhereClause:
    """Restrict ``column`` to whole days from ``start`` through ``end``."""

    where = WhereClause()
    if start is not None:
        where.add(f"{column} >= ?", start.isoformat())
    if end is not None:
        # Timestamps on the end day sort after the bare date.
        where.add(f"{column} < ?", (end + dt.timedelta(days=1)).isoformat())
    return where


def login(request: Request, payload: GlobalLoginRequest, settings: SettingsDep) -> dict[str, Any]:
    """Exchange the operator credentials for a 12h global token."""

    email_ok = hmac.compare_digest(
        payload.email.lower().encode("utf-8"), settings.global_admin_email.lower().encode("utf-8")
    )
    password_ok = hmac.compare_digest(
        payload.password.encode("utf-8"), settings.global_admin_password.encode("utf-8")
    )
    if not (email_ok and password_ok):
        logger.warning("Rejected global admin login for %s", payload.email)
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")
    token = create_global_token(payload.email, jwt_settings=jwt_settings_from(settings))
    return ok({"token": token})


def login_router(limiter: Limiter, limit: str) -> APIRouter:
    return limited_route(APIRouter(prefix="/global", tags=["global"]), "/login", login, limiter, limit)


@router.get("/overview")
def overview(
    admin: GlobalAdminDep,
    database: DatabaseDep,
    start_date: dt.date | None = Query(default=None, alias="startDate"),
    end_date: dt.date | None = Query(default=None, alias="endDate"),
) -> dict[str, Any]:
    """Platform totals, breakdowns, busiest tenants and recent activity."""

    users_where = _date_range(start_date, end_date, "createdAt")
    contributions_where = _date_range(start_date, end_date, "createdAt")
    totals = {
        "tenants": _count(database, "SELECT COUNT(*) AS count FROM tenants"),
        "users": _count(
            database, f"SELECT COUNT(*) AS count FROM users {users_where.sql}", users_where.params
        ),
        "contributions": _count(
            database,
            f"SELECT COUNT(*) AS count FROM contributions {contributions_where.sql}",
            contributions_where.params,
        ),
    }

    by_status = database.query(
        "SELECT status, COUNT(*) AS count FROM contributions GROUP BY status ORDER BY status"
    )
    by_impact = database.query(
        "SELECT impact, COUNT(*) AS count FROM contributions GROUP BY impact ORDER BY impact"
    )
    impact_breakdown = {level: 0 for level in IMPACT_LEVELS}
    for row in by_impact:
        if row["impact"] in impact_breakdown:
            impact_breakdown[row["impact"]] = int(row["count"] or 0)

    top_tenants = database.query(
        """
        SELECT t.tenantPrefix, t.name, COUNT(c.id) AS contributions
        FROM contributions c
        LEFT JOIN tenants t ON c.tenantId = t.id
        GROUP BY t.tenantPrefix, t.name
        ORDER BY contributions DESC, t.tenantPrefix
        LIMIT 10
        """
    )
    recent = database.query(
        """
        SELECT c.id, c.title, c.status, c.impact, c.updatedAt,
               u.fullName AS userName, t.tenantPrefix
        FROM contributions c
        LEFT JOIN users u ON c.userId = u.id
        LEFT JOIN tenants t ON c.tenantId = t.id
        ORDER BY c.updatedAt DESC, c.id
        LIMIT 20
        """
    )
    year = dt.date.today().year
    monthly = database.query(
        """
        SELECT contributionMonth AS month, COUNT(*) AS count
        FROM contributions
        WHERE contributionMonth LIKE ?
        GROUP BY contributionMonth
        ORDER BY contributionMonth
        """,
        [f"{year}-%"],
    )

    return ok(
        {
            "totals": totals,
            "impactBreakdown": impact_breakdown,
            "byStatus": [{"status": r["status"], "count": int(r["count"] or 0)} for r in by_status],
            "byImpact": [{"impact": r["impact"], "count": int(r["count"] or 0)} for r in by_impact],
            "topTenants": [
                {
                    "tenantPrefix": r.get("tenantPrefix"),
                    "name": r.get("name"),
                    "contributions": int(r["contributions"] or 0),
                }
                for r in top_tenants
            ],
            "recent": [{**r, "updatedAt": to_iso(r.get("updatedAt"))} for r in recent],
            "monthly": {
                "year": year,
                "data": [{"month": r["month"], "count": int(r["count"] or 0)} for r in monthly],
            },
        }
    )


@router.get("/timeline")
def timeline(admin: GlobalAdminDep, database: DatabaseDep) -> dict[str, Any]:
    """Per-month impact counts across every tenant for the current year."""

    year = dt.date.today().year
    rows = database.query(
        """
        SELECT contributionMonth, impact, COUNT(*) AS count
        FROM contributions
        WHERE contributionMonth LIKE ?
        GROUP BY contributionMonth, impact
        """,
        [f"{year}-%"],
    )
    counts: dict[str, dict[str, int]] = {}
    for row in rows:
        month = str(row["contributionMonth"])[5:7]
        bucket = counts.setdefault(month, {level: 0 for level in IMPACT_LEVELS})
        if row["impact"] in bucket:
            bucket[row["impact"]] += int(row["count"] or 0)

    monthly_data = []
    for number in range(1, 13):
        month = f"{number:02d}"
        bucket = counts.get(month, {level: 0 for level in IMPACT_LEVELS})
        monthly_data.append(
            {
                "month": month,
                "monthName": dt.date(year, number, 1).strftime("%b"),
                "contributions": {**bucket, "total": sum(bucket.values())},
            }
        )
    return ok({"year": year, "monthlyData": monthly_data})


@router.get("/tenants/stats")
def tenant_stats(
    admin: GlobalAdminDep,
    database: DatabaseDep,
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
) -> dict[str, Any]:
    params: list[Any] = []
    date_filter = ""
    if start_date and end_date:
        date_filter = "AND c.createdAt BETWEEN ? AND ?"
        params = [start_date, end_date]
    rows = database.query(
        f"""
        SELECT
            t.id AS tenantId,
            t.tenantPrefix,
            t.name,
            COUNT(DISTINCT u.id) AS users,
            COUNT(DISTINCT c.id) AS contributions,
            COUNT(DISTINCT CASE WHEN c.status = 'approved' THEN c.id END) AS approved,
            MAX(c.updatedAt) AS lastActivity
        FROM tenants t
        LEFT JOIN users u ON u.tenantId = t.id
        LEFT JOIN contributions c ON c.tenantId = t.id {date_filter}
        GROUP BY t.id, t.tenantPrefix, t.name
        ORDER BY contributions DESC, t.tenantPrefix
        """,
        params,
    )
    return ok(
        [
            {
                "tenantId": row["tenantId"],
                "tenantPrefix": row["tenantPrefix"],
                "name": row["name"],
                "users": int(row["users"] or 0),
                "contributions": int(row["contributions"] or 0),
                "approved": int(row["approved"] or 0),
                "lastActivity": to_iso(row.get("lastActivity")),
            }
            for row in rows
        ]
    )


def _with_tenant(record: CamelModel, row: Row, **extra: Any) -> dict[str, Any]:
    return {
        **record.model_dump(by_alias=True),
        "tenantPrefix": row.get("tenantPrefix"),
        "tenantName": row.get("tenantName"),
        **extra,
    }


@router.get("/contributions")
def list_contributions(
    admin: GlobalAdminDep,
    database: DatabaseDep,
    tenant_prefix: str | None = Query(default=None, alias="tenantPrefix"),
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
) -> dict[str, Any]:
    """Cross-tenant contribution list, most recently updated first."""

    where = WhereClause()
    where.add_if(tenant_prefix, "t.tenantPrefix = ?", tenant_prefix)
    where.add_if(status_filter, "c.status = ?", status_filter)
    rows = database.query(
        f"""
        SELECT c.*, u.fullName AS userName, u.email AS userEmail,
               t.tenantPrefix, t.name AS tenantName
        FROM contributions c
        LEFT JOIN users u ON c.userId = u.id
        LEFT JOIN tenants t ON c.tenantId = t.id
        {where.sql}
        ORDER BY c.updatedAt DESC, c.id
        LIMIT ? OFFSET ?
        """,
        [*where.params, limit, offset],
    )
    return ok(
        [
            _with_tenant(ContributionRecord.from_row(row), row, userEmail=row.get("userEmail"))
            for row in rows
        ]
    )


def _tenant_id_for(database: DatabaseDep, tenant_prefix: str, status_code: int) -> str:
    tenant = repository.get_tenant_by_prefix(database, tenant_prefix)
    if tenant is None:
        raise AppError(status_code, "Tenant not found")
    return tenant.id


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: GlobalCreateUserRequest, admin: GlobalAdminDep, database: DatabaseDep
) -> dict[str, Any]:
    """Create an approved user directly inside any tenant."""

    tenant_id = _tenant_id_for(database, payload.tenant_prefix, status.HTTP_400_BAD_REQUEST)
    if repository.find_identity_conflicts(database, email=payload.email, staff_id=payload.staff_id):
        raise AppError(
            status.HTTP_400_BAD_REQUEST, "User already exists with this email or staff ID"
        )
    user_id = repository.create_user(
        database,
        tenant_id=tenant_id,
        full_name=payload.full_name,
        staff_id=payload.staff_id,
        email=payload.email,
        password=payload.password,
        involved_account_names=payload.involved_account_names,
        involved_sale_names=payload.involved_sale_names,
        involved_sale_emails=payload.involved_sale_emails,
        role=payload.role,
        status="approved",
        can_view_others=payload.can_view_others,
    )
    logger.info("Global admin %s created user %s in %s", admin.email, user_id, payload.tenant_prefix)
    return ok({"id": user_id}, "User created successfully")


@router.get("/users")
def list_users(
    admin: GlobalAdminDep,
    database: DatabaseDep,
    search: str | None = Query(default=None, max_length=255),
) -> dict[str, Any]:
    where = WhereClause()
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        where.add("(u.email LIKE ? OR u.fullName LIKE ? OR u.staffId LIKE ?)", pattern, pattern, pattern)
    rows = database.query(
        f"""
        SELECT u.*, t.tenantPrefix, t.name AS tenantName
        FROM users u
        LEFT JOIN tenants t ON u.tenantId = t.id
        {where.sql}
        ORDER BY u.createdAt DESC, u.id
        """,
        where.params,
    )
    return ok([_with_tenant(UserRecord.from_row(row), row) for row in rows])


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    payload: GlobalUpdateUserRequest,
    admin: GlobalAdminDep,
    database: DatabaseDep,
) -> dict[str, Any]:
    """Change role, status, visibility or move a user to another tenant."""

    values: dict[str, Any] = {}
    if payload.role is not None:
        values["role"] = payload.role
    if payload.status is not None:
        values["status"] = payload.status
    if payload.can_view_others is not None:
        values["canViewOthers"] = payload.can_view_others
    if payload.tenant_prefix:
        values["tenantId"] = _tenant_id_for(database, payload.tenant_prefix, status.HTTP_404_NOT_FOUND)
    if not values:
        raise AppError(status.HTTP_400_BAD_REQUEST, "No fields to update")
    if not repository.update_user(database, user_id, values):
        raise AppError(status.HTTP_404_NOT_FOUND, "User not found")
    logger.info("Global admin %s updated user %s: %s", admin.email, user_id, sorted(values))
    return ok(message="User updated")


@router.get("/tenants")
def list_tenants(admin: GlobalAdminDep, database: DatabaseDep) -> dict[str, Any]:
    return ok(repository.list_tenants(database))


@router.post("/tenants", status_code=status.HTTP_201_CREATED)
def create_tenant(
    payload: CreateTenantRequest, admin: GlobalAdminDep, database: DatabaseDep
) -> dict[str, Any]:
    if repository.get_tenant_by_prefix(database, payload.tenant_prefix) is not None:
        raise AppError(status.HTTP_400_BAD_REQUEST, "Tenant prefix already exists")
    tenant_id = repository.create_tenant(
        database,
        tenant_prefix=payload.tenant_prefix,
        name=payload.name,
        admin_emails=[str(email) for email in payload.admin_emails],
    )
    logger.info("Global admin %s created tenant %s", admin.email, payload.tenant_prefix)
    return ok(repository.get_tenant(database, tenant_id), "Tenant created")


@router.put("/tenants/{tenant_id}")
def update_tenant(
    tenant_id: str,
    payload: UpdateTenantRequest,
    admin: GlobalAdminDep,
    database: DatabaseDep,
) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if payload.name is not None:
        values["name"] = payload.name.strip()
    if payload.admin_emails is not None:
        values["adminEmails"] = dump_json_list([str(email) for email in payload.admin_emails])
    if not values:
        raise AppError(status.HTTP_400_BAD_REQUEST, "No fields to update")
    if not repository.update_tenant(database, tenant_id, values):
        raise AppError(status.HTTP_404_NOT_FOUND, "Tenant not found")
    return ok(repository.get_tenant(database, tenant_id), "Tenant updated")


@router.delete("/tenants/{tenant_id}")
def delete_tenant(tenant_id: str, admin: GlobalAdminDep, database: DatabaseDep) -> dict[str, Any]:
    """Delete an empty tenant; tenants with users or contributions are kept."""

    tenant = repository.get_tenant(database, tenant_id)
    if tenant is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "Tenant not found")
    users, contributions = repository.count_tenant_dependents(database, tenant_id)
    if users or contributions:
        raise AppError(
            status.HTTP_400_BAD_REQUEST,
            "Tenant has users or contributions. Reassign or delete them first.",
        )
    repository.delete_tenant(database, tenant_id)
    logger.info("Global admin %s deleted tenant %s", admin.email, tenant.tenant_prefix)
    return ok(message="Tenant deleted")
