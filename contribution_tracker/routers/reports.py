"""Dashboard, timeline, filtered reports, exports and the printable report."""

from __future__ import annotations

import calendar
import datetime as dt
import logging
import re
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import Field, field_validator

from .. import repository
from ..core.db import WhereClause
from ..reports import PrintFields, render_print_report, summarize
from ..schemas import (
    CONTRIBUTION_TYPES,
    IMPACT_LEVELS,
    CamelModel,
    ContributionRecord,
    ContributionStatus,
    ContributionType,
    Impact,
    UserRecord,
    ok,
)
from ..security import (
    AdminUserDep,
    CurrentUserDep,
    DatabaseDep,
    TenantDep,
    require_user_visibility,
)

router = APIRouter(prefix="/reports", tags=["reports"])

logger = logging.getLogger(__name__)

VisibleUserDep = Annotated[UserRecord, Depends(require_user_visibility)]

RECENT_LIMIT = 5
_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}")

EXPORT_COLUMNS: tuple[tuple[str, Any], ...] = (
    ("Contribution ID", lambda c: c.id),
    ("Staff Name", lambda c: c.user_name or ""),
    ("Account Name", lambda c: c.account_name),
    ("Sale Name", lambda c: c.sale_name),
    ("Sale Email", lambda c: c.sale_email),
    ("Type", lambda c: c.contribution_type),
    ("Title", lambda c: c.title),
    ("Description", lambda c: c.description),
    ("Impact", lambda c: c.impact),
    ("Effort", lambda c: c.effort),
    ("Estimated Impact Value", lambda c: c.estimated_impact_value),
    ("Contribution Month", lambda c: c.contribution_month),
    ("Status", lambda c: c.status),
    ("Sale Approval", lambda c: "Yes" if c.sale_approval else "No"),
    ("Tags", lambda c: ", ".join(c.tags)),
    ("Created At", lambda c: c.created_at or ""),
)


class ReportFilters(CamelModel):
    """Optional filters shared by the comprehensive, export and print reports.

    ``start_date``/``end_date`` accept ``YYYY-MM`` or a full ISO date and are
    compared against the contribution month.
    """

    start_date: str | None = None
    end_date: str | None = None
    user_id: str | None = None
    account_name: str | None = None
    sale_name: str | None = None
    contribution_type: ContributionType | None = None
    impact: Impact | None = None
    status: ContributionStatus | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _month_prefix(cls, value: str | None) -> str | None:
        if value in (None, ""):
            return None
        if not _DATE_PREFIX.match(value):
            raise ValueError("Dates must start with YYYY-MM")
        return value[:7]

    def recap(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PrintRequest(ReportFilters):
    report_type: Literal["dashboard", "comprehensive"] = "comprehensive"
    print_fields: PrintFields = Field(default_factory=PrintFields)

    def recap(self) -> dict[str, Any]:
        return self.model_dump(
            by_alias=True, exclude_none=True, exclude={"report_type", "print_fields"}
        )


def _scope(user: UserRecord, tenant: TenantDep) -> WhereClause:
    where = WhereClause()
    where.add("c.tenantId = ?", tenant.tenant_id)
    if not user.is_admin:
        where.add("c.userId = ?", user.id)
    return where


def _filtered(user: UserRecord, tenant: TenantDep, filters: ReportFilters) -> WhereClause:
    where = _scope(user, tenant)
    if user.is_admin:
        where.add_if(filters.user_id, "c.userId = ?", filters.user_id)
    where.add_if(filters.start_date, "c.contributionMonth >= ?", filters.start_date)
    where.add_if(filters.end_date, "c.contributionMonth <= ?", filters.end_date)
    where.add_if(filters.account_name, "c.accountName LIKE ?", f"%{filters.account_name}%")
    where.add_if(filters.sale_name, "c.saleName LIKE ?", f"%{filters.sale_name}%")
    where.add_if(filters.contribution_type, "c.contributionType = ?", filters.contribution_type)
    where.add_if(filters.impact, "c.impact = ?", filters.impact)
    where.add_if(filters.status, "c.status = ?", filters.status)
    return where


@router.get("/dashboard")
def dashboard(user: CurrentUserDep, database: DatabaseDep, tenant: TenantDep) -> dict[str, Any]:
    """Status counts, impact breakdown and the latest contributions."""

    where = _scope(user, tenant)
    row = database.query_one(
        f"""
        SELECT
            COUNT(*) AS totalContributions,
            SUM(CASE WHEN c.status = 'approved' THEN 1 ELSE 0 END) AS approvedContributions,
            SUM(CASE WHEN c.status = 'submitted' THEN 1 ELSE 0 END) AS submittedContributions,
            SUM(CASE WHEN c.status = 'draft' THEN 1 ELSE 0 END) AS draftContributions,
            SUM(CASE WHEN c.status = 'rejected' THEN 1 ELSE 0 END) AS rejectedContributions,
            SUM(CASE WHEN c.impact = 'critical' THEN 1 ELSE 0 END) AS criticalImpact,
            SUM(CASE WHEN c.impact = 'high' THEN 1 ELSE 0 END) AS highImpact,
            SUM(CASE WHEN c.impact = 'medium' THEN 1 ELSE 0 END) AS mediumImpact,
            SUM(CASE WHEN c.impact = 'low' THEN 1 ELSE 0 END) AS lowImpact
        FROM contributions c
        {where.sql}
        """,
        where.params,
    ) or {}

    def count(key: str) -> int:
        return int(row.get(key) or 0)

    recent = repository.list_contributions(database, where, limit=RECENT_LIMIT)
    return ok(
        {
            "totalContributions": count("totalContributions"),
            "approvedContributions": count("approvedContributions"),
            "submittedContributions": count("submittedContributions"),
            "draftContributions": count("draftContributions"),
            "rejectedContributions": count("rejectedContributions"),
            "impactBreakdown": {
                "critical": count("criticalImpact"),
                "high": count("highImpact"),
                "medium": count("mediumImpact"),
                "low": count("lowImpact"),
            },
            "recentContributions": recent,
        }
    )


@router.get("/timeline")
def timeline(
    user: CurrentUserDep,
    database: DatabaseDep,
    tenant: TenantDep,
    year: int | None = Query(default=None, ge=1970, le=9999),
) -> dict[str, Any]:
    """Monthly impact counts for one calendar year (the current one by default)."""

    year = year or dt.date.today().year
    where = _scope(user, tenant)
    where.add("c.contributionMonth LIKE ?", f"{year:04d}-%")
    rows = database.query(
        f"""
        SELECT c.contributionMonth, c.impact, COUNT(*) AS count
        FROM contributions c
        {where.sql}
        GROUP BY c.contributionMonth, c.impact
        """,
        where.params,
    )

    months = {
        f"{year:04d}-{number:02d}": {"low": 0, "medium": 0, "high": 0, "critical": 0, "total": 0}
        for number in range(1, 13)
    }
    for row in rows:
        bucket = months.get(row["contributionMonth"])
        if bucket is None:
            continue
        amount = int(row["count"] or 0)
        if row["impact"] in bucket:
            bucket[row["impact"]] += amount
        bucket["total"] += amount

    monthly_data = [
        {"month": month, "monthName": calendar.month_abbr[index], "contributions": counts}
        for index, (month, counts) in enumerate(months.items(), start=1)
    ]
    return ok({"year": year, "monthlyData": monthly_data})


def _filtered_contributions(
    user: UserRecord, database: DatabaseDep, tenant: TenantDep, filters: ReportFilters
) -> list[ContributionRecord]:
    return repository.list_contributions(database, _filtered(user, tenant, filters))


@router.post("/comprehensive")
def comprehensive(
    filters: ReportFilters, user: CurrentUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    contributions = _filtered_contributions(user, database, tenant, filters)
    return ok(
        {
            "contributions": contributions,
            "summary": summarize(contributions),
            "filters": filters.recap(),
        }
    )


@router.post("/export")
def export(
    filters: ReportFilters, user: CurrentUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    """Filtered rows with spreadsheet-friendly column labels."""

    contributions = _filtered_contributions(user, database, tenant, filters)
    rows = [{label: value(c) for label, value in EXPORT_COLUMNS} for c in contributions]
    body = ok(rows)
    body["totalRecords"] = len(rows)
    body["exportDate"] = dt.datetime.now(dt.timezone.utc).isoformat()
    return body


@router.get("/user/{user_id}")
def user_report(
    target: VisibleUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    where = WhereClause()
    where.add("c.tenantId = ?", tenant.tenant_id)
    where.add("c.userId = ?", target.id)
    contributions = repository.list_contributions(database, where)
    summary = summarize(contributions)
    by_status = summary.contributions_by_status
    return ok(
        {
            "contributions": contributions,
            "summary": {
                "totalContributions": summary.total_contributions,
                "approvedContributions": by_status["approved"],
                "submittedContributions": by_status["submitted"],
                "draftContributions": by_status["draft"],
                "impactBreakdown": {
                    level: summary.contributions_by_impact[level] for level in reversed(IMPACT_LEVELS)
                },
                "typeBreakdown": {
                    kind: summary.contributions_by_type.get(kind, 0) for kind in CONTRIBUTION_TYPES
                },
            },
        }
    )


@router.get("/export-data")
def export_data(admin: AdminUserDep, database: DatabaseDep, tenant: TenantDep) -> JSONResponse:
    """Download every user and contribution of the tenant as a JSON file."""

    where = WhereClause()
    where.add("c.tenantId = ?", tenant.tenant_id)
    exported_at = dt.datetime.now(dt.timezone.utc)
    body = {
        "exportDate": exported_at.isoformat(),
        "tenant": {"id": tenant.tenant_id, "tenantPrefix": tenant.tenant_prefix},
        "users": repository.list_users(database, tenant.tenant_id),
        "contributions": repository.list_contributions(database, where),
    }
    logger.info("Admin %s exported tenant %s", admin.id, tenant.tenant_prefix)
    filename = f"contributions-export-{exported_at:%Y-%m-%d}.json"
    return JSONResponse(
        content=jsonable_encoder(body, by_alias=True),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/print", response_class=HTMLResponse)
def print_report(
    payload: PrintRequest, user: CurrentUserDep, database: DatabaseDep, tenant: TenantDep
) -> HTMLResponse:
    contributions = _filtered_contributions(user, database, tenant, payload)
    tenant_record = repository.get_tenant(database, tenant.tenant_id)
    html = render_print_report(
        contributions,
        report_type=payload.report_type,
        user=user,
        filters=payload.recap(),
        print_fields=payload.print_fields,
        tenant_name=tenant_record.name if tenant_record else tenant.tenant_prefix,
    )
    return HTMLResponse(html)
