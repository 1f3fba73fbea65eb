"""Contribution CRUD and lifecycle transitions.

Non-admin users only ever see and touch their own rows; admins act on every
row of their tenant. Owners may edit or delete a contribution while it is a
draft and move it to ``submitted``; admins may approve or reject at any time.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any, Literal

from fastapi import APIRouter, Query, status
from pydantic import EmailStr, Field, field_validator

from .. import repository
from ..core.db import WhereClause
from ..core.errors import AppError
from ..schemas import (
    CamelModel,
    ContributionRecord,
    ContributionStatus,
    ContributionType,
    Effort,
    Impact,
    UserRecord,
    dump_json_list,
    ok,
)
from ..security import AdminUserDep, CurrentUserDep, DatabaseDep, TenantDep

router = APIRouter(prefix="/contributions", tags=["contributions"])

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")


def _check_month(value: str | None) -> str | None:
    if value is not None and not MONTH_PATTERN.match(value):
        raise ValueError("Invalid contribution month format. Use YYYY-MM")
    return value


class CreateContributionRequest(CamelModel):
    account_name: str = Field(..., min_length=1, max_length=255)
    sale_name: str = Field(..., min_length=1, max_length=255)
    sale_email: EmailStr
    contribution_type: ContributionType
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., min_length=1)
    impact: Impact
    effort: Effort
    estimated_impact_value: float | None = Field(default=None, ge=0)
    contribution_month: str
    tags: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
    status: Literal["draft", "submitted"] | None = None

    @field_validator("contribution_month")
    @classmethod
    def _month_format(cls, value: str) -> str:
        _check_month(value)
        return value


class UpdateContributionRequest(CamelModel):
    account_name: str | None = Field(default=None, min_length=1, max_length=255)
    sale_name: str | None = Field(default=None, min_length=1, max_length=255)
    sale_email: EmailStr | None = None
    contribution_type: ContributionType | None = None
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, min_length=1)
    impact: Impact | None = None
    effort: Effort | None = None
    estimated_impact_value: float | None = Field(default=None, ge=0)
    contribution_month: str | None = None
    tags: list[str] | None = None
    attachments: list[str] | None = None
    status: Literal["draft", "submitted"] | None = None
    sale_approval: bool | None = None
    sale_approval_notes: str | None = None

    @field_validator("contribution_month")
    @classmethod
    def _month_format(cls, value: str | None) -> str | None:
        return _check_month(value)

    def column_values(self) -> dict[str, Any]:
        columns = {
            "account_name": "accountName",
            "sale_name": "saleName",
            "sale_email": "saleEmail",
            "contribution_type": "contributionType",
            "title": "title",
            "description": "description",
            "impact": "impact",
            "effort": "effort",
            "estimated_impact_value": "estimatedImpactValue",
            "contribution_month": "contributionMonth",
            "status": "status",
            "sale_approval": "saleApproval",
            "sale_approval_notes": "saleApprovalNotes",
        }
        values: dict[str, Any] = {}
        for attribute, column in columns.items():
            value = getattr(self, attribute)
            if value is not None:
                values[column] = value
        if self.tags is not None:
            values["tags"] = dump_json_list(self.tags)
        if self.attachments is not None:
            values["attachments"] = dump_json_list(self.attachments)
        return values


def _utc_timestamp() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _check_involvement(user: UserRecord, account_name: str | None, sale_name: str | None) -> None:
    if account_name is not None and account_name not in user.involved_account_names:
        raise AppError(status.HTTP_400_BAD_REQUEST, "Account not in your allowed list")
    if sale_name is not None and sale_name not in user.involved_sale_names:
        raise AppError(status.HTTP_400_BAD_REQUEST, "Sale not in your allowed list")


def _load_for(
    database: DatabaseDep, tenant: TenantDep, user: UserRecord, contribution_id: str
) -> ContributionRecord:
    """Fetch a contribution of the tenant that ``user`` is allowed to act on."""

    contribution = repository.get_contribution(database, contribution_id, tenant.tenant_id)
    if contribution is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "Contribution not found")
    if not user.is_admin and contribution.user_id != user.id:
        raise AppError(status.HTTP_403_FORBIDDEN, "Access denied")
    return contribution


def _tenant_where(tenant: TenantDep, user: UserRecord, status_filter: str | None) -> WhereClause:
    where = WhereClause()
    where.add("c.tenantId = ?", tenant.tenant_id)
    if not user.is_admin:
        where.add("c.userId = ?", user.id)
    where.add_if(status_filter, "c.status = ?", status_filter)
    return where


@router.get("")
def list_contributions(
    user: CurrentUserDep,
    database: DatabaseDep,
    tenant: TenantDep,
    status_filter: ContributionStatus | None = Query(default=None, alias="status"),
) -> dict[str, Any]:
    """Own contributions for users, every tenant contribution for admins."""

    where = _tenant_where(tenant, user, status_filter)
    return ok(repository.list_contributions(database, where))


@router.get("/admin")
def list_all_contributions(
    admin: AdminUserDep,
    database: DatabaseDep,
    tenant: TenantDep,
    status_filter: ContributionStatus | None = Query(default=None, alias="status"),
) -> dict[str, Any]:
    where = _tenant_where(tenant, admin, status_filter)
    return ok(repository.list_contributions(database, where))


@router.get("/{contribution_id}")
def get_contribution(
    contribution_id: str, user: CurrentUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    return ok(_load_for(database, tenant, user, contribution_id))


@router.post("", status_code=status.HTTP_201_CREATED)
def create_contribution(
    payload: CreateContributionRequest,
    user: CurrentUserDep,
    database: DatabaseDep,
    tenant: TenantDep,
) -> dict[str, Any]:
    """Record a contribution against one of the caller's accounts and sales."""

    _check_involvement(user, payload.account_name, payload.sale_name)
    final_status = "draft" if payload.status == "draft" else "submitted"
    contribution_id = repository.create_contribution(
        database,
        user_id=user.id,
        tenant_id=tenant.tenant_id,
        values={
            "accountName": payload.account_name,
            "saleName": payload.sale_name,
            "saleEmail": payload.sale_email,
            "contributionType": payload.contribution_type,
            "title": payload.title,
            "description": payload.description,
            "impact": payload.impact,
            "effort": payload.effort,
            "estimatedImpactValue": payload.estimated_impact_value or 0,
            "contributionMonth": payload.contribution_month,
            "status": final_status,
            "tags": dump_json_list(payload.tags),
            "attachments": dump_json_list(payload.attachments),
        },
    )
    logger.info("User %s created contribution %s (%s)", user.id, contribution_id, final_status)
    return ok({"id": contribution_id}, "Contribution created successfully")


@router.put("/{contribution_id}")
def update_contribution(
    contribution_id: str,
    payload: UpdateContributionRequest,
    user: CurrentUserDep,
    database: DatabaseDep,
    tenant: TenantDep,
) -> dict[str, Any]:
    """Partially update a contribution; owners may only edit drafts."""

    contribution = _load_for(database, tenant, user, contribution_id)
    values = payload.column_values()
    if not values:
        raise AppError(status.HTTP_400_BAD_REQUEST, "No fields to update")

    if not user.is_admin:
        if contribution.status != "draft":
            raise AppError(status.HTTP_400_BAD_REQUEST, "Only draft contributions can be edited")
        if payload.sale_approval is not None or payload.sale_approval_notes is not None:
            raise AppError(status.HTTP_403_FORBIDDEN, "Admin access required")
        _check_involvement(user, payload.account_name, payload.sale_name)

    if payload.sale_approval is True and not contribution.sale_approval:
        values["saleApprovalDate"] = _utc_timestamp()
    elif payload.sale_approval is False:
        values["saleApprovalDate"] = None

    repository.update_contribution(database, contribution_id, values, tenant.tenant_id)
    updated = repository.get_contribution(database, contribution_id, tenant.tenant_id)
    return ok(updated, "Contribution updated successfully")


@router.delete("/{contribution_id}")
def delete_contribution(
    contribution_id: str, user: CurrentUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    contribution = _load_for(database, tenant, user, contribution_id)
    if not user.is_admin and contribution.status != "draft":
        raise AppError(status.HTTP_400_BAD_REQUEST, "Only draft contributions can be deleted")
    repository.delete_contribution(database, contribution_id, tenant.tenant_id)
    logger.info("User %s deleted contribution %s", user.id, contribution_id)
    return ok(message="Contribution deleted successfully")


@router.post("/{contribution_id}/submit")
def submit_contribution(
    contribution_id: str, user: CurrentUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    """Move the caller's draft to ``submitted``."""

    contribution = repository.get_contribution(database, contribution_id, tenant.tenant_id)
    if contribution is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "Contribution not found")
    if contribution.user_id != user.id:
        raise AppError(status.HTTP_403_FORBIDDEN, "Access denied")
    if contribution.status != "draft":
        raise AppError(status.HTTP_400_BAD_REQUEST, "Only draft contributions can be submitted")
    repository.update_contribution(database, contribution_id, {"status": "submitted"}, tenant.tenant_id)
    return ok(message="Contribution submitted successfully")


def _review(
    database: DatabaseDep, tenant: TenantDep, contribution_id: str, new_status: str
) -> ContributionRecord:
    if not repository.update_contribution(
        database, contribution_id, {"status": new_status}, tenant.tenant_id
    ):
        raise AppError(status.HTTP_404_NOT_FOUND, "Contribution not found")
    contribution = repository.get_contribution(database, contribution_id, tenant.tenant_id)
    if contribution is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "Contribution not found")
    return contribution


@router.post("/{contribution_id}/approve")
def approve_contribution(
    contribution_id: str, admin: AdminUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    contribution = _review(database, tenant, contribution_id, "approved")
    logger.info("Admin %s approved contribution %s", admin.id, contribution_id)
    return ok(contribution, "Contribution approved successfully")


@router.post("/{contribution_id}/reject")
def reject_contribution(
    contribution_id: str, admin: AdminUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    contribution = _review(database, tenant, contribution_id, "rejected")
    logger.info("Admin %s rejected contribution %s", admin.id, contribution_id)
    return ok(contribution, "Contribution rejected successfully")
