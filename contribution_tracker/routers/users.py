"""Tenant user administration."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from pydantic import EmailStr, Field, field_validator

from .. import repository
from ..core.errors import AppError
from ..schemas import CamelModel, Role, UserRecord, dump_json_list, ensure_plain_text, ok
from ..security import AdminUserDep, DatabaseDep, TenantDep, require_user_visibility

router = APIRouter(prefix="/users", tags=["users"])

logger = logging.getLogger(__name__)

VisibleUserDep = Annotated[UserRecord, Depends(require_user_visibility)]


class CreateUserRequest(CamelModel):
    full_name: str = Field(..., min_length=2, max_length=255)
    staff_id: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    involved_account_names: list[str] = Field(..., min_length=1)
    involved_sale_names: list[str] = Field(..., min_length=1)
    involved_sale_emails: list[EmailStr] = Field(..., min_length=1)
    role: Role = "user"
    can_view_others: bool = False

    @field_validator("full_name", "staff_id")
    @classmethod
    def _plain_text(cls, value: str) -> str:
        return ensure_plain_text(value.strip(), "Value")


class UpdateUserRequest(CamelModel):
    full_name: str | None = Field(default=None, min_length=2, max_length=255)
    staff_id: str | None = Field(default=None, min_length=1, max_length=255)
    involved_account_names: list[str] | None = Field(default=None, min_length=1)
    involved_sale_names: list[str] | None = Field(default=None, min_length=1)
    involved_sale_emails: list[EmailStr] | None = Field(default=None, min_length=1)
    role: Role | None = None
    can_view_others: bool | None = None

    def column_values(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if self.full_name is not None:
            values["fullName"] = self.full_name.strip()
        if self.staff_id is not None:
            values["staffId"] = self.staff_id.strip()
        if self.involved_account_names is not None:
            values["involvedAccountNames"] = dump_json_list(self.involved_account_names)
        if self.involved_sale_names is not None:
            values["involvedSaleNames"] = dump_json_list(self.involved_sale_names)
        if self.involved_sale_emails is not None:
            values["involvedSaleEmails"] = dump_json_list(list(self.involved_sale_emails))
        if self.role is not None:
            values["role"] = self.role
        if self.can_view_others is not None:
            values["canViewOthers"] = self.can_view_others
        return values


@router.get("")
def list_users(admin: AdminUserDep, database: DatabaseDep, tenant: TenantDep) -> dict[str, Any]:
    """All users of the tenant ordered by name."""

    return ok(repository.list_users(database, tenant.tenant_id))


@router.get("/{user_id}")
def get_user(target: VisibleUserDep) -> dict[str, Any]:
    return ok(target)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: CreateUserRequest, admin: AdminUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    """Create an already-approved user in the admin's tenant."""

    if repository.find_identity_conflicts(database, email=payload.email, staff_id=payload.staff_id):
        raise AppError(status.HTTP_400_BAD_REQUEST, "Email or staff ID already exists")

    user_id = repository.create_user(
        database,
        tenant_id=tenant.tenant_id,
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
    logger.info("Admin %s created user %s", admin.id, user_id)
    return ok(repository.get_user(database, user_id), "User created successfully")


@router.put("/{user_id}")
def update_user(
    user_id: str,
    payload: UpdateUserRequest,
    admin: AdminUserDep,
    database: DatabaseDep,
    tenant: TenantDep,
) -> dict[str, Any]:
    values = payload.column_values()
    if not values:
        raise AppError(status.HTTP_400_BAD_REQUEST, "No fields to update")
    if "staffId" in values and repository.find_identity_conflicts(
        database, staff_id=values["staffId"], exclude_user_id=user_id
    ):
        raise AppError(status.HTTP_400_BAD_REQUEST, "Staff ID already in use")
    if not repository.update_user(database, user_id, values, tenant.tenant_id):
        raise AppError(status.HTTP_404_NOT_FOUND, "User not found")
    return ok(repository.get_user(database, user_id), "User updated successfully")


@router.delete("/{user_id}")
def delete_user(
    user_id: str, admin: AdminUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    """Delete a user together with their contributions."""

    if user_id == admin.id:
        raise AppError(status.HTTP_400_BAD_REQUEST, "You cannot delete your own account")
    if not repository.delete_user(database, user_id, tenant.tenant_id):
        raise AppError(status.HTTP_404_NOT_FOUND, "User not found")
    logger.info("Admin %s deleted user %s", admin.id, user_id)
    return ok(message="User deleted successfully")


def _set_status(database: DatabaseDep, tenant: TenantDep, user_id: str, new_status: str) -> UserRecord:
    if not repository.set_user_status(database, user_id, new_status, tenant.tenant_id):
        raise AppError(status.HTTP_404_NOT_FOUND, "User not found")
    user = repository.get_user(database, user_id, tenant.tenant_id)
    if user is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "User not found")
    return user


@router.post("/{user_id}/approve")
def approve_user(
    user_id: str, admin: AdminUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    return ok(_set_status(database, tenant, user_id, "approved"), "User approved successfully")


@router.post("/{user_id}/reject")
def reject_user(
    user_id: str, admin: AdminUserDep, database: DatabaseDep, tenant: TenantDep
) -> dict[str, Any]:
    return ok(_set_status(database, tenant, user_id, "rejected"), "User rejected successfully")
