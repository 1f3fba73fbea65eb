"""Tenant user authentication, self-service profile and account approval."""

import logging
from typing import Any

from fastapi import APIRouter, Request, status
from pydantic import EmailStr, Field, field_validator, model_validator
from slowapi import Limiter

from .. import repository
from ..core.errors import AppError
from ..core.rate_limit import limited_route
from ..schemas import CamelModel, UserRecord, dump_json_list, ensure_plain_text, ok
from ..security import (
    AdminUserDep,
    CurrentUserDep,
    DatabaseDep,
    SettingsDep,
    TenantDep,
    create_tenant_token,
    jwt_settings_from,
    verify_and_update,
    verify_password,
)

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SignupRequest(CamelModel):
    full_name: str = Field(..., min_length=1, max_length=255)
    staff_id: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    confirm_password: str
    involved_account_names: list[str] = Field(default_factory=list)
    involved_sale_names: list[str] = Field(default_factory=list)
    involved_sale_emails: list[EmailStr] = Field(default_factory=list)

    @field_validator("full_name", "staff_id")
    @classmethod
    def _plain_text(cls, value: str) -> str:
        return ensure_plain_text(value.strip(), "Value")

    @model_validator(mode="after")
    def _passwords_match(self) -> "SignupRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class ProfileUpdateRequest(CamelModel):
    full_name: str | None = Field(default=None, min_length=2, max_length=255)
    staff_id: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    involved_account_names: list[str] | None = None
    involved_sale_names: list[str] | None = None
    involved_sale_emails: list[EmailStr] | None = None

    @field_validator("full_name", "staff_id")
    @classmethod
    def _plain_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return ensure_plain_text(value.strip(), "Value")


class AdminResetPasswordRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


def login(
    request: Request,
    payload: LoginRequest,
    database: DatabaseDep,
    settings: SettingsDep,
    tenant: TenantDep,
) -> dict[str, Any]:
    """Exchange e-mail and password for a tenant token."""

    user = repository.get_user_by_email(database, payload.email, tenant.tenant_id)
    if user is None:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")
    valid, new_hash = verify_and_update(payload.password, user.password_hash)
    if not valid:
        raise AppError(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")
    if user.status == "pending":
        raise AppError(status.HTTP_403_FORBIDDEN, "Account pending approval")
    if user.status == "rejected":
        raise AppError(status.HTTP_403_FORBIDDEN, "Account rejected")
    if new_hash:
        repository.update_user(database, user.id, {"password": new_hash})

    token = create_tenant_token(
        user.id,
        tenant.tenant_id,
        tenant.tenant_prefix,
        jwt_settings=jwt_settings_from(settings),
    )
    logger.info("User %s logged in to tenant %s", user.id, tenant.tenant_prefix)
    return ok({"token": token, "user": user}, "Login successful")


def login_router(limiter: Limiter, limit: str) -> APIRouter:
    """``POST /auth/login`` throttled by the mounting application's limiter."""

    return limited_route(APIRouter(prefix="/auth", tags=["auth"]), "/login", login, limiter, limit)


@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, database: DatabaseDep, tenant: TenantDep) -> dict[str, Any]:
    """Register a user in the current tenant; the account starts as pending."""

    if repository.find_identity_conflicts(database, email=payload.email, staff_id=payload.staff_id):
        raise AppError(
            status.HTTP_400_BAD_REQUEST, "User with this email or staff ID already exists"
        )

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
    )
    logger.info("New signup %s pending approval in tenant %s", user_id, tenant.tenant_prefix)
    return ok(
        {
            "id": user_id,
            "fullName": payload.full_name,
            "staffId": payload.staff_id,
            "email": repository.normalize_email(payload.email),
            "status": "pending",
        },
        "Registration successful. Your account is pending approval.",
    )


@router.post("/logout")
def logout() -> dict[str, Any]:
    """Tokens are stateless; clients discard them."""

    return ok(message="Logout successful")


@router.get("/profile")
def get_profile(user: CurrentUserDep) -> dict[str, Any]:
    return ok(user)


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateRequest, user: CurrentUserDep, database: DatabaseDep
) -> dict[str, Any]:
    """Update the caller's own identity fields and involvement lists."""

    conflicts = repository.find_identity_conflicts(
        database, email=payload.email, staff_id=payload.staff_id, exclude_user_id=user.id
    )
    if "email" in conflicts:
        raise AppError(status.HTTP_400_BAD_REQUEST, "Email already in use")
    if "staffId" in conflicts:
        raise AppError(status.HTTP_400_BAD_REQUEST, "Staff ID already in use")

    values: dict[str, Any] = {}
    if payload.full_name is not None:
        values["fullName"] = payload.full_name
    if payload.staff_id is not None:
        values["staffId"] = payload.staff_id
    if payload.email is not None:
        values["email"] = repository.normalize_email(payload.email)
    if payload.involved_account_names is not None:
        values["involvedAccountNames"] = dump_json_list(payload.involved_account_names)
    if payload.involved_sale_names is not None:
        values["involvedSaleNames"] = dump_json_list(payload.involved_sale_names)
    if payload.involved_sale_emails is not None:
        values["involvedSaleEmails"] = dump_json_list(list(payload.involved_sale_emails))
    if not values:
        raise AppError(status.HTTP_400_BAD_REQUEST, "No fields to update")

    repository.update_user(database, user.id, values)
    updated = repository.get_user(database, user.id)
    return ok(updated, "Profile updated successfully")


@router.post("/admin-reset-password")
def admin_reset_password(
    payload: AdminResetPasswordRequest,
    admin: AdminUserDep,
    database: DatabaseDep,
    tenant: TenantDep,
) -> dict[str, Any]:
    """Set a new password for a user of the admin's tenant."""

    target = repository.get_user(database, payload.user_id, tenant.tenant_id)
    if target is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "User not found")
    repository.set_user_password(database, target.id, payload.new_password)
    logger.info("Admin %s reset the password of user %s", admin.id, target.id)
    return ok(message="Password reset successfully")


def _change_password(
    payload: ChangePasswordRequest, user: UserRecord, database: DatabaseDep
) -> dict[str, Any]:
    if not verify_password(payload.current_password, user.password_hash):
        raise AppError(status.HTTP_400_BAD_REQUEST, "Current password is incorrect")
    repository.set_user_password(database, user.id, payload.new_password)
    return ok(message="Password updated successfully")


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest, user: CurrentUserDep, database: DatabaseDep
) -> dict[str, Any]:
    return _change_password(payload, user, database)


@router.post("/update-password")
def update_password(
    payload: ChangePasswordRequest, user: CurrentUserDep, database: DatabaseDep
) -> dict[str, Any]:
    return _change_password(payload, user, database)


def _set_status(database: DatabaseDep, user_id: str, new_status: str) -> UserRecord:
    # Not tenant-filtered: signups from any tenant prefix are approved here.
    if not repository.set_user_status(database, user_id, new_status):
        raise AppError(status.HTTP_404_NOT_FOUND, "User not found")
    user = repository.get_user(database, user_id)
    if user is None:
        raise AppError(status.HTTP_404_NOT_FOUND, "User not found")
    return user


@router.post("/approve/{user_id}")
def approve_user(user_id: str, admin: AdminUserDep, database: DatabaseDep) -> dict[str, Any]:
    user = _set_status(database, user_id, "approved")
    logger.info("Admin %s approved user %s", admin.id, user_id)
    return ok(user, "User approved successfully")


@router.post("/reject/{user_id}")
def reject_user(user_id: str, admin: AdminUserDep, database: DatabaseDep) -> dict[str, Any]:
    user = _set_status(database, user_id, "rejected")
    logger.info("Admin %s rejected user %s", admin.id, user_id)
    return ok(user, "User rejected successfully")
