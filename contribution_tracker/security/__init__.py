"""Security utilities exposed for convenience."""

from .auth import (
    AdminUserDep,
    CurrentUserDep,
    DatabaseDep,
    GlobalAdminDep,
    SettingsDep,
    TenantDep,
    can_view_user,
    get_current_user,
    get_global_admin,
    require_admin,
    require_role,
    require_user_visibility,
)
from .passwords import hash_password, verify_and_update, verify_password
from .tokens import (
    create_global_token,
    create_tenant_token,
    decode_global_token,
    decode_tenant_token,
    jwt_settings_from,
)

__all__ = [
    "AdminUserDep",
    "CurrentUserDep",
    "DatabaseDep",
    "GlobalAdminDep",
    "SettingsDep",
    "TenantDep",
    "can_view_user",
    "create_global_token",
    "create_tenant_token",
    "decode_global_token",
    "decode_tenant_token",
    "get_current_user",
    "get_global_admin",
    "hash_password",
    "jwt_settings_from",
    "require_admin",
    "require_role",
    "require_user_visibility",
    "verify_and_update",
    "verify_password",
]
