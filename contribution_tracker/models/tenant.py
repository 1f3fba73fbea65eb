"""Tenant and user tables.

Column names are camelCase and rendered unquoted in DDL. SQLite keeps the
case as written while PostgreSQL folds them to lowercase, which is why rows
read from PostgreSQL go through the column map in
:mod:`contribution_tracker.core.db`.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, false, text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class Tenant(Base):
    """An isolated customer space addressed by its ``tenantPrefix`` slug.

    Attributes:
        id: Opaque identifier (UUID string, ``tenant-default`` for the
            bootstrap tenant).
        tenant_prefix: Unique slug used in ``/t/<prefix>/api`` URLs and the
            ``x-tenant-prefix`` header.
        name: Display name.
        admin_emails: JSON-encoded list of tenant administrator e-mails.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    tenant_prefix: Mapped[str] = mapped_column(
        "tenantPrefix", String(255), nullable=False, unique=True, quote=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    admin_emails: Mapped[str | None] = mapped_column("adminEmails", Text, quote=False)
    created_at: Mapped[dt.datetime | None] = mapped_column(
        "createdAt", DateTime, server_default=text("CURRENT_TIMESTAMP"), quote=False
    )
    updated_at: Mapped[dt.datetime | None] = mapped_column(
        "updatedAt", DateTime, server_default=text("CURRENT_TIMESTAMP"), quote=False
    )


class User(Base):
    """An employee account that belongs to exactly one tenant.

    The ``involved*`` columns hold JSON-encoded string lists naming the
    accounts and sales the user may log contributions against.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    full_name: Mapped[str] = mapped_column("fullName", String(255), nullable=False, quote=False)
    staff_id: Mapped[str] = mapped_column(
        "staffId", String(255), nullable=False, unique=True, quote=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    involved_account_names: Mapped[str] = mapped_column(
        "involvedAccountNames", Text, nullable=False, quote=False
    )
    involved_sale_names: Mapped[str] = mapped_column(
        "involvedSaleNames", Text, nullable=False, quote=False
    )
    involved_sale_emails: Mapped[str] = mapped_column(
        "involvedSaleEmails", Text, nullable=False, quote=False
    )
    role: Mapped[str] = mapped_column(String(50), server_default=text("'user'"))
    status: Mapped[str] = mapped_column(String(50), server_default=text("'pending'"))
    can_view_others: Mapped[bool] = mapped_column(
        "canViewOthers", Boolean, server_default=false(), quote=False
    )
    tenant_id: Mapped[str | None] = mapped_column(
        "tenantId", String(255), ForeignKey("tenants.id"), index=True, quote=False
    )
    created_at: Mapped[dt.datetime | None] = mapped_column(
        "createdAt", DateTime, server_default=text("CURRENT_TIMESTAMP"), quote=False
    )
    updated_at: Mapped[dt.datetime | None] = mapped_column(
        "updatedAt", DateTime, server_default=text("CURRENT_TIMESTAMP"), quote=False
    )
