"""Typed records shared by the routers and the row mappers that build them.

Rows come back from :class:`~contribution_tracker.core.db.Database` as plain
dicts keyed by camelCase column names. The ``from_row`` constructors below are
the only place where those keys are read: JSON list columns are parsed (bad
JSON degrades to an empty list), 0/1 flags become booleans, DECIMAL values
become floats and timestamps become ISO strings.
"""

from __future__ import annotations

import datetime as dt
import json
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
UserStatus = Literal["pending", "approved", "rejected"]
ContributionType = Literal["technical", "business", "relationship", "innovation", "other"]
Impact = Literal["low", "medium", "high", "critical"]
Effort = Literal["low", "medium", "high"]
ContributionStatus = Literal["draft", "submitted", "approved", "rejected"]

CONTRIBUTION_TYPES: tuple[str, ...] = ("technical", "business", "relationship", "innovation", "other")
IMPACT_LEVELS: tuple[str, ...] = ("low", "medium", "high", "critical")
CONTRIBUTION_STATUSES: tuple[str, ...] = ("draft", "submitted", "approved", "rejected")


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def parse_json_list(value: Any) -> list[str]:
    """Decode a JSON-encoded list column, returning ``[]`` for anything invalid."""

    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    try:
        decoded = json.loads(value)
    except (TypeError, ValueError):
        return []
    if not isinstance(decoded, list):
        return []
    return [str(item) for item in decoded]


def dump_json_list(values: list[str] | None) -> str:
    return json.dumps(list(values or []))


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "t"}
    return bool(value)


def to_float(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, Decimal):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def to_iso(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    return str(value)


class TenantRecord(CamelModel):
    id: str
    tenant_prefix: str
    name: str
    admin_emails: list[str] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TenantRecord":
        return cls(
            id=str(row["id"]),
            tenant_prefix=row["tenantPrefix"],
            name=row["name"],
            admin_emails=parse_json_list(row.get("adminEmails")),
            created_at=to_iso(row.get("createdAt")),
            updated_at=to_iso(row.get("updatedAt")),
        )


class UserRecord(CamelModel):
    """A user row; the password hash is never serialized."""

    id: str
    full_name: str
    staff_id: str
    email: str
    password_hash: str = Field(default="", exclude=True)
    involved_account_names: list[str] = Field(default_factory=list)
    involved_sale_names: list[str] = Field(default_factory=list)
    involved_sale_emails: list[str] = Field(default_factory=list)
    role: str = "user"
    status: str = "pending"
    can_view_others: bool = False
    tenant_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserRecord":
        return cls(
            id=str(row["id"]),
            full_name=row["fullName"],
            staff_id=row["staffId"],
            email=row["email"],
            password_hash=row.get("password") or "",
            involved_account_names=parse_json_list(row.get("involvedAccountNames")),
            involved_sale_names=parse_json_list(row.get("involvedSaleNames")),
            involved_sale_emails=parse_json_list(row.get("involvedSaleEmails")),
            role=row.get("role") or "user",
            status=row.get("status") or "pending",
            can_view_others=to_bool(row.get("canViewOthers")),
            tenant_id=row.get("tenantId"),
            created_at=to_iso(row.get("createdAt")),
            updated_at=to_iso(row.get("updatedAt")),
        )


class ContributionRecord(CamelModel):
    id: str
    user_id: str
    user_name: str | None = None
    account_name: str
    sale_name: str
    sale_email: str
    contribution_type: str
    title: str
    description: str
    impact: str
    effort: str
    estimated_impact_value: float = 0.0
    contribution_month: str
    status: str
    sale_approval: bool = False
    sale_approval_date: str | None = None
    sale_approval_notes: str | None = None
    attachments: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    tenant_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ContributionRecord":
        return cls(
            id=str(row["id"]),
            user_id=str(row["userId"]),
            user_name=row.get("userName"),
            account_name=row["accountName"],
            sale_name=row["saleName"],
            sale_email=row["saleEmail"],
            contribution_type=row["contributionType"],
            title=row["title"],
            description=row["description"],
            impact=row["impact"],
            effort=row["effort"],
            estimated_impact_value=to_float(row.get("estimatedImpactValue")),
            contribution_month=row["contributionMonth"],
            status=row.get("status") or "draft",
            sale_approval=to_bool(row.get("saleApproval")),
            sale_approval_date=to_iso(row.get("saleApprovalDate")),
            sale_approval_notes=row.get("saleApprovalNotes"),
            attachments=parse_json_list(row.get("attachments")),
            tags=parse_json_list(row.get("tags")),
            tenant_id=row.get("tenantId"),
            created_at=to_iso(row.get("createdAt")),
            updated_at=to_iso(row.get("updatedAt")),
        )


def ok(data: Any = None, message: str | None = None) -> dict[str, Any]:
    """Build the ``{success, message?, data?}`` envelope for successful calls."""

    body: dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def clean_special_characters(value: str) -> str:
    """Drop everything except printable ASCII and the Thai block."""

    return "".join(
        char for char in value if " " <= char <= "~" or "\u0e00" <= char <= "\u0e7f"
    )


def ensure_plain_text(value: str, label: str) -> str:
    """Validator helper rejecting values that :func:`clean_special_characters` would alter."""

    if clean_special_characters(value) != value:
        raise ValueError(f"{label} contains invalid characters")
    return value
