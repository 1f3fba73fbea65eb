"""Contribution records logged by users against their accounts and sales."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, Text, false, text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class Contribution(Base):
    """A single contribution owned by the user that created it.

    Attributes:
        contribution_month: ``YYYY-MM`` month the work is attributed to.
        status: ``draft``, ``submitted``, ``approved`` or ``rejected``.
        tags: JSON-encoded list of free-form labels.
        attachments: JSON-encoded list of attachment references.
        sale_approval: Whether the linked sale signed off on the record.
    """

    __tablename__ = "contributions"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        "userId",
        String(255),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        quote=False,
    )
    account_name: Mapped[str] = mapped_column("accountName", String(255), nullable=False, quote=False)
    sale_name: Mapped[str] = mapped_column("saleName", String(255), nullable=False, quote=False)
    sale_email: Mapped[str] = mapped_column("saleEmail", String(255), nullable=False, quote=False)
    contribution_type: Mapped[str] = mapped_column(
        "contributionType", String(50), nullable=False, quote=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    impact: Mapped[str] = mapped_column(String(50), nullable=False)
    effort: Mapped[str] = mapped_column(String(50), nullable=False)
    estimated_impact_value: Mapped[Decimal | None] = mapped_column(
        "estimatedImpactValue", Numeric(15, 2), quote=False
    )
    contribution_month: Mapped[str] = mapped_column(
        "contributionMonth", String(7), nullable=False, quote=False
    )
    status: Mapped[str] = mapped_column(String(50), server_default=text("'draft'"))
    tags: Mapped[str] = mapped_column(Text, nullable=False)
    attachments: Mapped[str | None] = mapped_column(Text)
    sale_approval: Mapped[bool | None] = mapped_column(
        "saleApproval", Boolean, server_default=false(), quote=False
    )
    sale_approval_date: Mapped[dt.datetime | None] = mapped_column(
        "saleApprovalDate", DateTime, quote=False
    )
    sale_approval_notes: Mapped[str | None] = mapped_column(
        "saleApprovalNotes", Text, quote=False
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
