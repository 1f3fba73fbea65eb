"""Printable HTML report built from contribution rows.

:func:`render_print_report` is a pure function: it reads nothing but its
arguments, so identical inputs (including ``generated_on``) always produce
identical output. The document is self-contained with inline CSS and is
meant to be opened and printed by the browser.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Mapping, Sequence
from html import escape
from typing import Any

from ..schemas import CamelModel, ContributionRecord, UserRecord
from .summary import summarize

__all__ = ["PrintFields", "render_print_report"]

EMPTY_MESSAGE = "No contributions found matching the selected filters."
REPORT_TITLES = {"dashboard": "Dashboard Overview", "comprehensive": "Comprehensive Report"}

_STYLES = """
body { font-family: Georgia, 'Times New Roman', serif; color: #3e2f1c; background: #faf6ef; margin: 24px; }
header { border-bottom: 3px solid #8b6f47; margin-bottom: 16px; padding-bottom: 8px; }
h1 { font-size: 22px; margin: 0; color: #5b4636; }
.meta { font-size: 12px; color: #7a6a58; }
.summary { display: flex; flex-wrap: wrap; gap: 8px; margin: 12px 0; }
.card { background: #efe6d8; border: 1px solid #d2c2a8; border-radius: 4px; padding: 8px 12px; min-width: 110px; }
.card .label { font-size: 11px; text-transform: uppercase; color: #7a6a58; }
.card .value { font-size: 18px; font-weight: bold; }
.filters { font-size: 12px; margin-bottom: 12px; }
table { width: 100%; border-collapse: collapse; font-size: 11px; }
th { background: #8b6f47; color: #fff; text-align: left; padding: 6px; }
td { border-bottom: 1px solid #d2c2a8; padding: 6px; vertical-align: top; }
.badge { border-radius: 3px; padding: 1px 6px; font-size: 10px; text-transform: uppercase; }
.impact-critical, .status-rejected { background: #b5523b; color: #fff; }
.impact-high, .effort-high { background: #d08c4f; color: #fff; }
.impact-medium, .effort-medium, .status-submitted { background: #e3c07b; }
.impact-low, .effort-low, .status-draft { background: #cfd8b6; }
.status-approved { background: #7d9a62; color: #fff; }
.empty { text-align: center; padding: 24px; color: #7a6a58; }
.signatures { display: flex; justify-content: space-between; margin-top: 48px; }
.signature { width: 40%; text-align: center; }
.signature .line { border-top: 1px solid #3e2f1c; margin-bottom: 4px; height: 32px; }
@media print { body { background: #fff; margin: 0; } }
"""


class PrintFields(CamelModel):
    """Which columns appear in the printed table."""

    account: bool = True
    title: bool = True
    description: bool = True
    type: bool = True
    impact: bool = True
    effort: bool = True
    status: bool = True
    month: bool = True
    sale_name: bool = True
    presale_name: bool = True


def _text(value: Any) -> str:
    if value is None or value == "":
        return "N/A"
    return escape(str(value))


def _badge(kind: str, value: str | None) -> str:
    if not value:
        return "N/A"
    return f'<span class="badge {kind}-{escape(value)}">{escape(value)}</span>'


_COLUMNS: tuple[tuple[str, str, Any], ...] = (
    ("account", "Account", lambda c: _text(c.account_name)),
    ("title", "Title", lambda c: _text(c.title)),
    ("description", "Description", lambda c: _text(c.description)),
    ("type", "Type", lambda c: _text(c.contribution_type)),
    ("impact", "Impact", lambda c: _badge("impact", c.impact)),
    ("effort", "Effort", lambda c: _badge("effort", c.effort)),
    ("status", "Status", lambda c: _badge("status", c.status)),
    ("month", "Month", lambda c: _text(c.contribution_month)),
    ("sale_name", "Sale", lambda c: _text(c.sale_name)),
    ("presale_name", "Presale", lambda c: _text(c.user_name)),
)


def _single(values: Sequence[str | None]) -> str | None:
    distinct = {value for value in values if value}
    return distinct.pop() if len(distinct) == 1 else None


def _summary_cards(contributions: Sequence[ContributionRecord]) -> str:
    summary = summarize(contributions)
    cards = [
        ("Total Contributions", summary.total_contributions),
        ("Contributors", summary.total_users),
        ("Accounts", summary.total_accounts),
    ]
    cards += [(f"{level.title()} Impact", count) for level, count in summary.contributions_by_impact.items()]
    cards += [(state.title(), count) for state, count in summary.contributions_by_status.items()]
    return "".join(
        f'<div class="card"><div class="label">{escape(label)}</div>'
        f'<div class="value">{value}</div></div>'
        for label, value in cards
    )


def _filter_recap(filters: Mapping[str, Any]) -> str:
    active = [(key, value) for key, value in filters.items() if value not in (None, "")]
    if not active:
        return '<div class="filters">Filters: none</div>'
    parts = ", ".join(f"{escape(str(key))}: {escape(str(value))}" for key, value in active)
    return f'<div class="filters">Filters: {parts}</div>'


def _table(contributions: Sequence[ContributionRecord], print_fields: PrintFields) -> str:
    columns = [column for column in _COLUMNS if getattr(print_fields, column[0])]
    if not contributions:
        return f'<div class="empty">{EMPTY_MESSAGE}</div>'
    head = "".join(f"<th>{label}</th>" for _, label, _ in columns)
    body = "".join(
        f"<tr><td>{index}</td>" + "".join(f"<td>{render(c)}</td>" for _, _, render in columns) + "</tr>"
        for index, c in enumerate(contributions, start=1)
    )
    return f"<table><thead><tr><th>#</th>{head}</tr></thead><tbody>{body}</tbody></table>"


def _signatures(
    contributions: Sequence[ContributionRecord],
    filters: Mapping[str, Any],
    user: UserRecord | None,
) -> str:
    sale_name = filters.get("saleName") or _single([c.sale_name for c in contributions])
    presale_name = _single([c.user_name for c in contributions])
    if presale_name is not None:
        right_label, right_name = "PRESALE", presale_name
    else:
        right_label, right_name = "ADMIN", user.full_name if user is not None else None
    return (
        '<section class="signatures">'
        f'<div class="signature"><div class="line"></div><div>SALE</div><div>{_text(sale_name)}</div></div>'
        f'<div class="signature"><div class="line"></div><div>{right_label}</div><div>{_text(right_name)}</div></div>'
        "</section>"
    )


def render_print_report(
    contributions: Sequence[ContributionRecord],
    *,
    report_type: str = "comprehensive",
    user: UserRecord | None = None,
    filters: Mapping[str, Any] | None = None,
    print_fields: PrintFields | None = None,
    tenant_name: str | None = None,
    generated_on: dt.date | None = None,
) -> str:
    """Return a complete HTML document summarizing ``contributions``.

    Args:
        contributions: Rows to print, already filtered and ordered.
        report_type: ``dashboard`` or ``comprehensive``; selects the title.
        user: Viewer printing the report; named on the admin signature line.
        filters: camelCase filter values shown in the header. ``saleName``
            also pins the sale signature.
        print_fields: Column selection; every column by default.
        tenant_name: Shown in the header when given.
        generated_on: Date printed in the header; today when omitted.
    """

    filters = dict(filters or {})
    print_fields = print_fields or PrintFields()
    generated_on = generated_on or dt.date.today()
    title = REPORT_TITLES.get(report_type, REPORT_TITLES["comprehensive"])

    meta = [f"Generated on {generated_on.isoformat()}"]
    if tenant_name:
        meta.append(f"Tenant: {escape(tenant_name)}")
    if user is not None:
        meta.append(f"Prepared by: {escape(user.full_name)}")

    return (
        "<!DOCTYPE html>"
        '<html lang="en"><head><meta charset="utf-8">'
        f"<title>{title}</title><style>{_STYLES}</style></head><body>"
        f'<header><h1>{title}</h1><div class="meta">{" | ".join(meta)}</div></header>'
        f'<section class="summary">{_summary_cards(contributions)}</section>'
        f"{_filter_recap(filters)}"
        f"{_table(contributions, print_fields)}"
        f"{_signatures(contributions, filters, user)}"
        "</body></html>"
    )
