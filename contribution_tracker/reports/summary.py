"""Aggregates computed in memory from already-filtered contribution rows."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from typing import Any

from pydantic import Field

from ..schemas import CONTRIBUTION_STATUSES, IMPACT_LEVELS, CamelModel, ContributionRecord

TOP_LIMIT = 10


class ReportSummary(CamelModel):
    total_contributions: int = 0
    total_users: int = 0
    total_accounts: int = 0
    contributions_by_type: dict[str, int] = Field(default_factory=dict)
    contributions_by_impact: dict[str, int] = Field(default_factory=dict)
    contributions_by_status: dict[str, int] = Field(default_factory=dict)
    top_contributors: list[dict[str, Any]] = Field(default_factory=list)
    top_accounts: list[dict[str, Any]] = Field(default_factory=list)
    monthly_trends: list[dict[str, Any]] = Field(default_factory=list)


def summarize(contributions: Sequence[ContributionRecord]) -> ReportSummary:
    """Summarize ``contributions`` without touching the database.

    Ties in the top-N lists keep the order in which rows were given, so the
    result is stable for a stable input order.
    """

    by_impact = {level: 0 for level in IMPACT_LEVELS}
    by_status = {state: 0 for state in CONTRIBUTION_STATUSES}
    by_type: Counter[str] = Counter()
    per_user: Counter[str] = Counter()
    per_account: Counter[str] = Counter()
    per_month: Counter[str] = Counter()
    user_names: dict[str, str | None] = {}

    for contribution in contributions:
        by_impact[contribution.impact] = by_impact.get(contribution.impact, 0) + 1
        by_status[contribution.status] = by_status.get(contribution.status, 0) + 1
        by_type[contribution.contribution_type] += 1
        per_user[contribution.user_id] += 1
        per_account[contribution.account_name] += 1
        per_month[contribution.contribution_month] += 1
        user_names.setdefault(contribution.user_id, contribution.user_name)

    return ReportSummary(
        total_contributions=len(contributions),
        total_users=len(per_user),
        total_accounts=len(per_account),
        contributions_by_type=dict(by_type),
        contributions_by_impact=by_impact,
        contributions_by_status=by_status,
        top_contributors=[
            {"userId": user_id, "userName": user_names.get(user_id), "count": count}
            for user_id, count in per_user.most_common(TOP_LIMIT)
        ],
        top_accounts=[
            {"accountName": account, "count": count}
            for account, count in per_account.most_common(TOP_LIMIT)
        ],
        monthly_trends=[
            {"month": month, "count": per_month[month]} for month in sorted(per_month)
        ],
    )
