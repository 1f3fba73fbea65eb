"""Tests for report aggregation, the printable report and the report endpoints."""

from __future__ import annotations

import datetime as dt

import pytest
from conftest import ApiContext, contribution_payload

from contribution_tracker.reports import PrintFields, render_print_report, summarize
from contribution_tracker.reports.print_template import EMPTY_MESSAGE
from contribution_tracker.schemas import ContributionRecord, UserRecord


def _record(**overrides) -> ContributionRecord:
    values = {
        "id": "c1",
        "user_id": "u1",
        "user_name": "Olive Owner",
        "account_name": "Acme Corp",
        "sale_name": "Jane Sale",
        "sale_email": "jane.sale@example.com",
        "contribution_type": "technical",
        "title": "Workshop",
        "description": "Ran the workshop",
        "impact": "high",
        "effort": "medium",
        "contribution_month": "2024-05",
        "status": "approved",
    }
    values.update(overrides)
    return ContributionRecord(**values)


ADMIN = UserRecord(id="admin-001", full_name="System Administrator", staff_id="ADMIN001", email="a@x.io", role="admin")


def test_summarize_counts_and_rankings():
    rows = [
        _record(id="c1"),
        _record(id="c2", impact="critical", contribution_month="2024-03"),
        _record(id="c3", user_id="u2", user_name="Bob", account_name="Globex", status="draft"),
    ]

    summary = summarize(rows)

    assert summary.total_contributions == 3
    assert summary.total_users == 2
    assert summary.total_accounts == 2
    assert summary.contributions_by_impact == {"low": 0, "medium": 0, "high": 2, "critical": 1}
    assert summary.contributions_by_status == {"draft": 1, "submitted": 0, "approved": 2, "rejected": 0}
    assert summary.contributions_by_type == {"technical": 3}
    assert summary.top_contributors[0] == {"userId": "u1", "userName": "Olive Owner", "count": 2}
    assert summary.top_accounts[0] == {"accountName": "Acme Corp", "count": 2}
    assert summary.monthly_trends == [{"month": "2024-03", "count": 1}, {"month": "2024-05", "count": 2}]


def test_summarize_empty_input():
    summary = summarize([])
    assert summary.total_contributions == 0
    assert summary.top_contributors == []
    assert set(summary.contributions_by_impact.values()) == {0}


def test_print_report_is_deterministic_and_escaped():
    rows = [_record(title="<script>alert(1)</script>")]
    kwargs = dict(user=ADMIN, tenant_name="Acme & Co", generated_on=dt.date(2024, 6, 1))

    html = render_print_report(rows, **kwargs)

    assert html == render_print_report(rows, **kwargs)
    assert "<title>Comprehensive Report</title>" in html
    assert "Generated on 2024-06-01" in html
    assert "Tenant: Acme &amp; Co" in html
    assert "&lt;script&gt;" in html and "<script>" not in html
    assert '<span class="badge impact-high">high</span>' in html
    assert "Filters: none" in html


def test_print_report_signatures_follow_the_rows():
    single = render_print_report([_record(), _record(id="c2")], user=ADMIN)
    assert "<div>SALE</div><div>Jane Sale</div>" in single
    assert "<div>PRESALE</div><div>Olive Owner</div>" in single

    mixed = render_print_report(
        [_record(), _record(id="c2", user_id="u2", user_name="Bob", sale_name="Other Sale")],
        user=ADMIN,
        filters={"saleName": "Jane"},
    )
    assert "<div>SALE</div><div>Jane</div>" in mixed
    assert "<div>ADMIN</div><div>System Administrator</div>" in mixed
    assert "Filters: saleName: Jane" in mixed


def test_print_report_column_selection_and_empty_state():
    html = render_print_report(
        [_record()], report_type="dashboard", print_fields=PrintFields(description=False, effort=False)
    )
    assert "<title>Dashboard Overview</title>" in html
    assert "<th>Description</th>" not in html
    assert "<th>Effort</th>" not in html
    assert "<th>#</th><th>Account</th>" in html

    empty = render_print_report([])
    assert EMPTY_MESSAGE in empty
    assert "<table>" not in empty
    assert "<div>SALE</div><div>N/A</div>" in empty


@pytest.fixture
def populated(api: ApiContext) -> dict[str, object]:
    """Two users with contributions across statuses, impacts and months."""

    api.create_user("olive@example.com", "O-1", full_name="Olive Owner", accounts=["Acme Corp", "Globex"])
    api.create_user("bob@example.com", "B-1", full_name="Bob Builder")
    olive = api.bearer(api.login("olive@example.com"))
    bob = api.bearer(api.login("bob@example.com"))

    for payload in (
        contribution_payload(status="submitted", contributionMonth="2024-01", impact="critical"),
        contribution_payload(status="draft", contributionMonth="2024-05"),
        contribution_payload(status="submitted", contributionMonth="2024-05", accountName="Globex", impact="low"),
    ):
        assert api.client.post("/api/contributions", json=payload, headers=olive).status_code == 201
    assert (
        api.client.post(
            "/api/contributions",
            json=contribution_payload(status="submitted", contributionMonth="2023-12", contributionType="business"),
            headers=bob,
        ).status_code
        == 201
    )
    return {"olive": olive, "bob": bob}


def test_dashboard_scopes_to_caller(api: ApiContext, populated):
    data = api.client.get("/api/reports/dashboard", headers=populated["olive"]).json()["data"]
    assert data["totalContributions"] == 3
    assert data["submittedContributions"] == 2
    assert data["draftContributions"] == 1
    assert data["approvedContributions"] == 0
    assert data["impactBreakdown"] == {"critical": 1, "high": 1, "medium": 0, "low": 1}
    assert len(data["recentContributions"]) == 3

    admin = api.client.get("/api/reports/dashboard", headers=api.admin_headers()).json()["data"]
    assert admin["totalContributions"] == 4


def test_timeline_buckets_by_month(api: ApiContext, populated):
    body = api.client.get("/api/reports/timeline?year=2024", headers=api.admin_headers()).json()["data"]
    assert set(body) == {"year", "monthlyData"}
    assert body["year"] == 2024
    data = body["monthlyData"]
    assert len(data) == 12
    assert data[0]["month"] == "2024-01"
    assert data[0]["monthName"] == "Jan"
    assert data[0]["contributions"]["critical"] == 1
    assert data[4]["contributions"] == {"low": 1, "medium": 0, "high": 1, "critical": 0, "total": 2}
    assert sum(month["contributions"]["total"] for month in data) == 3


def test_comprehensive_report_applies_filters(api: ApiContext, populated):
    resp = api.client.post(
        "/api/reports/comprehensive",
        json={"startDate": "2024-02-01", "endDate": "2024-12", "accountName": "glob"},
        headers=api.admin_headers(),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert [c["accountName"] for c in data["contributions"]] == ["Globex"]
    assert data["summary"]["totalContributions"] == 1
    assert data["filters"] == {"startDate": "2024-02", "endDate": "2024-12", "accountName": "glob"}

    resp = api.client.post(
        "/api/reports/comprehensive", json={"startDate": "May"}, headers=api.admin_headers()
    )
    assert resp.status_code == 400


def test_non_admin_cannot_widen_scope_with_user_filter(api: ApiContext, populated):
    bob_id = api.database.query_one("SELECT id FROM users WHERE email = ?", ["bob@example.com"])["id"]
    data = api.client.post(
        "/api/reports/comprehensive", json={"userId": bob_id}, headers=populated["olive"]
    ).json()["data"]
    assert data["summary"]["totalContributions"] == 3
    assert {c["userName"] for c in data["contributions"]} == {"Olive Owner"}


def test_export_uses_labelled_columns(api: ApiContext, populated):
    body = api.client.post(
        "/api/reports/export", json={"contributionType": "business"}, headers=api.admin_headers()
    ).json()
    assert body["success"] is True
    assert body["totalRecords"] == 1
    assert body["exportDate"]
    row = body["data"][0]
    assert row["Staff Name"] == "Bob Builder"
    assert row["Sale Approval"] == "No"
    assert row["Tags"] == "workshop, design"


def test_user_report_respects_visibility(api: ApiContext, populated):
    olive_id = api.database.query_one("SELECT id FROM users WHERE email = ?", ["olive@example.com"])["id"]

    data = api.client.get(f"/api/reports/user/{olive_id}", headers=api.admin_headers()).json()["data"]
    assert set(data) == {"contributions", "summary"}
    assert {c["userName"] for c in data["contributions"]} == {"Olive Owner"}
    assert data["summary"] == {
        "totalContributions": 3,
        "approvedContributions": 0,
        "submittedContributions": 2,
        "draftContributions": 1,
        "impactBreakdown": {"critical": 1, "high": 1, "medium": 0, "low": 1},
        "typeBreakdown": {"technical": 3, "business": 0, "relationship": 0, "innovation": 0, "other": 0},
    }

    resp = api.client.get(f"/api/reports/user/{olive_id}", headers=populated["bob"])
    assert resp.status_code == 403


def test_export_data_downloads_tenant_snapshot(api: ApiContext, populated):
    resp = api.client.get("/api/reports/export-data", headers=api.admin_headers())
    assert resp.status_code == 200
    assert resp.headers["content-disposition"].startswith('attachment; filename="contributions-export-')
    body = resp.json()
    assert len(body["contributions"]) == 4
    assert {user["email"] for user in body["users"]} >= {"olive@example.com", "bob@example.com"}
    assert all("password" not in user for user in body["users"])

    assert api.client.get("/api/reports/export-data", headers=populated["olive"]).status_code == 403


def test_print_endpoint_returns_html(api: ApiContext, populated):
    resp = api.client.post(
        "/api/reports/print",
        json={"reportType": "comprehensive", "status": "draft", "printFields": {"description": False}},
        headers=populated["olive"],
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    html = resp.text
    assert "Tenant: Default" in html
    assert "Filters: status: draft" in html
    assert "<th>Description</th>" not in html
    assert "<div>PRESALE</div><div>Olive Owner</div>" in html

    resp = api.client.post("/api/reports/print", json={"status": "approved"}, headers=populated["olive"])
    assert EMPTY_MESSAGE in resp.text
