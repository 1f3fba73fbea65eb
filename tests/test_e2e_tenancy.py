"""End-to-end flow across tenants with ``ENABLE_TENANCY`` switched on."""

from __future__ import annotations

from conftest import USER_PASSWORD, ApiContext, contribution_payload

from contribution_tracker.security import decode_tenant_token, jwt_settings_from


def _signup(api: ApiContext, prefix: str, email: str, staff_id: str) -> str:
    resp = api.client.post(
        api.api("/auth/signup", prefix),
        json={
            "fullName": "Acme Presale",
            "staffId": staff_id,
            "email": email,
            "password": USER_PASSWORD,
            "confirmPassword": USER_PASSWORD,
            "involvedAccountNames": ["Acme Corp"],
            "involvedSaleNames": ["Jane Sale"],
            "involvedSaleEmails": ["jane.sale@example.com"],
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["id"]


def test_tenant_lifecycle_and_isolation(tenant_api: ApiContext):
    api = tenant_api

    resp = api.client.post(
        "/api/global/tenants",
        json={"tenantPrefix": "acme", "name": "Acme Industries", "adminEmails": ["boss@acme.io"]},
        headers=api.global_headers(),
    )
    assert resp.status_code == 201
    acme_id = resp.json()["data"]["id"]

    user_id = _signup(api, "acme", "presale@acme.io", "ACME-1")
    row = api.database.query_one("SELECT tenantId, status FROM users WHERE id = ?", [user_id])
    assert row == {"tenantId": acme_id, "status": "pending"}

    # The bootstrap admin approves signups of any tenant.
    resp = api.client.post(f"/api/auth/approve/{user_id}", headers=api.admin_headers())
    assert resp.status_code == 200

    # Accounts live in their own tenant only.
    resp = api.client.post(
        "/api/auth/login", json={"email": "presale@acme.io", "password": USER_PASSWORD}
    )
    assert resp.status_code == 401

    token = api.login("presale@acme.io", prefix="acme")
    claims = decode_tenant_token(token, jwt_settings=jwt_settings_from(api.app.state.settings))
    assert claims["tenantPrefix"] == "acme"
    assert claims["tenantId"] == acme_id
    assert claims["userId"] == user_id
    acme_headers = api.bearer(token)
    resp = api.client.post(
        api.api("/contributions", "acme"), json=contribution_payload(), headers=acme_headers
    )
    assert resp.status_code == 201
    contribution_id = resp.json()["data"]["id"]
    stored = api.database.query_one("SELECT tenantId FROM contributions WHERE id = ?", [contribution_id])
    assert stored == {"tenantId": acme_id}

    # The header selects the tenant just like the path does.
    resp = api.client.get(
        "/api/contributions", headers={**acme_headers, "X-Tenant-Prefix": "acme"}
    )
    assert resp.status_code == 200
    assert [c["id"] for c in resp.json()["data"]] == [contribution_id]

    # An acme token used against the default tenant is refused.
    resp = api.client.get("/api/contributions", headers=acme_headers)
    assert resp.status_code == 403
    assert resp.json()["error"] == "Tenant mismatch"

    # The default tenant admin does not see acme rows.
    default_rows = api.client.get("/api/contributions/admin", headers=api.admin_headers()).json()["data"]
    assert default_rows == []
    resp = api.client.get(f"/api/contributions/{contribution_id}", headers=api.admin_headers())
    assert resp.status_code == 404

    # Writes from another tenant miss the row and leave it untouched.
    before = api.database.query_one("SELECT * FROM contributions WHERE id = ?", [contribution_id])
    resp = api.client.put(
        f"/api/contributions/{contribution_id}",
        json={"title": "Overwritten elsewhere", "status": "submitted"},
        headers=api.admin_headers(),
    )
    assert resp.status_code == 404
    resp = api.client.delete(f"/api/contributions/{contribution_id}", headers=api.admin_headers())
    assert resp.status_code == 404
    resp = api.client.post(f"/api/contributions/{contribution_id}/approve", headers=api.admin_headers())
    assert resp.status_code == 404
    after = api.database.query_one("SELECT * FROM contributions WHERE id = ?", [contribution_id])
    assert after == before
    assert after["title"] == contribution_payload()["title"]
    assert after["status"] == "draft"

    stats = {
        row["tenantPrefix"]: row
        for row in api.client.get("/api/global/tenants/stats", headers=api.global_headers()).json()["data"]
    }
    assert stats["acme"]["users"] == 1
    assert stats["acme"]["contributions"] == 1


def test_unknown_prefix_falls_back_to_default_tenant(tenant_api: ApiContext):
    token = tenant_api.login("admin@presale.com", "password", prefix="does-not-exist")
    resp = tenant_api.client.get("/api/auth/profile", headers=tenant_api.bearer(token))
    assert resp.status_code == 200
    assert resp.json()["data"]["tenantId"] == "tenant-default"
