"""
Tests: HTTP surface.

Identity headers, the JSON error envelope, security headers and one full
lead-to-procurement walk through the API.
"""

import pytest

CLIENT_ID = "client-1"


# ── Health & identity ────────────────────────────────────────────────────────


def test_health_ready(client):
    res = client.get("/api/v1/health/ready")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_health_live_reports_database(client):
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    assert res.get_json()["checks"]["database"]["status"] == "ok"


def test_missing_identity_is_401(client):
    res = client.get("/api/v1/cases")
    assert res.status_code == 401
    assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"


def test_unknown_role_is_401(client):
    res = client.get("/api/v1/cases", headers={"X-User-Id": "u-1", "X-User-Role": "janitor"})
    assert res.status_code == 401


def test_security_headers_present(client):
    res = client.get("/api/v1/health/ready")
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["X-Frame-Options"] == "DENY"
    assert res.headers["Cache-Control"] == "no-store"
    assert "default-src 'none'" in res.headers["Content-Security-Policy"]


# ── Error envelope ───────────────────────────────────────────────────────────


def test_unknown_route_is_json_404(client):
    res = client.get("/api/v1/nope")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_missing_record_is_404(client, actors, auth_headers):
    res = client.get("/api/v1/cases/999", headers=auth_headers(actors.sales))
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_non_json_body_is_415(client, actors, auth_headers):
    res = client.post(
        "/api/v1/cases", data="title: Showroom", headers=auth_headers(actors.sales),
        content_type="text/plain",
    )
    assert res.status_code == 415


def test_validation_failure_is_422(client, case, actors, auth_headers):
    res = client.post(
        f"/api/v1/cases/{case['id']}/quotations", json={"items": []}, headers=auth_headers(actors.quoter),
    )
    assert res.status_code == 422
    assert res.get_json()["code"] == "QUOTATION_EMPTY"


def test_role_denial_is_403(client, case, actors, auth_headers):
    res = client.post(
        f"/api/v1/cases/{case['id']}/quotations",
        json={"items": [{"item_id": "X", "quantity": 1, "unit_price": 1}]},
        headers=auth_headers(actors.client),
    )
    assert res.status_code == 403
    assert res.get_json()["code"] == "ROLE_NOT_PERMITTED"


def test_state_conflict_echoes_current_state(client, approved_quotation, actors, auth_headers):
    res = client.post(
        f"/api/v1/quotations/{approved_quotation['id']}/approve", headers=auth_headers(actors.admin),
    )
    body = res.get_json()
    assert res.status_code == 409
    assert body["code"] == "QUOTATION_ALREADY_AUDITED"
    assert body["details"]["current_state"] == "approved"
    assert body["error"]


# ── Channel views ────────────────────────────────────────────────────────────


def test_client_sees_only_client_documents(client, approved_quotation, actors, auth_headers):
    case_id = approved_quotation["case_id"]

    res = client.get(f"/api/v1/cases/{case_id}/documents", headers=auth_headers(actors.client))

    assert res.status_code == 200
    assert [d["quotation_id"] for d in res.get_json()] == [approved_quotation["id"]]


def test_vendor_bid_defaults_to_own_id(client, approved_quotation, actors, auth_headers):
    round_ = client.post(
        f"/api/v1/quotations/{approved_quotation['id']}/bid-rounds",
        json={"invited_vendor_ids": ["V-A"]},
        headers=auth_headers(actors.procurement),
    ).get_json()

    res = client.post(
        f"/api/v1/bid-rounds/{round_['id']}/bids",
        json={"total_amount": 90000, "delivery_days": 10},
        headers=auth_headers(actors.vendor("V-A")),
    )

    assert res.status_code == 200
    assert res.get_json()["vendor_id"] == "V-A"
    assert res.get_json()["vendor_name"] == "Vendor V-A"


# ── Full walk ────────────────────────────────────────────────────────────────


def test_lead_to_procurement_over_http(client, actors, auth_headers, plan_days):
    def call(method, url, actor, body=None, expected=200):
        res = client.open(url, method=method, json=body, headers=auth_headers(actor))
        assert res.status_code == expected, res.get_json()
        return res.get_json()

    case = call("POST", "/api/v1/cases", actors.sales,
                {"title": "Showroom", "client_id": CLIENT_ID}, expected=201)
    quotation = call("POST", f"/api/v1/cases/{case['id']}/quotations", actors.quoter,
                     {"items": [{"item_id": "TILE-01", "quantity": 2, "unit_price": 500}]}, expected=201)
    assert quotation["grand_total"] == 1180.0

    call("POST", f"/api/v1/quotations/{quotation['id']}/approve", actors.procurement)
    call("POST", f"/api/v1/cases/{case['id']}/convert", actors.sales)
    call("PUT", f"/api/v1/cases/{case['id']}/execution-plan", actors.execution,
         {"kind": "days", "items": plan_days})
    for party, actor in (("preparer", actors.execution), ("admin", actors.admin), ("client", actors.client)):
        plan = call("POST", f"/api/v1/cases/{case['id']}/execution-plan/approvals/{party}", actor)
    assert plan["locked"] is True

    cost_center = call("GET", f"/api/v1/cases/{case['id']}/cost-center", actors.accounts)
    assert cost_center["total_budget"] == 100000.0

    unscheduled = call("GET", f"/api/v1/cases/{case['id']}/procurement/unscheduled", actors.procurement)
    assert len(unscheduled) == 3

    line = unscheduled[0]
    created = call("POST", f"/api/v1/cases/{case['id']}/procurement/plans", actors.procurement,
                   {**line, "vendor_id": "V-CEM", "expected_delivery_date": "2026-10-30"}, expected=201)
    assert created["status"] == "planned"

    duplicate = client.post(
        f"/api/v1/cases/{case['id']}/procurement/plans",
        json={**line, "vendor_id": "V-CEM", "expected_delivery_date": "2026-10-30"},
        headers=auth_headers(actors.procurement),
    )
    assert duplicate.status_code == 409

    remaining = call("GET", f"/api/v1/cases/{case['id']}/procurement/unscheduled", actors.procurement)
    assert len(remaining) == 2


@pytest.mark.parametrize("status", ["lead", None])
def test_case_listing_over_http(client, case, actors, auth_headers, status):
    url = "/api/v1/cases" + (f"?status={status}" if status else "")
    res = client.get(url, headers=auth_headers(actors.sales))
    assert res.status_code == 200
    assert [c["id"] for c in res.get_json()] == [case["id"]]
