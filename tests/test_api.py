"""
HTTP-level tests: authentication, error payloads and the main flows.
"""

from decimal import Decimal

import pytest

from commissionly.scheduler import scheduler, setup_scheduler

from conftest import auth_headers


# ── Health ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health_check(api_client):
    response = await api_client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["trace_schema_version"] == 1


@pytest.mark.asyncio
async def test_readiness(api_client):
    response = await api_client.get("/api/health/ready")
    assert response.json() == {"status": "ready", "database": "connected"}


@pytest.mark.asyncio
async def test_liveness(api_client):
    response = await api_client.get("/api/health/live")
    assert response.json() == {"status": "alive"}


# ── Authentication ────────────────────────────────────────


@pytest.mark.asyncio
async def test_missing_credentials(api_client, seed):
    response = await api_client.get("/api/sales")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token(api_client, seed):
    response = await api_client.get("/api/sales", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_salesperson_cannot_manage_plans(api_client, seed):
    response = await api_client.post(
        "/api/plans",
        json={"name": "Mine"},
        headers=auth_headers(seed.seller),
    )
    assert response.status_code == 403


# ── Sales and commissions ─────────────────────────────────


@pytest.mark.asyncio
async def test_record_sale(api_client, seed):
    response = await api_client.post(
        "/api/sales",
        json={
            "amount": "1000",
            "transaction_date": "2026-03-15T12:00:00Z",
            "user_id": seed.seller.id,
            "invoice_number": "INV-100",
        },
        headers=auth_headers(seed.seller),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["commission_status"] == "CALCULATED"
    assert Decimal(data["commission_amount"]) == Decimal("100.00")
    assert data["commission_error"] is None
    assert data["transaction"]["calculation_id"] == data["calculation_id"]


@pytest.mark.asyncio
async def test_uncovered_sale_reports_error(api_client, seed, db_session):
    seed.default_rule.is_active = False
    await db_session.commit()

    response = await api_client.post(
        "/api/sales",
        json={"amount": "1000", "transaction_date": "2026-03-15T12:00:00Z", "user_id": seed.seller.id},
        headers=auth_headers(seed.manager),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["commission_status"] == "PENDING"
    assert data["commission_error"]["error"] == "no_matching_rule"
    assert data["commission_error"]["category"] == "coverage"


@pytest.mark.asyncio
async def test_invalid_sale_amount(api_client, seed):
    response = await api_client.post(
        "/api/sales",
        json={"amount": "-5", "transaction_date": "2026-03-15T12:00:00Z", "user_id": seed.seller.id},
        headers=auth_headers(seed.manager),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_commission_flow(api_client, seed):
    seller_headers = auth_headers(seed.seller)
    manager_headers = auth_headers(seed.manager)

    created = await api_client.post(
        "/api/sales",
        json={"amount": "1000", "transaction_date": "2026-03-15T12:00:00Z", "user_id": seed.seller.id},
        headers=seller_headers,
    )
    calculation_id = created.json()["calculation_id"]

    # Traces are only shown to managers
    listed = await api_client.get("/api/commissions", headers=seller_headers)
    assert listed.json()["total"] == 1
    assert listed.json()["items"][0]["metadata"] == {}

    detail = await api_client.get(f"/api/commissions/{calculation_id}", headers=manager_headers)
    assert detail.json()["metadata"]["output"]["selected_rule_id"] == seed.default_rule.id

    explanation = await api_client.get(
        f"/api/commissions/{calculation_id}/explanation", headers=seller_headers
    )
    assert explanation.status_code == 200
    assert explanation.json()["admin_details"] is None

    approved = await api_client.post(f"/api/commissions/{calculation_id}/approve", headers=manager_headers)
    assert approved.json()["status"] == "APPROVED"

    # Approving twice is a workflow error
    again = await api_client.post(f"/api/commissions/{calculation_id}/approve", headers=manager_headers)
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_status_transition"
    assert again.json()["category"] == "workflow"

    paid = await api_client.post(f"/api/commissions/{calculation_id}/pay", headers=manager_headers)
    assert paid.json()["status"] == "PAID"


@pytest.mark.asyncio
async def test_other_salesperson_explanation_forbidden(api_client, seed):
    created = await api_client.post(
        "/api/sales",
        json={"amount": "1000", "transaction_date": "2026-03-15T12:00:00Z", "user_id": seed.seller.id},
        headers=auth_headers(seed.seller),
    )
    calculation_id = created.json()["calculation_id"]

    response = await api_client.get(
        f"/api/commissions/{calculation_id}/explanation",
        headers=auth_headers(seed.other_seller),
    )
    assert response.status_code == 403
    assert response.json()["error"] == "permission_denied"


# ── Plans ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_conflicting_rule_payload(api_client, seed):
    plan_id = seed.plan.id
    default_rule_id = seed.default_rule.id

    response = await api_client.post(
        f"/api/plans/{plan_id}/rules",
        json={"rule_type": "PERCENTAGE", "percentage": "7"},
        headers=auth_headers(seed.manager),
    )

    assert response.status_code == 409
    data = response.json()
    assert data["error"] == "conflicting_rule"
    assert data["category"] == "rule_configuration"
    assert data["conflicting_rule_ids"] == [default_rule_id]
    assert "detail" in data


@pytest.mark.asyncio
async def test_invalid_rule_payload(api_client, seed):
    plan_id = seed.plan.id
    response = await api_client.post(
        f"/api/plans/{plan_id}/rules",
        json={"rule_type": "FLAT_AMOUNT", "client_id": seed.client.id},
        headers=auth_headers(seed.manager),
    )
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_rule_configuration"


@pytest.mark.asyncio
async def test_rule_priority_in_response(api_client, seed):
    response = await api_client.post(
        f"/api/plans/{seed.plan.id}/rules",
        json={"rule_type": "PERCENTAGE", "percentage": "12", "territory_id": seed.territory.id},
        headers=auth_headers(seed.manager),
    )
    assert response.status_code == 201
    assert response.json()["priority"] == 104


@pytest.mark.asyncio
async def test_plan_health_and_preview(api_client, seed):
    headers = auth_headers(seed.manager)

    health = await api_client.get(f"/api/plans/{seed.plan.id}/health", headers=headers)
    assert health.json()["healthy"] is True

    preview = await api_client.post(
        f"/api/plans/{seed.plan.id}/preview",
        json={"amount": "250"},
        headers=headers,
    )
    assert preview.status_code == 200
    assert Decimal(preview.json()["amount"]) == Decimal("25.00")
    assert preview.json()["metadata"]["input_snapshot"]["transaction_id"] is None


@pytest.mark.asyncio
async def test_unknown_plan(api_client, seed):
    response = await api_client.get("/api/plans/9999", headers=auth_headers(seed.manager))
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


# ── API keys ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_api_key_lifecycle(api_client, seed):
    admin_headers = auth_headers(seed.admin)

    created = await api_client.post("/api/api-keys", json={"name": "ERP sync"}, headers=admin_headers)
    assert created.status_code == 201
    key = created.json()["key"]
    key_id = created.json()["id"]
    assert key.startswith("ck_")

    listed = await api_client.get("/api/plans", headers={"X-API-Key": key})
    assert listed.status_code == 200
    assert [plan["name"] for plan in listed.json()] == ["Standard"]

    revoked = await api_client.delete(f"/api/api-keys/{key_id}", headers=admin_headers)
    assert revoked.json()["is_active"] is False

    rejected = await api_client.get("/api/plans", headers={"X-API-Key": key})
    assert rejected.status_code == 401


@pytest.mark.asyncio
async def test_api_keys_admin_only(api_client, seed):
    response = await api_client.get("/api/api-keys", headers=auth_headers(seed.manager))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_salesperson_api_key_refused(api_client, seed):
    response = await api_client.post(
        "/api/api-keys",
        json={"name": "Rep widget", "role": "SALESPERSON"},
        headers=auth_headers(seed.admin),
    )
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_request"

    listed = await api_client.get("/api/api-keys", headers=auth_headers(seed.admin))
    assert listed.json() == []


@pytest.mark.asyncio
async def test_admin_routes_follow_key_role(api_client, seed):
    admin_headers = auth_headers(seed.admin)
    manager_key = await api_client.post("/api/api-keys", json={"name": "Reports"}, headers=admin_headers)
    admin_key = await api_client.post(
        "/api/api-keys", json={"name": "Provisioning", "role": "ADMIN"}, headers=admin_headers
    )

    denied = await api_client.get("/api/api-keys", headers={"X-API-Key": manager_key.json()["key"]})
    assert denied.status_code == 403

    allowed = await api_client.get("/api/api-keys", headers={"X-API-Key": admin_key.json()["key"]})
    assert allowed.status_code == 200
    assert len(allowed.json()) == 2


# ── Scheduler ─────────────────────────────────────────────


def test_setup_scheduler_registers_sweep():
    setup_scheduler()
    try:
        job = scheduler.get_job("recalculate_missing")
        assert job is not None
        assert job.name == "Calculate pending commissions"
    finally:
        scheduler.remove_job("recalculate_missing")
