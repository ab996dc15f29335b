import uuid
from decimal import Decimal

import pytest

from tests import factories


def headers(tenant):
    return {"X-Tenant-ID": str(tenant.id)}


# ==================== Tenant resolution ====================

async def test_health_needs_no_tenant(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"


async def test_missing_tenant_header(client):
    response = await client.get("/api/v1/brokers")

    assert response.status_code == 400
    body = response.json()
    assert "X-Tenant-ID" in body["error"]
    assert body["path"] == "/api/v1/brokers"


async def test_malformed_tenant_header(client):
    response = await client.get("/api/v1/brokers", headers={"X-Tenant-ID": "not-a-uuid"})
    assert response.status_code == 400


async def test_unknown_tenant(client):
    response = await client.get("/api/v1/brokers", headers={"X-Tenant-ID": str(uuid.uuid4())})
    assert response.status_code == 404


async def test_suspended_tenant(client, db):
    tenant = await factories.create_tenant(db, status="suspended")

    response = await client.get("/api/v1/brokers", headers=headers(tenant))

    assert response.status_code == 403


async def test_commission_module_disabled(client, db):
    tenant = await factories.create_tenant(db, features={"fees": True})

    response = await client.get("/api/v1/brokers", headers=headers(tenant))

    assert response.status_code == 403
    assert "commission" in response.json()["error"]


# ==================== Brokers ====================

async def test_build_hierarchy_over_http(client, tenant):
    response = await client.post(
        "/api/v1/brokers", json={"name": "Top Broker", "code": "brk-001"}, headers=headers(tenant)
    )
    assert response.status_code == 201
    top = response.json()
    assert top["code"] == "BRK-001"
    assert top["level"] == 0

    response = await client.post(
        "/api/v1/brokers",
        json={"name": "Sub Broker", "code": "SUB-001", "parent_broker_id": top["id"]},
        headers=headers(tenant),
    )
    assert response.status_code == 201
    sub = response.json()
    assert sub["level"] == 1
    assert sub["parent_broker_id"] == top["id"]

    response = await client.get(f"/api/v1/brokers/{sub['id']}/ancestors", headers=headers(tenant))
    assert response.status_code == 200
    ancestors = response.json()
    assert ancestors["depth"] == 2
    assert [b["id"] for b in ancestors["chain"]] == [sub["id"], top["id"]]

    response = await client.get(f"/api/v1/brokers/{top['id']}/hierarchy", headers=headers(tenant))
    assert response.status_code == 200
    hierarchy = response.json()
    assert hierarchy["parent"] is None
    assert [b["id"] for b in hierarchy["descendants"]] == [sub["id"]]

    response = await client.get("/api/v1/brokers", headers=headers(tenant))
    assert response.json()["total"] == 2


async def test_duplicate_broker_code(client, tenant):
    payload = {"name": "Top Broker", "code": "BRK-001"}
    await client.post("/api/v1/brokers", json=payload, headers=headers(tenant))

    response = await client.post("/api/v1/brokers", json=payload, headers=headers(tenant))

    assert response.status_code == 409
    assert response.json()["type"] == "BrokerConflictError"


async def test_parent_from_another_tenant_is_rejected(client, db, tenant):
    other_tenant = await factories.create_tenant(db, name="Other School")
    foreign = await factories.create_broker(db, other_tenant, "Foreign Top", "BRK-001")

    response = await client.post(
        "/api/v1/brokers",
        json={"name": "Agent", "code": "AGT-001", "parent_broker_id": str(foreign.id)},
        headers=headers(tenant),
    )

    assert response.status_code == 400


async def test_broker_of_another_tenant_is_not_found(client, db, chain):
    other_tenant = await factories.create_tenant(db, name="Other School")

    response = await client.get(f"/api/v1/brokers/{chain.top.id}", headers=headers(other_tenant))

    assert response.status_code == 404


async def test_deactivate_broker_with_students(client, chain):
    response = await client.delete(f"/api/v1/brokers/{chain.agent.id}", headers=headers(chain.tenant))
    assert response.status_code == 409


async def test_broker_stats_endpoint(client, chain):
    response = await client.get(f"/api/v1/brokers/{chain.agent.id}/stats", headers=headers(chain.tenant))

    assert response.status_code == 200
    stats = response.json()
    assert stats["total_students"] == 1
    assert stats["total_commissions"] == 0


# ==================== Rules ====================

async def test_create_and_list_rules(client, chain):
    response = await client.post(
        f"/api/v1/brokers/{chain.top.id}/rules",
        json={
            "name": "Top Broker - Admissions",
            "percentage": "1.5",
            "priority": 20,
            "conditions": {"fee_types": ["admission"], "min_amount": "1000"},
        },
        headers=headers(chain.tenant),
    )
    assert response.status_code == 201
    rule = response.json()
    assert rule["level"] == 0
    assert rule["conditions"] == {"min_amount": "1000", "fee_types": ["ADMISSION"]}

    response = await client.get(f"/api/v1/brokers/{chain.top.id}/rules", headers=headers(chain.tenant))
    rules = response.json()
    assert rules["total"] == 2
    assert rules["items"][0]["id"] == rule["id"]


@pytest.mark.parametrize("percentage", ["0", "-5", "150"])
async def test_rule_percentage_out_of_range(client, chain, percentage):
    response = await client.post(
        f"/api/v1/brokers/{chain.top.id}/rules",
        json={"name": "Broken", "percentage": percentage},
        headers=headers(chain.tenant),
    )
    assert response.status_code == 422


async def test_rule_with_unknown_condition_key(client, chain):
    response = await client.post(
        f"/api/v1/brokers/{chain.top.id}/rules",
        json={"name": "Regional", "percentage": "1", "conditions": {"region": "NORTH"}},
        headers=headers(chain.tenant),
    )
    assert response.status_code == 422


async def test_update_and_deactivate_rule(client, chain):
    response = await client.patch(
        f"/api/v1/commission-rules/{chain.top_rule.id}",
        json={"priority": 9},
        headers=headers(chain.tenant),
    )
    assert response.status_code == 200
    assert response.json()["priority"] == 9

    response = await client.delete(f"/api/v1/commission-rules/{chain.top_rule.id}", headers=headers(chain.tenant))
    assert response.status_code == 200
    assert response.json()["is_active"] is False

    response = await client.get(f"/api/v1/commission-rules/{uuid.uuid4()}", headers=headers(chain.tenant))
    assert response.status_code == 404


# ==================== Commissions ====================

async def test_calculate_preview(client, db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")

    response = await client.post(f"/api/v1/commissions/calculate/{payment.id}", headers=headers(chain.tenant))

    assert response.status_code == 200
    body = response.json()
    assert body["payment_id"] == str(payment.id)
    assert body["total_commission"] == "5250.00"
    assert [c["commission_amount"] for c in body["calculations"]] == ["2500.00", "1750.00", "1000.00"]
    assert [c["level"] for c in body["calculations"]] == [2, 1, 0]
    assert body["calculations"][0]["broker_name"] == "Field Agent"

    # A preview records nothing
    response = await client.get(f"/api/v1/commissions/broker/{chain.agent.id}", headers=headers(chain.tenant))
    assert response.json()["total"] == 0


async def test_create_is_idempotent(client, db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    url = f"/api/v1/commissions/create/{payment.id}"

    first = await client.post(url, headers=headers(chain.tenant))
    assert first.status_code == 200
    assert first.json()["created_count"] == 3
    assert first.json()["duplicate_count"] == 0

    second = await client.post(url, headers=headers(chain.tenant))
    assert second.status_code == 200
    assert second.json()["created_count"] == 0
    assert second.json()["duplicate_count"] == 3
    assert {c["id"] for c in second.json()["commissions"]} == {c["id"] for c in first.json()["commissions"]}


async def test_list_broker_commissions(client, db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000")
    await client.post(f"/api/v1/commissions/create/{payment.id}", headers=headers(chain.tenant))

    response = await client.get(
        f"/api/v1/commissions/broker/{chain.sub.id}",
        params={"status": "pending"},
        headers=headers(chain.tenant),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    commission = body["items"][0]
    assert Decimal(commission["amount"]) == Decimal("1750.00")
    assert commission["status"] == "PENDING"
    assert commission["metadata"]["broker_name"] == "Sub Broker"

    # Listed records carry the payment they were earned on
    assert commission["payment"]["id"] == str(payment.id)
    assert Decimal(commission["payment"]["amount"]) == Decimal("50000")
    assert commission["payment"]["fee"]["fee_type"] == "TUITION"
    assert commission["payment"]["student"]["id"] == str(chain.student.id)
    assert commission["payment"]["student"]["enrollment_number"] == chain.student.enrollment_number


async def test_list_with_invalid_status(client, chain):
    response = await client.get(
        f"/api/v1/commissions/broker/{chain.sub.id}",
        params={"status": "SETTLED"},
        headers=headers(chain.tenant),
    )
    assert response.status_code == 422


async def test_list_for_unknown_broker(client, chain):
    response = await client.get(f"/api/v1/commissions/broker/{uuid.uuid4()}", headers=headers(chain.tenant))
    assert response.status_code == 404


async def test_pending_payment_earns_nothing(client, db, chain):
    payment = await factories.create_payment(db, chain.tenant, chain.student, "50000", status="PENDING")

    response = await client.post(f"/api/v1/commissions/create/{payment.id}", headers=headers(chain.tenant))

    assert response.status_code == 422
    body = response.json()
    assert body["error"].startswith(f"Could not calculate commissions for payment {payment.id}")
    assert body["type"] == "PaymentNotCompletedError"


async def test_unknown_payment(client, chain):
    response = await client.post(f"/api/v1/commissions/calculate/{uuid.uuid4()}", headers=headers(chain.tenant))

    assert response.status_code == 404
    assert response.json()["type"] == "PaymentNotFoundError"


async def test_corrupt_rule_is_reported(client, db, tenant):
    top = await factories.create_broker(db, tenant, "Top Broker", "BRK-001")
    await factories.create_rule(db, top, "150")
    student = await factories.create_student(db, tenant, broker=top)
    payment = await factories.create_payment(db, tenant, student, "1000")

    response = await client.post(f"/api/v1/commissions/calculate/{payment.id}", headers=headers(tenant))

    assert response.status_code == 422
    assert response.json()["type"] == "RuleIntegrityError"
