"""
HTTP API tests.
"""

import pytest

from taskledger.config import settings
from taskledger.events import EVENTS

from conftest import OTHER_TENANT, TENANT, USER

HEADERS = {"X-Tenant-ID": TENANT, "X-User-ID": USER}

CREATE_BODY = {
    "type": "AI_ACTION",
    "category": "MESSAGING",
    "title": "Text the customer",
    "action_type": "SEND_SMS",
    "entity_type": "customer",
    "entity_id": "cust-1",
    "payload": {"to": "+15550100", "body": "Your technician is on the way"},
}


async def _create(client, **overrides):
    body = {**CREATE_BODY, **overrides}
    response = await client.post("/v1/task-ledger", json=body, headers=HEADERS)
    assert response.status_code == 200, response.text
    return response.json()


async def test_health(client):
    response = await client.get("/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_trace_id_is_echoed(client):
    response = await client.get("/v1/health", headers={"X-Trace-ID": "trace-123"})

    assert response.headers["X-Trace-ID"] == "trace-123"


async def test_create_and_dedup(client, bus):
    first = await _create(client)
    second = await _create(client)

    assert first["status"] == "PENDING"
    assert first["tenant_id"] == TENANT
    assert first["priority"] == 50
    assert len(first["idempotency_key"]) == 32
    assert second["id"] == first["id"]
    assert bus.names().count(EVENTS.TASK_LEDGER_CREATED) == 1


async def test_create_validation(client):
    response = await client.post(
        "/v1/task-ledger", json={**CREATE_BODY, "priority": 0}, headers=HEADERS
    )

    assert response.status_code == 422


async def test_get_task_other_tenant_is_404(client):
    created = await _create(client)

    own = await client.get(f"/v1/task-ledger/{created['id']}", headers=HEADERS)
    other = await client.get(
        f"/v1/task-ledger/{created['id']}", headers={"X-Tenant-ID": OTHER_TENANT}
    )

    assert own.status_code == 200
    assert other.status_code == 404


async def test_approve_twice_is_conflict(client, backend):
    created = await _create(client)

    approved = await client.post(f"/v1/task-ledger/{created['id']}/approve", headers=HEADERS)
    again = await client.post(f"/v1/task-ledger/{created['id']}/approve", headers=HEADERS)

    assert approved.status_code == 200
    assert approved.json()["status"] == "IN_PROGRESS"
    assert f"approved-{created['id']}" in backend.jobs
    assert again.status_code == 409
    detail = again.json()["detail"]
    assert detail["code"] == "INVALID_STATE"
    assert detail["current_status"] == "IN_PROGRESS"
    assert detail["allowed"] == ["PENDING", "SCHEDULED"]


async def test_decline_with_reason(client):
    created = await _create(client)

    response = await client.post(
        f"/v1/task-ledger/{created['id']}/decline",
        json={"reason": "Customer already paid"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "CANCELLED"
    assert body["failure_reason"] == "Customer already paid"
    assert body["executed_by"] == USER


async def test_decline_without_body(client):
    created = await _create(client)

    response = await client.post(f"/v1/task-ledger/{created['id']}/decline", headers=HEADERS)

    assert response.json()["failure_reason"] == "Declined by user"


async def test_complete_then_undo_without_window(client):
    created = await _create(client)

    completed = await client.post(f"/v1/task-ledger/{created['id']}/complete", headers=HEADERS)
    undo = await client.post(f"/v1/task-ledger/{created['id']}/undo", headers=HEADERS)

    assert completed.json()["status"] == "COMPLETED"
    assert undo.status_code == 409
    assert "does not support undo" in undo.json()["detail"]["message"]


async def test_complete_then_undo(client):
    created = await _create(client, undo_window_mins=5, undo_endpoint="/sms/recall")

    await client.post(f"/v1/task-ledger/{created['id']}/complete", headers=HEADERS)
    undo = await client.post(f"/v1/task-ledger/{created['id']}/undo", headers=HEADERS)

    assert undo.status_code == 200
    assert undo.json()["status"] == "UNDONE"
    assert undo.json()["undone_by"] == USER


async def test_pending_accepts_comma_separated_filters(client):
    await _create(client)
    await _create(client, type="APPROVAL", category="BILLING", entity_id="cust-2")

    both = await client.get(
        "/v1/task-ledger/pending", params={"types": "AI_ACTION,APPROVAL"}, headers=HEADERS
    )
    billing = await client.get(
        "/v1/task-ledger/pending", params={"categories": "BILLING"}, headers=HEADERS
    )
    bogus = await client.get(
        "/v1/task-ledger/pending", params={"types": "NOT_A_TYPE"}, headers=HEADERS
    )

    assert len(both.json()) == 2
    assert [e["type"] for e in billing.json()] == ["APPROVAL"]
    assert bogus.status_code == 422


async def test_approvals_today_and_entity(client):
    await _create(client)
    approval = await _create(client, type="APPROVAL", entity_id="cust-2")

    approvals = await client.get("/v1/task-ledger/approvals", headers=HEADERS)
    today = await client.get("/v1/task-ledger/today", headers=HEADERS)
    entity = await client.get("/v1/task-ledger/entity/customer/cust-2", headers=HEADERS)

    assert [e["id"] for e in approvals.json()] == [approval["id"]]
    assert len(today.json()) == 2
    assert [e["id"] for e in entity.json()] == [approval["id"]]


async def test_cancel_entity_tasks(client):
    await _create(client)
    await _create(client, payload={"to": "+15550199", "body": "Running late"})
    other = await _create(client, entity_id="cust-2")

    response = await client.post(
        "/v1/task-ledger/entity/customer/cust-1/cancel", json={}, headers=HEADERS
    )
    untouched = await client.get(f"/v1/task-ledger/{other['id']}", headers=HEADERS)

    assert response.json() == {"cancelled": 2}
    assert untouched.json()["status"] == "PENDING"


async def test_stats(client):
    await _create(client)
    await _create(client, type="APPROVAL", entity_id="cust-2")
    done = await _create(client, entity_id="cust-3")
    await client.post(f"/v1/task-ledger/{done['id']}/complete", headers=HEADERS)

    response = await client.get("/v1/task-ledger/stats", headers=HEADERS)

    assert response.json() == {
        "pending": 1,
        "approvals": 1,
        "completed_today": 1,
        "failed_today": 0,
    }


@pytest.fixture
def secured(monkeypatch):
    monkeypatch.setattr(settings, "allow_insecure_dev", False)
    monkeypatch.setattr(settings, "api_key", "secret-key")


async def test_api_key_required(client, secured):
    missing = await client.get("/v1/health")
    wrong = await client.get("/v1/health", headers={"X-API-Key": "nope"})
    bearer = await client.get("/v1/health", headers={"Authorization": "Bearer secret-key"})
    header = await client.get("/v1/health", headers={"X-API-Key": "secret-key"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert bearer.status_code == 200
    assert header.status_code == 200


async def test_tenant_header_required_when_secured(client, secured):
    response = await client.get(
        "/v1/task-ledger/pending", headers={"X-API-Key": "secret-key"}
    )

    assert response.status_code == 401
