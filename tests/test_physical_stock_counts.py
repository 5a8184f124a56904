"""Count lifecycle, actor enforcement and health endpoint."""
from uuid import UUID

from app.services.audit_service import AuditService
from app.services.physical_stock_service import ENTITY_COUNT

from tests.conftest import ACTOR_HEADERS


async def test_create_count_starts_pending(client):
    response = await client.post(
        "/api/v1/counts",
        json={"description": "Year end", "storage_location": "MAIN", "count_type": "cycle_count"},
        headers=ACTOR_HEADERS,
    )

    assert response.status_code == 201
    count = response.json()
    assert count["status"] == "PENDING"
    assert count["count_type"] == "CYCLE_COUNT"
    assert count["count_number"].startswith("PSC-")
    assert count["created_by"] == "counter-1"
    assert count["total_items_expected"] == 0


async def test_missing_actor_header_is_rejected(client):
    response = await client.post("/api/v1/counts", json={})

    assert response.status_code == 400
    body = response.json()
    assert body["reason"] == "MISSING_ACTOR"

    response = await client.post("/api/v1/counts", json={}, headers={"X-User-ID": "   "})
    assert response.status_code == 400
    assert response.json()["reason"] == "MISSING_ACTOR"


async def test_invalid_count_type_fails_validation(client):
    response = await client.post(
        "/api/v1/counts", json={"count_type": "GUESS"}, headers=ACTOR_HEADERS
    )
    assert response.status_code == 422


async def test_get_list_and_lookup_by_number(client, workflow):
    first = await workflow.create(storage_location="MAIN")
    second = await workflow.create(storage_location="BACK")

    response = await client.get(f"/api/v1/counts/number/{first['count_number']}")
    assert response.status_code == 200
    assert response.json()["id"] == first["id"]

    response = await client.get("/api/v1/counts", params={"storage_location": "BACK"})
    assert [c["id"] for c in response.json()] == [second["id"]]

    response = await client.get("/api/v1/counts", params={"status": "PENDING"})
    assert {c["id"] for c in response.json()} == {first["id"], second["id"]}

    response = await client.get("/api/v1/counts/number/PSC-NOPE")
    assert response.status_code == 404


async def test_unknown_count_is_404(client):
    response = await client.get("/api/v1/counts/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404


async def test_start_then_start_again(client, workflow):
    count = await workflow.create()

    response = await client.post(f"/api/v1/counts/{count['id']}/start", headers=ACTOR_HEADERS)
    assert response.status_code == 200
    started = response.json()
    assert started["status"] == "IN_PROGRESS"
    assert started["started_by"] == "counter-1"
    assert started["started_at"] is not None

    response = await client.post(f"/api/v1/counts/{count['id']}/start", headers=ACTOR_HEADERS)
    assert response.status_code == 400
    assert response.json()["reason"] == "INVALID_STATUS_TRANSITION"


async def test_cancel_is_terminal(client, workflow):
    count = await workflow.create()

    response = await client.post(f"/api/v1/counts/{count['id']}/cancel", headers=ACTOR_HEADERS)
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    response = await client.post(f"/api/v1/counts/{count['id']}/cancel", headers=ACTOR_HEADERS)
    assert response.json()["reason"] == "COUNT_CANCELLED"

    response = await client.post(f"/api/v1/counts/{count['id']}/start", headers=ACTOR_HEADERS)
    assert response.status_code == 400
    assert response.json()["reason"] == "COUNT_CANCELLED"


async def test_update_status_follows_lifecycle(client, workflow):
    count = await workflow.create()

    response = await client.put(
        f"/api/v1/counts/{count['id']}",
        json={"status": "COMPLETED"},
        headers=ACTOR_HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["reason"] == "INVALID_STATUS_TRANSITION"

    response = await client.put(
        f"/api/v1/counts/{count['id']}",
        json={"status": "in_progress", "description": "Aisle 4"},
        headers=ACTOR_HEADERS,
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["status"] == "IN_PROGRESS"
    assert updated["description"] == "Aisle 4"

    response = await client.put(
        f"/api/v1/counts/{count['id']}",
        json={"status": "PENDING"},
        headers=ACTOR_HEADERS,
    )
    assert response.json()["reason"] == "INVALID_STATUS_TRANSITION"


async def test_rejected_update_leaves_count_unchanged(client, workflow):
    count = await workflow.create(description="Before")

    response = await client.put(
        f"/api/v1/counts/{count['id']}",
        json={"description": "After", "status": "COMPLETED"},
        headers=ACTOR_HEADERS,
    )
    assert response.status_code == 400

    assert (await workflow.count(count["id"]))["description"] == "Before"


async def test_closed_count_accepts_notes_only(client, workflow):
    count = await workflow.create()
    await client.post(f"/api/v1/counts/{count['id']}/cancel", headers=ACTOR_HEADERS)

    response = await client.put(
        f"/api/v1/counts/{count['id']}",
        json={"description": "Too late"},
        headers=ACTOR_HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["reason"] == "COUNT_NOT_OPEN"

    response = await client.put(
        f"/api/v1/counts/{count['id']}",
        json={"notes": "Cancelled due to stock transfer"},
        headers=ACTOR_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["notes"] == "Cancelled due to stock transfer"


async def test_delete_count_removes_items(client, workflow, inventory):
    count = await workflow.create(storage_location="MAIN")
    await workflow.populate(count["id"])
    await client.post(
        f"/api/v1/counts/{count['id']}/scanning-sessions", json={}, headers=ACTOR_HEADERS
    )

    response = await client.delete(f"/api/v1/counts/{count['id']}", headers=ACTOR_HEADERS)
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Physical stock count deleted successfully",
    }

    response = await client.get(f"/api/v1/counts/{count['id']}")
    assert response.status_code == 404
    response = await client.get(f"/api/v1/counts/{count['id']}/items")
    assert response.status_code == 404


async def test_lifecycle_is_audited(client, workflow, session_factory):
    count = await workflow.create()
    await client.post(f"/api/v1/counts/{count['id']}/start", headers=ACTOR_HEADERS)
    await client.post(
        f"/api/v1/counts/{count['id']}/cancel", headers={"X-User-ID": "supervisor-1"}
    )

    async with session_factory() as session:
        history = await AuditService(session).get_entity_history(ENTITY_COUNT, UUID(count["id"]))

    assert [entry.action for entry in history] == ["CREATE", "START", "CANCEL"]
    assert [entry.user_id for entry in history] == ["counter-1", "counter-1", "supervisor-1"]
    assert history[2].old_values["status"] == "IN_PROGRESS"
    assert history[2].new_values["status"] == "CANCELLED"


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"] == "connected"
