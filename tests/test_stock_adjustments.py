"""Generating adjustments from finalized counts and applying them to inventory."""
import asyncio
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy import update

from app.core.actor import Actor
from app.core.exceptions import BusinessRuleViolation, ReasonCode, StorageFailure
from app.models.physical_stock import PhysicalStockCountItem
from app.models.stock_adjustment import PhysicalStockAdjustment
from app.schemas.stock_adjustment import ApplyResult
from app.services.inventory_service import InventoryService
from app.services.stock_adjustment_service import StockAdjustmentService

from tests.conftest import ACTOR_HEADERS, SUPERVISOR_HEADERS


async def generate(client, count_id, headers=SUPERVISOR_HEADERS):
    return await client.post(f"/api/v1/counts/{count_id}/adjustments", headers=headers)


async def apply(client, adjustment_id, headers=SUPERVISOR_HEADERS):
    return await client.post(f"/api/v1/adjustments/{adjustment_id}/apply", headers=headers)


async def test_generate_from_discrepancies(client, workflow, inventory):
    count = await workflow.finalized_main_count()

    response = await generate(client, count["id"])

    assert response.status_code == 201
    adjustment = response.json()
    assert adjustment["status"] == "DRAFT"
    assert adjustment["adjustment_number"].startswith("PSA-")
    assert adjustment["physical_stock_count_id"] == count["id"]
    assert adjustment["created_by"] == "supervisor-1"
    assert adjustment["reason"] == "Physical stock count variance adjustment"
    assert Decimal(adjustment["total_adjustment_value"]) == Decimal("-10.00")

    [line] = adjustment["items"]
    assert line["supplier_code"] == "SC-001"
    assert line["storage_location"] == "MAIN"
    assert line["system_quantity"] == 10
    assert line["physical_quantity"] == 8
    assert line["adjustment_quantity"] == -2
    assert Decimal(line["adjustment_value"]) == Decimal("-10.00")

    fetched = (await client.get(f"/api/v1/adjustments/{adjustment['id']}")).json()
    assert fetched["id"] == adjustment["id"]
    listed = (await client.get(f"/api/v1/counts/{count['id']}/adjustments")).json()
    assert [a["id"] for a in listed] == [adjustment["id"]]


async def test_generate_twice_does_not_duplicate_lines(client, workflow, inventory):
    count = await workflow.finalized_main_count()
    await generate(client, count["id"])

    response = await generate(client, count["id"])

    assert response.status_code == 400
    assert response.json()["reason"] == "NOTHING_TO_ADJUST"


async def test_nothing_to_adjust_when_counts_match(client, workflow, inventory, db, actor):
    count = await workflow.create(storage_location="MAIN")
    await workflow.populate(count["id"])
    items = await workflow.items_by_code(count["id"])
    for code, quantity in (("SC-001", 10), ("SC-002", 0), ("SC-003", 25)):
        await workflow.record(items[code]["id"], quantity)
    await workflow.finalize(count["id"])

    response = await generate(client, count["id"])
    assert response.status_code == 400
    assert response.json()["reason"] == "NOTHING_TO_ADJUST"

    assert await StockAdjustmentService(db).generate_from_count(UUID(count["id"]), actor) is None


async def test_generate_unknown_count(client):
    response = await generate(client, uuid4())
    assert response.status_code == 404


async def test_apply_updates_levels_and_ledger(
    client, workflow, inventory, session_factory, read_level, read_movements
):
    count = await workflow.finalized_main_count()
    adjustment = (await generate(client, count["id"])).json()

    response = await apply(client, adjustment["id"])

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "adjustment_id": adjustment["id"],
        "lines_applied": 1,
    }
    assert await read_level(inventory["SC-001"].id, "MAIN") == 8
    assert await read_level(inventory["SC-001"].id, "BACK") == 4
    assert await read_level(inventory["SC-003"].id, "MAIN") == 25

    [movement] = await read_movements()
    assert movement.item_id == inventory["SC-001"].id
    assert movement.movement_type == "ADJUSTMENT_OUT"
    assert movement.storage_location == "MAIN"
    assert movement.quantity_before == 10
    assert movement.quantity_moved == 2
    assert movement.quantity_after == 8
    assert movement.quantity_after - movement.quantity_before == movement.signed_quantity
    assert movement.reference_type == "PHYSICAL_STOCK_ADJUSTMENT"
    assert movement.reference_id == UUID(adjustment["id"])
    assert movement.reference_number == adjustment["adjustment_number"]
    assert movement.created_by == "supervisor-1"
    assert movement.movement_number.startswith("MOV-")

    async with session_factory() as session:
        ledger = await InventoryService(session).get_movements(
            "PHYSICAL_STOCK_ADJUSTMENT", UUID(adjustment["id"])
        )
    assert [entry.id for entry in ledger] == [movement.id]

    applied = (await client.get(f"/api/v1/adjustments/{adjustment['id']}")).json()
    assert applied["status"] == "APPLIED"
    assert applied["applied_by"] == "supervisor-1"
    item = (await workflow.items_by_code(count["id"]))["SC-001"]
    assert item["adjustment_applied"] is True
    assert item["adjustment_applied_by"] == "supervisor-1"

    summary = (await client.get(f"/api/v1/counts/{count['id']}/summary")).json()
    assert summary["adjusted_items"] == 1


async def test_surplus_is_adjusted_in(client, workflow, inventory, read_level, read_movements):
    count = await workflow.create(storage_location="MAIN")
    await workflow.populate(count["id"])
    items = await workflow.items_by_code(count["id"])
    for code, quantity in (("SC-001", 10), ("SC-002", 0), ("SC-003", 30)):
        await workflow.record(items[code]["id"], quantity)
    await workflow.finalize(count["id"])
    adjustment = (await generate(client, count["id"])).json()
    assert Decimal(adjustment["total_adjustment_value"]) == Decimal("10.00")

    await apply(client, adjustment["id"])

    assert await read_level(inventory["SC-003"].id, "MAIN") == 30
    [movement] = await read_movements(inventory["SC-003"].id)
    assert movement.movement_type == "ADJUSTMENT_IN"
    assert (movement.quantity_before, movement.quantity_moved, movement.quantity_after) == (25, 5, 30)


async def test_apply_twice_writes_ledger_once(client, workflow, inventory, read_level, read_movements):
    count = await workflow.finalized_main_count()
    adjustment = (await generate(client, count["id"])).json()
    await apply(client, adjustment["id"])

    response = await apply(client, adjustment["id"])

    assert response.status_code == 400
    assert response.json()["reason"] == "ALREADY_APPLIED"
    assert await read_level(inventory["SC-001"].id, "MAIN") == 8
    assert len(await read_movements()) == 1

    response = await generate(client, count["id"])
    assert response.json()["reason"] == "NOTHING_TO_ADJUST"


async def test_apply_unknown_adjustment(client):
    response = await apply(client, uuid4())
    assert response.status_code == 404

    response = await client.get(f"/api/v1/adjustments/{uuid4()}")
    assert response.status_code == 404


async def test_missing_level_rolls_back_every_line(
    client, workflow, inventory, session_factory, read_level, read_movements
):
    async with session_factory() as session:
        unstocked = await InventoryService(session).create_item(
            supplier_code="SC-006",
            description="Item SC-006",
            barcode="8901000000066",
            unit_cost=Decimal("4.00"),
        )
        await session.commit()

    count = await workflow.create(storage_location="MAIN")
    await workflow.populate(count["id"])
    response = await workflow.client.post(
        f"/api/v1/counts/{count['id']}/items",
        json={"inventory_item_id": str(unstocked.id)},
        headers=ACTOR_HEADERS,
    )
    assert response.json()["system_quantity"] == 0
    items = await workflow.items_by_code(count["id"])
    for code, quantity in (("SC-001", 8), ("SC-002", 0), ("SC-003", 25), ("SC-006", 3)):
        await workflow.record(items[code]["id"], quantity)
    await workflow.finalize(count["id"])
    adjustment = (await generate(client, count["id"])).json()
    assert [line["supplier_code"] for line in adjustment["items"]] == ["SC-001", "SC-006"]

    response = await apply(client, adjustment["id"])

    assert response.status_code == 400
    body = response.json()
    assert body["reason"] == "INVENTORY_LEVEL_NOT_FOUND"
    assert body["details"]["storage_location"] == "MAIN"
    assert await read_level(inventory["SC-001"].id, "MAIN") == 10
    assert await read_movements() == []
    assert (await client.get(f"/api/v1/adjustments/{adjustment['id']}")).json()["status"] == "DRAFT"
    assert (await workflow.items_by_code(count["id"]))["SC-001"]["adjustment_applied"] is False

    async with session_factory() as session:
        await InventoryService(session).set_level(unstocked.id, "MAIN", 0)
        await session.commit()

    response = await apply(client, adjustment["id"])

    assert response.status_code == 200
    assert response.json()["lines_applied"] == 2
    assert await read_level(inventory["SC-001"].id, "MAIN") == 8
    assert await read_level(unstocked.id, "MAIN") == 3
    assert len(await read_movements()) == 2


async def test_concurrent_apply_applies_once(
    client, workflow, inventory, session_factory, read_level, read_movements
):
    count = await workflow.finalized_main_count()
    adjustment_id = UUID((await generate(client, count["id"])).json()["id"])

    async def apply_in_own_session(actor_id):
        async with session_factory() as session:
            return await StockAdjustmentService(session).apply(adjustment_id, Actor(id=actor_id))

    results = await asyncio.gather(
        apply_in_own_session("supervisor-1"),
        apply_in_own_session("supervisor-2"),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, ApplyResult)]
    failures = [r for r in results if not isinstance(r, ApplyResult)]
    assert len(successes) == 1
    [failure] = failures
    assert isinstance(failure, (BusinessRuleViolation, StorageFailure))
    if isinstance(failure, BusinessRuleViolation):
        assert failure.reason_code == ReasonCode.ALREADY_APPLIED

    assert await read_level(inventory["SC-001"].id, "MAIN") == 8
    assert len(await read_movements()) == 1


async def test_concurrent_generate_drafts_each_line_once(
    client, workflow, inventory, session_factory, read_level
):
    count = await workflow.finalized_main_count()
    count_id = UUID(count["id"])

    async def generate_in_own_session(actor_id):
        async with session_factory() as session:
            return await StockAdjustmentService(session).generate_from_count(
                count_id, Actor(id=actor_id)
            )

    results = await asyncio.gather(
        generate_in_own_session("supervisor-1"),
        generate_in_own_session("supervisor-2"),
        return_exceptions=True,
    )

    drafted = [r for r in results if isinstance(r, PhysicalStockAdjustment)]
    assert len(drafted) == 1
    [other] = [r for r in results if not isinstance(r, PhysicalStockAdjustment)]
    if isinstance(other, BusinessRuleViolation):
        assert other.reason_code == ReasonCode.NOTHING_TO_ADJUST
    else:
        assert other is None or isinstance(other, StorageFailure)

    listed = (await client.get(f"/api/v1/counts/{count['id']}/adjustments")).json()
    assert [a["id"] for a in listed] == [str(drafted[0].id)]

    response = await apply(client, drafted[0].id)
    assert response.status_code == 200
    assert await read_level(inventory["SC-001"].id, "MAIN") == 8


async def test_generate_loses_to_draft_committed_after_its_read(
    client, workflow, inventory, db, session_factory
):
    count = await workflow.finalized_main_count()
    count_id = UUID(count["id"])
    read_lines = db.execute
    drafted_elsewhere = []

    async def read_then_let_other_request_draft(statement, *args, **kwargs):
        result = await read_lines(statement, *args, **kwargs)
        if not drafted_elsewhere and "physical_stock_count_items" in str(statement):
            async with session_factory() as other:
                drafted_elsewhere.append(
                    await StockAdjustmentService(other).generate_from_count(
                        count_id, Actor(id="supervisor-2")
                    )
                )
        return result

    db.execute = read_then_let_other_request_draft

    with pytest.raises(BusinessRuleViolation) as excinfo:
        await StockAdjustmentService(db).generate_from_count(count_id, Actor(id="supervisor-1"))

    assert excinfo.value.reason_code == ReasonCode.NOTHING_TO_ADJUST
    listed = (await client.get(f"/api/v1/counts/{count['id']}/adjustments")).json()
    assert [a["id"] for a in listed] == [str(drafted_elsewhere[0].id)]
    assert listed[0]["created_by"] == "supervisor-2"


async def test_count_with_applied_adjustment_cannot_be_deleted(client, workflow, inventory):
    count = await workflow.finalized_main_count()
    adjustment = (await generate(client, count["id"])).json()
    await apply(client, adjustment["id"])

    response = await client.delete(f"/api/v1/counts/{count['id']}", headers=ACTOR_HEADERS)

    assert response.status_code == 400
    assert response.json()["reason"] == "INVALID_STATUS_TRANSITION"


async def test_deleting_count_drops_draft_adjustments(client, workflow, inventory):
    count = await workflow.finalized_main_count()
    adjustment = (await generate(client, count["id"])).json()

    response = await client.delete(f"/api/v1/counts/{count['id']}", headers=ACTOR_HEADERS)

    assert response.status_code == 200
    response = await client.get(f"/api/v1/adjustments/{adjustment['id']}")
    assert response.status_code == 404


async def test_line_adjusted_elsewhere_blocks_apply(
    client, workflow, inventory, session_factory, read_level, read_movements
):
    count = await workflow.finalized_main_count()
    adjustment = (await generate(client, count["id"])).json()
    [line] = adjustment["items"]

    async with session_factory() as session:
        await session.execute(
            update(PhysicalStockCountItem)
            .where(PhysicalStockCountItem.id == UUID(line["physical_stock_count_item_id"]))
            .values(adjustment_applied=True)
        )
        await session.commit()

    response = await apply(client, adjustment["id"])

    assert response.status_code == 400
    assert response.json()["reason"] == "LINE_ALREADY_ADJUSTED"
    assert (await client.get(f"/api/v1/adjustments/{adjustment['id']}")).json()["status"] == "DRAFT"
    assert await read_level(inventory["SC-001"].id, "MAIN") == 10
    assert await read_movements() == []
