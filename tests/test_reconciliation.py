"""Two-pass count recording, finalization and the reporting views."""
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from app.core.actor import Actor
from app.core.exceptions import BusinessRuleViolation, ReasonCode, ValidationError
from app.models.physical_stock import CountItemStatus, CountPass
from app.services.physical_stock_service import PhysicalStockService

from tests.conftest import ACTOR_HEADERS


async def main_count(workflow):
    count = await workflow.create(storage_location="MAIN")
    await workflow.populate(count["id"])
    return count, await workflow.items_by_code(count["id"])


async def test_finalize_computes_variances(workflow, inventory):
    count, items = await main_count(workflow)
    for code, quantity in (("SC-001", 8), ("SC-002", 0), ("SC-003", 25)):
        assert (await workflow.record(items[code]["id"], quantity)).status_code == 200

    response = await workflow.finalize(count["id"])

    assert response.status_code == 200
    result = response.json()
    assert result["status"] == "COMPLETED"
    assert result["total_items"] == 3
    assert result["total_items_counted"] == 3
    assert result["total_discrepancies"] == 1
    assert Decimal(result["total_variance_value"]) == Decimal("-10.00")

    finalized = await workflow.items_by_code(count["id"])
    short = finalized["SC-001"]
    assert short["final_count_quantity"] == 8
    assert short["variance"] == -2
    assert Decimal(short["variance_value"]) == Decimal("-10.00")
    assert short["status"] == "DISCREPANCY"
    assert short["adjustment_required"] is True
    for code in ("SC-002", "SC-003"):
        assert finalized[code]["variance"] == 0
        assert finalized[code]["status"] == "VERIFIED"
        assert finalized[code]["adjustment_required"] is False
    for item in finalized.values():
        assert item["variance"] == item["final_count_quantity"] - item["system_quantity"]
        assert item["adjustment_required"] == (item["variance"] != 0)

    header = await workflow.count(count["id"])
    assert header["status"] == "COMPLETED"
    assert header["completed_by"] == "supervisor-1"
    assert header["started_by"] == "counter-1"
    assert header["total_items_counted"] == 3
    assert header["total_discrepancies"] == 1


async def test_recording_starts_a_pending_count(workflow, inventory):
    count, items = await main_count(workflow)

    response = await workflow.record(items["SC-001"]["id"], 9)

    assert response.status_code == 200
    item = response.json()
    assert item["status"] == "COUNTED"
    assert item["count_pass"] == "FIRST"
    assert item["first_count_quantity"] == 9
    assert item["first_count_by"] == "counter-1"
    assert (await workflow.count(count["id"]))["status"] == "IN_PROGRESS"


async def test_rerecording_a_pass_overwrites_it(workflow, inventory):
    _, items = await main_count(workflow)

    await workflow.record(items["SC-001"]["id"], 5)
    response = await workflow.record(items["SC-001"]["id"], 8, headers={"X-User-ID": "counter-2"})

    item = response.json()
    assert item["first_count_quantity"] == 8
    assert item["first_count_by"] == "counter-2"


async def test_second_pass_requires_first(workflow, inventory):
    _, items = await main_count(workflow)

    response = await workflow.record(items["SC-001"]["id"], 10, count_pass="SECOND")

    assert response.status_code == 400
    assert response.json()["reason"] == "FIRST_COUNT_REQUIRED"


async def test_second_pass_wins(workflow, inventory):
    count, items = await main_count(workflow)
    await workflow.record(items["SC-001"]["id"], 8)
    response = await workflow.record(items["SC-001"]["id"], 10, count_pass="second")
    assert response.json()["count_pass"] == "SECOND"
    await workflow.record(items["SC-002"]["id"], 0)
    await workflow.record(items["SC-003"]["id"], 25)

    result = (await workflow.finalize(count["id"])).json()

    assert result["total_discrepancies"] == 0
    item = (await workflow.items_by_code(count["id"]))["SC-001"]
    assert item["first_count_quantity"] == 8
    assert item["second_count_quantity"] == 10
    assert item["final_count_quantity"] == 10
    assert item["status"] == "VERIFIED"


async def test_uncounted_lines_finalize_as_zero(workflow, inventory):
    count, items = await main_count(workflow)
    await workflow.record(items["SC-001"]["id"], 10)

    result = (await workflow.finalize(count["id"])).json()

    assert result["total_items_counted"] == 1
    assert result["total_discrepancies"] == 1
    assert Decimal(result["total_variance_value"]) == Decimal("-50.00")
    finalized = await workflow.items_by_code(count["id"])
    assert finalized["SC-002"]["status"] == "VERIFIED"
    assert finalized["SC-003"]["final_count_quantity"] == 0
    assert finalized["SC-003"]["variance"] == -25
    assert finalized["SC-003"]["status"] == "DISCREPANCY"


async def test_negative_quantity_rejected(workflow, inventory, db, actor):
    _, items = await main_count(workflow)

    response = await workflow.record(items["SC-001"]["id"], -1)
    assert response.status_code == 422

    with pytest.raises(ValidationError):
        await PhysicalStockService(db).record_count(uuid4(), CountPass.FIRST, -1, actor)


async def test_record_unknown_item(workflow):
    response = await workflow.record(str(uuid4()), 1)
    assert response.status_code == 404


async def test_finalize_twice(workflow, inventory):
    count = await workflow.finalized_main_count()

    response = await workflow.finalize(count["id"])

    assert response.status_code == 400
    assert response.json()["reason"] == "ALREADY_FINALIZED"


async def test_finalize_cancelled_count(client, workflow, inventory):
    count, _ = await main_count(workflow)
    await client.post(f"/api/v1/counts/{count['id']}/cancel", headers=ACTOR_HEADERS)

    response = await workflow.finalize(count["id"])

    assert response.status_code == 400
    assert response.json()["reason"] == "COUNT_CANCELLED"


async def test_finalized_items_reject_counts(workflow, inventory):
    count = await workflow.finalized_main_count()
    item = (await workflow.items_by_code(count["id"]))["SC-001"]

    response = await workflow.record(item["id"], 10, count_pass="SECOND")

    assert response.status_code == 400
    assert response.json()["reason"] == "ITEM_FINALIZED"


async def test_count_recorded_after_concurrent_finalize_is_rejected(
    workflow, inventory, db, actor, session_factory
):
    count, items = await main_count(workflow)
    await workflow.record(items["SC-001"]["id"], 8)
    service = PhysicalStockService(db)
    start_if_pending = service.ensure_started

    async def finalize_first(count_row, recording_actor):
        async with session_factory() as other:
            await PhysicalStockService(other).finalize(count_row.id, Actor(id="supervisor-1"))
        await start_if_pending(count_row, recording_actor)

    service.ensure_started = finalize_first

    with pytest.raises(BusinessRuleViolation) as excinfo:
        await service.record_count(UUID(items["SC-003"]["id"]), CountPass.FIRST, 99, actor)

    assert excinfo.value.reason_code == ReasonCode.ITEM_FINALIZED
    line = (await workflow.items_by_code(count["id"]))["SC-003"]
    assert line["status"] == "DISCREPANCY"
    assert line["first_count_quantity"] is None
    assert line["final_count_quantity"] == 0
    assert line["variance"] == line["final_count_quantity"] - line["system_quantity"]


async def test_cancelled_count_rejects_counts(client, workflow, inventory):
    count, items = await main_count(workflow)
    await client.post(f"/api/v1/counts/{count['id']}/cancel", headers=ACTOR_HEADERS)

    response = await workflow.record(items["SC-001"]["id"], 4)

    assert response.status_code == 400
    assert response.json()["reason"] == "COUNT_CANCELLED"


async def test_summary_tracks_line_states(client, workflow, inventory):
    count, items = await main_count(workflow)
    await workflow.record(items["SC-001"]["id"], 8)

    summary = (await client.get(f"/api/v1/counts/{count['id']}/summary")).json()
    assert summary["total_items"] == 3
    assert summary["pending_items"] == 2
    assert summary["counted_items"] == 1
    assert Decimal(summary["total_variance_value"]) == Decimal("0.00")

    await workflow.record(items["SC-002"]["id"], 0)
    await workflow.record(items["SC-003"]["id"], 25)
    await workflow.finalize(count["id"])

    summary = (await client.get(f"/api/v1/counts/{count['id']}/summary")).json()
    assert summary == {
        "total_items": 3,
        "pending_items": 0,
        "counted_items": 0,
        "verified_items": 2,
        "discrepancy_items": 1,
        "adjusted_items": 0,
        "total_variance_value": summary["total_variance_value"],
    }
    assert Decimal(summary["total_variance_value"]) == Decimal("-10.00")


async def test_summary_of_empty_count_is_zeroed(client, workflow):
    count = await workflow.create()

    summary = (await client.get(f"/api/v1/counts/{count['id']}/summary")).json()

    assert summary["total_items"] == 0
    assert summary["pending_items"] == 0
    assert Decimal(summary["total_variance_value"]) == Decimal("0")


async def test_variance_report(client, workflow, inventory):
    count = await workflow.finalized_main_count()
    item = (await workflow.items_by_code(count["id"]))["SC-001"]
    await client.put(
        f"/api/v1/count-items/{item['id']}",
        json={"discrepancy_reason": "Broken on shelf"},
        headers=ACTOR_HEADERS,
    )

    report = (await client.get(f"/api/v1/counts/{count['id']}/variance-report")).json()

    assert report["count_id"] == count["id"]
    assert report["total_items"] == 3
    assert report["variance_items"] == 1
    assert Decimal(report["total_variance_value"]) == Decimal("-10.00")
    [line] = report["items"]
    assert line["supplier_code"] == "SC-001"
    assert line["system_quantity"] == 10
    assert line["physical_quantity"] == 8
    assert line["variance"] == -2
    assert line["status"] == "DISCREPANCY"
    assert line["discrepancy_reason"] == "Broken on shelf"


async def test_statistics(client, workflow, inventory):
    count, items = await main_count(workflow)
    await workflow.record(items["SC-001"]["id"], 8)

    stats = (await client.get(f"/api/v1/counts/{count['id']}/statistics")).json()
    assert stats["progress_percentage"] == 33
    assert stats["accuracy_percentage"] == 100
    assert stats["count_details"]["count_number"] == count["count_number"]
    assert stats["count_details"]["status"] == "IN_PROGRESS"

    await workflow.record(items["SC-002"]["id"], 0)
    await workflow.record(items["SC-003"]["id"], 25)
    await workflow.finalize(count["id"])

    stats = (await client.get(f"/api/v1/counts/{count['id']}/statistics")).json()
    assert stats["progress_percentage"] == 100
    assert stats["accuracy_percentage"] == 67
    assert stats["discrepancy_items"] == 1
    assert stats["count_details"]["completed_at"] is not None


async def test_statistics_unknown_count(client):
    response = await client.get(f"/api/v1/counts/{uuid4()}/statistics")
    assert response.status_code == 404


def test_item_transitions():
    assert CountItemStatus.sources_of(CountItemStatus.COUNTED) == [
        CountItemStatus.PENDING, CountItemStatus.COUNTED,
    ]
    for final in (CountItemStatus.VERIFIED, CountItemStatus.DISCREPANCY):
        assert final.is_final
        assert not any(final.can_transition_to(target) for target in CountItemStatus)
    assert CountItemStatus.PENDING.can_transition_to(CountItemStatus.DISCREPANCY)
    assert not CountItemStatus.COUNTED.can_transition_to(CountItemStatus.PENDING)
