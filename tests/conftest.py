"""
Shared fixtures: a throwaway SQLite database per test, the FastAPI app wired
to it, and a small seeded inventory.

Seeded inventory (unit cost, location: available/reserved):
    SC-001  5.00  MAIN: 10/2   BACK: 4/0
    SC-002  3.50  MAIN: 0/0
    SC-003  2.00  MAIN: 25/0
    SC-004  9.00  MAIN: 7/0    (inactive)
    SC-005  1.00  BACK: 6/0
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.actor import Actor
from app.database import Base, build_engine, get_db, import_models
from app.main import app
from app.models.inventory import InventoryLevel, StockMovement
from app.services.inventory_service import InventoryService


ACTOR_HEADERS = {"X-User-ID": "counter-1"}
SUPERVISOR_HEADERS = {"X-User-ID": "supervisor-1"}

BARCODES = {
    "SC-001": "8901000000011",
    "SC-002": "8901000000028",
    "SC-003": "8901000000035",
    "SC-004": "8901000000042",
    "SC-005": "8901000000059",
}


@pytest.fixture
async def engine(tmp_path):
    import_models()
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'physical_stock_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def actor():
    return Actor(id="counter-1")


@pytest.fixture
async def inventory(session_factory):
    """Seed the inventory described in the module docstring; returns items by supplier code."""
    async with session_factory() as session:
        service = InventoryService(session)
        items = {}
        for code, cost, active in (
            ("SC-001", "5.00", True),
            ("SC-002", "3.50", True),
            ("SC-003", "2.00", True),
            ("SC-004", "9.00", False),
            ("SC-005", "1.00", True),
        ):
            items[code] = await service.create_item(
                supplier_code=code,
                description=f"Item {code}",
                barcode=BARCODES[code],
                unit_cost=Decimal(cost),
                is_active=active,
            )

        await service.set_level(items["SC-001"].id, "MAIN", 10, 2)
        await service.set_level(items["SC-001"].id, "BACK", 4)
        await service.set_level(items["SC-002"].id, "MAIN", 0)
        await service.set_level(items["SC-003"].id, "MAIN", 25)
        await service.set_level(items["SC-004"].id, "MAIN", 7)
        await service.set_level(items["SC-005"].id, "BACK", 6)
        await session.commit()
    return items


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class CountWorkflow:
    """Drives a count through the HTTP API."""

    def __init__(self, client: AsyncClient):
        self.client = client

    async def create(self, headers=ACTOR_HEADERS, **fields) -> dict:
        response = await self.client.post("/api/v1/counts", json=fields, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    async def populate(self, count_id: str, storage_location=None) -> int:
        body = {"storage_location": storage_location} if storage_location else None
        response = await self.client.post(
            f"/api/v1/counts/{count_id}/populate", json=body, headers=ACTOR_HEADERS
        )
        assert response.status_code == 200, response.text
        return response.json()["items_added"]

    async def items(self, count_id: str) -> list:
        response = await self.client.get(f"/api/v1/counts/{count_id}/items")
        assert response.status_code == 200, response.text
        return response.json()

    async def items_by_code(self, count_id: str) -> dict:
        return {item["supplier_code"]: item for item in await self.items(count_id)}

    async def record(self, item_id: str, quantity: int, count_pass: str = "FIRST", headers=ACTOR_HEADERS):
        return await self.client.post(
            f"/api/v1/count-items/{item_id}/counts",
            json={"pass": count_pass, "quantity": quantity},
            headers=headers,
        )

    async def finalize(self, count_id: str, headers=SUPERVISOR_HEADERS):
        return await self.client.post(f"/api/v1/counts/{count_id}/finalize", headers=headers)

    async def count(self, count_id: str) -> dict:
        response = await self.client.get(f"/api/v1/counts/{count_id}")
        assert response.status_code == 200, response.text
        return response.json()

    async def finalized_main_count(self) -> dict:
        """MAIN location count of SC-001/2/3 (book 10/0/25) counted as 8/0/25 and finalized."""
        count = await self.create(storage_location="MAIN", description="Main store count")
        assert await self.populate(count["id"]) == 3
        items = await self.items_by_code(count["id"])
        for code, quantity in (("SC-001", 8), ("SC-002", 0), ("SC-003", 25)):
            response = await self.record(items[code]["id"], quantity)
            assert response.status_code == 200, response.text
        response = await self.finalize(count["id"])
        assert response.status_code == 200, response.text
        return count


@pytest.fixture
def workflow(client):
    return CountWorkflow(client)


@pytest.fixture
def read_level(session_factory):
    async def _read(item_id, storage_location):
        async with session_factory() as session:
            return await session.scalar(
                select(InventoryLevel.quantity_available).where(
                    InventoryLevel.inventory_item_id == item_id,
                    InventoryLevel.storage_location == storage_location,
                )
            )
    return _read


@pytest.fixture
def read_movements(session_factory):
    async def _read(item_id=None):
        async with session_factory() as session:
            query = select(StockMovement).order_by(StockMovement.created_at)
            if item_id is not None:
                query = query.where(StockMovement.item_id == item_id)
            result = await session.execute(query)
            return list(result.scalars().all())
    return _read
