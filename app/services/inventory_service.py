"""
Inventory Service.

Read side: snapshots of book quantities used to populate physical counts and
barcode lookup for scans. Write side: atomic stock level adjustments and the
stock movement ledger, used when an adjustment is applied.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List
import uuid

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.inventory import (
    InventoryItem, InventoryLevel,
    StockMovement, StockMovementType,
)


@dataclass
class SnapshotRow:
    """Book quantities for one item at one location at population time."""
    inventory_item_id: uuid.UUID
    supplier_code: str
    barcode: Optional[str]
    description: str
    storage_location: Optional[str]
    quantity_available: int
    quantity_reserved: int
    unit_cost: Decimal


class InventoryService:
    """Service for the inventory data a physical count reads from and adjusts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== ITEM / LEVEL METHODS ====================

    async def get_item(self, item_id: uuid.UUID) -> Optional[InventoryItem]:
        """Get inventory item by ID."""
        result = await self.db.execute(
            select(InventoryItem).where(InventoryItem.id == item_id)
        )
        return result.scalar_one_or_none()

    async def get_item_by_barcode(self, barcode: str) -> Optional[InventoryItem]:
        """Resolve a scanned barcode; active items win over inactive ones."""
        query = (
            select(InventoryItem)
            .where(InventoryItem.barcode == barcode.strip())
            .order_by(InventoryItem.is_active.desc(), InventoryItem.supplier_code)
            .limit(1)
        )
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_level(
        self,
        item_id: uuid.UUID,
        storage_location: Optional[str],
    ) -> Optional[InventoryLevel]:
        """Get the stock level row of an item at a location."""
        if storage_location is None:
            return None
        result = await self.db.execute(
            select(InventoryLevel).where(
                and_(
                    InventoryLevel.inventory_item_id == item_id,
                    InventoryLevel.storage_location == storage_location,
                )
            )
        )
        return result.scalar_one_or_none()

    async def create_item(
        self,
        supplier_code: str,
        description: str,
        barcode: Optional[str] = None,
        unit_cost: Decimal = Decimal("0.00"),
        category: Optional[str] = None,
        is_active: bool = True,
    ) -> InventoryItem:
        """Register an item master record. Flushes, does not commit."""
        item = InventoryItem(
            supplier_code=supplier_code,
            description=description,
            barcode=barcode,
            unit_cost=unit_cost,
            category=category,
            is_active=is_active,
        )
        self.db.add(item)
        await self.db.flush()
        return item

    async def set_level(
        self,
        item_id: uuid.UUID,
        storage_location: str,
        quantity_available: int,
        quantity_reserved: int = 0,
    ) -> InventoryLevel:
        """Create or overwrite a stock level row. Flushes, does not commit."""
        level = await self.get_level(item_id, storage_location)
        if level is None:
            level = InventoryLevel(
                inventory_item_id=item_id,
                storage_location=storage_location,
            )
            self.db.add(level)
        level.quantity_available = quantity_available
        level.quantity_reserved = quantity_reserved
        level.last_updated = datetime.now(timezone.utc)
        await self.db.flush()
        return level

    # ==================== SNAPSHOT ====================

    async def get_snapshot_rows(
        self,
        storage_location: Optional[str] = None,
    ) -> List[SnapshotRow]:
        """
        Book quantities of every active item, one row per (item, location).

        With a location filter only items stocked at that location are
        returned. Without one, active items that have no level row at all are
        included with zero quantities. Rows are ordered by supplier code,
        then location, then item id, so line numbering is reproducible.
        """
        query = (
            select(InventoryItem, InventoryLevel)
            .where(InventoryItem.is_active == True)  # noqa: E712
        )
        if storage_location:
            query = query.join(
                InventoryLevel,
                InventoryLevel.inventory_item_id == InventoryItem.id,
            ).where(InventoryLevel.storage_location == storage_location)
        else:
            query = query.outerjoin(
                InventoryLevel,
                InventoryLevel.inventory_item_id == InventoryItem.id,
            )
        query = query.order_by(
            InventoryItem.supplier_code,
            InventoryLevel.storage_location,
            InventoryItem.id,
        )

        result = await self.db.execute(query)
        rows = []
        for item, level in result.all():
            rows.append(SnapshotRow(
                inventory_item_id=item.id,
                supplier_code=item.supplier_code,
                barcode=item.barcode,
                description=item.description,
                storage_location=level.storage_location if level else storage_location,
                quantity_available=(level.quantity_available or 0) if level else 0,
                quantity_reserved=(level.quantity_reserved or 0) if level else 0,
                unit_cost=item.unit_cost if item.unit_cost is not None else Decimal("0.00"),
            ))
        return rows

    # ==================== STOCK LEVEL ADJUSTMENT ====================

    async def adjust_available(
        self,
        item_id: uuid.UUID,
        storage_location: Optional[str],
        delta: int,
    ) -> Optional[int]:
        """
        Add delta to quantity_available in a single UPDATE and return the new
        value, or None when the level row does not exist.
        """
        stmt = (
            update(InventoryLevel)
            .where(
                and_(
                    InventoryLevel.inventory_item_id == item_id,
                    InventoryLevel.storage_location == storage_location,
                )
            )
            .values(
                quantity_available=InventoryLevel.quantity_available + delta,
                last_updated=datetime.now(timezone.utc),
            )
            .returning(InventoryLevel.quantity_available)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def record_movement(
        self,
        item_id: uuid.UUID,
        storage_location: Optional[str],
        delta: int,
        quantity_after: int,
        reference_type: str,
        reference_id: uuid.UUID,
        reference_number: Optional[str] = None,
        unit_cost: Decimal = Decimal("0.00"),
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> StockMovement:
        """Append a stock movement for a signed change already applied to the level."""
        movement_type = (
            StockMovementType.ADJUSTMENT_IN if delta > 0 else StockMovementType.ADJUSTMENT_OUT
        )
        quantity_moved = abs(delta)

        movement = StockMovement(
            movement_number=self._generate_movement_number(),
            movement_type=movement_type.value,
            item_id=item_id,
            storage_location=storage_location,
            quantity_before=quantity_after - delta,
            quantity_moved=quantity_moved,
            quantity_after=quantity_after,
            reference_type=reference_type,
            reference_id=reference_id,
            reference_number=reference_number,
            unit_cost=unit_cost,
            total_value=unit_cost * quantity_moved,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(movement)
        return movement

    async def get_movements(
        self,
        reference_type: str,
        reference_id: uuid.UUID,
    ) -> List[StockMovement]:
        """Ledger entries written for one source document."""
        result = await self.db.execute(
            select(StockMovement)
            .where(
                and_(
                    StockMovement.reference_type == reference_type,
                    StockMovement.reference_id == reference_id,
                )
            )
            .order_by(StockMovement.created_at, StockMovement.movement_number)
        )
        return list(result.scalars().all())

    def _generate_movement_number(self) -> str:
        """Generate unique movement number."""
        date_part = datetime.now(timezone.utc).strftime("%Y%m%d")
        return f"{settings.MOVEMENT_NUMBER_PREFIX}-{date_part}-{str(uuid.uuid4())[:8].upper()}"
