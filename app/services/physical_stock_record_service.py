"""
Physical Stock Record Service.

CRUD for free-standing shelf counts. Every change is audited; records never
touch inventory levels or count reconciliation.
"""
import logging
from typing import Optional, List, Tuple
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor
from app.core.exceptions import NotFound
from app.database import atomic
from app.models.physical_stock import PhysicalStockRecord
from app.schemas.physical_stock import (
    PhysicalStockRecordCreate, PhysicalStockRecordUpdate, PhysicalStockRecordResponse,
)
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService


logger = logging.getLogger(__name__)

ENTITY_RECORD = "PHYSICAL_STOCK_RECORD"

# Columns a PUT may not null out
REQUIRED_FIELDS = {"location", "quantity", "counted_by", "last_updated"}


class PhysicalStockRecordService:
    """Service for physical stock records."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.inventory = InventoryService(db)

    @staticmethod
    def _payload(record: PhysicalStockRecord) -> dict:
        return PhysicalStockRecordResponse.model_validate(record).audit_payload()

    async def _get_or_404(self, record_id: UUID) -> PhysicalStockRecord:
        record = await self.get_record(record_id)
        if not record:
            raise NotFound("Physical stock record", record_id)
        return record

    async def get_record(self, record_id: UUID) -> Optional[PhysicalStockRecord]:
        result = await self.db.execute(
            select(PhysicalStockRecord).where(PhysicalStockRecord.id == record_id)
        )
        return result.scalar_one_or_none()

    async def list_records(
        self,
        inventory_item_id: Optional[UUID] = None,
        location: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[PhysicalStockRecord], int]:
        """List records, most recently counted first."""
        query = select(PhysicalStockRecord)
        if inventory_item_id:
            query = query.where(PhysicalStockRecord.inventory_item_id == inventory_item_id)
        if location:
            query = query.where(PhysicalStockRecord.location == location)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))

        query = query.order_by(
            PhysicalStockRecord.last_updated.desc(), PhysicalStockRecord.created_at.desc()
        )
        result = await self.db.execute(query.offset(skip).limit(limit))
        return list(result.scalars().all()), total or 0

    async def create_record(
        self,
        data: PhysicalStockRecordCreate,
        actor: Actor,
    ) -> PhysicalStockRecord:
        async with atomic(self.db, "create physical stock record"):
            item = await self.inventory.get_item(data.inventory_item_id)
            if not item:
                raise NotFound("Inventory item", data.inventory_item_id)

            values = data.model_dump(exclude_none=True)
            values.setdefault("counted_by", actor.id)
            record = PhysicalStockRecord(**values)
            self.db.add(record)
            await self.db.flush()
            await self.db.refresh(record)

            await self.audit.log(
                action="CREATE",
                entity_type=ENTITY_RECORD,
                entity_id=record.id,
                actor=actor,
                new_values=self._payload(record),
                description=(
                    f"Recorded {record.quantity} of {item.supplier_code} at {record.location}"
                ),
            )

        logger.info(
            "Physical stock record %s: %s x%d at %s by %s",
            record.id, item.supplier_code, record.quantity, record.location, record.counted_by,
        )
        return record

    async def update_record(
        self,
        record_id: UUID,
        data: PhysicalStockRecordUpdate,
        actor: Actor,
    ) -> PhysicalStockRecord:
        async with atomic(self.db, "update physical stock record"):
            record = await self._get_or_404(record_id)
            old_values = self._payload(record)

            update_data = data.model_dump(exclude_unset=True)
            for field, value in update_data.items():
                if value is None and field in REQUIRED_FIELDS:
                    continue
                setattr(record, field, value)
            await self.db.flush()
            await self.db.refresh(record)

            await self.audit.log(
                action="UPDATE",
                entity_type=ENTITY_RECORD,
                entity_id=record.id,
                actor=actor,
                old_values=old_values,
                new_values=self._payload(record),
            )

        return record

    async def delete_record(self, record_id: UUID, actor: Actor) -> None:
        async with atomic(self.db, "delete physical stock record"):
            record = await self._get_or_404(record_id)
            old_values = self._payload(record)
            await self.db.delete(record)
            await self.db.flush()

            await self.audit.log(
                action="DELETE",
                entity_type=ENTITY_RECORD,
                entity_id=record_id,
                actor=actor,
                old_values=old_values,
            )

        logger.info("Deleted physical stock record %s by %s", record_id, actor)
