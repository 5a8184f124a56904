"""
Physical Stock Adjustment Service.

Turns the discrepancies of a finalized count into a DRAFT adjustment and
applies it to inventory levels exactly once.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Tuple
from uuid import UUID, uuid4

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.core.actor import Actor
from app.core.exceptions import NotFound, ReasonCode
from app.database import atomic
from app.models.inventory import StockMovementReference
from app.models.physical_stock import PhysicalStockCount, PhysicalStockCountItem
from app.models.stock_adjustment import (
    PhysicalStockAdjustment, PhysicalStockAdjustmentItem, AdjustmentStatus
)
from app.schemas.stock_adjustment import AdjustmentResponse, ApplyResult
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService
from app.services.physical_stock_service import violation


logger = logging.getLogger(__name__)

ENTITY_ADJUSTMENT = "PHYSICAL_STOCK_ADJUSTMENT"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockAdjustmentService:
    """Service for generating and applying physical stock adjustments."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.inventory = InventoryService(db)

    def _generate_adjustment_number(self) -> str:
        today = utcnow()
        return f"{settings.ADJUSTMENT_NUMBER_PREFIX}-{today.strftime('%Y%m%d')}-{str(uuid4())[:8].upper()}"

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_adjustment(self, adjustment_id: UUID) -> Optional[PhysicalStockAdjustment]:
        """Get an adjustment with its lines."""
        result = await self.db.execute(
            select(PhysicalStockAdjustment)
            .options(selectinload(PhysicalStockAdjustment.items))
            .where(PhysicalStockAdjustment.id == adjustment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_adjustments(
        self,
        count_id: UUID,
        status: Optional[AdjustmentStatus] = None,
    ) -> Tuple[List[PhysicalStockAdjustment], int]:
        """Adjustments generated from a count, newest first."""
        count_exists = await self.db.scalar(
            select(func.count(PhysicalStockCount.id)).where(PhysicalStockCount.id == count_id)
        )
        if not count_exists:
            raise NotFound("Physical stock count", count_id)

        query = (
            select(PhysicalStockAdjustment)
            .options(selectinload(PhysicalStockAdjustment.items))
            .where(PhysicalStockAdjustment.physical_stock_count_id == count_id)
        )
        if status:
            query = query.where(PhysicalStockAdjustment.status == status.value)
        query = query.order_by(PhysicalStockAdjustment.created_at.desc())

        result = await self.db.execute(query)
        adjustments = list(result.scalars().all())
        return adjustments, len(adjustments)

    # ========================================================================
    # GENERATION
    # ========================================================================

    async def generate_from_count(
        self,
        count_id: UUID,
        actor: Actor,
    ) -> Optional[PhysicalStockAdjustment]:
        """
        Create one DRAFT adjustment covering every line that needs one.

        Lines already applied, or already on another adjustment, are skipped.
        Returns None when nothing is left to adjust. A concurrent call that
        drafts the same lines first makes this one fail with NOTHING_TO_ADJUST;
        the unique count-item reference on adjustment lines decides the race.
        """
        async with atomic(self.db, "generate adjustment"):
            count = await self.db.scalar(
                select(PhysicalStockCount).where(PhysicalStockCount.id == count_id)
            )
            if not count:
                raise NotFound("Physical stock count", count_id)

            drafted = select(PhysicalStockAdjustmentItem.physical_stock_count_item_id)
            result = await self.db.execute(
                select(PhysicalStockCountItem)
                .where(
                    PhysicalStockCountItem.physical_stock_count_id == count.id,
                    PhysicalStockCountItem.adjustment_required == True,  # noqa: E712
                    PhysicalStockCountItem.adjustment_applied == False,  # noqa: E712
                    PhysicalStockCountItem.id.not_in(drafted),
                )
                .order_by(PhysicalStockCountItem.line_number)
            )
            items = list(result.scalars().all())

            if not items:
                logger.info("Nothing to adjust for physical stock count %s", count.count_number)
                return None

            total_value = sum(
                (item.variance_value or Decimal("0.00") for item in items), Decimal("0.00")
            )
            adjustment = PhysicalStockAdjustment(
                adjustment_number=self._generate_adjustment_number(),
                physical_stock_count_id=count.id,
                adjustment_date=utcnow(),
                status=AdjustmentStatus.DRAFT.value,
                total_adjustment_value=total_value,
                created_by=actor.id,
                reason=settings.DEFAULT_ADJUSTMENT_REASON,
                notes=f"Generated from physical stock count {count.count_number}",
            )
            self.db.add(adjustment)
            await self.db.flush()

            for item in items:
                self.db.add(PhysicalStockAdjustmentItem(
                    adjustment_id=adjustment.id,
                    physical_stock_count_item_id=item.id,
                    inventory_item_id=item.inventory_item_id,
                    supplier_code=item.supplier_code,
                    description=item.description,
                    storage_location=item.storage_location,
                    system_quantity=item.system_quantity,
                    physical_quantity=(
                        item.final_count_quantity
                        if item.final_count_quantity is not None
                        else item.resolve_final_quantity()
                    ),
                    adjustment_quantity=item.variance,
                    unit_cost=item.unit_cost,
                    adjustment_value=item.variance_value,
                    reason=item.discrepancy_reason or settings.DEFAULT_ADJUSTMENT_REASON,
                ))
            try:
                await self.db.flush()
            except IntegrityError as e:
                raise violation(
                    ReasonCode.NOTHING_TO_ADJUST,
                    "Count lines were drafted by a concurrent adjustment",
                    count_id=str(count.id),
                ) from e

            adjustment = await self.get_adjustment(adjustment.id)
            await self.audit.log(
                action="CREATE",
                entity_type=ENTITY_ADJUSTMENT,
                entity_id=adjustment.id,
                actor=actor,
                new_values=AdjustmentResponse.model_validate(adjustment).audit_payload(),
                description=f"Generated adjustment {adjustment.adjustment_number} from {count.count_number}",
            )

        logger.info(
            "Generated adjustment %s with %d lines (value %s) from count %s",
            adjustment.adjustment_number, len(items), total_value, count.count_number,
        )
        return adjustment

    # ========================================================================
    # APPLICATION
    # ========================================================================

    async def apply(self, adjustment_id: UUID, actor: Actor) -> ApplyResult:
        """
        Apply a DRAFT adjustment to inventory levels.

        The header is claimed with a conditional DRAFT → APPLIED update, so a
        second or concurrent call gets ALREADY_APPLIED. Each line changes its
        inventory level with a single relative UPDATE and appends one stock
        movement. A failing line rolls back every line and the claim.
        """
        async with atomic(self.db, "apply adjustment"):
            now = utcnow()
            claim = await self.db.execute(
                update(PhysicalStockAdjustment)
                .where(
                    PhysicalStockAdjustment.id == adjustment_id,
                    PhysicalStockAdjustment.status == AdjustmentStatus.DRAFT.value,
                )
                .values(
                    status=AdjustmentStatus.APPLIED.value,
                    applied_by=actor.id,
                    applied_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount != 1:
                existing = await self.db.scalar(
                    select(PhysicalStockAdjustment.status).where(
                        PhysicalStockAdjustment.id == adjustment_id
                    )
                )
                if existing is None:
                    raise NotFound("Physical stock adjustment", adjustment_id)
                raise violation(
                    ReasonCode.ALREADY_APPLIED,
                    "Adjustment has already been applied",
                    adjustment_id=str(adjustment_id),
                )

            adjustment = await self.get_adjustment(adjustment_id)
            for line in adjustment.items:
                delta = line.adjustment_quantity
                if delta:
                    quantity_after = await self.inventory.adjust_available(
                        line.inventory_item_id, line.storage_location, delta
                    )
                    if quantity_after is None:
                        raise violation(
                            ReasonCode.INVENTORY_LEVEL_NOT_FOUND,
                            f"No inventory level for {line.supplier_code} at "
                            f"{line.storage_location or 'unspecified location'}",
                            adjustment_id=str(adjustment_id),
                            inventory_item_id=str(line.inventory_item_id),
                            storage_location=line.storage_location,
                        )
                    await self.inventory.record_movement(
                        item_id=line.inventory_item_id,
                        storage_location=line.storage_location,
                        delta=delta,
                        quantity_after=quantity_after,
                        reference_type=StockMovementReference.PHYSICAL_STOCK_ADJUSTMENT.value,
                        reference_id=adjustment.id,
                        reference_number=adjustment.adjustment_number,
                        unit_cost=line.unit_cost or Decimal("0.00"),
                        notes=line.reason,
                        created_by=actor.id,
                    )

                flipped = await self.db.execute(
                    update(PhysicalStockCountItem)
                    .where(
                        PhysicalStockCountItem.id == line.physical_stock_count_item_id,
                        PhysicalStockCountItem.adjustment_applied == False,  # noqa: E712
                    )
                    .values(
                        adjustment_applied=True,
                        adjustment_applied_by=actor.id,
                        adjustment_applied_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if flipped.rowcount != 1:
                    # Only reachable if the line was adjusted outside this service.
                    raise violation(
                        ReasonCode.LINE_ALREADY_ADJUSTED,
                        f"Count line for {line.supplier_code} was adjusted by another adjustment",
                        adjustment_id=str(adjustment_id),
                        item_id=str(line.physical_stock_count_item_id),
                    )

            await self.db.flush()
            await self.audit.log(
                action="APPLY",
                entity_type=ENTITY_ADJUSTMENT,
                entity_id=adjustment.id,
                actor=actor,
                old_values={"status": AdjustmentStatus.DRAFT.value},
                new_values=AdjustmentResponse.model_validate(adjustment).audit_payload(),
                description=f"Applied adjustment {adjustment.adjustment_number}",
            )

        logger.info(
            "Applied adjustment %s (%d lines) by %s",
            adjustment.adjustment_number, len(adjustment.items), actor,
        )
        return ApplyResult(
            success=True,
            adjustment_id=adjustment.id,
            lines_applied=len(adjustment.items),
        )
