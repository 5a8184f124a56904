"""
Physical Stock Count Service.

Business logic for physical inventory counts:
- Count lifecycle (create, start, cancel, update, delete)
- Population of line items from a snapshot of book quantities
- Two-pass count recording and finalization (variance computation)
- Read-only summary, variance report and statistics
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Tuple, Iterable
from uuid import UUID, uuid4

from sqlalchemy import select, func, update, delete, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.actor import Actor
from app.core.enum_utils import get_enum_value
from app.core.exceptions import (
    BusinessRuleViolation, NotFound, ReasonCode, ValidationError
)
from app.database import atomic
from app.models.physical_stock import (
    PhysicalStockCount, PhysicalStockCountItem, ScanningSession, ScannedItem,
    CountStatus, CountItemStatus, CountPass, ScanningSessionStatus,
)
from app.models.stock_adjustment import (
    PhysicalStockAdjustment, PhysicalStockAdjustmentItem, AdjustmentStatus
)
from app.schemas.physical_stock import (
    PhysicalStockCountCreate, PhysicalStockCountUpdate, PhysicalStockCountResponse,
    CountItemCreate, CountItemUpdate, CountItemResponse,
    FinalizeResult, CountSummary, VarianceReport, VarianceReportLine,
    CountStatistics, CountDetails,
)
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService


logger = logging.getLogger(__name__)

ENTITY_COUNT = "PHYSICAL_STOCK_COUNT"
ENTITY_COUNT_ITEM = "PHYSICAL_STOCK_COUNT_ITEM"

MONEY = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value) -> Decimal:
    """Aggregates come back as float on some backends."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(MONEY)


def percentage(part: int, total: int) -> int:
    """Whole percent, rounded half up; 0 when there is nothing to measure."""
    if total <= 0:
        return 0
    return (part * 200 + total) // (total * 2)


def violation(reason: ReasonCode, message: str, **details) -> BusinessRuleViolation:
    logger.warning("Rejected (%s): %s %s", reason.value, message, details)
    return BusinessRuleViolation(reason, message, details)


class PhysicalStockService:
    """Service for physical stock count operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.inventory = InventoryService(db)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _generate_count_number(self) -> str:
        today = utcnow()
        return f"{settings.COUNT_NUMBER_PREFIX}-{today.strftime('%Y%m%d')}-{str(uuid4())[:8].upper()}"

    @staticmethod
    def _count_payload(count: PhysicalStockCount) -> dict:
        return PhysicalStockCountResponse.model_validate(count).audit_payload()

    @staticmethod
    def _item_payload(item: PhysicalStockCountItem) -> dict:
        return CountItemResponse.model_validate(item).audit_payload()

    async def _get_count_or_404(self, count_id: UUID, lock: bool = False) -> PhysicalStockCount:
        if lock:
            # Row lock held until commit; finalize claims the same row.
            count = await self.db.scalar(
                select(PhysicalStockCount)
                .where(PhysicalStockCount.id == count_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        else:
            count = await self.get_count(count_id)
        if not count:
            raise NotFound("Physical stock count", count_id)
        return count

    async def _get_item_or_404(self, item_id: UUID) -> PhysicalStockCountItem:
        item = await self.get_item(item_id)
        if not item:
            raise NotFound("Physical stock count item", item_id)
        return item

    @staticmethod
    def require_open(count: PhysicalStockCount) -> None:
        """Raise unless the count still accepts counting work."""
        if count.status == CountStatus.CANCELLED.value:
            raise violation(
                ReasonCode.COUNT_CANCELLED,
                "Physical stock count is cancelled",
                count_id=str(count.id),
            )
        if count.status == CountStatus.COMPLETED.value:
            raise violation(
                ReasonCode.COUNT_NOT_OPEN,
                "Physical stock count is already completed",
                count_id=str(count.id),
            )

    async def _transition(
        self,
        count_id: UUID,
        allowed_from: Iterable[CountStatus],
        target: CountStatus,
        **values,
    ) -> bool:
        """
        Move a count to target status with one conditional UPDATE.

        Returns False when the count was no longer in one of allowed_from,
        i.e. another request got there first.
        """
        stmt = (
            update(PhysicalStockCount)
            .where(
                PhysicalStockCount.id == count_id,
                PhysicalStockCount.status.in_([s.value for s in allowed_from]),
            )
            .values(status=target.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def ensure_started(self, count: PhysicalStockCount, actor: Actor) -> None:
        """Implicitly start a pending count when counting work begins on it."""
        if count.status != CountStatus.PENDING.value:
            return
        await self._transition(
            count.id,
            [CountStatus.PENDING],
            CountStatus.IN_PROGRESS,
            started_by=actor.id,
            started_at=utcnow(),
        )
        await self.db.refresh(count)

    async def _close_active_sessions(self, count_id: UUID, closed_at: datetime) -> int:
        result = await self.db.execute(
            update(ScanningSession)
            .where(
                ScanningSession.physical_stock_count_id == count_id,
                ScanningSession.status == ScanningSessionStatus.ACTIVE.value,
            )
            .values(
                status=ScanningSessionStatus.COMPLETED.value,
                completed_at=closed_at,
                updated_at=closed_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _start(self, count: PhysicalStockCount, actor: Actor) -> None:
        claimed = await self._transition(
            count.id,
            [CountStatus.PENDING],
            CountStatus.IN_PROGRESS,
            started_by=actor.id,
            started_at=utcnow(),
        )
        await self.db.refresh(count)
        if not claimed:
            self.require_open(count)
            raise violation(
                ReasonCode.INVALID_STATUS_TRANSITION,
                f"Cannot start a count in status {count.status}",
                count_id=str(count.id),
            )

    async def _cancel(self, count: PhysicalStockCount, actor: Actor) -> None:
        claimed = await self._transition(
            count.id,
            [CountStatus.PENDING, CountStatus.IN_PROGRESS],
            CountStatus.CANCELLED,
        )
        await self.db.refresh(count)
        if not claimed:
            if count.status == CountStatus.CANCELLED.value:
                raise violation(
                    ReasonCode.COUNT_CANCELLED,
                    "Physical stock count is already cancelled",
                    count_id=str(count.id),
                )
            raise violation(
                ReasonCode.INVALID_STATUS_TRANSITION,
                f"Cannot cancel a count in status {count.status}",
                count_id=str(count.id),
            )
        await self._close_active_sessions(count.id, utcnow())

    # ========================================================================
    # COUNTS
    # ========================================================================

    async def create_count(
        self,
        data: PhysicalStockCountCreate,
        actor: Actor,
    ) -> PhysicalStockCount:
        """Create a new physical stock count in PENDING status."""
        async with atomic(self.db, "create count"):
            count = PhysicalStockCount(
                count_number=self._generate_count_number(),
                description=data.description,
                count_date=data.count_date or utcnow(),
                storage_location=data.storage_location,
                count_type=get_enum_value(data.count_type),
                status=CountStatus.PENDING.value,
                scheduled_date=data.scheduled_date,
                notes=data.notes,
                created_by=actor.id,
            )
            self.db.add(count)
            await self.db.flush()
            await self.db.refresh(count)

            await self.audit.log(
                action="CREATE",
                entity_type=ENTITY_COUNT,
                entity_id=count.id,
                actor=actor,
                new_values=self._count_payload(count),
                description=f"Created physical stock count {count.count_number}",
            )

        logger.info("Created physical stock count %s by %s", count.count_number, actor)
        return count

    async def get_count(self, count_id: UUID) -> Optional[PhysicalStockCount]:
        """Get a physical stock count by ID."""
        result = await self.db.execute(
            select(PhysicalStockCount).where(PhysicalStockCount.id == count_id)
        )
        return result.scalar_one_or_none()

    async def get_count_by_number(self, count_number: str) -> Optional[PhysicalStockCount]:
        result = await self.db.execute(
            select(PhysicalStockCount).where(PhysicalStockCount.count_number == count_number)
        )
        return result.scalar_one_or_none()

    async def list_counts(
        self,
        status: Optional[CountStatus] = None,
        storage_location: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[PhysicalStockCount], int]:
        """List physical stock counts, newest first."""
        query = select(PhysicalStockCount)

        if status:
            query = query.where(PhysicalStockCount.status == get_enum_value(status))
        if storage_location:
            query = query.where(PhysicalStockCount.storage_location == storage_location)

        # Count
        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        # Paginate
        query = query.order_by(
            PhysicalStockCount.created_at.desc(), PhysicalStockCount.count_number.desc()
        )
        query = query.offset(skip).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def update_count(
        self,
        count_id: UUID,
        data: PhysicalStockCountUpdate,
        actor: Actor,
    ) -> PhysicalStockCount:
        """
        Update descriptive fields and, optionally, move the status along the
        lifecycle. COMPLETED is only reachable through finalize; a closed
        count only accepts note changes.
        """
        async with atomic(self.db, "update count"):
            count = await self._get_count_or_404(count_id)
            old_values = self._count_payload(count)

            update_data = data.model_dump(exclude_unset=True)
            target = update_data.pop("status", None)
            if update_data.get("count_type") is None:
                update_data.pop("count_type", None)

            if not count.status_enum.is_open and set(update_data) - {"notes"}:
                raise violation(
                    ReasonCode.COUNT_NOT_OPEN,
                    "Only notes can be changed on a closed count",
                    count_id=str(count.id),
                    status=count.status,
                )

            for field, value in update_data.items():
                setattr(count, field, get_enum_value(value) if field == "count_type" else value)
            await self.db.flush()

            target = CountStatus(get_enum_value(target)) if target is not None else None
            if target is not None and target.value != count.status:
                if target == CountStatus.COMPLETED:
                    raise violation(
                        ReasonCode.INVALID_STATUS_TRANSITION,
                        "A count can only be completed by finalizing it",
                        count_id=str(count.id),
                    )
                if not count.status_enum.can_transition_to(target):
                    raise violation(
                        ReasonCode.INVALID_STATUS_TRANSITION,
                        f"Cannot change status from {count.status} to {target.value}",
                        count_id=str(count.id),
                    )
                if target == CountStatus.IN_PROGRESS:
                    await self._start(count, actor)
                else:
                    await self._cancel(count, actor)

            await self.db.refresh(count)
            await self.audit.log(
                action="UPDATE",
                entity_type=ENTITY_COUNT,
                entity_id=count.id,
                actor=actor,
                old_values=old_values,
                new_values=self._count_payload(count),
                description=f"Updated physical stock count {count.count_number}",
            )

        return count

    async def start_count(self, count_id: UUID, actor: Actor) -> PhysicalStockCount:
        """PENDING → IN_PROGRESS."""
        async with atomic(self.db, "start count"):
            count = await self._get_count_or_404(count_id)
            old_values = self._count_payload(count)
            await self._start(count, actor)
            await self.audit.log(
                action="START",
                entity_type=ENTITY_COUNT,
                entity_id=count.id,
                actor=actor,
                old_values=old_values,
                new_values=self._count_payload(count),
                description=f"Started physical stock count {count.count_number}",
            )

        logger.info("Started physical stock count %s by %s", count.count_number, actor)
        return count

    async def cancel_count(self, count_id: UUID, actor: Actor) -> PhysicalStockCount:
        """PENDING | IN_PROGRESS → CANCELLED. Active scanning sessions are closed."""
        async with atomic(self.db, "cancel count"):
            count = await self._get_count_or_404(count_id)
            old_values = self._count_payload(count)
            await self._cancel(count, actor)
            await self.audit.log(
                action="CANCEL",
                entity_type=ENTITY_COUNT,
                entity_id=count.id,
                actor=actor,
                old_values=old_values,
                new_values=self._count_payload(count),
                description=f"Cancelled physical stock count {count.count_number}",
            )

        logger.info("Cancelled physical stock count %s by %s", count.count_number, actor)
        return count

    async def delete_count(self, count_id: UUID, actor: Actor) -> bool:
        """
        Delete a count with its items, scanning sessions, scans and draft
        adjustments. Refused once an adjustment from it has been applied.
        """
        async with atomic(self.db, "delete count"):
            count = await self._get_count_or_404(count_id)

            applied = await self.db.scalar(
                select(func.count()).select_from(PhysicalStockAdjustment).where(
                    PhysicalStockAdjustment.physical_stock_count_id == count.id,
                    PhysicalStockAdjustment.status == AdjustmentStatus.APPLIED.value,
                )
            )
            if applied:
                raise violation(
                    ReasonCode.INVALID_STATUS_TRANSITION,
                    "A count with applied adjustments cannot be deleted",
                    count_id=str(count.id),
                )

            old_values = self._count_payload(count)

            adjustment_ids = select(PhysicalStockAdjustment.id).where(
                PhysicalStockAdjustment.physical_stock_count_id == count.id
            )
            session_ids = select(ScanningSession.id).where(
                ScanningSession.physical_stock_count_id == count.id
            )
            for stmt in (
                delete(PhysicalStockAdjustmentItem).where(
                    PhysicalStockAdjustmentItem.adjustment_id.in_(adjustment_ids)
                ),
                delete(PhysicalStockAdjustment).where(
                    PhysicalStockAdjustment.physical_stock_count_id == count.id
                ),
                delete(ScannedItem).where(ScannedItem.scanning_session_id.in_(session_ids)),
                delete(ScanningSession).where(ScanningSession.physical_stock_count_id == count.id),
                delete(PhysicalStockCountItem).where(
                    PhysicalStockCountItem.physical_stock_count_id == count.id
                ),
            ):
                await self.db.execute(stmt.execution_options(synchronize_session=False))

            await self.db.delete(count)
            await self.audit.log(
                action="DELETE",
                entity_type=ENTITY_COUNT,
                entity_id=count_id,
                actor=actor,
                old_values=old_values,
                description=f"Deleted physical stock count {old_values['count_number']}",
            )

        logger.info("Deleted physical stock count %s by %s", old_values["count_number"], actor)
        return True

    # ========================================================================
    # COUNT ITEMS
    # ========================================================================

    async def get_item(self, item_id: UUID) -> Optional[PhysicalStockCountItem]:
        """Get a count line item by ID."""
        result = await self.db.execute(
            select(PhysicalStockCountItem).where(PhysicalStockCountItem.id == item_id)
        )
        return result.scalar_one_or_none()

    async def list_items(
        self,
        count_id: UUID,
        status: Optional[CountItemStatus] = None,
    ) -> List[PhysicalStockCountItem]:
        """Line items of a count ordered by line number."""
        await self._get_count_or_404(count_id)

        query = select(PhysicalStockCountItem).where(
            PhysicalStockCountItem.physical_stock_count_id == count_id
        )
        if status:
            query = query.where(PhysicalStockCountItem.status == get_enum_value(status))
        query = query.order_by(PhysicalStockCountItem.line_number)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def add_item(
        self,
        count_id: UUID,
        data: CountItemCreate,
        actor: Actor,
    ) -> PhysicalStockCountItem:
        """Append a manual line item to an open count."""
        async with atomic(self.db, "add count item"):
            count = await self._get_count_or_404(count_id)
            self.require_open(count)

            inventory_item = await self.inventory.get_item(data.inventory_item_id)
            if not inventory_item:
                raise NotFound("Inventory item", data.inventory_item_id)

            location = data.storage_location or count.storage_location
            level = await self.inventory.get_level(inventory_item.id, location)

            system_quantity = data.system_quantity
            if system_quantity is None:
                system_quantity = (level.quantity_available or 0) if level else 0
            reserved_quantity = data.reserved_quantity
            if reserved_quantity is None:
                reserved_quantity = (level.quantity_reserved or 0) if level else 0

            max_line = await self.db.scalar(
                select(func.max(PhysicalStockCountItem.line_number)).where(
                    PhysicalStockCountItem.physical_stock_count_id == count.id
                )
            )

            item = PhysicalStockCountItem(
                physical_stock_count_id=count.id,
                inventory_item_id=inventory_item.id,
                line_number=(max_line or 0) + 1,
                supplier_code=inventory_item.supplier_code,
                barcode=inventory_item.barcode,
                description=inventory_item.description,
                storage_location=location,
                system_quantity=system_quantity,
                reserved_quantity=reserved_quantity,
                available_quantity=system_quantity - reserved_quantity,
                unit_cost=inventory_item.unit_cost or Decimal("0.00"),
                status=CountItemStatus.PENDING.value,
                notes=data.notes,
            )
            self.db.add(item)
            await self.db.flush()
            await self.db.refresh(item)

            await self.audit.log(
                action="CREATE",
                entity_type=ENTITY_COUNT_ITEM,
                entity_id=item.id,
                actor=actor,
                new_values=self._item_payload(item),
                description=f"Added line {item.line_number} ({item.supplier_code}) to {count.count_number}",
            )

        return item

    async def update_item(
        self,
        item_id: UUID,
        data: CountItemUpdate,
        actor: Actor,
    ) -> PhysicalStockCountItem:
        """Update line annotations. Snapshot and count quantities are not editable here."""
        async with atomic(self.db, "update count item"):
            item = await self._get_item_or_404(item_id)
            old_values = self._item_payload(item)

            update_data = data.model_dump(exclude_unset=True)
            if update_data.get("requires_recount") is None:
                update_data.pop("requires_recount", None)
            for field, value in update_data.items():
                setattr(item, field, value)
            await self.db.flush()
            await self.db.refresh(item)

            await self.audit.log(
                action="UPDATE",
                entity_type=ENTITY_COUNT_ITEM,
                entity_id=item.id,
                actor=actor,
                old_values=old_values,
                new_values=self._item_payload(item),
            )

        return item

    # ========================================================================
    # POPULATION
    # ========================================================================

    async def populate(
        self,
        count_id: UUID,
        actor: Actor,
        storage_location: Optional[str] = None,
    ) -> int:
        """
        Snapshot book quantities into line items numbered 1..N.

        Only a PENDING count can be populated; populating it again replaces
        its existing lines. The location filter defaults to the count's own
        storage location.
        """
        async with atomic(self.db, "populate count"):
            count = await self._get_count_or_404(count_id)
            if count.status != CountStatus.PENDING.value:
                raise violation(
                    ReasonCode.ALREADY_POPULATED,
                    "Items can only be populated while the count is pending",
                    count_id=str(count.id),
                    status=count.status,
                )

            location = storage_location or count.storage_location
            rows = await self.inventory.get_snapshot_rows(location)

            claim = await self.db.execute(
                update(PhysicalStockCount)
                .where(
                    PhysicalStockCount.id == count.id,
                    PhysicalStockCount.status == CountStatus.PENDING.value,
                )
                .values(total_items_expected=len(rows), updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount != 1:
                raise violation(
                    ReasonCode.ALREADY_POPULATED,
                    "Physical stock count changed status during population",
                    count_id=str(count.id),
                )

            replaced = await self.db.execute(
                delete(PhysicalStockCountItem)
                .where(PhysicalStockCountItem.physical_stock_count_id == count.id)
                .execution_options(synchronize_session=False)
            )

            for line_number, row in enumerate(rows, start=1):
                self.db.add(PhysicalStockCountItem(
                    physical_stock_count_id=count.id,
                    inventory_item_id=row.inventory_item_id,
                    line_number=line_number,
                    supplier_code=row.supplier_code,
                    barcode=row.barcode,
                    description=row.description,
                    storage_location=row.storage_location,
                    system_quantity=row.quantity_available,
                    reserved_quantity=row.quantity_reserved,
                    available_quantity=row.quantity_available - row.quantity_reserved,
                    unit_cost=row.unit_cost,
                    status=CountItemStatus.PENDING.value,
                    variance=0,
                    variance_value=Decimal("0.00"),
                ))
            await self.db.flush()

            await self.audit.log(
                action="POPULATE",
                entity_type=ENTITY_COUNT,
                entity_id=count.id,
                actor=actor,
                new_values={
                    "items_added": len(rows),
                    "items_replaced": replaced.rowcount or 0,
                    "storage_location": location,
                },
                description=f"Populated {len(rows)} items into {count.count_number}",
            )

        logger.info(
            "Populated %d items into physical stock count %s (location=%s)",
            len(rows), count.count_number, location or "ALL",
        )
        return len(rows)

    # ========================================================================
    # RECONCILIATION
    # ========================================================================

    async def record_count(
        self,
        item_id: UUID,
        count_pass: CountPass,
        quantity: int,
        actor: Actor,
    ) -> PhysicalStockCountItem:
        """
        Record the first or second counted quantity of a line.

        Recording the same pass again overwrites it. The second pass needs a
        first one. Lines already VERIFIED or DISCREPANCY are closed.

        The write is a conditional UPDATE on the line status, so a finalize
        that commits between the checks below and the write turns this call
        into ITEM_FINALIZED instead of reopening a finalized line.
        """
        if quantity is None or quantity < 0:
            raise ValidationError(
                "Counted quantity must be zero or greater",
                {"quantity": quantity},
            )
        count_pass = CountPass(get_enum_value(count_pass))

        async with atomic(self.db, "record count"):
            item = await self._get_item_or_404(item_id)
            count = await self._get_count_or_404(item.physical_stock_count_id, lock=True)
            if not item.status_enum.can_transition_to(CountItemStatus.COUNTED):
                raise self._item_finalized(item)
            self.require_open(count)

            if count_pass == CountPass.SECOND and item.first_count_quantity is None:
                raise violation(
                    ReasonCode.FIRST_COUNT_REQUIRED,
                    "A first count must be recorded before the second count",
                    item_id=str(item.id),
                )

            old_values = self._item_payload(item)
            await self.ensure_started(count, actor)

            now = utcnow()
            prefix = "first" if count_pass == CountPass.FIRST else "second"
            open_statuses = [CountStatus.PENDING.value, CountStatus.IN_PROGRESS.value]
            result = await self.db.execute(
                update(PhysicalStockCountItem)
                .where(
                    PhysicalStockCountItem.id == item.id,
                    PhysicalStockCountItem.status.in_(
                        [s.value for s in CountItemStatus.sources_of(CountItemStatus.COUNTED)]
                    ),
                    PhysicalStockCountItem.physical_stock_count_id.in_(
                        select(PhysicalStockCount.id).where(
                            PhysicalStockCount.id == count.id,
                            PhysicalStockCount.status.in_(open_statuses),
                        )
                    ),
                )
                .values(
                    **{
                        f"{prefix}_count_quantity": quantity,
                        f"{prefix}_count_by": actor.id,
                        f"{prefix}_count_at": now,
                    },
                    count_pass=count_pass.value,
                    status=CountItemStatus.COUNTED.value,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.refresh(item)
                raise self._item_finalized(item)

            await self.db.refresh(item)

            await self.audit.log(
                action="RECORD_COUNT",
                entity_type=ENTITY_COUNT_ITEM,
                entity_id=item.id,
                actor=actor,
                old_values=old_values,
                new_values=self._item_payload(item),
                description=f"{count_pass.value} count of {quantity} for {item.supplier_code}",
            )

        return item

    @staticmethod
    def _item_finalized(item: PhysicalStockCountItem) -> BusinessRuleViolation:
        return violation(
            ReasonCode.ITEM_FINALIZED,
            "Count item has already been finalized",
            item_id=str(item.id),
            status=item.status,
        )

    def _raise_finalize_conflict(self, count: PhysicalStockCount) -> None:
        if count.status == CountStatus.COMPLETED.value:
            raise violation(
                ReasonCode.ALREADY_FINALIZED,
                "Physical stock count has already been finalized",
                count_id=str(count.id),
            )
        raise violation(
            ReasonCode.COUNT_CANCELLED,
            "A cancelled physical stock count cannot be finalized",
            count_id=str(count.id),
        )

    async def finalize(self, count_id: UUID, actor: Actor) -> FinalizeResult:
        """
        Close the count and compute the final quantity and variance of every
        line. The count is claimed with a conditional status update so that
        concurrent finalize calls cannot both succeed.
        """
        async with atomic(self.db, "finalize count"):
            count = await self._get_count_or_404(count_id)
            if not count.status_enum.is_open:
                self._raise_finalize_conflict(count)

            old_values = self._count_payload(count)
            now = utcnow()
            claimed = await self._transition(
                count.id,
                [CountStatus.PENDING, CountStatus.IN_PROGRESS],
                CountStatus.COMPLETED,
                completed_by=actor.id,
                completed_at=now,
            )
            if not claimed:
                await self.db.refresh(count)
                self._raise_finalize_conflict(count)

            result = await self.db.execute(
                select(PhysicalStockCountItem)
                .where(PhysicalStockCountItem.physical_stock_count_id == count.id)
                .order_by(PhysicalStockCountItem.line_number)
            )
            items = list(result.scalars().all())

            total_counted = 0
            total_discrepancies = 0
            total_variance_value = Decimal("0.00")
            for item in items:
                final_quantity = item.resolve_final_quantity()
                variance = final_quantity - (item.system_quantity or 0)
                variance_value = (Decimal(variance) * (item.unit_cost or Decimal("0"))).quantize(MONEY)

                target = CountItemStatus.VERIFIED if variance == 0 else CountItemStatus.DISCREPANCY
                if not item.status_enum.can_transition_to(target):
                    raise violation(
                        ReasonCode.INVALID_STATUS_TRANSITION,
                        f"Count item cannot move from {item.status} to {target.value}",
                        item_id=str(item.id),
                    )

                item.final_count_quantity = final_quantity
                item.variance = variance
                item.variance_value = variance_value
                item.adjustment_required = variance != 0
                item.status = target.value

                if item.has_been_counted:
                    total_counted += 1
                if variance != 0:
                    total_discrepancies += 1
                total_variance_value += variance_value

            await self.db.execute(
                update(PhysicalStockCount)
                .where(PhysicalStockCount.id == count.id)
                .values(
                    total_items_counted=total_counted,
                    total_discrepancies=total_discrepancies,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self._close_active_sessions(count.id, now)
            await self.db.flush()
            await self.db.refresh(count)

            await self.audit.log(
                action="FINALIZE",
                entity_type=ENTITY_COUNT,
                entity_id=count.id,
                actor=actor,
                old_values=old_values,
                new_values=self._count_payload(count),
                description=(
                    f"Finalized {count.count_number}: {total_discrepancies} discrepancies, "
                    f"variance value {total_variance_value}"
                ),
            )

        logger.info(
            "Finalized physical stock count %s: %d items, %d counted, %d discrepancies",
            count.count_number, len(items), total_counted, total_discrepancies,
        )
        return FinalizeResult(
            count_id=count.id,
            status=count.status,
            total_items=len(items),
            total_items_counted=total_counted,
            total_discrepancies=total_discrepancies,
            total_variance_value=total_variance_value,
        )

    # ========================================================================
    # SUMMARY / REPORTING
    # ========================================================================

    async def summary(self, count_id: UUID) -> CountSummary:
        """
        Aggregate line-item state of a count. Advisory: a storage error is
        logged and yields a zeroed summary.
        """
        def status_total(status: CountItemStatus):
            return func.coalesce(
                func.sum(case((PhysicalStockCountItem.status == status.value, 1), else_=0)), 0
            )

        query = select(
            func.count(PhysicalStockCountItem.id),
            status_total(CountItemStatus.PENDING),
            status_total(CountItemStatus.COUNTED),
            status_total(CountItemStatus.VERIFIED),
            status_total(CountItemStatus.DISCREPANCY),
            func.coalesce(
                func.sum(case((PhysicalStockCountItem.adjustment_applied == True, 1), else_=0)),  # noqa: E712
                0,
            ),
            func.sum(PhysicalStockCountItem.variance_value),
        ).where(PhysicalStockCountItem.physical_stock_count_id == count_id)

        try:
            row = (await self.db.execute(query)).one()
        except SQLAlchemyError:
            logger.exception("Failed to compute summary for physical stock count %s", count_id)
            await self.db.rollback()
            return CountSummary()

        total, pending, counted, verified, discrepancy, adjusted, value = row
        return CountSummary(
            total_items=total or 0,
            pending_items=int(pending or 0),
            counted_items=int(counted or 0),
            verified_items=int(verified or 0),
            discrepancy_items=int(discrepancy or 0),
            adjusted_items=int(adjusted or 0),
            total_variance_value=to_money(value),
        )

    async def variance_report(self, count_id: UUID) -> VarianceReport:
        """Lines with a non-zero variance, with their discrepancy reason."""
        try:
            total_items = await self.db.scalar(
                select(func.count(PhysicalStockCountItem.id)).where(
                    PhysicalStockCountItem.physical_stock_count_id == count_id
                )
            )
            result = await self.db.execute(
                select(PhysicalStockCountItem)
                .where(
                    PhysicalStockCountItem.physical_stock_count_id == count_id,
                    PhysicalStockCountItem.variance != 0,
                )
                .order_by(PhysicalStockCountItem.line_number)
            )
            items = list(result.scalars().all())
        except SQLAlchemyError:
            logger.exception("Failed to build variance report for physical stock count %s", count_id)
            await self.db.rollback()
            return VarianceReport(count_id=count_id)

        lines = [
            VarianceReportLine(
                count_item_id=item.id,
                line_number=item.line_number,
                supplier_code=item.supplier_code,
                description=item.description,
                storage_location=item.storage_location,
                system_quantity=item.system_quantity,
                physical_quantity=item.final_count_quantity,
                variance=item.variance,
                variance_value=to_money(item.variance_value),
                status=item.status,
                discrepancy_reason=item.discrepancy_reason,
            )
            for item in items
        ]
        return VarianceReport(
            count_id=count_id,
            total_items=total_items or 0,
            variance_items=len(lines),
            total_variance_value=sum((line.variance_value for line in lines), Decimal("0.00")),
            items=lines,
        )

    async def statistics(self, count_id: UUID) -> CountStatistics:
        """Summary plus count details, progress and accuracy percentages."""
        count = await self._get_count_or_404(count_id)
        summary = await self.summary(count_id)

        worked = summary.counted_items + summary.verified_items + summary.discrepancy_items
        return CountStatistics(
            **summary.model_dump(),
            count_details=CountDetails(
                count_number=count.count_number,
                status=count.status,
                count_type=count.count_type,
                storage_location=count.storage_location,
                scheduled_date=count.scheduled_date,
                started_at=count.started_at,
                completed_at=count.completed_at,
            ),
            progress_percentage=percentage(worked, summary.total_items),
            accuracy_percentage=percentage(
                summary.total_items - summary.discrepancy_items, summary.total_items
            ),
        )
