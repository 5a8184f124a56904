"""
Scanning Session Service.

Barcode scanning sessions are evidence collection: a scan appends one
ScannedItem and bumps the session counter, it never touches counted
quantities or inventory levels.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List
from uuid import UUID

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor
from app.core.enum_utils import get_enum_value
from app.core.exceptions import NotFound, ReasonCode
from app.database import atomic
from app.models.physical_stock import (
    PhysicalStockCountItem, ScanningSession, ScannedItem,
    ScanningSessionStatus,
)
from app.schemas.physical_stock import (
    ScanningSessionCreate, ScanningSessionUpdate, ScanningSessionResponse,
    ScannedItemCreate, ScannedItemResponse, ScanResult,
)
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService
from app.services.physical_stock_service import PhysicalStockService, violation


logger = logging.getLogger(__name__)

ENTITY_SESSION = "SCANNING_SESSION"
ENTITY_SCANNED_ITEM = "SCANNED_ITEM"

MSG_BARCODE_NOT_FOUND = "Item not found with this barcode"
MSG_ITEM_NOT_IN_COUNT = "Item not included in this physical stock count"
MSG_SESSION_CLOSED = "Scanning session is not active"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScanningService:
    """Service for scanning sessions and scan events."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.inventory = InventoryService(db)
        self.counts = PhysicalStockService(db)

    # ========================================================================
    # HELPERS
    # ========================================================================

    @staticmethod
    def _session_payload(session: ScanningSession) -> dict:
        return ScanningSessionResponse.model_validate(session).audit_payload()

    async def _get_session_or_404(self, session_id: UUID) -> ScanningSession:
        session = await self.get_session(session_id)
        if not session:
            raise NotFound("Scanning session", session_id)
        return session

    async def _increment_scans(self, session_id: UUID) -> bool:
        """Bump the scan counter only while the session is still active."""
        result = await self.db.execute(
            update(ScanningSession)
            .where(
                ScanningSession.id == session_id,
                ScanningSession.status == ScanningSessionStatus.ACTIVE.value,
            )
            .values(
                total_scans_completed=ScanningSession.total_scans_completed + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _match_count_item(
        self,
        count_id: UUID,
        inventory_item_id: UUID,
        storage_location: Optional[str],
    ) -> Optional[PhysicalStockCountItem]:
        """The count line for an item; a line at the scan location wins."""
        result = await self.db.execute(
            select(PhysicalStockCountItem)
            .where(
                PhysicalStockCountItem.physical_stock_count_id == count_id,
                PhysicalStockCountItem.inventory_item_id == inventory_item_id,
            )
            .order_by(PhysicalStockCountItem.line_number)
        )
        candidates = list(result.scalars().all())
        if not candidates:
            return None
        for candidate in candidates:
            if storage_location and candidate.storage_location == storage_location:
                return candidate
        return candidates[0]

    # ========================================================================
    # SESSIONS
    # ========================================================================

    async def get_session(self, session_id: UUID) -> Optional[ScanningSession]:
        result = await self.db.execute(
            select(ScanningSession).where(ScanningSession.id == session_id)
        )
        return result.scalar_one_or_none()

    async def list_sessions(self, count_id: UUID) -> List[ScanningSession]:
        """Scanning sessions of a count, most recent first."""
        count = await self.counts.get_count(count_id)
        if not count:
            raise NotFound("Physical stock count", count_id)

        result = await self.db.execute(
            select(ScanningSession)
            .where(ScanningSession.physical_stock_count_id == count_id)
            .order_by(ScanningSession.started_at.desc(), ScanningSession.created_at.desc())
        )
        return list(result.scalars().all())

    async def open_session(
        self,
        count_id: UUID,
        data: ScanningSessionCreate,
        actor: Actor,
    ) -> ScanningSession:
        """Open a scanning session; a pending count is started implicitly."""
        async with atomic(self.db, "open scanning session"):
            count = await self.counts.get_count(count_id)
            if not count:
                raise NotFound("Physical stock count", count_id)
            self.counts.require_open(count)
            await self.counts.ensure_started(count, actor)

            existing = await self.db.scalar(
                select(func.count(ScanningSession.id)).where(
                    ScanningSession.physical_stock_count_id == count.id
                )
            )
            session = ScanningSession(
                physical_stock_count_id=count.id,
                session_name=data.session_name or f"{count.count_number} session {(existing or 0) + 1}",
                session_type=get_enum_value(data.session_type),
                storage_location=data.storage_location or count.storage_location,
                status=ScanningSessionStatus.ACTIVE.value,
                started_by=actor.id,
                started_at=utcnow(),
                total_scans_expected=data.total_scans_expected,
                total_scans_completed=0,
                notes=data.notes,
            )
            self.db.add(session)
            await self.db.flush()
            await self.db.refresh(session)

            await self.audit.log(
                action="OPEN",
                entity_type=ENTITY_SESSION,
                entity_id=session.id,
                actor=actor,
                new_values=self._session_payload(session),
                description=f"Opened scanning session '{session.session_name}'",
            )

        logger.info("Opened scanning session %s on count %s by %s", session.id, count.count_number, actor)
        return session

    async def update_session(
        self,
        session_id: UUID,
        data: ScanningSessionUpdate,
        actor: Actor,
    ) -> ScanningSession:
        """Edit an active session; status COMPLETED closes it."""
        update_data = data.model_dump(exclude_unset=True)
        target = update_data.pop("status", None)
        if update_data.get("total_scans_expected") is None:
            update_data.pop("total_scans_expected", None)
        if get_enum_value(target) == ScanningSessionStatus.COMPLETED.value and not update_data:
            return await self.close_session(session_id, actor)

        async with atomic(self.db, "update scanning session"):
            session = await self._get_session_or_404(session_id)
            if not session.is_active:
                raise violation(
                    ReasonCode.SESSION_CLOSED,
                    MSG_SESSION_CLOSED,
                    session_id=str(session.id),
                )
            old_values = self._session_payload(session)

            for field, value in update_data.items():
                setattr(session, field, value)
            if get_enum_value(target) == ScanningSessionStatus.COMPLETED.value:
                session.status = ScanningSessionStatus.COMPLETED.value
                session.completed_at = utcnow()
            await self.db.flush()
            await self.db.refresh(session)

            await self.audit.log(
                action="UPDATE",
                entity_type=ENTITY_SESSION,
                entity_id=session.id,
                actor=actor,
                old_values=old_values,
                new_values=self._session_payload(session),
            )

        return session

    async def close_session(self, session_id: UUID, actor: Actor) -> ScanningSession:
        """ACTIVE → COMPLETED. Further scans are rejected."""
        async with atomic(self.db, "close scanning session"):
            session = await self._get_session_or_404(session_id)
            old_values = self._session_payload(session)

            now = utcnow()
            result = await self.db.execute(
                update(ScanningSession)
                .where(
                    ScanningSession.id == session.id,
                    ScanningSession.status == ScanningSessionStatus.ACTIVE.value,
                )
                .values(
                    status=ScanningSessionStatus.COMPLETED.value,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise violation(
                    ReasonCode.SESSION_CLOSED,
                    "Scanning session is already closed",
                    session_id=str(session.id),
                )
            await self.db.refresh(session)

            await self.audit.log(
                action="CLOSE",
                entity_type=ENTITY_SESSION,
                entity_id=session.id,
                actor=actor,
                old_values=old_values,
                new_values=self._session_payload(session),
                description=f"Closed scanning session after {session.total_scans_completed} scans",
            )

        logger.info("Closed scanning session %s (%d scans)", session.id, session.total_scans_completed)
        return session

    # ========================================================================
    # SCANS
    # ========================================================================

    async def scan(
        self,
        session_id: UUID,
        barcode: str,
        actor: Actor,
        quantity: int = 1,
        storage_location: Optional[str] = None,
    ) -> ScanResult:
        """
        Record one barcode scan.

        Rule failures (closed session, unknown barcode, item not in the count)
        come back as an unsuccessful ScanResult and write nothing.
        """
        async with atomic(self.db, "scan barcode"):
            session = await self._get_session_or_404(session_id)
            if not session.is_active:
                return self._scan_rejected(ReasonCode.SESSION_CLOSED, MSG_SESSION_CLOSED, session_id, barcode)

            inventory_item = await self.inventory.get_item_by_barcode(barcode)
            if not inventory_item:
                return self._scan_rejected(ReasonCode.BARCODE_NOT_FOUND, MSG_BARCODE_NOT_FOUND, session_id, barcode)

            location = storage_location or session.storage_location
            count_item = await self._match_count_item(
                session.physical_stock_count_id, inventory_item.id, location
            )
            if not count_item:
                return self._scan_rejected(ReasonCode.ITEM_NOT_IN_COUNT, MSG_ITEM_NOT_IN_COUNT, session_id, barcode)

            if not await self._increment_scans(session.id):
                return self._scan_rejected(ReasonCode.SESSION_CLOSED, MSG_SESSION_CLOSED, session_id, barcode)

            scanned = ScannedItem(
                scanning_session_id=session.id,
                physical_stock_count_item_id=count_item.id,
                inventory_item_id=inventory_item.id,
                barcode=barcode.strip(),
                supplier_code=inventory_item.supplier_code,
                quantity_scanned=quantity,
                storage_location=location or count_item.storage_location,
                scanned_by=actor.id,
                scanned_at=utcnow(),
                verified=False,
            )
            self.db.add(scanned)
            await self.db.flush()
            await self.db.refresh(scanned)
            payload = ScannedItemResponse.model_validate(scanned)

            await self.audit.log(
                action="SCAN",
                entity_type=ENTITY_SCANNED_ITEM,
                entity_id=scanned.id,
                actor=actor,
                new_values=payload.audit_payload(),
            )

        logger.info(
            "Scanned %s x%d in session %s by %s",
            scanned.supplier_code, quantity, session_id, actor,
        )
        return ScanResult(success=True, message="Item scanned successfully", scanned_item=payload)

    @staticmethod
    def _scan_rejected(reason: ReasonCode, message: str, session_id: UUID, barcode: str) -> ScanResult:
        logger.warning("Scan rejected (%s) in session %s: barcode=%s", reason.value, session_id, barcode)
        return ScanResult(success=False, message=message, reason=reason.value)

    async def list_scanned_items(self, session_id: UUID) -> List[ScannedItem]:
        """Scans of a session, newest first."""
        await self._get_session_or_404(session_id)
        result = await self.db.execute(
            select(ScannedItem)
            .where(ScannedItem.scanning_session_id == session_id)
            .order_by(ScannedItem.scanned_at.desc(), ScannedItem.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_scanned_item(self, scanned_item_id: UUID) -> Optional[ScannedItem]:
        result = await self.db.execute(
            select(ScannedItem).where(ScannedItem.id == scanned_item_id)
        )
        return result.scalar_one_or_none()

    async def add_scanned_item(
        self,
        session_id: UUID,
        data: ScannedItemCreate,
        actor: Actor,
    ) -> ScannedItem:
        """Record a scan by count line instead of barcode (unreadable label)."""
        async with atomic(self.db, "add scanned item"):
            session = await self._get_session_or_404(session_id)
            if not session.is_active:
                raise violation(
                    ReasonCode.SESSION_CLOSED,
                    MSG_SESSION_CLOSED,
                    session_id=str(session.id),
                )

            count_item = await self.counts.get_item(data.physical_stock_count_item_id)
            if not count_item:
                raise NotFound("Physical stock count item", data.physical_stock_count_item_id)
            if count_item.physical_stock_count_id != session.physical_stock_count_id:
                raise violation(
                    ReasonCode.ITEM_NOT_IN_COUNT,
                    MSG_ITEM_NOT_IN_COUNT,
                    session_id=str(session.id),
                    item_id=str(count_item.id),
                )

            if not await self._increment_scans(session.id):
                raise violation(
                    ReasonCode.SESSION_CLOSED,
                    MSG_SESSION_CLOSED,
                    session_id=str(session.id),
                )

            scanned = ScannedItem(
                scanning_session_id=session.id,
                physical_stock_count_item_id=count_item.id,
                inventory_item_id=count_item.inventory_item_id,
                barcode=count_item.barcode or count_item.supplier_code,
                supplier_code=count_item.supplier_code,
                quantity_scanned=data.quantity_scanned,
                storage_location=data.storage_location or count_item.storage_location,
                scanned_by=actor.id,
                scanned_at=utcnow(),
                verified=False,
                notes=data.notes,
            )
            self.db.add(scanned)
            await self.db.flush()
            await self.db.refresh(scanned)

            await self.audit.log(
                action="CREATE",
                entity_type=ENTITY_SCANNED_ITEM,
                entity_id=scanned.id,
                actor=actor,
                new_values=ScannedItemResponse.model_validate(scanned).audit_payload(),
                description=f"Manual scan of {count_item.supplier_code}",
            )

        return scanned

    async def verify_scanned_item(self, scanned_item_id: UUID, actor: Actor) -> ScannedItem:
        """Mark a scan as verified. Verifying twice keeps the first verifier."""
        async with atomic(self.db, "verify scanned item"):
            scanned = await self.get_scanned_item(scanned_item_id)
            if not scanned:
                raise NotFound("Scanned item", scanned_item_id)
            if scanned.verified:
                return scanned

            scanned.verified = True
            scanned.verified_by = actor.id
            scanned.verified_at = utcnow()
            await self.db.flush()

            await self.audit.log(
                action="VERIFY",
                entity_type=ENTITY_SCANNED_ITEM,
                entity_id=scanned.id,
                actor=actor,
                new_values={"verified": True, "verified_by": actor.id},
            )

        return scanned
