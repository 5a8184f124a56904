"""
Physical Stock Count Models.

Models for wall-to-wall and cycle physical inventory counts:
- Count header with lifecycle (PENDING → IN_PROGRESS → COMPLETED, or CANCELLED)
- Count line items snapshotting book quantities at population time
- Barcode scanning sessions and the append-only scan log
- Free-standing shelf count records
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Integer, DateTime, ForeignKey, Index, Text, Boolean,
    Numeric, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class CountStatus(str, Enum):
    """Lifecycle of a physical stock count."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_open(self) -> bool:
        return self in (CountStatus.PENDING, CountStatus.IN_PROGRESS)

    def can_transition_to(self, target: "CountStatus") -> bool:
        return target in COUNT_TRANSITIONS[self]


class CountType(str, Enum):
    """Type of physical count."""
    FULL_COUNT = "FULL_COUNT"      # Wall-to-wall count
    CYCLE_COUNT = "CYCLE_COUNT"    # Rotating subset
    SPOT_CHECK = "SPOT_CHECK"      # Random verification


class CountItemStatus(str, Enum):
    """
    Per-line reconciliation state.

    PENDING → COUNTED (first pass) → [COUNTED (second pass)] → VERIFIED | DISCREPANCY
    """
    PENDING = "PENDING"
    COUNTED = "COUNTED"
    VERIFIED = "VERIFIED"
    DISCREPANCY = "DISCREPANCY"

    @property
    def is_final(self) -> bool:
        return self in (CountItemStatus.VERIFIED, CountItemStatus.DISCREPANCY)

    def can_transition_to(self, target: "CountItemStatus") -> bool:
        return target in ITEM_TRANSITIONS[self]

    @classmethod
    def sources_of(cls, target: "CountItemStatus") -> List["CountItemStatus"]:
        """Statuses a line may be in for a move to target to be allowed."""
        return [status for status in cls if status.can_transition_to(target)]


class CountPass(str, Enum):
    """Which counting pass a quantity belongs to."""
    FIRST = "FIRST"
    SECOND = "SECOND"


class ScanningSessionStatus(str, Enum):
    """Status of a scanning session."""
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class ScanningSessionType(str, Enum):
    """Purpose of a scanning session."""
    FIRST_COUNT = "FIRST_COUNT"
    SECOND_COUNT = "SECOND_COUNT"
    RECOUNT = "RECOUNT"


COUNT_TRANSITIONS = {
    CountStatus.PENDING: {CountStatus.IN_PROGRESS, CountStatus.COMPLETED, CountStatus.CANCELLED},
    CountStatus.IN_PROGRESS: {CountStatus.COMPLETED, CountStatus.CANCELLED},
    CountStatus.COMPLETED: set(),
    CountStatus.CANCELLED: set(),
}

ITEM_TRANSITIONS = {
    CountItemStatus.PENDING: {
        CountItemStatus.COUNTED, CountItemStatus.VERIFIED, CountItemStatus.DISCREPANCY
    },
    CountItemStatus.COUNTED: {
        CountItemStatus.COUNTED, CountItemStatus.VERIFIED, CountItemStatus.DISCREPANCY
    },
    CountItemStatus.VERIFIED: set(),
    CountItemStatus.DISCREPANCY: set(),
}


# ============================================================================
# MODELS
# ============================================================================

class PhysicalStockCount(Base):
    """
    One physical inventory count event.

    storage_location scopes the count to a single location; NULL means all
    locations. total_items_expected is written by population only.
    """
    __tablename__ = "physical_stock_counts"
    __table_args__ = (
        Index("idx_psc_status", "status"),
        Index("idx_psc_count_date", "count_date"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType, primary_key=True, default=uuid4)
    count_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    count_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    storage_location: Mapped[Optional[str]] = mapped_column(String(255))
    count_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=CountType.FULL_COUNT.value
    )
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=CountStatus.PENDING.value
    )
    scheduled_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Lifecycle
    started_by: Mapped[Optional[str]] = mapped_column(String(100))
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[Optional[str]] = mapped_column(String(100))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    approved_by: Mapped[Optional[str]] = mapped_column(String(100))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Statistics
    total_items_expected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_items_counted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_discrepancies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Audit
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    items: Mapped[List["PhysicalStockCountItem"]] = relationship(
        back_populates="count",
        cascade="all, delete-orphan",
        order_by="PhysicalStockCountItem.line_number",
    )
    scanning_sessions: Mapped[List["ScanningSession"]] = relationship(
        back_populates="count",
        cascade="all, delete-orphan",
    )

    @property
    def status_enum(self) -> CountStatus:
        return CountStatus(self.status)

    def __repr__(self) -> str:
        return f"<PhysicalStockCount {self.count_number} {self.status}>"


class PhysicalStockCountItem(Base):
    """
    One inventory item's expected vs. counted quantity within a count.

    system_quantity, reserved_quantity, available_quantity and unit_cost are
    a snapshot taken at population time and never change afterwards.
    """
    __tablename__ = "physical_stock_count_items"
    __table_args__ = (
        UniqueConstraint("physical_stock_count_id", "line_number", name="uq_psci_line_number"),
        Index("idx_psci_count_item", "physical_stock_count_id", "inventory_item_id"),
        Index("idx_psci_adjustment", "physical_stock_count_id", "adjustment_required", "adjustment_applied"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType, primary_key=True, default=uuid4)
    physical_stock_count_id: Mapped[UUID] = mapped_column(
        UUIDType, ForeignKey("physical_stock_counts.id", ondelete="CASCADE"), nullable=False
    )
    inventory_item_id: Mapped[UUID] = mapped_column(
        UUIDType, ForeignKey("inventory_items.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    supplier_code: Mapped[str] = mapped_column(String(255), nullable=False)
    barcode: Mapped[Optional[str]] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, nullable=False)
    storage_location: Mapped[Optional[str]] = mapped_column(String(255))

    # Book quantities (snapshot)
    system_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )

    # Physical count passes
    count_pass: Mapped[Optional[str]] = mapped_column(String(20))  # Latest recorded pass
    first_count_quantity: Mapped[Optional[int]] = mapped_column(Integer)
    first_count_by: Mapped[Optional[str]] = mapped_column(String(100))
    first_count_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    second_count_quantity: Mapped[Optional[int]] = mapped_column(Integer)
    second_count_by: Mapped[Optional[str]] = mapped_column(String(100))
    second_count_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    final_count_quantity: Mapped[Optional[int]] = mapped_column(Integer)

    # Discrepancy tracking
    variance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # final - system
    variance_value: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=CountItemStatus.PENDING.value
    )
    requires_recount: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    discrepancy_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Adjustment tracking; adjustment_applied only ever goes False → True
    adjustment_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    adjustment_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    adjustment_applied_by: Mapped[Optional[str]] = mapped_column(String(100))
    adjustment_applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    count: Mapped["PhysicalStockCount"] = relationship(back_populates="items")

    @property
    def status_enum(self) -> CountItemStatus:
        return CountItemStatus(self.status)

    @property
    def has_been_counted(self) -> bool:
        return self.first_count_quantity is not None or self.second_count_quantity is not None

    def resolve_final_quantity(self) -> int:
        """Second pass wins over the first; an uncounted line counts as zero."""
        if self.second_count_quantity is not None:
            return self.second_count_quantity
        if self.first_count_quantity is not None:
            return self.first_count_quantity
        return 0

    def __repr__(self) -> str:
        return f"<PhysicalStockCountItem #{self.line_number} {self.supplier_code}>"


class ScanningSession(Base):
    """
    A bounded period of barcode scanning by one operator against one count.
    Several sessions may be active on the same count at once.
    """
    __tablename__ = "physical_stock_scanning_sessions"
    __table_args__ = (
        Index("idx_pss_count_status", "physical_stock_count_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType, primary_key=True, default=uuid4)
    physical_stock_count_id: Mapped[UUID] = mapped_column(
        UUIDType, ForeignKey("physical_stock_counts.id", ondelete="CASCADE"), nullable=False
    )

    session_name: Mapped[str] = mapped_column(String(255), nullable=False)
    session_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ScanningSessionType.FIRST_COUNT.value
    )
    storage_location: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ScanningSessionStatus.ACTIVE.value
    )

    started_by: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    total_scans_expected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_scans_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    count: Mapped["PhysicalStockCount"] = relationship(back_populates="scanning_sessions")
    scanned_items: Mapped[List["ScannedItem"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
    )

    @property
    def is_active(self) -> bool:
        return self.status == ScanningSessionStatus.ACTIVE.value


class ScannedItem(Base):
    """
    An individual scan event. Append-only; only the verification flag may
    change after insert.
    """
    __tablename__ = "physical_stock_scanned_items"
    __table_args__ = (
        Index("idx_psi_session_scanned_at", "scanning_session_id", "scanned_at"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType, primary_key=True, default=uuid4)
    scanning_session_id: Mapped[UUID] = mapped_column(
        UUIDType, ForeignKey("physical_stock_scanning_sessions.id", ondelete="CASCADE"), nullable=False
    )
    physical_stock_count_item_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType, ForeignKey("physical_stock_count_items.id", ondelete="CASCADE")
    )
    inventory_item_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType, ForeignKey("inventory_items.id")
    )

    barcode: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier_code: Mapped[Optional[str]] = mapped_column(String(255))
    quantity_scanned: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    storage_location: Mapped[Optional[str]] = mapped_column(String(255))

    scanned_by: Mapped[str] = mapped_column(String(100), nullable=False)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_by: Mapped[Optional[str]] = mapped_column(String(100))
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    # Relationships
    session: Mapped["ScanningSession"] = relationship(back_populates="scanned_items")


class PhysicalStockRecord(Base):
    """
    Free-standing shelf count: what an operator saw for one item at one
    location, outside any count event. Informational only; it never feeds
    reconciliation or inventory levels.
    """
    __tablename__ = "physical_stock_records"
    __table_args__ = (
        Index("idx_psr_item_location", "inventory_item_id", "location"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType, primary_key=True, default=uuid4)
    inventory_item_id: Mapped[UUID] = mapped_column(
        UUIDType, ForeignKey("inventory_items.id"), nullable=False
    )
    location: Mapped[str] = mapped_column(String(128), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    counted_by: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<PhysicalStockRecord {self.inventory_item_id}@{self.location} {self.quantity}>"
