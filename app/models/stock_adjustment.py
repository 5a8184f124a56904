"""Physical stock adjustment models: batch inventory corrections derived from a count."""
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Column, String, Text, ForeignKey, Integer, DateTime, Numeric
from sqlalchemy.orm import relationship
import uuid

from app.database import Base
from app.db_types import UUIDType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdjustmentStatus(str, Enum):
    """Adjustment status enum."""
    DRAFT = "DRAFT"
    APPLIED = "APPLIED"


class PhysicalStockAdjustment(Base):
    """Adjustment header. Applied at most once (DRAFT → APPLIED)."""

    __tablename__ = "physical_stock_adjustments"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    # Identification
    adjustment_number = Column(String(50), unique=True, nullable=False, index=True)
    physical_stock_count_id = Column(
        UUIDType, ForeignKey("physical_stock_counts.id"), nullable=False, index=True
    )
    adjustment_date = Column(DateTime(timezone=True), default=utcnow)

    status = Column(
        String(50),
        nullable=False,
        default=AdjustmentStatus.DRAFT.value,
        index=True,
        comment="DRAFT, APPLIED"
    )

    # Totals (can be negative)
    total_adjustment_value = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    # Users
    created_by = Column(String(100))
    applied_by = Column(String(100))
    applied_at = Column(DateTime(timezone=True))

    reason = Column(Text)
    notes = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    items = relationship(
        "PhysicalStockAdjustmentItem",
        back_populates="adjustment",
        cascade="all, delete-orphan",
        order_by="PhysicalStockAdjustmentItem.supplier_code",
    )

    def __repr__(self):
        return f"<PhysicalStockAdjustment {self.adjustment_number}>"


class PhysicalStockAdjustmentItem(Base):
    """One corrected line; references (does not own) its count item.

    A count item appears on at most one adjustment line.
    """

    __tablename__ = "physical_stock_adjustment_items"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    adjustment_id = Column(
        UUIDType, ForeignKey("physical_stock_adjustments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    physical_stock_count_item_id = Column(
        UUIDType, ForeignKey("physical_stock_count_items.id"), nullable=False, index=True, unique=True
    )
    inventory_item_id = Column(UUIDType, ForeignKey("inventory_items.id"), nullable=False)

    supplier_code = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    storage_location = Column(String(255))

    # Quantities
    system_quantity = Column(Integer, nullable=False, default=0)  # What system showed at snapshot
    physical_quantity = Column(Integer, nullable=False, default=0)  # What was counted
    adjustment_quantity = Column(Integer, nullable=False, default=0)  # Variance (can be negative)

    # Cost impact
    unit_cost = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    adjustment_value = Column(Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    reason = Column(Text)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    adjustment = relationship("PhysicalStockAdjustment", back_populates="items")

    def __repr__(self):
        return f"<PhysicalStockAdjustmentItem {self.id}>"
