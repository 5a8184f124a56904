"""Inventory models: item master, stock levels per location, and the movement ledger."""
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Column, String, Text, Boolean, ForeignKey, Integer, DateTime, Numeric
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import relationship
import uuid

from app.database import Base
from app.db_types import UUIDType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InventoryItem(Base):
    """Item master record (maintained by the inventory module, read-only here)."""

    __tablename__ = "inventory_items"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    supplier_code = Column(String(255), unique=True, nullable=False, index=True)
    barcode = Column(String(255), index=True)
    description = Column(Text, nullable=False)
    category = Column(String(255))
    unit_of_measure = Column(String(100), default="EACH")

    # Valuation used for variance value
    unit_cost = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    levels = relationship("InventoryLevel", back_populates="item", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<InventoryItem {self.supplier_code}>"


class InventoryLevel(Base):
    """Current stock level of one item at one storage location."""

    __tablename__ = "inventory_levels"
    __table_args__ = (
        UniqueConstraint("inventory_item_id", "storage_location", name="uq_inventory_level_location"),
    )

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    inventory_item_id = Column(
        UUIDType, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    storage_location = Column(String(255), nullable=False, index=True)

    # Stock levels
    quantity_available = Column(Integer, nullable=False, default=0)
    quantity_reserved = Column(Integer, nullable=False, default=0)

    # Thresholds
    reorder_level = Column(Integer, default=0)
    max_stock_level = Column(Integer, default=0)

    last_updated = Column(DateTime(timezone=True), default=utcnow)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    item = relationship("InventoryItem", back_populates="levels")

    @property
    def is_out_of_stock(self) -> bool:
        """Check if out of stock."""
        return (self.quantity_available or 0) <= 0

    def __repr__(self):
        return f"<InventoryLevel {self.inventory_item_id}@{self.storage_location}>"


class StockMovementType(str, Enum):
    """Stock movement type enum."""
    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    ADJUSTMENT_IN = "ADJUSTMENT_IN"
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"


class StockMovementReference(str, Enum):
    """Document types a stock movement can point back to."""
    PHYSICAL_STOCK_ADJUSTMENT = "PHYSICAL_STOCK_ADJUSTMENT"


class StockMovement(Base):
    """Stock movement history/ledger. Append-only."""

    __tablename__ = "stock_movements"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)

    # Reference
    movement_number = Column(String(50), unique=True, nullable=False, index=True)
    movement_type = Column(
        String(50), nullable=False, index=True,
        comment="RECEIPT, ISSUE, TRANSFER_IN, TRANSFER_OUT, ADJUSTMENT_IN, ADJUSTMENT_OUT"
    )
    movement_date = Column(DateTime(timezone=True), default=utcnow)

    item_id = Column(UUIDType, ForeignKey("inventory_items.id"), nullable=False, index=True)
    storage_location = Column(String(255))

    # Quantities: quantity_moved is always a magnitude, the type carries the sign
    quantity_before = Column(Integer, nullable=False)
    quantity_moved = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)

    # Related documents
    reference_type = Column(String(50), index=True)
    reference_id = Column(UUIDType, index=True)
    reference_number = Column(String(100))

    # Cost
    unit_cost = Column(Numeric(12, 2), default=Decimal("0.00"))
    total_value = Column(Numeric(12, 2), default=Decimal("0.00"))

    notes = Column(Text)
    created_by = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    item = relationship("InventoryItem")

    @property
    def signed_quantity(self) -> int:
        """Quantity moved with the sign implied by the movement type."""
        if self.movement_type in (
            StockMovementType.ADJUSTMENT_OUT.value,
            StockMovementType.ISSUE.value,
            StockMovementType.TRANSFER_OUT.value,
        ):
            return -self.quantity_moved
        return self.quantity_moved

    def __repr__(self):
        return f"<StockMovement {self.movement_number}>"
