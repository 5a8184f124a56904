"""
Physical Stock Count Schemas.

Pydantic schemas for counts, count items, scanning sessions, scans and the
read-only summary/report views.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enum_utils import create_uppercase_validator, enum_values
from app.models.physical_stock import (
    CountStatus, CountType, CountPass, ScanningSessionStatus, ScanningSessionType
)
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


# ============================================================================
# PHYSICAL STOCK COUNT SCHEMAS
# ============================================================================

class PhysicalStockCountCreate(BaseCreateSchema):
    """Schema for creating a physical stock count."""
    description: Optional[str] = None
    count_date: Optional[datetime] = None
    storage_location: Optional[str] = Field(None, max_length=255)
    count_type: CountType = CountType.FULL_COUNT
    scheduled_date: Optional[datetime] = None
    notes: Optional[str] = None

    normalize_count_type = create_uppercase_validator('count_type', set(enum_values(CountType)))


class PhysicalStockCountUpdate(BaseUpdateSchema):
    """Partial update; totals and lifecycle stamps are not client-writable."""
    description: Optional[str] = None
    count_date: Optional[datetime] = None
    storage_location: Optional[str] = Field(None, max_length=255)
    count_type: Optional[CountType] = None
    scheduled_date: Optional[datetime] = None
    status: Optional[CountStatus] = None
    notes: Optional[str] = None

    normalize_count_type = create_uppercase_validator('count_type', set(enum_values(CountType)))
    normalize_status = create_uppercase_validator('status', set(enum_values(CountStatus)))


class PhysicalStockCountResponse(BaseResponseSchema):
    """Schema for physical stock count response."""
    id: UUID
    count_number: str
    description: Optional[str] = None
    count_date: Optional[datetime] = None
    storage_location: Optional[str] = None
    count_type: str
    status: str
    scheduled_date: Optional[datetime] = None

    started_by: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None

    total_items_expected: int = 0
    total_items_counted: int = 0
    total_discrepancies: int = 0

    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# COUNT ITEM SCHEMAS
# ============================================================================

class CountItemCreate(BaseCreateSchema):
    """
    Manual line item. Book quantities default to the current inventory level
    at the given location when omitted.
    """
    inventory_item_id: UUID
    storage_location: Optional[str] = Field(None, max_length=255)
    system_quantity: Optional[int] = Field(None, ge=0)
    reserved_quantity: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class CountItemUpdate(BaseUpdateSchema):
    """Annotations only; snapshot and count quantities have dedicated operations."""
    discrepancy_reason: Optional[str] = None
    requires_recount: Optional[bool] = None
    notes: Optional[str] = None


class RecordCountRequest(BaseCreateSchema):
    """One counting pass for a line item."""
    count_pass: CountPass = Field(CountPass.FIRST, alias="pass")
    quantity: int = Field(..., ge=0)

    normalize_pass = create_uppercase_validator('count_pass', set(enum_values(CountPass)))


class CountItemResponse(BaseResponseSchema):
    """Schema for count item response."""
    id: UUID
    physical_stock_count_id: UUID
    inventory_item_id: UUID
    line_number: int
    supplier_code: str
    barcode: Optional[str] = None
    description: str
    storage_location: Optional[str] = None

    system_quantity: int
    reserved_quantity: int
    available_quantity: int
    unit_cost: Decimal

    count_pass: Optional[str] = None
    first_count_quantity: Optional[int] = None
    first_count_by: Optional[str] = None
    first_count_at: Optional[datetime] = None
    second_count_quantity: Optional[int] = None
    second_count_by: Optional[str] = None
    second_count_at: Optional[datetime] = None
    final_count_quantity: Optional[int] = None

    variance: int
    variance_value: Decimal
    status: str
    requires_recount: bool
    discrepancy_reason: Optional[str] = None

    adjustment_required: bool
    adjustment_applied: bool
    adjustment_applied_by: Optional[str] = None
    adjustment_applied_at: Optional[datetime] = None

    notes: Optional[str] = None


class PopulateRequest(BaseCreateSchema):
    """Optional storage location filter for population."""
    storage_location: Optional[str] = Field(None, max_length=255)


class PopulateResponse(BaseModel):
    items_added: int


# ============================================================================
# SCANNING SESSION SCHEMAS
# ============================================================================

class ScanningSessionCreate(BaseCreateSchema):
    """Schema for opening a scanning session."""
    session_name: Optional[str] = Field(None, max_length=255)
    session_type: ScanningSessionType = ScanningSessionType.FIRST_COUNT
    storage_location: Optional[str] = Field(None, max_length=255)
    total_scans_expected: int = Field(default=0, ge=0)
    notes: Optional[str] = None

    normalize_type = create_uppercase_validator('session_type', set(enum_values(ScanningSessionType)))


class ScanningSessionUpdate(BaseUpdateSchema):
    """Setting status to COMPLETED closes the session."""
    session_name: Optional[str] = Field(None, max_length=255)
    storage_location: Optional[str] = Field(None, max_length=255)
    total_scans_expected: Optional[int] = Field(None, ge=0)
    status: Optional[ScanningSessionStatus] = None
    notes: Optional[str] = None

    normalize_status = create_uppercase_validator('status', set(enum_values(ScanningSessionStatus)))


class ScanningSessionResponse(BaseResponseSchema):
    id: UUID
    physical_stock_count_id: UUID
    session_name: str
    session_type: str
    storage_location: Optional[str] = None
    status: str
    started_by: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_scans_expected: int
    total_scans_completed: int
    notes: Optional[str] = None


class ScanRequest(BaseCreateSchema):
    barcode: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(default=1, ge=1)
    storage_location: Optional[str] = Field(None, max_length=255)


class ScannedItemCreate(BaseCreateSchema):
    """Manually recorded scan for a line whose label cannot be read."""
    physical_stock_count_item_id: UUID
    quantity_scanned: int = Field(default=1, ge=1)
    storage_location: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None


class ScannedItemResponse(BaseResponseSchema):
    id: UUID
    scanning_session_id: UUID
    physical_stock_count_item_id: Optional[UUID] = None
    inventory_item_id: Optional[UUID] = None
    barcode: str
    supplier_code: Optional[str] = None
    quantity_scanned: int
    storage_location: Optional[str] = None
    scanned_by: str
    scanned_at: Optional[datetime] = None
    verified: bool
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    notes: Optional[str] = None


class ScanResult(BaseModel):
    """Outcome of a barcode scan; failures carry a stable reason code."""
    success: bool
    message: str
    reason: Optional[str] = None
    scanned_item: Optional[ScannedItemResponse] = None


# ============================================================================
# RECONCILIATION / REPORTING SCHEMAS
# ============================================================================

class FinalizeResult(BaseModel):
    count_id: UUID
    status: str
    total_items: int
    total_items_counted: int
    total_discrepancies: int
    total_variance_value: Decimal


class CountSummary(BaseModel):
    """Aggregate line-item state for a count."""
    total_items: int = 0
    pending_items: int = 0
    counted_items: int = 0
    verified_items: int = 0
    discrepancy_items: int = 0
    adjusted_items: int = 0
    total_variance_value: Decimal = Decimal("0.00")


class VarianceReportLine(BaseModel):
    count_item_id: UUID
    line_number: int
    supplier_code: str
    description: str
    storage_location: Optional[str] = None
    system_quantity: int
    physical_quantity: Optional[int] = None
    variance: int
    variance_value: Decimal
    status: str
    discrepancy_reason: Optional[str] = None


class VarianceReport(BaseModel):
    count_id: UUID
    total_items: int = 0
    variance_items: int = 0
    total_variance_value: Decimal = Decimal("0.00")
    items: List[VarianceReportLine] = []


class CountDetails(BaseModel):
    count_number: str
    status: str
    count_type: str
    storage_location: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CountStatistics(CountSummary):
    count_details: CountDetails
    progress_percentage: int = 0
    accuracy_percentage: int = 0


# ============================================================================
# PHYSICAL STOCK RECORD SCHEMAS
# ============================================================================

class PhysicalStockRecordCreate(BaseCreateSchema):
    """Shelf count entry. counted_by defaults to the acting operator."""
    inventory_item_id: UUID
    location: str = Field(..., min_length=1, max_length=128)
    quantity: int = Field(..., ge=0)
    last_updated: Optional[datetime] = None
    counted_by: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PhysicalStockRecordUpdate(BaseUpdateSchema):
    location: Optional[str] = Field(None, min_length=1, max_length=128)
    quantity: Optional[int] = Field(None, ge=0)
    last_updated: Optional[datetime] = None
    counted_by: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PhysicalStockRecordResponse(BaseResponseSchema):
    id: UUID
    inventory_item_id: UUID
    location: str
    quantity: int
    last_updated: Optional[datetime] = None
    counted_by: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
