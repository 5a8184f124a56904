"""Physical stock adjustment schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel

from app.schemas.base import BaseResponseSchema

class AdjustmentItemResponse(BaseResponseSchema):
    id: UUID
    adjustment_id: UUID
    physical_stock_count_item_id: UUID
    inventory_item_id: UUID
    supplier_code: str
    description: str
    storage_location: Optional[str] = None
    system_quantity: int
    physical_quantity: int
    adjustment_quantity: int
    unit_cost: Decimal
    adjustment_value: Decimal
    reason: Optional[str] = None

class AdjustmentResponse(BaseResponseSchema):
    """Adjustment header with its lines."""
    id: UUID
    adjustment_number: str
    physical_stock_count_id: UUID
    adjustment_date: Optional[datetime] = None
    status: str
    total_adjustment_value: Decimal
    created_by: Optional[str] = None
    applied_by: Optional[str] = None
    applied_at: Optional[datetime] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[AdjustmentItemResponse] = []


class ApplyResult(BaseModel):
    success: bool
    adjustment_id: UUID
    lines_applied: int
