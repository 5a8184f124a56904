"""
Physical Stock Adjustment API Endpoints.

Generate a DRAFT adjustment from a finalized count and apply it to
inventory levels.
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from app.api.deps import DB, CurrentActor
from app.core.exceptions import BusinessRuleViolation, ReasonCode
from app.models.stock_adjustment import AdjustmentStatus
from app.schemas.stock_adjustment import AdjustmentResponse, ApplyResult
from app.services.stock_adjustment_service import StockAdjustmentService

router = APIRouter()


@router.post(
    "/counts/{count_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate Adjustment"
)
async def generate_adjustment(count_id: UUID, db: DB, actor: CurrentActor):
    """Create a DRAFT adjustment for every line of the count that needs one."""
    service = StockAdjustmentService(db)
    adjustment = await service.generate_from_count(count_id, actor)
    if adjustment is None:
        raise BusinessRuleViolation(
            ReasonCode.NOTHING_TO_ADJUST,
            "No items require adjustment",
            {"count_id": str(count_id)},
        )
    return adjustment


@router.get(
    "/counts/{count_id}/adjustments",
    response_model=List[AdjustmentResponse],
    summary="List Adjustments"
)
async def list_adjustments(
    count_id: UUID,
    db: DB,
    status: Optional[AdjustmentStatus] = None,
):
    service = StockAdjustmentService(db)
    adjustments, _ = await service.list_adjustments(count_id, status=status)
    return adjustments


@router.get(
    "/adjustments/{adjustment_id}",
    response_model=AdjustmentResponse,
    summary="Get Adjustment"
)
async def get_adjustment(adjustment_id: UUID, db: DB):
    service = StockAdjustmentService(db)
    adjustment = await service.get_adjustment(adjustment_id)
    if not adjustment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Physical stock adjustment not found"
        )
    return adjustment


@router.post(
    "/adjustments/{adjustment_id}/apply",
    response_model=ApplyResult,
    summary="Apply Adjustment"
)
async def apply_adjustment(adjustment_id: UUID, db: DB, actor: CurrentActor):
    """Apply a DRAFT adjustment to inventory levels. Succeeds at most once."""
    service = StockAdjustmentService(db)
    return await service.apply(adjustment_id, actor)
