"""
Physical Stock Count API Endpoints.

API endpoints for physical inventory counts including:
- Count lifecycle (create, start, cancel, update, delete)
- Line items, population and two-pass count recording
- Finalization and the summary / variance / statistics views
"""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from app.api.deps import DB, CurrentActor
from app.schemas.base import DeleteResponse
from app.models.physical_stock import CountStatus, CountItemStatus
from app.schemas.physical_stock import (
    PhysicalStockCountCreate, PhysicalStockCountUpdate, PhysicalStockCountResponse,
    CountItemCreate, CountItemUpdate, CountItemResponse, RecordCountRequest,
    PopulateRequest, PopulateResponse,
    FinalizeResult, CountSummary, VarianceReport, CountStatistics,
)
from app.services.physical_stock_service import PhysicalStockService

router = APIRouter()


# ============================================================================
# COUNTS
# ============================================================================

@router.post(
    "/counts",
    response_model=PhysicalStockCountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Physical Stock Count"
)
async def create_count(
    data: PhysicalStockCountCreate,
    db: DB,
    actor: CurrentActor,
):
    """Create a new physical stock count in PENDING status."""
    service = PhysicalStockService(db)
    return await service.create_count(data, actor)


@router.get(
    "/counts",
    response_model=List[PhysicalStockCountResponse],
    summary="List Physical Stock Counts"
)
async def list_counts(
    db: DB,
    status: Optional[CountStatus] = None,
    storage_location: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """List physical stock counts, newest first."""
    service = PhysicalStockService(db)
    counts, _ = await service.list_counts(
        status=status,
        storage_location=storage_location,
        skip=skip,
        limit=limit,
    )
    return counts


@router.get(
    "/counts/number/{count_number}",
    response_model=PhysicalStockCountResponse,
    summary="Get Physical Stock Count by Number"
)
async def get_count_by_number(count_number: str, db: DB):
    service = PhysicalStockService(db)
    count = await service.get_count_by_number(count_number)
    if not count:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Physical stock count not found"
        )
    return count


@router.get(
    "/counts/{count_id}",
    response_model=PhysicalStockCountResponse,
    summary="Get Physical Stock Count"
)
async def get_count(count_id: UUID, db: DB):
    """Get physical stock count details."""
    service = PhysicalStockService(db)
    count = await service.get_count(count_id)
    if not count:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Physical stock count not found"
        )
    return count


@router.put(
    "/counts/{count_id}",
    response_model=PhysicalStockCountResponse,
    summary="Update Physical Stock Count"
)
async def update_count(
    count_id: UUID,
    data: PhysicalStockCountUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Update a count; status changes follow the count lifecycle."""
    service = PhysicalStockService(db)
    return await service.update_count(count_id, data, actor)


@router.delete(
    "/counts/{count_id}",
    response_model=DeleteResponse,
    summary="Delete Physical Stock Count"
)
async def delete_count(count_id: UUID, db: DB, actor: CurrentActor):
    """Delete a count and everything it owns."""
    service = PhysicalStockService(db)
    await service.delete_count(count_id, actor)
    return DeleteResponse(success=True, message="Physical stock count deleted successfully")


@router.post(
    "/counts/{count_id}/start",
    response_model=PhysicalStockCountResponse,
    summary="Start Physical Stock Count"
)
async def start_count(count_id: UUID, db: DB, actor: CurrentActor):
    service = PhysicalStockService(db)
    return await service.start_count(count_id, actor)


@router.post(
    "/counts/{count_id}/cancel",
    response_model=PhysicalStockCountResponse,
    summary="Cancel Physical Stock Count"
)
async def cancel_count(count_id: UUID, db: DB, actor: CurrentActor):
    service = PhysicalStockService(db)
    return await service.cancel_count(count_id, actor)


# ============================================================================
# COUNT ITEMS
# ============================================================================

@router.get(
    "/counts/{count_id}/items",
    response_model=List[CountItemResponse],
    summary="List Count Items"
)
async def list_items(
    count_id: UUID,
    db: DB,
    status: Optional[CountItemStatus] = None,
):
    """Line items of a count ordered by line number."""
    service = PhysicalStockService(db)
    return await service.list_items(count_id, status=status)


@router.post(
    "/counts/{count_id}/items",
    response_model=CountItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add Count Item"
)
async def add_item(
    count_id: UUID,
    data: CountItemCreate,
    db: DB,
    actor: CurrentActor,
):
    """Add a manual line item to an open count."""
    service = PhysicalStockService(db)
    return await service.add_item(count_id, data, actor)


@router.put(
    "/count-items/{item_id}",
    response_model=CountItemResponse,
    summary="Update Count Item"
)
async def update_item(
    item_id: UUID,
    data: CountItemUpdate,
    db: DB,
    actor: CurrentActor,
):
    service = PhysicalStockService(db)
    return await service.update_item(item_id, data, actor)


@router.post(
    "/count-items/{item_id}/counts",
    response_model=CountItemResponse,
    summary="Record Counted Quantity"
)
async def record_count(
    item_id: UUID,
    data: RecordCountRequest,
    db: DB,
    actor: CurrentActor,
):
    """Record the FIRST or SECOND counted quantity of a line."""
    service = PhysicalStockService(db)
    return await service.record_count(item_id, data.count_pass, data.quantity, actor)


@router.post(
    "/counts/{count_id}/populate",
    response_model=PopulateResponse,
    summary="Populate Count Items"
)
async def populate_items(
    count_id: UUID,
    db: DB,
    actor: CurrentActor,
    data: Optional[PopulateRequest] = None,
):
    """Snapshot book quantities of active inventory into the count."""
    service = PhysicalStockService(db)
    items_added = await service.populate(
        count_id,
        actor,
        storage_location=data.storage_location if data else None,
    )
    return PopulateResponse(items_added=items_added)


# ============================================================================
# RECONCILIATION & REPORTS
# ============================================================================

@router.post(
    "/counts/{count_id}/finalize",
    response_model=FinalizeResult,
    summary="Finalize Physical Stock Count"
)
async def finalize_count(count_id: UUID, db: DB, actor: CurrentActor):
    """Complete the count and compute variances for every line."""
    service = PhysicalStockService(db)
    return await service.finalize(count_id, actor)


@router.get(
    "/counts/{count_id}/summary",
    response_model=CountSummary,
    summary="Count Summary"
)
async def get_summary(count_id: UUID, db: DB):
    service = PhysicalStockService(db)
    return await service.summary(count_id)


@router.get(
    "/counts/{count_id}/variance-report",
    response_model=VarianceReport,
    summary="Variance Report"
)
async def get_variance_report(count_id: UUID, db: DB):
    """Lines whose counted quantity differs from the book quantity."""
    service = PhysicalStockService(db)
    return await service.variance_report(count_id)


@router.get(
    "/counts/{count_id}/statistics",
    response_model=CountStatistics,
    summary="Count Statistics"
)
async def get_statistics(count_id: UUID, db: DB):
    service = PhysicalStockService(db)
    return await service.statistics(count_id)
