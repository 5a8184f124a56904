"""Physical stock record endpoints (free-standing shelf counts)."""
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from app.api.deps import DB, CurrentActor
from app.schemas.base import DeleteResponse
from app.schemas.physical_stock import (
    PhysicalStockRecordCreate, PhysicalStockRecordUpdate, PhysicalStockRecordResponse,
)
from app.services.physical_stock_record_service import PhysicalStockRecordService

router = APIRouter()


@router.get(
    "/physical-stock",
    response_model=List[PhysicalStockRecordResponse],
    summary="List Physical Stock Records"
)
async def list_records(
    db: DB,
    inventory_item_id: Optional[UUID] = None,
    location: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    service = PhysicalStockRecordService(db)
    records, _ = await service.list_records(
        inventory_item_id=inventory_item_id,
        location=location,
        skip=skip,
        limit=limit,
    )
    return records


@router.post(
    "/physical-stock",
    response_model=PhysicalStockRecordResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Physical Stock Record"
)
async def create_record(
    data: PhysicalStockRecordCreate,
    db: DB,
    actor: CurrentActor,
):
    """Record what was on the shelf for one item at one location."""
    service = PhysicalStockRecordService(db)
    return await service.create_record(data, actor)


@router.get(
    "/physical-stock/{record_id}",
    response_model=PhysicalStockRecordResponse,
    summary="Get Physical Stock Record"
)
async def get_record(record_id: UUID, db: DB):
    service = PhysicalStockRecordService(db)
    record = await service.get_record(record_id)
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Physical stock record not found"
        )
    return record


@router.put(
    "/physical-stock/{record_id}",
    response_model=PhysicalStockRecordResponse,
    summary="Update Physical Stock Record"
)
async def update_record(
    record_id: UUID,
    data: PhysicalStockRecordUpdate,
    db: DB,
    actor: CurrentActor,
):
    service = PhysicalStockRecordService(db)
    return await service.update_record(record_id, data, actor)


@router.delete(
    "/physical-stock/{record_id}",
    response_model=DeleteResponse,
    summary="Delete Physical Stock Record"
)
async def delete_record(record_id: UUID, db: DB, actor: CurrentActor):
    service = PhysicalStockRecordService(db)
    await service.delete_record(record_id, actor)
    return DeleteResponse(success=True, message="Physical stock record deleted")
