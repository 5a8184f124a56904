"""
Scanning Session API Endpoints.

Barcode scanning sessions opened against a physical stock count, the scans
recorded in them, and scan verification.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from app.api.deps import DB, CurrentActor
from app.schemas.physical_stock import (
    ScanningSessionCreate, ScanningSessionUpdate, ScanningSessionResponse,
    ScanRequest, ScanResult, ScannedItemCreate, ScannedItemResponse,
)
from app.services.scanning_service import ScanningService

router = APIRouter()


# ============================================================================
# SESSIONS
# ============================================================================

@router.get(
    "/counts/{count_id}/scanning-sessions",
    response_model=List[ScanningSessionResponse],
    summary="List Scanning Sessions"
)
async def list_sessions(count_id: UUID, db: DB):
    service = ScanningService(db)
    return await service.list_sessions(count_id)


@router.post(
    "/counts/{count_id}/scanning-sessions",
    response_model=ScanningSessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open Scanning Session"
)
async def open_session(
    count_id: UUID,
    data: ScanningSessionCreate,
    db: DB,
    actor: CurrentActor,
):
    """Open a scanning session; starts the count if it is still pending."""
    service = ScanningService(db)
    return await service.open_session(count_id, data, actor)


@router.put(
    "/scanning-sessions/{session_id}",
    response_model=ScanningSessionResponse,
    summary="Update Scanning Session"
)
async def update_session(
    session_id: UUID,
    data: ScanningSessionUpdate,
    db: DB,
    actor: CurrentActor,
):
    service = ScanningService(db)
    return await service.update_session(session_id, data, actor)


@router.post(
    "/scanning-sessions/{session_id}/close",
    response_model=ScanningSessionResponse,
    summary="Close Scanning Session"
)
async def close_session(session_id: UUID, db: DB, actor: CurrentActor):
    service = ScanningService(db)
    return await service.close_session(session_id, actor)


# ============================================================================
# SCANS
# ============================================================================

@router.post(
    "/scanning-sessions/{session_id}/scan",
    response_model=ScanResult,
    summary="Scan Barcode",
    responses={400: {"model": ScanResult}},
)
async def scan_barcode(
    session_id: UUID,
    data: ScanRequest,
    db: DB,
    actor: CurrentActor,
):
    """
    Record one barcode scan. An unknown barcode, an item outside the count
    or a closed session returns 400 with success=false and a reason code.
    """
    service = ScanningService(db)
    result = await service.scan(
        session_id,
        data.barcode,
        actor,
        quantity=data.quantity,
        storage_location=data.storage_location,
    )
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=result.model_dump(mode="json"),
        )
    return result


@router.get(
    "/scanning-sessions/{session_id}/items",
    response_model=List[ScannedItemResponse],
    summary="List Scanned Items"
)
async def list_scanned_items(session_id: UUID, db: DB):
    service = ScanningService(db)
    return await service.list_scanned_items(session_id)


@router.post(
    "/scanning-sessions/{session_id}/items",
    response_model=ScannedItemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add Scanned Item"
)
async def add_scanned_item(
    session_id: UUID,
    data: ScannedItemCreate,
    db: DB,
    actor: CurrentActor,
):
    """Record a scan against a count line without reading its barcode."""
    service = ScanningService(db)
    return await service.add_scanned_item(session_id, data, actor)


@router.post(
    "/scanned-items/{scanned_item_id}/verify",
    response_model=ScannedItemResponse,
    summary="Verify Scanned Item"
)
async def verify_scanned_item(scanned_item_id: UUID, db: DB, actor: CurrentActor):
    service = ScanningService(db)
    return await service.verify_scanned_item(scanned_item_id, actor)
