from fastapi import APIRouter

from app.api.v1.endpoints import (
    physical_stock,
    physical_stock_records,
    scanning_sessions,
    stock_adjustments,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Physical Stock Counts ====================
api_router.include_router(
    physical_stock.router,
    tags=["Physical Stock Counts"]
)

# ==================== Physical Stock Records ====================
api_router.include_router(
    physical_stock_records.router,
    tags=["Physical Stock Records"]
)

# ==================== Scanning Sessions ====================
api_router.include_router(
    scanning_sessions.router,
    tags=["Scanning Sessions"]
)

# ==================== Stock Adjustments ====================
api_router.include_router(
    stock_adjustments.router,
    tags=["Stock Adjustments"]
)
