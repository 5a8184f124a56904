from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.api.v1.router import api_router
from app.core.exceptions import StockCountError
from app.database import init_db, async_session_factory


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Create the physical stock tables if they do not exist yet
      (migrations under alembic/ remain the way to evolve a live schema)
    """
    # Startup
    logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)
    await init_db()

    yield

    # Shutdown
    logger.info("Shutting down...")


# OpenAPI Tags with detailed descriptions
OPENAPI_TAGS = [
    {"name": "Physical Stock Counts", "description": "Count lifecycle, line items, population, recording and finalization"},
    {"name": "Physical Stock Records", "description": "Free-standing shelf counts per item and location"},
    {"name": "Scanning Sessions", "description": "Barcode scanning sessions, scans and scan verification"},
    {"name": "Stock Adjustments", "description": "Adjustments generated from count discrepancies and applied to inventory"},
    {"name": "Health", "description": "Service and database health"},
]

FULL_API_DESCRIPTION = """
## Physical Stock Count API

Reconciles book inventory against physically counted quantities and applies
the resulting adjustments to the inventory ledger.

### Workflow

1. Create a count and **populate** it from current inventory levels
2. Open **scanning sessions** and scan barcodes as evidence
3. Record the **first** (and optionally **second**) counted quantity per line
4. **Finalize** the count to compute variances
5. Generate an **adjustment** from the discrepancies and **apply** it once

### Actor

Every mutating request must carry the operator id in the `X-User-ID` header
(configurable through `ACTOR_HEADER`).

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Business rule violation (see `reason`) or invalid input |
| 404 | Not Found - Resource doesn't exist |
| 422 | Unprocessable Entity - Request validation failed |
| 503 | Storage failure - safe to retry the operation |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=FULL_API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(StockCountError)
async def stock_count_exception_handler(request: Request, exc: StockCountError):
    """Render domain errors as {message, reason, details} with their status code."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "message": exc.message,
            "reason": exc.reason,
            "details": exc.details,
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.exception("Health check failed")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
