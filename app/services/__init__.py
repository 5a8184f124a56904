# Services module
from app.services.audit_service import AuditService
from app.services.inventory_service import InventoryService
from app.services.physical_stock_service import PhysicalStockService
from app.services.scanning_service import ScanningService
from app.services.stock_adjustment_service import StockAdjustmentService

__all__ = [
    "AuditService",
    "InventoryService",
    "PhysicalStockService",
    "ScanningService",
    "StockAdjustmentService",
]
