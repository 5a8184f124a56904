"""
Error taxonomy for the physical stock count service.

Every business-rule rejection carries a stable ReasonCode so operators (and
client code) can tell a wrong barcode from a closed session or an adjustment
that was already applied.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ReasonCode(str, Enum):
    """Machine-readable reason codes for business-rule violations."""
    BARCODE_NOT_FOUND = "BARCODE_NOT_FOUND"
    ITEM_NOT_IN_COUNT = "ITEM_NOT_IN_COUNT"
    SESSION_CLOSED = "SESSION_CLOSED"
    ALREADY_POPULATED = "ALREADY_POPULATED"
    ALREADY_FINALIZED = "ALREADY_FINALIZED"
    ALREADY_APPLIED = "ALREADY_APPLIED"
    COUNT_CANCELLED = "COUNT_CANCELLED"
    COUNT_NOT_OPEN = "COUNT_NOT_OPEN"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    FIRST_COUNT_REQUIRED = "FIRST_COUNT_REQUIRED"
    ITEM_FINALIZED = "ITEM_FINALIZED"
    NOTHING_TO_ADJUST = "NOTHING_TO_ADJUST"
    INVENTORY_LEVEL_NOT_FOUND = "INVENTORY_LEVEL_NOT_FOUND"
    LINE_ALREADY_ADJUSTED = "LINE_ALREADY_ADJUSTED"
    MISSING_ACTOR = "MISSING_ACTOR"


class StockCountError(Exception):
    """Base exception for stock count errors."""
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def reason(self) -> Optional[str]:
        return None


class ValidationError(StockCountError):
    """Malformed input that passed schema validation."""
    status_code = 400


class NotFound(StockCountError):
    """A count, item, session, scanned item or adjustment does not exist."""
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} not found",
            {"entity": entity, "id": str(entity_id)},
        )


class BusinessRuleViolation(StockCountError):
    """An operation is not allowed in the current state."""
    status_code = 400

    def __init__(
        self,
        reason: ReasonCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self._reason = reason
        super().__init__(message, details)

    @property
    def reason(self) -> str:
        return self._reason.value

    @property
    def reason_code(self) -> ReasonCode:
        return self._reason


class StorageFailure(StockCountError):
    """The backing store failed; the caller may retry the whole operation."""
    status_code = 503
