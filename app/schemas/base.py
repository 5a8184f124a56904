"""
Base Schema Classes for Pydantic Models

This module provides base classes that handle common patterns like UUID serialization,
ensuring consistency across all response schemas.

RULE: All response schemas that read from ORM models MUST inherit from BaseResponseSchema.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Features:
    - Enables from_attributes for ORM compatibility
    - UUID → string, Decimal → string in JSON output
    - Consistent datetime serialization

    Usage:
        class ScanningSessionResponse(BaseResponseSchema):
            id: UUID
            session_name: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        json_encoders={
            UUID: str,
            Decimal: str,
            datetime: lambda v: v.isoformat() if v else None,
        },
        # Allow population by field name or alias
        populate_by_name=True,
    )

    def audit_payload(self) -> dict:
        """JSON-safe dict used as before/after values in the audit log."""
        return self.model_dump(mode="json")


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    These schemas accept string UUIDs from clients and convert to UUID objects.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
        populate_by_name=True,
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional by default for partial updates.
    """
    model_config = ConfigDict(
        extra='ignore',
    )


class DeleteResponse(BaseModel):
    """Response after a record is deleted."""
    success: bool = Field(..., description="Whether deletion was successful")
    message: str = Field(..., description="Status message")
