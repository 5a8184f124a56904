"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE STANDARD:
━━━━━━━━━━━━━━━━━
• Database: VARCHAR(50) - NOT a native ENUM type
• SQLAlchemy: String(50) with Mapped[str]
• Pydantic: Python str Enum for API validation
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: CountStatus.IN_PROGRESS → "IN_PROGRESS" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly

CASE NORMALIZATION:
━━━━━━━━━━━━━━━━━━━
Input is accepted case-insensitively ("in_progress", "In_Progress") and
normalized to UPPERCASE with create_uppercase_validator().
"""

from enum import Enum
from typing import Any, Optional, Type, Set


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(CountStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


# =============================================================================
# CASE NORMALIZATION FOR PYDANTIC SCHEMAS
# =============================================================================

def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Invalid values are returned as-is so Pydantic raises the validation error.
    Spaces are accepted in place of underscores ("in progress").
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.strip().upper().replace(" ", "_")
        if upper_v in valid_values:
            return upper_v
    return value


def create_uppercase_validator(field_name: str, valid_values: Set[str]) -> classmethod:
    """
    Create a Pydantic field_validator that normalizes values to UPPERCASE.

    Usage:
        class CountUpdate(BaseModel):
            status: Optional[CountStatus] = None

            normalize_status = create_uppercase_validator('status', set(enum_values(CountStatus)))
    """
    from pydantic import field_validator

    @field_validator(field_name, mode='before')
    @classmethod
    def validate(cls, v):
        return normalize_to_uppercase(v, valid_values)

    return validate
