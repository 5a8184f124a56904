"""Explicit actor identity threaded through every mutating operation."""
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import BusinessRuleViolation, ReasonCode


@dataclass(frozen=True)
class Actor:
    """The operator performing an action, as asserted by the auth gateway."""
    id: str
    display_name: Optional[str] = None

    @classmethod
    def from_header(cls, value: Optional[str]) -> "Actor":
        """Build an actor from a raw header value; never defaults silently."""
        if value is None or not value.strip():
            raise BusinessRuleViolation(
                ReasonCode.MISSING_ACTOR,
                "User ID is required",
            )
        return cls(id=value.strip())

    def __str__(self) -> str:
        return self.id
