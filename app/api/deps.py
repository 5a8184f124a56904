from typing import Annotated, Optional
import logging

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.actor import Actor
from app.database import get_db


logger = logging.getLogger(__name__)


async def get_actor(request: Request) -> Actor:
    """
    Dependency to get the operator performing the request.

    Identity is asserted by the upstream auth gateway in the configured
    header; a missing or blank header is rejected, never defaulted.
    """
    value: Optional[str] = request.headers.get(settings.ACTOR_HEADER)
    if value is None or not value.strip():
        logger.warning("Rejected %s %s: missing %s header", request.method, request.url.path, settings.ACTOR_HEADER)
    return Actor.from_header(value)


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
CurrentActor = Annotated[Actor, Depends(get_actor)]
