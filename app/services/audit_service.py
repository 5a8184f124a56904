from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor
from app.models.audit_log import AuditLog


class AuditService:
    """
    Audit service for logging state changes to stock counts, scans and
    adjustments. Entries are written in the caller's transaction so they
    commit or roll back together with the change they describe.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        actor: Optional[Actor] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The action performed (CREATE, UPDATE, FINALIZE, APPLY, etc.)
            entity_type: Type of entity (PHYSICAL_STOCK_COUNT, SCANNING_SESSION, etc.)
            entity_id: ID of the affected entity
            actor: Operator performing the action
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)
            description: Human-readable description

        Returns:
            The created AuditLog entry
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=actor.id if actor else None,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def get_entity_history(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Get audit trail for one entity, oldest first."""
        query = (
            select(AuditLog)
            .where(
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == entity_id,
            )
            .order_by(AuditLog.created_at)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
