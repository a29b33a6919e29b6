"""
Audit trail writer.

``AuditLogger`` appends rows to ``audit_log`` inside the caller's session, so
the audit record commits or rolls back together with the change it describes.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger
from orderdesk.database.models.audit import AuditLog

logger = get_logger(__name__)


class AuditLogger:
    """
    Appends audit entries for one actor.

    Attributes:
        session: Session the entries are written through
        actor_id: Identifier of the user performing the change, if known
    """

    def __init__(self, session: AsyncSession, actor_id: Optional[str] = None):
        self.session = session
        self.actor_id = actor_id

    async def record(
        self,
        entity: str,
        entity_id: uuid.UUID,
        action: str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Append one audit entry.

        Args:
            entity: Entity type, e.g. ``order_addon``
            entity_id: Identifier of the changed entity
            action: Action name, e.g. ``created_override``
            before: JSON-safe snapshot before the change
            after: JSON-safe snapshot after the change

        Returns:
            The pending audit row
        """
        entry = AuditLog(
            entity=entity,
            entity_id=entity_id,
            action=action,
            before=before,
            after=after,
            actor_id=self.actor_id,
        )
        self.session.add(entry)
        await self.session.flush()

        logger.info(
            "Audit entry recorded",
            entity=entity,
            entity_id=str(entity_id),
            action=action,
            actor_id=self.actor_id,
        )
        return entry

    async def history(self, entity: str, entity_id: uuid.UUID) -> list[AuditLog]:
        """Entries for one entity, oldest first."""
        result = await self.session.execute(
            select(AuditLog)
            .where(AuditLog.entity == entity, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at)
        )
        return list(result.scalars().all())
