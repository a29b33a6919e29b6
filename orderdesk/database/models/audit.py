"""
Append-only audit log model.

Every state-changing operation writes one row with the entity type, the entity
id, an action name and JSON snapshots of the relevant state before and after.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import JSON, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from orderdesk.database.base import AppendOnlyModel


class AuditLog(AppendOnlyModel):
    __tablename__ = "audit_log"

    entity: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Entity type, e.g. order_addon or production_batch",
    )

    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    before: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    after: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    actor_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("ix_audit_log_entity", "entity", "entity_id"),
    )
