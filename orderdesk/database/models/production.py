"""
Production batch, batch item and workflow step models.

A batch produces a planned quantity of one SKU for one sales order. Batch
items carry the explicit per-line allocation; the sum of allocations for a
line must stay within the line's ``bottle_qty``, which the batch service checks
server-side before any write.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from orderdesk.database.base import BaseModel, db_enum


class BatchStatus(str, Enum):
    QUEUED = "queued"
    WIP = "wip"
    HOLD = "hold"
    COMPLETE = "complete"


class WorkflowStepType(str, Enum):
    PRODUCE = "produce"
    BOTTLE_CAP = "bottle_cap"
    LABEL = "label"
    PACK = "pack"


class StepStatus(str, Enum):
    PENDING = "pending"
    WIP = "wip"
    DONE = "done"


class ProductionBatch(BaseModel):
    """
    Production run for one SKU on one sales order.

    Attributes:
        human_uid: Batch number, ``<prefix>-<YYMM>-<NNN>``
        priority_index: Position in the production queue, lower runs first
        qty_bottle_planned: Bottles planned for the run
        qty_bottle_good: Bottles produced and passed
        qty_bottle_scrap: Bottles scrapped
    """

    __tablename__ = "production_batches"

    so_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    uid: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    human_uid: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Batch number, SKU prefix first",
    )

    status: Mapped[BatchStatus] = mapped_column(
        db_enum(BatchStatus, "batch_status"),
        nullable=False,
        default=BatchStatus.QUEUED,
        index=True,
    )

    priority_index: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    planned_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    qty_bottle_planned: Mapped[int] = mapped_column(Integer, nullable=False)

    qty_bottle_good: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    qty_bottle_scrap: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "qty_bottle_planned > 0",
            name="ck_production_batches_planned_positive",
        ),
        CheckConstraint(
            "qty_bottle_good >= 0 AND qty_bottle_scrap >= 0",
            name="ck_production_batches_output_non_negative",
        ),
    )


class ProductionBatchItem(BaseModel):
    """Allocation of part of an order line to a batch."""

    __tablename__ = "production_batch_items"

    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("production_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    so_line_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_order_lines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    bottle_qty_allocated: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("batch_id", "so_line_id", name="uq_batch_items_batch_line"),
        CheckConstraint(
            "bottle_qty_allocated > 0",
            name="ck_batch_items_allocated_positive",
        ),
    )


class WorkflowStep(BaseModel):
    """One production step of a batch."""

    __tablename__ = "workflow_steps"

    batch_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("production_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    step: Mapped[WorkflowStepType] = mapped_column(
        db_enum(WorkflowStepType, "workflow_step_type"),
        nullable=False,
    )

    status: Mapped[StepStatus] = mapped_column(
        db_enum(StepStatus, "step_status"),
        nullable=False,
        default=StepStatus.PENDING,
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("batch_id", "step", name="uq_workflow_steps_batch_step"),
    )
