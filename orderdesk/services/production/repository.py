"""
Production batch data access.
"""

import uuid
from typing import Any, Sequence

from sqlalchemy import delete, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger
from orderdesk.database.models.production import (
    ProductionBatch,
    ProductionBatchItem,
    StepStatus,
    WorkflowStep,
    WorkflowStepType,
)

logger = get_logger(__name__)


class BatchRepositoryError(Exception):
    """Base exception for batch repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class BatchNotFoundError(BatchRepositoryError):
    """Raised when batch is not found."""

    pass


def workflow_for(label_required: bool) -> list[WorkflowStepType]:
    """Step sequence of a new batch: produce, bottle_cap, [label], pack."""
    steps = [WorkflowStepType.PRODUCE, WorkflowStepType.BOTTLE_CAP]
    if label_required:
        steps.append(WorkflowStepType.LABEL)
    steps.append(WorkflowStepType.PACK)
    return steps


class BatchRepository:
    """Repository for batches, batch items and workflow steps."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_batch(self, batch_id: uuid.UUID, for_update: bool = False) -> ProductionBatch:
        """
        Get batch by ID.

        Raises:
            BatchNotFoundError: If no batch has this ID
        """
        stmt = select(ProductionBatch).where(ProductionBatch.id == batch_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        batch = result.scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError("Batch not found", batch_id=str(batch_id))
        return batch

    async def get_batches(self, batch_ids: Sequence[uuid.UUID]) -> list[ProductionBatch]:
        """Batches by ID in the requested order; missing IDs raise."""
        result = await self.session.execute(
            select(ProductionBatch).where(ProductionBatch.id.in_(set(batch_ids)))
        )
        found = {batch.id: batch for batch in result.scalars().all()}
        missing = [str(batch_id) for batch_id in batch_ids if batch_id not in found]
        if missing:
            raise BatchNotFoundError("Batch not found", batch_ids=missing)
        return [found[batch_id] for batch_id in batch_ids]

    async def list_for_order(self, order_id: uuid.UUID) -> Sequence[ProductionBatch]:
        result = await self.session.execute(
            select(ProductionBatch)
            .where(ProductionBatch.so_id == order_id)
            .order_by(ProductionBatch.created_at, ProductionBatch.human_uid)
        )
        return result.scalars().all()

    async def list_unlinked_for_order(self, order_id: uuid.UUID) -> Sequence[ProductionBatch]:
        """Batches of an order that have no batch items at all."""
        result = await self.session.execute(
            select(ProductionBatch)
            .where(
                ProductionBatch.so_id == order_id,
                ~exists().where(ProductionBatchItem.batch_id == ProductionBatch.id),
            )
            .order_by(ProductionBatch.created_at, ProductionBatch.human_uid)
        )
        return result.scalars().all()

    async def items_for_order(self, order_id: uuid.UUID) -> Sequence[ProductionBatchItem]:
        """Batch items of every batch of an order."""
        result = await self.session.execute(
            select(ProductionBatchItem)
            .join(ProductionBatch, ProductionBatchItem.batch_id == ProductionBatch.id)
            .where(ProductionBatch.so_id == order_id)
            .order_by(ProductionBatchItem.created_at)
        )
        return result.scalars().all()

    async def items_for_batch(self, batch_id: uuid.UUID) -> Sequence[ProductionBatchItem]:
        result = await self.session.execute(
            select(ProductionBatchItem)
            .where(ProductionBatchItem.batch_id == batch_id)
            .order_by(ProductionBatchItem.created_at)
        )
        return result.scalars().all()

    async def steps_for_batch(self, batch_id: uuid.UUID) -> Sequence[WorkflowStep]:
        result = await self.session.execute(
            select(WorkflowStep)
            .where(WorkflowStep.batch_id == batch_id)
            .order_by(WorkflowStep.created_at)
        )
        return result.scalars().all()

    async def add_batch(
        self,
        batch: ProductionBatch,
        steps: Sequence[WorkflowStepType],
    ) -> ProductionBatch:
        """Stage a batch and its pending workflow steps."""
        self.session.add(batch)
        await self.session.flush()

        for step in steps:
            self.session.add(
                WorkflowStep(batch_id=batch.id, step=step, status=StepStatus.PENDING)
            )
        await self.session.flush()
        return batch

    async def add_item(
        self,
        batch_id: uuid.UUID,
        line_id: uuid.UUID,
        quantity: int,
    ) -> ProductionBatchItem:
        item = ProductionBatchItem(
            batch_id=batch_id,
            so_line_id=line_id,
            bottle_qty_allocated=quantity,
        )
        self.session.add(item)
        await self.session.flush()
        return item

    async def delete_steps(self, batch_id: uuid.UUID) -> None:
        await self.session.execute(
            delete(WorkflowStep)
            .where(WorkflowStep.batch_id == batch_id)
            .execution_options(synchronize_session="fetch")
        )

    async def delete_items(self, batch_id: uuid.UUID) -> None:
        await self.session.execute(
            delete(ProductionBatchItem)
            .where(ProductionBatchItem.batch_id == batch_id)
            .execution_options(synchronize_session="fetch")
        )

    async def delete_batch(self, batch: ProductionBatch) -> None:
        """Delete a batch after its steps and items."""
        await self.delete_steps(batch.id)
        await self.delete_items(batch.id)
        await self.session.delete(batch)
        await self.session.flush()
        logger.debug("Batch deleted", batch_id=str(batch.id), human_uid=batch.human_uid)
