"""
Production batch service.

Plans batches against order lines, splits and merges batches, and reports
how much of each line is still unallocated. Allocation is always read from
batch items. Plans are validated against the stored allocations before any
write, so no entry point can allocate more bottles than a line holds, and all
writes of one operation share the caller's transaction.
"""

import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger, log_performance
from orderdesk.core.security import Actor
from orderdesk.database.models.order import SalesOrder, SalesOrderLine
from orderdesk.database.models.production import BatchStatus, ProductionBatch
from orderdesk.services.audit.logger import AuditLogger
from orderdesk.services.notifications.client import (
    NotificationClient,
    get_notification_client,
)
from orderdesk.services.numbering import generate_batch_number
from orderdesk.services.orders.repository import OrderRepository
from orderdesk.services.production.allocation import (
    BatchPlan,
    PlanValidation,
    batch_uid_prefix,
    compute_line_allocations,
    infer_legacy_allocations,
    quick_plan,
    remaining_quantity,
    validate_batch_plans,
)
from orderdesk.services.production.repository import BatchRepository, workflow_for

logger = get_logger(__name__)

BATCH_ENTITY = "production_batch"


class BatchServiceError(Exception):
    """Base exception for batch service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class BatchPlanValidationError(BatchServiceError):
    """Raised when batch plans fail validation."""

    def __init__(self, message: str, validation: PlanValidation, **context: Any):
        super().__init__(message, **context)
        self.validation = validation


class BatchOperationError(BatchServiceError):
    """Raised when a split, merge or delete request is not allowed."""

    pass


def _batch_snapshot(batch: ProductionBatch) -> dict[str, Any]:
    return {"uid": batch.human_uid, "qty": batch.qty_bottle_planned}


class BatchService:
    """
    Batch planning and allocation tracking for one request.

    Attributes:
        orders: Order repository
        batches: Batch repository
        audit: Audit trail writer
        notifier: Notification client
    """

    def __init__(
        self,
        session: AsyncSession,
        actor: Optional[Actor] = None,
        notifier: Optional[NotificationClient] = None,
    ):
        self.session = session
        self.actor = actor
        self.orders = OrderRepository(session)
        self.batches = BatchRepository(session)
        self.audit = AuditLogger(session, actor.id if actor else None)
        self.notifier = notifier or get_notification_client()

    async def _load_allocations(
        self,
        order_id: uuid.UUID,
    ) -> tuple[Sequence[SalesOrderLine], dict[uuid.UUID, int]]:
        lines = await self.orders.get_lines(order_id)
        items = await self.batches.items_for_order(order_id)
        return lines, compute_line_allocations(items)

    async def _batch_keys(self, lines: Sequence[SalesOrderLine]) -> dict[uuid.UUID, str]:
        """Line id to SKU batch prefix."""
        skus = await self.orders.get_skus([line.sku_id for line in lines])
        return {
            line.id: skus[line.sku_id].batch_key for line in lines if line.sku_id in skus
        }

    async def _new_batch(
        self,
        order: SalesOrder,
        batch_key: str,
        quantity: int,
        line_id: Optional[uuid.UUID],
        planned_start: Optional[datetime] = None,
        priority_index: int = 0,
        allocated: Optional[int] = None,
    ) -> ProductionBatch:
        """
        Stage a queued batch, its allocation item and its workflow steps.

        The item allocates ``allocated`` bottles, default the planned quantity;
        no item is written for zero.
        """
        if allocated is None:
            allocated = quantity
        number = await generate_batch_number(self.session, batch_key)
        batch = ProductionBatch(
            so_id=order.id,
            uid=number,
            human_uid=number,
            status=BatchStatus.QUEUED,
            priority_index=priority_index,
            planned_start=planned_start,
            qty_bottle_planned=quantity,
            qty_bottle_good=0,
            qty_bottle_scrap=0,
        )
        await self.batches.add_batch(batch, workflow_for(order.label_required))
        if line_id is not None and allocated > 0:
            await self.batches.add_item(batch.id, line_id, allocated)
        return batch

    async def get_allocation_report(self, order_id: uuid.UUID) -> dict[str, Any]:
        """
        Allocated and remaining bottles per order line.

        Returns:
            Dictionary with ``order_id``, ``lines`` (per-line figures) and the
            order-level ``total_bottles``, ``total_allocated`` and
            ``total_remaining``
        """
        await self.orders.get_order(order_id)
        lines, allocations = await self._load_allocations(order_id)
        keys = await self._batch_keys(lines)

        rows = []
        for line in lines:
            allocated = allocations.get(line.id, 0)
            rows.append(
                {
                    "line_id": line.id,
                    "batch_key": keys.get(line.id),
                    "bottle_qty": line.bottle_qty,
                    "allocated": allocated,
                    "remaining": remaining_quantity(line, allocations),
                }
            )

        return {
            "order_id": order_id,
            "lines": rows,
            "total_bottles": sum(row["bottle_qty"] for row in rows),
            "total_allocated": sum(row["allocated"] for row in rows),
            "total_remaining": sum(row["remaining"] for row in rows),
        }

    async def list_batches(self, order_id: uuid.UUID) -> Sequence[ProductionBatch]:
        """
        Batches of an order in creation order.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        await self.orders.get_order(order_id)
        return await self.batches.list_for_order(order_id)

    async def validate_plans(
        self,
        order_id: uuid.UUID,
        plans: Sequence[BatchPlan],
    ) -> PlanValidation:
        """Validate plans against the order's stored allocations."""
        await self.orders.get_order(order_id)
        lines, allocations = await self._load_allocations(order_id)
        return validate_batch_plans(lines, allocations, plans)

    async def quick_plan(self, order_id: uuid.UUID) -> list[BatchPlan]:
        """Plans covering everything still unallocated, one per line."""
        await self.orders.get_order(order_id)
        lines, allocations = await self._load_allocations(order_id)
        return quick_plan(lines, allocations)

    async def create_batches(
        self,
        order_id: uuid.UUID,
        plans: Sequence[BatchPlan],
    ) -> list[ProductionBatch]:
        """
        Create one queued batch per plan.

        Each batch gets a number from its line's SKU, one batch item for the
        planned quantity and pending workflow steps (produce, bottle_cap,
        label when the order needs labels, pack).

        Args:
            order_id: Order identifier
            plans: Batch plans

        Returns:
            Created batches in plan order

        Raises:
            OrderNotFoundError: If the order does not exist
            BatchPlanValidationError: If any plan fails validation; nothing is
                written in that case
        """
        with log_performance(logger, "create_batches", order_id=str(order_id)):
            # Row lock serializes concurrent planners on the same order.
            order = await self.orders.get_order(order_id, for_update=True)
            lines, allocations = await self._load_allocations(order_id)

            validation = validate_batch_plans(lines, allocations, plans)
            if not validation.valid:
                raise BatchPlanValidationError(
                    "Batch plans are invalid",
                    validation,
                    order_id=str(order_id),
                    issue_count=len(validation.issues),
                )

            keys = await self._batch_keys(lines)
            created = []
            for plan in plans:
                batch = await self._new_batch(
                    order,
                    keys[plan.line_id],
                    plan.quantity,
                    plan.line_id,
                    planned_start=plan.planned_start,
                )
                await self.audit.record(
                    entity=BATCH_ENTITY,
                    entity_id=batch.id,
                    action="created",
                    after={**_batch_snapshot(batch), "line_id": str(plan.line_id)},
                )
                created.append(batch)

        logger.info(
            "Batches created",
            order_id=str(order_id),
            batch_count=len(created),
            batch_numbers=[batch.human_uid for batch in created],
        )
        self.notifier.dispatch_on_commit(
            self.session,
            "batches_created",
            order_id=str(order_id),
            batch_numbers=[batch.human_uid for batch in created],
        )
        return created

    async def backfill_legacy_allocations(self, order_id: uuid.UUID) -> list[dict[str, Any]]:
        """
        Write batch items for batches created without them.

        Lines with no explicit allocation are matched to the order's item-less
        batches by batch-number prefix. The inferred amount, capped at the
        line's bottle quantity, is written as batch items across the matching
        batches in creation order, never taking more from a batch than it
        plans. Running it again finds no item-less batch capacity to assign.

        Returns:
            One entry per written item with ``batch_id``, ``line_id`` and
            ``quantity``
        """
        await self.orders.get_order(order_id, for_update=True)
        lines, explicit = await self._load_allocations(order_id)
        keys = await self._batch_keys(lines)
        legacy_batches = await self.batches.list_unlinked_for_order(order_id)

        inferred = infer_legacy_allocations(lines, keys, legacy_batches, explicit)
        capacity = {batch.id: batch.qty_bottle_planned for batch in legacy_batches}

        written = []
        for line in lines:
            wanted = inferred.get(line.id, 0)
            for batch in legacy_batches:
                if wanted <= 0:
                    break
                if batch_uid_prefix(batch.human_uid) != keys.get(line.id):
                    continue
                quantity = min(wanted, capacity[batch.id])
                if quantity <= 0:
                    continue
                await self.batches.add_item(batch.id, line.id, quantity)
                capacity[batch.id] -= quantity
                wanted -= quantity
                written.append(
                    {"batch_id": batch.id, "line_id": line.id, "quantity": quantity}
                )

        if written:
            await self.audit.record(
                entity="sales_order",
                entity_id=order_id,
                action="allocation_backfill",
                after={
                    "items": [
                        {
                            "batch_id": str(entry["batch_id"]),
                            "line_id": str(entry["line_id"]),
                            "quantity": entry["quantity"],
                        }
                        for entry in written
                    ]
                },
            )

        logger.info(
            "Legacy allocations backfilled",
            order_id=str(order_id),
            item_count=len(written),
        )
        return written

    async def split_batch(
        self,
        batch_id: uuid.UUID,
        quantities: Sequence[int],
    ) -> list[ProductionBatch]:
        """
        Replace a batch with several whose planned quantities sum to it.

        The original batch, its items and its steps are deleted first. Each
        new batch gets a fresh number from the original SKU, fresh workflow
        steps and, when the original was linked to a line, an item for that
        line. The original item's allocation is handed out to the new batches
        in order, at most each batch's planned quantity, so the line's total
        allocation is unchanged.

        Args:
            batch_id: Batch to split
            quantities: At least two positive quantities

        Returns:
            New batches in the order of ``quantities``

        Raises:
            BatchNotFoundError: If the batch does not exist
            BatchOperationError: If the quantities are invalid or the batch
                is allocated to more than one line
        """
        batch = await self.batches.get_batch(batch_id, for_update=True)

        if len(quantities) < 2:
            raise BatchOperationError(
                "A split needs at least two quantities",
                batch_id=str(batch_id),
            )
        if any(quantity <= 0 for quantity in quantities):
            raise BatchOperationError(
                "Split quantities must be greater than zero",
                batch_id=str(batch_id),
            )
        if sum(quantities) != batch.qty_bottle_planned:
            raise BatchOperationError(
                f"Split quantities must add up to {batch.qty_bottle_planned}",
                batch_id=str(batch_id),
                planned=batch.qty_bottle_planned,
                requested=sum(quantities),
            )

        items = await self.batches.items_for_batch(batch.id)
        if len(items) > 1:
            raise BatchOperationError(
                "Cannot split a batch allocated to more than one line",
                batch_id=str(batch_id),
            )
        line_id = items[0].so_line_id if items else None
        unallocated = items[0].bottle_qty_allocated if items else 0

        batch_key = batch_uid_prefix(batch.human_uid)
        if line_id is not None:
            lines = await self.orders.get_lines(batch.so_id)
            keys = await self._batch_keys([line for line in lines if line.id == line_id])
            batch_key = keys.get(line_id, batch_key)

        order = await self.orders.get_order(batch.so_id)
        original = _batch_snapshot(batch)
        planned_start = batch.planned_start
        priority_index = batch.priority_index

        await self.batches.delete_batch(batch)

        created = []
        for quantity in quantities:
            allocated = min(quantity, unallocated)
            unallocated -= allocated
            created.append(
                await self._new_batch(
                    order,
                    batch_key,
                    quantity,
                    line_id,
                    planned_start=planned_start,
                    priority_index=priority_index,
                    allocated=allocated,
                )
            )

        await self.audit.record(
            entity=BATCH_ENTITY,
            entity_id=batch_id,
            action="split",
            before=original,
            after={"batches": [_batch_snapshot(new) for new in created]},
        )

        logger.info(
            "Batch split",
            batch_id=str(batch_id),
            original_uid=original["uid"],
            new_batches=[new.human_uid for new in created],
        )
        return created

    async def merge_batches(
        self,
        target_id: uuid.UUID,
        batch_ids: Sequence[uuid.UUID],
    ) -> ProductionBatch:
        """
        Fold batches into a target batch.

        The target's planned quantity grows by the others' planned quantities.
        Their batch items move to the target, adding into the target's item for
        the same line when there is one. Their workflow steps and the batches
        themselves are then deleted.

        Args:
            target_id: Surviving batch
            batch_ids: Batches to fold in

        Returns:
            The target batch

        Raises:
            BatchNotFoundError: If any batch does not exist
            BatchOperationError: If no other batch is given, the target is in
                the list, or the batches span orders
        """
        others_ids = list(dict.fromkeys(batch_ids))
        if not others_ids:
            raise BatchOperationError("Select at least one batch to merge", target_id=str(target_id))
        if target_id in others_ids:
            raise BatchOperationError(
                "A batch cannot be merged into itself",
                target_id=str(target_id),
            )

        target = await self.batches.get_batch(target_id, for_update=True)
        others = await self.batches.get_batches(others_ids)

        foreign = [str(batch.id) for batch in others if batch.so_id != target.so_id]
        if foreign:
            raise BatchOperationError(
                "Only batches of the same order can be merged",
                target_id=str(target_id),
                batch_ids=foreign,
            )

        before = {
            "target": _batch_snapshot(target),
            "merged": [_batch_snapshot(batch) for batch in others],
        }

        target_items = {
            item.so_line_id: item for item in await self.batches.items_for_batch(target.id)
        }

        for batch in others:
            target.qty_bottle_planned += batch.qty_bottle_planned

            for item in await self.batches.items_for_batch(batch.id):
                existing = target_items.get(item.so_line_id)
                if existing is not None:
                    existing.bottle_qty_allocated += item.bottle_qty_allocated
                    await self.session.delete(item)
                else:
                    item.batch_id = target.id
                    target_items[item.so_line_id] = item
            await self.session.flush()

            await self.batches.delete_steps(batch.id)
            await self.session.delete(batch)
            await self.session.flush()

        await self.audit.record(
            entity=BATCH_ENTITY,
            entity_id=target.id,
            action="merged",
            before=before,
            after=_batch_snapshot(target),
        )

        logger.info(
            "Batches merged",
            target_id=str(target.id),
            target_uid=target.human_uid,
            merged_count=len(others),
            qty_bottle_planned=target.qty_bottle_planned,
        )
        return target

    async def delete_batch(self, batch_id: uuid.UUID) -> None:
        """
        Delete a batch with its items and steps.

        Raises:
            BatchNotFoundError: If the batch does not exist
        """
        batch = await self.batches.get_batch(batch_id, for_update=True)
        snapshot = _batch_snapshot(batch)
        await self.batches.delete_batch(batch)

        await self.audit.record(
            entity=BATCH_ENTITY,
            entity_id=batch_id,
            action="deleted",
            before=snapshot,
        )
        logger.info("Batch deleted", batch_id=str(batch_id), uid=snapshot["uid"])

    async def schedule_batch(
        self,
        batch_id: uuid.UUID,
        planned_start: Optional[datetime],
        priority_index: Optional[int] = None,
    ) -> ProductionBatch:
        """Set or clear a batch's planned start and optionally its queue position."""
        batch = await self.batches.get_batch(batch_id)
        before = {
            "planned_start": batch.planned_start.isoformat() if batch.planned_start else None,
            "priority_index": batch.priority_index,
        }

        batch.planned_start = planned_start
        if priority_index is not None:
            batch.priority_index = priority_index
        await self.session.flush()

        await self.audit.record(
            entity=BATCH_ENTITY,
            entity_id=batch.id,
            action="scheduled",
            before=before,
            after={
                "planned_start": planned_start.isoformat() if planned_start else None,
                "priority_index": batch.priority_index,
            },
        )
        return batch
