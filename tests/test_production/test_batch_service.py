"""
Tests for production batch planning, split, merge, delete, schedule and the
legacy allocation backfill.
"""

import re
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from orderdesk.database.models.audit import AuditLog
from orderdesk.database.models.production import (
    BatchStatus,
    ProductionBatch,
    WorkflowStepType,
)
from orderdesk.services.orders.repository import OrderNotFoundError
from orderdesk.services.production.allocation import BatchPlan
from orderdesk.services.production.repository import BatchNotFoundError, workflow_for
from orderdesk.services.production.service import (
    BatchOperationError,
    BatchPlanValidationError,
    BatchService,
)

BATCH_NUMBER = re.compile(r"^GTB-\d{4}-\d{3}$")


async def batch_count(session, order_id) -> int:
    result = await session.execute(
        select(func.count()).select_from(ProductionBatch).where(ProductionBatch.so_id == order_id)
    )
    return result.scalar_one()


@pytest.fixture
async def order_with_line(factory):
    """Order with one 100-bottle line of a GTB-prefixed SKU."""
    sku = await factory.sku(code="GTB10", batch_prefix="GTB")
    order = await factory.order(lines=[(sku, 10)])
    return order, order.lines[0]


# ============================================================================
# Workflow
# ============================================================================


class TestWorkflow:
    def test_without_labels(self):
        assert workflow_for(False) == [
            WorkflowStepType.PRODUCE,
            WorkflowStepType.BOTTLE_CAP,
            WorkflowStepType.PACK,
        ]

    def test_with_labels(self):
        assert WorkflowStepType.LABEL in workflow_for(True)
        assert workflow_for(True)[-1] == WorkflowStepType.PACK


# ============================================================================
# Planning
# ============================================================================


class TestCreateBatches:
    @pytest.mark.asyncio
    async def test_creates_batch_item_and_steps(self, db_session, order_with_line, operator):
        order, line = order_with_line
        service = BatchService(db_session, operator)

        batches = await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=40)])

        assert len(batches) == 1
        created = batches[0]
        assert BATCH_NUMBER.match(created.human_uid)
        assert created.human_uid.endswith("-001")
        assert created.status == BatchStatus.QUEUED
        assert created.qty_bottle_planned == 40

        items = await service.batches.items_for_batch(created.id)
        assert [(i.so_line_id, i.bottle_qty_allocated) for i in items] == [(line.id, 40)]

        steps = await service.batches.steps_for_batch(created.id)
        assert [step.step for step in steps] == workflow_for(False)

    @pytest.mark.asyncio
    async def test_label_step_for_labelled_orders(self, db_session, factory, operator):
        sku = await factory.sku()
        order = await factory.order(lines=[(sku, 2)], label_required=True)
        service = BatchService(db_session, operator)

        [created] = await service.create_batches(
            order.id, [BatchPlan(line_id=order.lines[0].id, quantity=20)]
        )

        steps = await service.batches.steps_for_batch(created.id)
        assert WorkflowStepType.LABEL in [step.step for step in steps]

    @pytest.mark.asyncio
    async def test_numbers_increment_within_prefix(self, db_session, order_with_line, operator):
        order, line = order_with_line

        batches = await BatchService(db_session, operator).create_batches(
            order.id,
            [BatchPlan(line_id=line.id, quantity=30), BatchPlan(line_id=line.id, quantity=30)],
        )

        assert [b.human_uid[-3:] for b in batches] == ["001", "002"]

    @pytest.mark.asyncio
    async def test_sku_code_when_no_prefix(self, db_session, factory, operator):
        sku = await factory.sku(code="VDK", batch_prefix=None)
        order = await factory.order(lines=[(sku, 1)])

        [created] = await BatchService(db_session, operator).create_batches(
            order.id, [BatchPlan(line_id=order.lines[0].id, quantity=10)]
        )

        assert created.human_uid.startswith("VDK-")

    @pytest.mark.asyncio
    async def test_over_allocation_rejected_server_side(self, db_session, order_with_line, operator):
        order, line = order_with_line
        service = BatchService(db_session, operator)
        await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=100)])

        with pytest.raises(BatchPlanValidationError) as exc_info:
            await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=1)])

        assert exc_info.value.validation.issues[0].message == (
            "Planned 1 bottles but only 0 remain unallocated"
        )
        assert await batch_count(db_session, order.id) == 1

    @pytest.mark.asyncio
    async def test_nothing_written_when_any_plan_fails(self, db_session, order_with_line, operator):
        order, line = order_with_line

        with pytest.raises(BatchPlanValidationError):
            await BatchService(db_session, operator).create_batches(
                order.id,
                [BatchPlan(line_id=line.id, quantity=50), BatchPlan(line_id=uuid.uuid4(), quantity=5)],
            )

        assert await batch_count(db_session, order.id) == 0

    @pytest.mark.asyncio
    async def test_audited_per_batch(self, db_session, order_with_line, operator):
        order, line = order_with_line

        [created] = await BatchService(db_session, operator).create_batches(
            order.id, [BatchPlan(line_id=line.id, quantity=40)]
        )

        entry = (
            await db_session.execute(select(AuditLog).where(AuditLog.entity_id == created.id))
        ).scalar_one()
        assert entry.entity == "production_batch"
        assert entry.action == "created"
        assert entry.after == {"uid": created.human_uid, "qty": 40, "line_id": str(line.id)}

    @pytest.mark.asyncio
    async def test_unknown_order(self, db_session, operator):
        with pytest.raises(OrderNotFoundError):
            await BatchService(db_session, operator).create_batches(uuid.uuid4(), [])


class TestAllocationReport:
    @pytest.mark.asyncio
    async def test_explicit_allocations(self, db_session, order_with_line, operator):
        order, line = order_with_line
        service = BatchService(db_session, operator)
        await service.create_batches(
            order.id,
            [BatchPlan(line_id=line.id, quantity=15), BatchPlan(line_id=line.id, quantity=25)],
        )

        report = await service.get_allocation_report(order.id)

        assert report["lines"] == [
            {
                "line_id": line.id,
                "batch_key": "GTB",
                "bottle_qty": 100,
                "allocated": 40,
                "remaining": 60,
            }
        ]
        assert (report["total_allocated"], report["total_remaining"]) == (40, 60)

    @pytest.mark.asyncio
    async def test_legacy_batches_not_counted_until_backfilled(
        self, db_session, factory, order_with_line, operator
    ):
        order, line = order_with_line
        await factory.legacy_batch(order, "GTB-2501-001", 150)

        report = await BatchService(db_session, operator).get_allocation_report(order.id)

        assert report["lines"][0]["allocated"] == 0

    @pytest.mark.asyncio
    async def test_quick_plan_covers_remaining(self, db_session, order_with_line, operator):
        order, line = order_with_line
        service = BatchService(db_session, operator)
        await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=30)])

        plans = await service.quick_plan(order.id)

        assert [(plan.line_id, plan.quantity) for plan in plans] == [(line.id, 70)]
        assert (await service.validate_plans(order.id, plans)).valid is True


# ============================================================================
# Legacy Backfill
# ============================================================================


class TestBackfillLegacyAllocations:
    @pytest.mark.asyncio
    async def test_caps_at_line_quantity(self, db_session, factory, order_with_line, admin):
        order, line = order_with_line
        legacy = await factory.legacy_batch(order, "GTB-2501-001", 150)
        service = BatchService(db_session, admin)

        written = await service.backfill_legacy_allocations(order.id)

        assert written == [{"batch_id": legacy.id, "line_id": line.id, "quantity": 100}]
        report = await service.get_allocation_report(order.id)
        assert report["lines"][0]["allocated"] == 100
        assert report["lines"][0]["remaining"] == 0

    @pytest.mark.asyncio
    async def test_spreads_over_batches_by_capacity(
        self, db_session, factory, order_with_line, admin
    ):
        order, line = order_with_line
        first = await factory.legacy_batch(order, "GTB-2501-001", 60)
        second = await factory.legacy_batch(order, "GTB-2501-002", 60)

        written = await BatchService(db_session, admin).backfill_legacy_allocations(order.id)

        assert [(entry["batch_id"], entry["quantity"]) for entry in written] == [
            (first.id, 60),
            (second.id, 40),
        ]

    @pytest.mark.asyncio
    async def test_second_run_writes_nothing(self, db_session, factory, order_with_line, admin):
        order, _ = order_with_line
        await factory.legacy_batch(order, "GTB-2501-001", 150)
        service = BatchService(db_session, admin)

        await service.backfill_legacy_allocations(order.id)

        assert await service.backfill_legacy_allocations(order.id) == []

    @pytest.mark.asyncio
    async def test_lines_with_items_untouched(self, db_session, factory, order_with_line, admin):
        order, line = order_with_line
        service = BatchService(db_session, admin)
        await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=40)])
        await factory.legacy_batch(order, "GTB-2501-009", 150)

        assert await service.backfill_legacy_allocations(order.id) == []

    @pytest.mark.asyncio
    async def test_audited(self, db_session, factory, order_with_line, admin):
        order, _ = order_with_line
        await factory.legacy_batch(order, "GTB-2501-001", 50)

        await BatchService(db_session, admin).backfill_legacy_allocations(order.id)

        entry = (
            await db_session.execute(
                select(AuditLog).where(
                    AuditLog.entity_id == order.id,
                    AuditLog.action == "allocation_backfill",
                )
            )
        ).scalar_one()
        assert entry.after["items"][0]["quantity"] == 50

    @pytest.mark.asyncio
    async def test_split_after_backfill_keeps_line_allocation(
        self, db_session, factory, order_with_line, admin
    ):
        order, line = order_with_line
        legacy = await factory.legacy_batch(order, "GTB-2501-001", 150)
        service = BatchService(db_session, admin)
        await service.backfill_legacy_allocations(order.id)

        first, second = await service.split_batch(legacy.id, [75, 75])

        first_items = await service.batches.items_for_batch(first.id)
        second_items = await service.batches.items_for_batch(second.id)
        assert [i.bottle_qty_allocated for i in first_items] == [75]
        assert [i.bottle_qty_allocated for i in second_items] == [25]
        report = await service.get_allocation_report(order.id)
        assert report["lines"][0]["allocated"] == 100
        assert report["lines"][0]["remaining"] == 0


# ============================================================================
# Split, Merge, Delete, Schedule
# ============================================================================


class TestSplitBatch:
    @pytest.mark.asyncio
    async def test_split_preserves_total(self, db_session, order_with_line, admin):
        order, line = order_with_line
        service = BatchService(db_session, admin)
        [original] = await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=100)])
        original_id = original.id

        new_batches = await service.split_batch(original_id, [40, 60])

        assert [b.qty_bottle_planned for b in new_batches] == [40, 60]
        assert sum(b.qty_bottle_planned for b in new_batches) == 100
        assert original_id not in {b.id for b in new_batches}
        with pytest.raises(BatchNotFoundError):
            await service.batches.get_batch(original_id)

    @pytest.mark.asyncio
    async def test_split_moves_allocation(self, db_session, order_with_line, admin):
        order, line = order_with_line
        service = BatchService(db_session, admin)
        [original] = await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=100)])

        new_batches = await service.split_batch(original.id, [40, 60])

        for new_batch, expected in zip(new_batches, [40, 60]):
            items = await service.batches.items_for_batch(new_batch.id)
            assert [(i.so_line_id, i.bottle_qty_allocated) for i in items] == [(line.id, expected)]
            assert BATCH_NUMBER.match(new_batch.human_uid)
        report = await service.get_allocation_report(order.id)
        assert report["lines"][0]["allocated"] == 100

    @pytest.mark.asyncio
    async def test_split_audited(self, db_session, order_with_line, admin):
        order, line = order_with_line
        service = BatchService(db_session, admin)
        [original] = await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=100)])

        await service.split_batch(original.id, [50, 50])

        entry = (
            await db_session.execute(
                select(AuditLog).where(AuditLog.entity_id == original.id, AuditLog.action == "split")
            )
        ).scalar_one()
        assert entry.before["qty"] == 100
        assert [b["qty"] for b in entry.after["batches"]] == [50, 50]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "quantities,message",
        [
            ([100], "at least two"),
            ([50, 0, 50], "greater than zero"),
            ([40, 50], "add up to 100"),
        ],
    )
    async def test_invalid_split(self, db_session, order_with_line, admin, quantities, message):
        order, line = order_with_line
        service = BatchService(db_session, admin)
        [original] = await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=100)])

        with pytest.raises(BatchOperationError, match=message):
            await service.split_batch(original.id, quantities)

        assert (await service.batches.get_batch(original.id)).qty_bottle_planned == 100

    @pytest.mark.asyncio
    async def test_legacy_batch_split_keeps_prefix(self, db_session, factory, order_with_line, admin):
        order, _ = order_with_line
        legacy = await factory.legacy_batch(order, "OLD-2401-007", 30)

        new_batches = await BatchService(db_session, admin).split_batch(legacy.id, [10, 20])

        assert all(b.human_uid.startswith("OLD-") for b in new_batches)

    @pytest.mark.asyncio
    async def test_unknown_batch(self, db_session, admin):
        with pytest.raises(BatchNotFoundError):
            await BatchService(db_session, admin).split_batch(uuid.uuid4(), [1, 1])


class TestMergeBatches:
    @pytest.mark.asyncio
    async def test_merge_same_line_sums_item(self, db_session, order_with_line, admin):
        order, line = order_with_line
        service = BatchService(db_session, admin)
        target, other = await service.create_batches(
            order.id,
            [BatchPlan(line_id=line.id, quantity=40), BatchPlan(line_id=line.id, quantity=60)],
        )
        other_id = other.id

        merged = await service.merge_batches(target.id, [other_id])

        assert merged.id == target.id
        assert merged.qty_bottle_planned == 100
        items = await service.batches.items_for_batch(target.id)
        assert [(i.so_line_id, i.bottle_qty_allocated) for i in items] == [(line.id, 100)]
        assert await service.batches.steps_for_batch(other_id) == []
        with pytest.raises(BatchNotFoundError):
            await service.batches.get_batch(other_id)

    @pytest.mark.asyncio
    async def test_merge_repoints_other_lines(self, db_session, factory, admin):
        sku = await factory.sku(code="GTB10", batch_prefix="GTB")
        order = await factory.order(lines=[(sku, 5), (sku, 3)])
        first_line, second_line = order.lines
        service = BatchService(db_session, admin)
        target, other = await service.create_batches(
            order.id,
            [
                BatchPlan(line_id=first_line.id, quantity=50),
                BatchPlan(line_id=second_line.id, quantity=30),
            ],
        )

        await service.merge_batches(target.id, [other.id])

        items = await service.batches.items_for_batch(target.id)
        assert {(i.so_line_id, i.bottle_qty_allocated) for i in items} == {
            (first_line.id, 50),
            (second_line.id, 30),
        }
        report = await service.get_allocation_report(order.id)
        assert report["total_remaining"] == 0

    @pytest.mark.asyncio
    async def test_merge_into_itself_rejected(self, db_session, order_with_line, admin):
        order, line = order_with_line
        service = BatchService(db_session, admin)
        [target] = await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=10)])

        with pytest.raises(BatchOperationError, match="into itself"):
            await service.merge_batches(target.id, [target.id])

    @pytest.mark.asyncio
    async def test_merge_needs_batches(self, db_session, admin):
        with pytest.raises(BatchOperationError, match="at least one"):
            await BatchService(db_session, admin).merge_batches(uuid.uuid4(), [])

    @pytest.mark.asyncio
    async def test_merge_across_orders_rejected(self, db_session, factory, admin):
        sku = await factory.sku()
        first_order = await factory.order(lines=[(sku, 1)])
        second_order = await factory.order(lines=[(sku, 1)])
        service = BatchService(db_session, admin)
        [target] = await service.create_batches(
            first_order.id, [BatchPlan(line_id=first_order.lines[0].id, quantity=10)]
        )
        [other] = await service.create_batches(
            second_order.id, [BatchPlan(line_id=second_order.lines[0].id, quantity=10)]
        )

        with pytest.raises(BatchOperationError, match="same order"):
            await service.merge_batches(target.id, [other.id])

    @pytest.mark.asyncio
    async def test_split_of_multi_line_batch_rejected(self, db_session, factory, admin):
        sku = await factory.sku()
        order = await factory.order(lines=[(sku, 1), (sku, 1)])
        service = BatchService(db_session, admin)
        target, other = await service.create_batches(
            order.id,
            [BatchPlan(line_id=line.id, quantity=10) for line in order.lines],
        )
        await service.merge_batches(target.id, [other.id])

        with pytest.raises(BatchOperationError, match="more than one line"):
            await service.split_batch(target.id, [10, 10])


class TestDeleteAndSchedule:
    @pytest.mark.asyncio
    async def test_delete_frees_allocation(self, db_session, order_with_line, admin):
        order, line = order_with_line
        service = BatchService(db_session, admin)
        [created] = await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=70)])

        await service.delete_batch(created.id)

        report = await service.get_allocation_report(order.id)
        assert report["lines"][0]["remaining"] == 100
        assert await service.batches.steps_for_batch(created.id) == []
        assert await batch_count(db_session, order.id) == 0

    @pytest.mark.asyncio
    async def test_delete_unknown(self, db_session, admin):
        with pytest.raises(BatchNotFoundError):
            await BatchService(db_session, admin).delete_batch(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_schedule(self, db_session, order_with_line, operator):
        order, line = order_with_line
        service = BatchService(db_session, operator)
        [created] = await service.create_batches(order.id, [BatchPlan(line_id=line.id, quantity=10)])
        start = datetime(2025, 11, 3, 8, 0, tzinfo=timezone.utc)

        scheduled = await service.schedule_batch(created.id, start, priority_index=3)

        assert scheduled.planned_start == start
        assert scheduled.priority_index == 3

        cleared = await service.schedule_batch(created.id, None)
        assert cleared.planned_start is None
        assert cleared.priority_index == 3


class TestListBatches:
    @pytest.mark.asyncio
    async def test_lists_order_batches(self, db_session, factory, order_with_line, operator):
        order, line = order_with_line
        service = BatchService(db_session, operator)
        created = await service.create_batches(
            order.id,
            [BatchPlan(line_id=line.id, quantity=30), BatchPlan(line_id=line.id, quantity=20)],
        )
        other = await factory.order()
        await factory.legacy_batch(other, "GTB-2401-001", 10)

        batches = await service.list_batches(order.id)

        assert [b.id for b in batches] == [b.id for b in created]

    @pytest.mark.asyncio
    async def test_unknown_order(self, db_session, operator):
        with pytest.raises(OrderNotFoundError):
            await BatchService(db_session, operator).list_batches(uuid.uuid4())
