"""
Batch allocation arithmetic.

Pure functions over order lines, batch items and batch plans. A line's
allocation is the sum of ``bottle_qty_allocated`` over the batch items that
point at it; what is left to plan is ``bottle_qty - allocated``.

``infer_legacy_allocations`` reconstructs allocations for batches created
before batch items existed, by matching batch-number prefixes to SKU batch
prefixes. It only feeds the one-off backfill; reads always use batch items.
"""

import uuid
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field


class LineLike(Protocol):
    id: uuid.UUID
    bottle_qty: int


class BatchItemLike(Protocol):
    so_line_id: uuid.UUID
    bottle_qty_allocated: int


class BatchLike(Protocol):
    human_uid: str
    qty_bottle_planned: int


class BatchPlan(BaseModel):
    """Request to produce part of one order line in a new batch."""

    line_id: uuid.UUID
    quantity: int
    planned_start: Optional[datetime] = None


class PlanIssue(BaseModel):
    """One problem found in a set of batch plans."""

    model_config = ConfigDict(frozen=True)

    line_id: Optional[uuid.UUID] = None
    message: str


class PlanValidation(BaseModel):
    """Outcome of batch plan validation."""

    valid: bool
    issues: list[PlanIssue] = Field(default_factory=list)

    def issues_by_line(self) -> dict[Optional[uuid.UUID], list[str]]:
        grouped: dict[Optional[uuid.UUID], list[str]] = defaultdict(list)
        for issue in self.issues:
            grouped[issue.line_id].append(issue.message)
        return dict(grouped)


def batch_uid_prefix(human_uid: str) -> str:
    """Text before the first ``-`` of a batch number."""
    return human_uid.split("-", 1)[0]


def compute_line_allocations(items: Iterable[BatchItemLike]) -> dict[uuid.UUID, int]:
    """
    Sum explicit allocations per order line.

    Args:
        items: Batch items of an order's batches

    Returns:
        Mapping of line id to bottles allocated; lines without items are absent
    """
    allocations: dict[uuid.UUID, int] = defaultdict(int)
    for item in items:
        allocations[item.so_line_id] += item.bottle_qty_allocated
    return dict(allocations)


def remaining_quantity(line: LineLike, allocations: Mapping[uuid.UUID, int]) -> int:
    """Bottles of the line not yet allocated to any batch."""
    return line.bottle_qty - allocations.get(line.id, 0)


def infer_legacy_allocations(
    lines: Sequence[LineLike],
    batch_keys: Mapping[uuid.UUID, str],
    batches: Sequence[BatchLike],
    explicit: Mapping[uuid.UUID, int],
) -> dict[uuid.UUID, int]:
    """
    Infer allocations for lines that have no batch items.

    For each line with zero explicit allocation, sums the planned quantity of
    the batches whose number prefix equals the line's SKU batch key, and caps
    the result at the line's ``bottle_qty``.

    Args:
        lines: Order lines
        batch_keys: Line id to SKU batch prefix (the SKU code when unset)
        batches: Candidate batches of the same order
        explicit: Explicit allocations from ``compute_line_allocations``

    Returns:
        Mapping of line id to inferred bottles, for lines with a match only

    Example:
        A line of 100 bottles with no items and a matching 150-bottle batch
        infers 100.
    """
    planned_by_prefix: dict[str, int] = defaultdict(int)
    for batch in batches:
        planned_by_prefix[batch_uid_prefix(batch.human_uid)] += batch.qty_bottle_planned

    inferred: dict[uuid.UUID, int] = {}
    for line in lines:
        if explicit.get(line.id, 0) > 0:
            continue
        key = batch_keys.get(line.id)
        if not key:
            continue
        planned = planned_by_prefix.get(key, 0)
        if planned > 0:
            inferred[line.id] = min(planned, line.bottle_qty)
    return inferred


def validate_batch_plans(
    lines: Sequence[LineLike],
    allocations: Mapping[uuid.UUID, int],
    plans: Sequence[BatchPlan],
) -> PlanValidation:
    """
    Check a set of batch plans against the lines' remaining quantities.

    Every problem is collected rather than stopping at the first: empty plan
    sets, non-positive quantities, unknown lines, and lines whose plans exceed
    what remains to be allocated.

    Args:
        lines: Order lines
        allocations: Current allocation per line
        plans: Proposed plans

    Returns:
        PlanValidation listing each issue with the line it concerns
    """
    if not plans:
        return PlanValidation(
            valid=False,
            issues=[PlanIssue(message="At least one batch plan is required")],
        )

    lines_by_id = {line.id: line for line in lines}
    issues: list[PlanIssue] = []
    planned: dict[uuid.UUID, int] = defaultdict(int)

    for plan in plans:
        if plan.line_id not in lines_by_id:
            issues.append(PlanIssue(line_id=plan.line_id, message="Unknown order line"))
            continue
        if plan.quantity <= 0:
            issues.append(
                PlanIssue(line_id=plan.line_id, message="Quantity must be greater than zero")
            )
            continue
        planned[plan.line_id] += plan.quantity

    for line_id, quantity in planned.items():
        remaining = remaining_quantity(lines_by_id[line_id], allocations)
        if remaining - quantity < 0:
            issues.append(
                PlanIssue(
                    line_id=line_id,
                    message=(
                        f"Planned {quantity} bottles but only {max(remaining, 0)} "
                        "remain unallocated"
                    ),
                )
            )

    return PlanValidation(valid=not issues, issues=issues)


def quick_plan(
    lines: Sequence[LineLike],
    allocations: Mapping[uuid.UUID, int],
) -> list[BatchPlan]:
    """One plan per line that still has bottles left, for all of them."""
    plans = []
    for line in lines:
        remaining = remaining_quantity(line, allocations)
        if remaining > 0:
            plans.append(BatchPlan(line_id=line.id, quantity=remaining))
    return plans
