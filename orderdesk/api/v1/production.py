"""
Production batch API endpoints.

Allocation reporting, batch plan validation, Quick Plan, batch creation and
the batch maintenance operations (split, merge, schedule, delete, backfill).
"""

from typing import NoReturn
from uuid import UUID

from fastapi import APIRouter, HTTPException, Response, status

from orderdesk.api.deps import AdminActor, DatabaseSession, Notifier, StaffActor
from orderdesk.core.logging import get_logger
from orderdesk.schemas.production import (
    AllocationReportResponse,
    BackfillResponse,
    BatchPlanRequest,
    BatchPlansRequest,
    BatchResponse,
    MergeBatchesRequest,
    PlanValidationResponse,
    QuickPlanResponse,
    ScheduleBatchRequest,
    SplitBatchRequest,
)
from orderdesk.services.orders.repository import OrderNotFoundError
from orderdesk.services.production.repository import BatchNotFoundError
from orderdesk.services.production.service import (
    BatchOperationError,
    BatchPlanValidationError,
    BatchService,
)

logger = get_logger(__name__)

router = APIRouter(tags=["production"])


def _raise_http(e: Exception, operation: str, **context) -> NoReturn:
    """Map a batch service error onto an HTTP error."""
    if isinstance(e, (OrderNotFoundError, BatchNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    if isinstance(e, BatchPlanValidationError):
        logger.warning(
            "Batch plan validation failed",
            operation=operation,
            issues=[issue.message for issue in e.validation.issues],
            **context,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": str(e),
                "issues": [
                    {
                        "line_id": str(issue.line_id) if issue.line_id else None,
                        "message": issue.message,
                    }
                    for issue in e.validation.issues
                ],
            },
        ) from e

    if isinstance(e, BatchOperationError):
        logger.warning(
            "Batch operation rejected",
            operation=operation,
            error=str(e),
            context=e.context,
            **context,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    logger.error(
        "Unexpected error in batch operation",
        operation=operation,
        error=str(e),
        error_type=type(e).__name__,
        **context,
    )
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred",
    ) from e


@router.get(
    "/orders/{order_id}/allocations",
    response_model=AllocationReportResponse,
    summary="Allocation report",
)
async def get_allocations(
    order_id: UUID,
    actor: StaffActor,
    db: DatabaseSession,
) -> AllocationReportResponse:
    """Allocated and remaining bottles for every line of an order."""
    try:
        report = await BatchService(db, actor).get_allocation_report(order_id)
    except Exception as e:
        _raise_http(e, "allocation_report", order_id=str(order_id))

    return AllocationReportResponse(**report)


@router.get(
    "/orders/{order_id}/batches",
    response_model=list[BatchResponse],
    summary="List order batches",
)
async def list_batches(
    order_id: UUID,
    actor: StaffActor,
    db: DatabaseSession,
) -> list[BatchResponse]:
    try:
        batches = await BatchService(db, actor).list_batches(order_id)
    except Exception as e:
        _raise_http(e, "list_batches", order_id=str(order_id))

    return [BatchResponse.model_validate(batch) for batch in batches]


@router.post(
    "/orders/{order_id}/batches/validate",
    response_model=PlanValidationResponse,
    summary="Validate batch plans",
)
async def validate_batch_plans(
    order_id: UUID,
    request: BatchPlansRequest,
    actor: StaffActor,
    db: DatabaseSession,
) -> PlanValidationResponse:
    """Check plans against stored allocations without writing anything."""
    try:
        validation = await BatchService(db, actor).validate_plans(order_id, request.to_plans())
    except Exception as e:
        _raise_http(e, "validate_plans", order_id=str(order_id))

    return PlanValidationResponse.model_validate(validation)


@router.post(
    "/orders/{order_id}/batches/quick-plan",
    response_model=QuickPlanResponse,
    summary="Quick Plan",
    description="One plan per line covering everything still unallocated",
)
async def quick_plan(
    order_id: UUID,
    actor: StaffActor,
    db: DatabaseSession,
) -> QuickPlanResponse:
    try:
        plans = await BatchService(db, actor).quick_plan(order_id)
    except Exception as e:
        _raise_http(e, "quick_plan", order_id=str(order_id))

    return QuickPlanResponse(
        plans=[
            BatchPlanRequest(
                line_id=plan.line_id,
                quantity=plan.quantity,
                planned_start=plan.planned_start,
            )
            for plan in plans
        ]
    )


@router.post(
    "/orders/{order_id}/batches",
    response_model=list[BatchResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create batches from plans",
)
async def create_batches(
    order_id: UUID,
    request: BatchPlansRequest,
    actor: StaffActor,
    db: DatabaseSession,
    notifier: Notifier,
) -> list[BatchResponse]:
    """
    Create batches from plans, all or none.

    Raises:
        HTTPException: 400 with per-line issues if any plan is invalid, 404 if
            the order does not exist
    """
    logger.info(
        "Creating batches",
        order_id=str(order_id),
        plan_count=len(request.plans),
        actor_id=actor.id,
    )
    try:
        batches = await BatchService(db, actor, notifier).create_batches(
            order_id,
            request.to_plans(),
        )
    except Exception as e:
        _raise_http(e, "create_batches", order_id=str(order_id))

    return [BatchResponse.model_validate(batch) for batch in batches]


@router.post(
    "/orders/{order_id}/batches/backfill",
    response_model=BackfillResponse,
    summary="Backfill legacy allocations",
    description="Write batch items for batches created without them (admin only)",
)
async def backfill_allocations(
    order_id: UUID,
    actor: AdminActor,
    db: DatabaseSession,
) -> BackfillResponse:
    try:
        items = await BatchService(db, actor).backfill_legacy_allocations(order_id)
    except Exception as e:
        _raise_http(e, "backfill", order_id=str(order_id))

    return BackfillResponse(order_id=order_id, items=items)


@router.post(
    "/batches/{batch_id}/split",
    response_model=list[BatchResponse],
    summary="Split batch",
)
async def split_batch(
    batch_id: UUID,
    request: SplitBatchRequest,
    actor: AdminActor,
    db: DatabaseSession,
) -> list[BatchResponse]:
    try:
        batches = await BatchService(db, actor).split_batch(batch_id, request.quantities)
    except Exception as e:
        _raise_http(e, "split_batch", batch_id=str(batch_id))

    return [BatchResponse.model_validate(batch) for batch in batches]


@router.post(
    "/batches/{batch_id}/merge",
    response_model=BatchResponse,
    summary="Merge batches into this batch",
)
async def merge_batches(
    batch_id: UUID,
    request: MergeBatchesRequest,
    actor: AdminActor,
    db: DatabaseSession,
) -> BatchResponse:
    try:
        target = await BatchService(db, actor).merge_batches(batch_id, request.batch_ids)
    except Exception as e:
        _raise_http(e, "merge_batches", batch_id=str(batch_id))

    return BatchResponse.model_validate(target)


@router.patch(
    "/batches/{batch_id}/schedule",
    response_model=BatchResponse,
    summary="Schedule batch",
)
async def schedule_batch(
    batch_id: UUID,
    request: ScheduleBatchRequest,
    actor: StaffActor,
    db: DatabaseSession,
) -> BatchResponse:
    try:
        batch = await BatchService(db, actor).schedule_batch(
            batch_id,
            request.planned_start,
            request.priority_index,
        )
    except Exception as e:
        _raise_http(e, "schedule_batch", batch_id=str(batch_id))

    return BatchResponse.model_validate(batch)


@router.delete(
    "/batches/{batch_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete batch",
)
async def delete_batch(
    batch_id: UUID,
    actor: AdminActor,
    db: DatabaseSession,
) -> Response:
    try:
        await BatchService(db, actor).delete_batch(batch_id)
    except Exception as e:
        _raise_http(e, "delete_batch", batch_id=str(batch_id))

    return Response(status_code=status.HTTP_204_NO_CONTENT)
