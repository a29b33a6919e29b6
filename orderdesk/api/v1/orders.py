"""
Order status API endpoints.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from orderdesk.api.deps import DatabaseSession, Notifier, StaffActor
from orderdesk.core.logging import get_logger
from orderdesk.schemas.orders import OrderStatusResponse, OrderStatusUpdate
from orderdesk.services.orders.repository import OrderNotFoundError
from orderdesk.services.orders.service import OrderStatusService, StateTransitionError

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "/{order_id}/status",
    response_model=OrderStatusResponse,
    summary="Change order status",
    description="Change an order's status; add-ons follow the parent into fulfillment",
)
async def change_order_status(
    order_id: UUID,
    request: OrderStatusUpdate,
    actor: StaffActor,
    db: DatabaseSession,
    notifier: Notifier,
) -> OrderStatusResponse:
    """
    Change order status.

    Raises:
        HTTPException: 404 if the order does not exist, 409 if the order is
            closed, 500 on unexpected failure
    """
    logger.info(
        "Changing order status",
        order_id=str(order_id),
        new_status=request.status.value,
        actor_id=actor.id,
    )

    try:
        result = await OrderStatusService(db, actor, notifier).change_status(
            order_id,
            request.status,
        )

    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    except StateTransitionError as e:
        logger.warning(
            "Invalid status transition",
            order_id=str(order_id),
            current_state=e.current_state.value,
            target_state=e.target_state.value,
        )
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    except Exception as e:
        logger.error(
            "Unexpected error changing order status",
            order_id=str(order_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        ) from e

    order = result["order"]
    return OrderStatusResponse(
        order_id=order.id,
        human_uid=order.human_uid,
        previous_status=result["previous_status"],
        status=order.status,
        synced_addons=result["synced_addons"],
        consolidated_total=result["consolidated_total"],
    )
