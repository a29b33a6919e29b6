"""
Add-on API endpoints.

Eligibility checks, add-on creation (including admin override) and the
consolidated parent-plus-add-ons view.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from orderdesk.api.deps import DatabaseSession, Notifier, StaffActor
from orderdesk.core.logging import get_logger
from orderdesk.schemas.addons import (
    AddOnCreateRequest,
    AddOnCreateResponse,
    AddOnEligibilityResponse,
    AddOnLinkResponse,
    ConsolidatedGroupResponse,
    ConsolidatedSummaryResponse,
    OrderLineResponse,
    OrderSummaryResponse,
)
from orderdesk.services.addons.consolidation import ConsolidationService
from orderdesk.services.addons.service import (
    AddOnPolicyError,
    AddOnService,
    AddOnValidationError,
)
from orderdesk.services.orders.repository import OrderNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["addons"])


@router.get(
    "/{order_id}/addons/eligibility",
    response_model=AddOnEligibilityResponse,
    summary="Check add-on eligibility",
)
async def get_addon_eligibility(
    order_id: UUID,
    actor: StaffActor,
    db: DatabaseSession,
) -> AddOnEligibilityResponse:
    """
    Report whether add-ons can be created for an order and how large they may be.

    Raises:
        HTTPException: 404 if the order does not exist
    """
    try:
        eligibility = await AddOnService(db, actor).get_eligibility(order_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return AddOnEligibilityResponse(**eligibility)


@router.post(
    "/{order_id}/addons",
    response_model=AddOnCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create add-on order",
    description="Create an add-on order; past the add-on window admins may override with a note",
)
async def create_addon(
    order_id: UUID,
    request: AddOnCreateRequest,
    actor: StaffActor,
    db: DatabaseSession,
    notifier: Notifier,
) -> AddOnCreateResponse:
    """
    Create an add-on order for a parent order.

    Raises:
        HTTPException: 400 if the add-on is invalid or too large, 403 if the
            add-on window is closed and no valid override applies, 404 if the
            parent does not exist, 500 on unexpected failure
    """
    logger.info(
        "Creating add-on",
        order_id=str(order_id),
        actor_id=actor.id,
        line_count=len(request.lines),
        override=request.override,
    )

    try:
        result = await AddOnService(db, actor, notifier).create_addon(
            parent_id=order_id,
            lines=request.lines,
            reason=request.reason,
            override=request.override,
            override_note=request.override_note,
        )

    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    except AddOnPolicyError as e:
        logger.warning(
            "Add-on blocked by policy",
            order_id=str(order_id),
            actor_id=actor.id,
            error=str(e),
            context=e.context,
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e)) from e

    except AddOnValidationError as e:
        logger.warning(
            "Add-on validation failed",
            order_id=str(order_id),
            error=str(e),
            context=e.context,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    except Exception as e:
        logger.error(
            "Unexpected error creating add-on",
            order_id=str(order_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        ) from e

    return AddOnCreateResponse(
        addon_order=OrderSummaryResponse.model_validate(result["addon_order"]),
        link=AddOnLinkResponse.model_validate(result["link"]),
        addon_total=result["addon_total"],
        override=result["override"],
        consolidated_total=result["consolidated_total"],
        invoice_updated=result["invoice_updated"],
    )


@router.get(
    "/{order_id}/consolidated",
    response_model=ConsolidatedSummaryResponse,
    summary="Consolidated order view",
)
async def get_consolidated_summary(
    order_id: UUID,
    actor: StaffActor,
    db: DatabaseSession,
) -> ConsolidatedSummaryResponse:
    """Parent order and its add-ons viewed as one order."""
    try:
        summary = await ConsolidationService(db).get_consolidated_summary(order_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return ConsolidatedSummaryResponse(
        parent=OrderSummaryResponse.model_validate(summary["parent"]),
        addons=[OrderSummaryResponse.model_validate(addon) for addon in summary["addons"]],
        consolidated_total=summary["consolidated_total"],
        stored_consolidated_total=summary["stored_consolidated_total"],
        line_item_count=summary["line_item_count"],
        bottle_count=summary["bottle_count"],
        show_consolidated=summary["show_consolidated"],
        groups=[
            ConsolidatedGroupResponse(
                **{key: value for key, value in group.items() if key != "lines"},
                lines=[OrderLineResponse(**line) for line in group["lines"]],
            )
            for group in summary["groups"]
        ],
    )
