"""
Invoice API endpoints.

Listing invoices runs the legacy consolidation sync, so a final invoice issued
before add-ons were consolidated is corrected the first time it is viewed.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from orderdesk.api.deps import DatabaseSession, Notifier, StaffActor
from orderdesk.core.logging import get_logger
from orderdesk.database.models.invoice import Invoice, InvoicePayment
from orderdesk.schemas.invoices import (
    InvoiceCreateRequest,
    InvoicePaymentResponse,
    InvoiceResponse,
)
from orderdesk.services.invoices.repository import InvoiceNotFoundError
from orderdesk.services.invoices.service import (
    InvoiceConflictError,
    InvoiceService,
    InvoiceValidationError,
)
from orderdesk.services.orders.repository import OrderNotFoundError

logger = get_logger(__name__)

router = APIRouter(tags=["invoices"])


def _to_response(invoice: Invoice, payments: list[InvoicePayment]) -> InvoiceResponse:
    response = InvoiceResponse.model_validate(invoice)
    response.payments = [InvoicePaymentResponse.model_validate(p) for p in payments]
    return response


@router.get(
    "/orders/{order_id}/invoices",
    response_model=list[InvoiceResponse],
    summary="List order invoices",
)
async def list_invoices(
    order_id: UUID,
    actor: StaffActor,
    db: DatabaseSession,
) -> list[InvoiceResponse]:
    try:
        invoices = await InvoiceService(db, actor).list_invoices(order_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except Exception as e:
        logger.error(
            "Unexpected error listing invoices",
            order_id=str(order_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        ) from e

    return [_to_response(invoice, payments) for invoice, payments in invoices]


@router.post(
    "/orders/{order_id}/invoices",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create invoice",
    description="Create the order's deposit or final invoice; one of each per order",
)
async def create_invoice(
    order_id: UUID,
    request: InvoiceCreateRequest,
    actor: StaffActor,
    db: DatabaseSession,
    notifier: Notifier,
) -> InvoiceResponse:
    """
    Create invoice.

    Raises:
        HTTPException: 400 if the amount or type is invalid for the order,
            404 if the order does not exist, 409 if the order already has an
            invoice of this type
    """
    try:
        invoice = await InvoiceService(db, actor, notifier).create_invoice(
            order_id,
            request.type,
            request.amount,
        )
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvoiceConflictError as e:
        logger.warning("Invoice conflict", order_id=str(order_id), error=str(e), context=e.context)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except InvoiceValidationError as e:
        logger.warning(
            "Invoice validation failed",
            order_id=str(order_id),
            error=str(e),
            context=e.context,
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except Exception as e:
        logger.error(
            "Unexpected error creating invoice",
            order_id=str(order_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        ) from e

    return _to_response(invoice, [])


@router.post(
    "/invoices/{invoice_id}/mark-paid",
    response_model=InvoiceResponse,
    summary="Mark invoice paid",
)
async def mark_invoice_paid(
    invoice_id: UUID,
    actor: StaffActor,
    db: DatabaseSession,
    notifier: Notifier,
) -> InvoiceResponse:
    try:
        invoice = await InvoiceService(db, actor, notifier).mark_paid(invoice_id)
    except InvoiceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvoiceConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except Exception as e:
        logger.error(
            "Unexpected error marking invoice paid",
            invoice_id=str(invoice_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        ) from e

    return _to_response(invoice, [])
