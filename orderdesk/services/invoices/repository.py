"""
Invoice data access.

Amount rewrites go through conditional UPDATE statements whose WHERE clause
re-checks the state the caller decided on (version, unpaid status, no
payments). A rewrite that lost a race matches zero rows and changes nothing.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import exists, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger
from orderdesk.database.models.invoice import (
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    InvoiceType,
)

logger = get_logger(__name__)


class InvoiceRepositoryError(Exception):
    """Base exception for invoice repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class InvoiceNotFoundError(InvoiceRepositoryError):
    """Raised when invoice is not found."""

    pass


class InvoiceRepository:
    """Repository for invoices and their payments."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_invoice(self, invoice_id: uuid.UUID) -> Invoice:
        """
        Get invoice by ID.

        Raises:
            InvoiceNotFoundError: If no invoice has this ID
        """
        result = await self.session.execute(select(Invoice).where(Invoice.id == invoice_id))
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError("Invoice not found", invoice_id=str(invoice_id))
        return invoice

    async def list_for_order(self, order_id: uuid.UUID) -> Sequence[Invoice]:
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.so_id == order_id)
            .order_by(Invoice.created_at, Invoice.invoice_no)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_by_type(
        self,
        order_id: uuid.UUID,
        invoice_type: InvoiceType,
    ) -> Optional[Invoice]:
        """The order's invoice of one type, if any."""
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.so_id == order_id, Invoice.type == invoice_type)
            .order_by(Invoice.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def payments_by_invoice(
        self,
        invoice_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, list[InvoicePayment]]:
        """Payments grouped by invoice, oldest first."""
        grouped: dict[uuid.UUID, list[InvoicePayment]] = {
            invoice_id: [] for invoice_id in invoice_ids
        }
        if not invoice_ids:
            return grouped

        result = await self.session.execute(
            select(InvoicePayment)
            .where(InvoicePayment.invoice_id.in_(invoice_ids))
            .order_by(InvoicePayment.created_at)
        )
        for payment in result.scalars().all():
            grouped[payment.invoice_id].append(payment)
        return grouped

    async def has_payments(self, invoice_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(exists().where(InvoicePayment.invoice_id == invoice_id))
        )
        return bool(result.scalar())

    async def add(self, invoice: Invoice) -> Invoice:
        self.session.add(invoice)
        await self.session.flush()
        return invoice

    async def rewrite_if_unchanged(
        self,
        invoice: Invoice,
        new_subtotal: Decimal,
        new_total: Decimal,
    ) -> bool:
        """
        Rewrite amounts only if the invoice is still as the caller saw it.

        The row must still carry the caller's ``version`` and ``subtotal``, be
        unpaid and have no payments recorded.

        Args:
            invoice: Invoice as loaded by the caller
            new_subtotal: Replacement subtotal
            new_total: Replacement total

        Returns:
            True when the row was rewritten, False when another writer got
            there first or a payment landed in between

        Raises:
            InvoiceRepositoryError: If the update fails
        """
        stmt = (
            update(Invoice)
            .where(
                Invoice.id == invoice.id,
                Invoice.version == invoice.version,
                Invoice.status == InvoiceStatus.UNPAID,
                Invoice.subtotal == invoice.subtotal,
                ~exists().where(InvoicePayment.invoice_id == Invoice.id),
            )
            .values(
                subtotal=new_subtotal,
                total=new_total,
                version=Invoice.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(
                "Conditional invoice rewrite failed",
                invoice_id=str(invoice.id),
                error=str(e),
            )
            raise InvoiceRepositoryError(
                "Conditional invoice rewrite failed",
                invoice_id=str(invoice.id),
                error=str(e),
            ) from e

        if result.rowcount == 0:
            return False

        await self.session.refresh(invoice)
        return True

    async def propagate_to_unpaid_final(
        self,
        order_id: uuid.UUID,
        consolidated_total: Decimal,
    ) -> Optional[Invoice]:
        """
        Point an unpaid final invoice at a new consolidated total.

        Subtotal becomes the consolidated total and total adds the invoice's
        existing tax. Paid invoices are left alone.

        Returns:
            The rewritten invoice, or None when there is no unpaid final invoice
        """
        invoice = await self.get_by_type(order_id, InvoiceType.FINAL)
        if invoice is None or invoice.status != InvoiceStatus.UNPAID:
            return None

        stmt = (
            update(Invoice)
            .where(
                Invoice.id == invoice.id,
                Invoice.status == InvoiceStatus.UNPAID,
            )
            .values(
                subtotal=consolidated_total,
                total=consolidated_total + Invoice.tax,
                version=Invoice.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            return None

        await self.session.refresh(invoice)
        return invoice
