"""
Invoice service.

Creates deposit and final invoices (at most one of each per order), marks them
paid, and repairs legacy final invoices that were issued before add-ons were
consolidated onto the order.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger
from orderdesk.core.security import Actor
from orderdesk.database.base import utcnow
from orderdesk.database.models.invoice import (
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    InvoiceType,
)
from orderdesk.database.models.order import DepositStatus
from orderdesk.services.audit.logger import AuditLogger
from orderdesk.services.invoices.repository import InvoiceRepository
from orderdesk.services.notifications.client import (
    NotificationClient,
    get_notification_client,
)
from orderdesk.services.numbering import generate_invoice_number
from orderdesk.services.orders.repository import OrderRepository

logger = get_logger(__name__)

# Invoices within a cent of the parent-only figures count as untouched.
AMOUNT_TOLERANCE = Decimal("0.01")


class InvoiceServiceError(Exception):
    """Base exception for invoice service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class InvoiceConflictError(InvoiceServiceError):
    """Raised when an invoice would break the one-deposit/one-final rule."""

    pass


class InvoiceValidationError(InvoiceServiceError):
    """Raised when invoice input is invalid."""

    pass


class InvoiceService:
    """
    Invoice operations for one request.

    Attributes:
        orders: Order repository
        invoices: Invoice repository
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
        self.invoices = InvoiceRepository(session)
        self.audit = AuditLogger(session, actor.id if actor else None)
        self.notifier = notifier or get_notification_client()

    async def sync_legacy_final_invoice(self, order_id: uuid.UUID) -> bool:
        """
        Bring a pre-consolidation final invoice up to the consolidated total.

        The invoice is rewritten only when all of these hold:

        - the order has a consolidated total above its own subtotal
        - a final invoice exists, is unpaid and has no payments
        - its subtotal and total still equal the parent-only figures
          (subtotal, subtotal + tax) within one cent

        The write is a conditional update, so concurrent callers apply it at
        most once and a second run finds nothing to do.

        Args:
            order_id: Parent order identifier

        Returns:
            True when the invoice was rewritten by this call

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.orders.get_order(order_id)

        consolidated = order.consolidated_total
        if consolidated is None or consolidated <= order.subtotal:
            return False

        invoice = await self.invoices.get_by_type(order_id, InvoiceType.FINAL)
        if invoice is None or invoice.status != InvoiceStatus.UNPAID:
            return False

        if await self.invoices.has_payments(invoice.id):
            logger.debug(
                "Legacy sync skipped, invoice has payments",
                invoice_id=str(invoice.id),
            )
            return False

        tax = invoice.tax or Decimal("0")
        parent_only_total = order.subtotal + tax
        if (
            abs(invoice.subtotal - order.subtotal) > AMOUNT_TOLERANCE
            or abs(invoice.total - parent_only_total) > AMOUNT_TOLERANCE
        ):
            return False

        before = {"subtotal": str(invoice.subtotal), "total": str(invoice.total)}
        rewritten = await self.invoices.rewrite_if_unchanged(
            invoice,
            new_subtotal=consolidated,
            new_total=consolidated + tax,
        )
        if not rewritten:
            logger.info(
                "Legacy sync lost a race, invoice already changed",
                invoice_id=str(invoice.id),
                order_id=str(order_id),
            )
            return False

        await self.audit.record(
            entity="invoice",
            entity_id=invoice.id,
            action="legacy_consolidation_sync",
            before=before,
            after={
                "subtotal": str(invoice.subtotal),
                "total": str(invoice.total),
                "consolidated_total": str(consolidated),
            },
        )

        logger.info(
            "Legacy final invoice synced to consolidated total",
            invoice_id=str(invoice.id),
            order_id=str(order_id),
            consolidated_total=str(consolidated),
        )
        return True

    async def list_invoices(
        self,
        order_id: uuid.UUID,
    ) -> list[tuple[Invoice, list[InvoicePayment]]]:
        """
        Invoices of an order with their payments.

        Runs the legacy consolidation sync first so callers always see the
        corrected final invoice.
        """
        await self.sync_legacy_final_invoice(order_id)

        invoices = await self.invoices.list_for_order(order_id)
        payments = await self.invoices.payments_by_invoice([inv.id for inv in invoices])
        return [(inv, payments.get(inv.id, [])) for inv in invoices]

    async def create_invoice(
        self,
        order_id: uuid.UUID,
        invoice_type: InvoiceType,
        amount: Optional[Decimal] = None,
    ) -> Invoice:
        """
        Create a deposit or final invoice.

        Args:
            order_id: Order identifier
            invoice_type: Deposit or final
            amount: Subtotal override; defaults to the order's deposit amount
                for deposits and its consolidated total (or subtotal) for finals

        Returns:
            The new unpaid invoice

        Raises:
            OrderNotFoundError: If the order does not exist
            InvoiceConflictError: If the order already has this invoice type
            InvoiceValidationError: If the amount is not positive or the order
                takes no deposit
        """
        order = await self.orders.get_order(order_id, for_update=True)

        existing = await self.invoices.get_by_type(order_id, invoice_type)
        if existing is not None:
            raise InvoiceConflictError(
                f"Order already has a {invoice_type.value} invoice",
                order_id=str(order_id),
                invoice_no=existing.invoice_no,
            )

        if invoice_type == InvoiceType.DEPOSIT:
            if not order.deposit_required:
                raise InvoiceValidationError(
                    "Order does not require a deposit",
                    order_id=str(order_id),
                )
            default_amount = order.deposit_amount
        else:
            default_amount = order.effective_total

        subtotal = Decimal(amount) if amount is not None else default_amount
        if subtotal is None or subtotal <= 0:
            raise InvoiceValidationError(
                "Invoice amount must be greater than zero",
                order_id=str(order_id),
                amount=str(subtotal),
            )

        tax = Decimal("0.00")
        invoice = Invoice(
            so_id=order.id,
            invoice_no=await generate_invoice_number(self.session, invoice_type),
            type=invoice_type,
            status=InvoiceStatus.UNPAID,
            subtotal=subtotal,
            tax=tax,
            total=subtotal + tax,
            issued_at=utcnow(),
            version=1,
        )
        await self.invoices.add(invoice)

        await self.audit.record(
            entity="invoice",
            entity_id=invoice.id,
            action="created",
            after=invoice.to_dict(exclude={"created_at", "updated_at"}),
        )

        logger.info(
            "Invoice created",
            invoice_id=str(invoice.id),
            invoice_no=invoice.invoice_no,
            order_id=str(order_id),
            type=invoice_type.value,
            total=str(invoice.total),
        )

        self.notifier.dispatch_on_commit(
            self.session,
            "invoice_created",
            order_id=str(order_id),
            invoice_id=str(invoice.id),
            invoice_no=invoice.invoice_no,
            total=str(invoice.total),
        )
        return invoice

    async def mark_paid(self, invoice_id: uuid.UUID) -> Invoice:
        """
        Mark an invoice paid.

        A paid deposit invoice also marks the order's deposit paid.

        Raises:
            InvoiceNotFoundError: If the invoice does not exist
            InvoiceConflictError: If the invoice is already paid
        """
        invoice = await self.invoices.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise InvoiceConflictError(
                "Invoice is already paid",
                invoice_id=str(invoice_id),
                invoice_no=invoice.invoice_no,
            )

        invoice.status = InvoiceStatus.PAID
        invoice.paid_at = utcnow()
        invoice.version += 1

        if invoice.type == InvoiceType.DEPOSIT:
            order = await self.orders.get_order(invoice.so_id)
            order.deposit_status = DepositStatus.PAID

        await self.session.flush()

        await self.audit.record(
            entity="invoice",
            entity_id=invoice.id,
            action="marked_paid",
            before={"status": InvoiceStatus.UNPAID.value},
            after={"status": InvoiceStatus.PAID.value, "paid_at": invoice.paid_at.isoformat()},
        )

        logger.info(
            "Invoice marked paid",
            invoice_id=str(invoice.id),
            invoice_no=invoice.invoice_no,
        )

        self.notifier.dispatch_on_commit(
            self.session,
            "invoice_paid",
            order_id=str(invoice.so_id),
            invoice_id=str(invoice.id),
            invoice_no=invoice.invoice_no,
        )
        return invoice
