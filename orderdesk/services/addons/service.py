"""
Add-on service.

Creates add-on orders against a parent order. Normal creation is open until
packing starts; after that an admin may still override with a written note
while the order is unpaid and unshipped. Override add-ons are consolidated
onto the parent immediately and pushed into an unpaid final invoice.

Everything an add-on creation writes (child order, lines, link, consolidated
total, invoice amounts, audit entry) goes through the caller's session and
commits or rolls back as one unit.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger, log_performance
from orderdesk.core.security import Actor
from orderdesk.database.base import utcnow
from orderdesk.database.models.order import (
    AddOnStatus,
    OrderAddOn,
    SalesOrder,
    SalesOrderLine,
    SellMode,
)
from orderdesk.schemas.addons import AddOnLineRequest
from orderdesk.services.addons.consolidation import ConsolidationService
from orderdesk.services.addons.policy import (
    can_admin_override_addon,
    can_create_addon,
    get_addon_blocked_reason,
    validate_addon_size,
)
from orderdesk.services.audit.logger import AuditLogger
from orderdesk.services.invoices.repository import InvoiceRepository
from orderdesk.services.notifications.client import (
    NotificationClient,
    get_notification_client,
)
from orderdesk.services.numbering import ADDON_ORDER_PREFIX, generate_order_number
from orderdesk.services.orders.enums import OrderStatus
from orderdesk.services.orders.repository import OrderRepository
from orderdesk.services.settings.repository import SettingsRepository

logger = get_logger(__name__)


class AddOnServiceError(Exception):
    """Base exception for add-on service errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class AddOnPolicyError(AddOnServiceError):
    """Raised when the parent's status or the caller's role forbids the add-on."""

    pass


class AddOnValidationError(AddOnServiceError):
    """Raised when the requested add-on content is invalid."""

    pass


class AddOnService:
    """
    Add-on creation and eligibility.

    Attributes:
        orders: Order repository
        settings: Business settings, read fresh per decision
        consolidation: Consolidated total calculator
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
        """
        Initialize add-on service.

        Args:
            session: Async database session
            actor: Caller, required for creation
            notifier: Notification client, defaults to the configured one
        """
        self.session = session
        self.actor = actor
        self.orders = OrderRepository(session)
        self.settings = SettingsRepository(session)
        self.consolidation = ConsolidationService(session)
        self.invoices = InvoiceRepository(session)
        self.audit = AuditLogger(session, actor.id if actor else None)
        self.notifier = notifier or get_notification_client()

    async def get_eligibility(self, order_id: uuid.UUID) -> dict[str, Any]:
        """
        Add-on eligibility for an order.

        Returns:
            Dictionary with the policy gates, the blocked reason, the current
            size limit and the largest add-on subtotal it allows
        """
        order = await self.orders.get_order(order_id)
        max_percent = await self.settings.get_addon_max_percent()
        parent_total = order.effective_total

        max_addon_total: Optional[Decimal] = None
        if max_percent > 0:
            max_addon_total = (parent_total * max_percent / 100).quantize(Decimal("0.01"))

        return {
            "order_id": order.id,
            "status": order.status,
            "can_create": can_create_addon(order.status),
            "can_override": can_admin_override_addon(order.status),
            "blocked_reason": get_addon_blocked_reason(order.status),
            "max_percent": max_percent,
            "parent_total": parent_total,
            "max_addon_total": max_addon_total,
        }

    def _check_policy(
        self,
        parent: SalesOrder,
        override: bool,
        override_note: Optional[str],
    ) -> bool:
        """
        Apply the add-on window and override rules.

        Returns:
            True when creation goes through the override path

        Raises:
            AddOnPolicyError: If creation is not allowed
        """
        if can_create_addon(parent.status):
            return False

        blocked_reason = get_addon_blocked_reason(parent.status)
        context = {
            "order_id": str(parent.id),
            "status": parent.status.value,
            "blocked_reason": blocked_reason,
        }

        if not override:
            raise AddOnPolicyError(blocked_reason, **context)

        if self.actor is None or not self.actor.is_admin:
            raise AddOnPolicyError("Only admins can override the add-on window", **context)

        if not override_note or not override_note.strip():
            raise AddOnPolicyError("An override note is required", **context)

        if not can_admin_override_addon(parent.status):
            raise AddOnPolicyError(
                f"Add-ons cannot be overridden for {parent.status.display_name} orders",
                **context,
            )

        return True

    async def _price_lines(
        self,
        requested: Sequence[AddOnLineRequest],
        kit_size: int,
    ) -> list[SalesOrderLine]:
        """Build priced order lines from the requested SKUs and quantities."""
        skus = await self.orders.get_skus([line.sku_id for line in requested])

        priced = []
        for request in requested:
            sku = skus.get(request.sku_id)
            if sku is None or not sku.active:
                raise AddOnValidationError(
                    "SKU not found or inactive",
                    sku_id=str(request.sku_id),
                )

            if request.sell_mode == SellMode.KIT:
                unit_price = sku.price_per_kit
                bottle_qty = request.quantity * kit_size
            else:
                unit_price = sku.price_per_piece
                bottle_qty = request.quantity

            priced.append(
                SalesOrderLine(
                    sku_id=sku.id,
                    sell_mode=request.sell_mode,
                    qty_entered=request.quantity,
                    bottle_qty=bottle_qty,
                    unit_price=unit_price,
                    line_subtotal=unit_price * request.quantity,
                )
            )
        return priced

    async def create_addon(
        self,
        parent_id: uuid.UUID,
        lines: Sequence[AddOnLineRequest],
        reason: Optional[str] = None,
        override: bool = False,
        override_note: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Create an add-on order for a parent order.

        Args:
            parent_id: Parent order identifier
            lines: Requested SKU lines, at least one
            reason: Optional reason, defaults to ``Add-on for <parent number>``
            override: Request the admin override path
            override_note: Justification, required with override

        Returns:
            Dictionary with ``addon_order``, ``link``, ``addon_total``,
            ``override``, ``consolidated_total`` and ``invoice_updated``

        Raises:
            OrderNotFoundError: If the parent does not exist
            AddOnPolicyError: If the add-on window is closed and no valid
                override applies
            AddOnValidationError: If lines are missing, unknown or too large
        """
        with log_performance(logger, "create_addon", parent_id=str(parent_id)):
            parent = await self.orders.get_order(parent_id, for_update=True)

            if parent.is_addon:
                raise AddOnValidationError(
                    "Add-ons cannot be attached to another add-on",
                    order_id=str(parent_id),
                )

            is_override = self._check_policy(parent, override, override_note)
            parent_status = parent.status
            blocked_reason = get_addon_blocked_reason(parent_status)

            if not lines:
                raise AddOnValidationError(
                    "At least one line is required",
                    order_id=str(parent_id),
                )

            kit_size = await self.settings.get_kit_size()
            priced_lines = await self._price_lines(lines, kit_size)
            addon_total = sum((line.line_subtotal for line in priced_lines), Decimal("0"))

            max_percent = await self.settings.get_addon_max_percent()
            size = validate_addon_size(addon_total, parent.effective_total, max_percent)
            if not size.valid:
                raise AddOnValidationError(
                    size.message,
                    order_id=str(parent_id),
                    addon_total=str(addon_total),
                    parent_total=str(parent.effective_total),
                    max_percent=str(max_percent),
                )

            addon_order = SalesOrder(
                uid=str(uuid.uuid4()),
                human_uid=await generate_order_number(self.session, ADDON_ORDER_PREFIX),
                status=parent_status if is_override else OrderStatus.IN_QUEUE,
                subtotal=addon_total,
                customer_id=parent.customer_id,
                brand_id=parent.brand_id,
                label_required=parent.label_required,
                parent_order_id=parent.id,
                lines=priced_lines,
            )
            await self.orders.add_order(addon_order)

            actor_id = self.actor.id if self.actor else None
            link = OrderAddOn(
                parent_so_id=parent.id,
                addon_so_id=addon_order.id,
                status=AddOnStatus.APPROVED,
                reason=reason or f"Add-on for {parent.human_uid}",
                admin_notes=override_note if is_override else None,
                created_by=actor_id,
                approved_by=actor_id,
                approved_at=utcnow(),
            )
            await self.orders.add_link(link)

            consolidated_total: Optional[Decimal] = None
            invoice_updated = False
            if is_override:
                consolidated_total = await self.consolidation.store_consolidated_total(parent)
                invoice = await self.invoices.propagate_to_unpaid_final(
                    parent.id,
                    consolidated_total,
                )
                invoice_updated = invoice is not None

            await self.audit.record(
                entity="order_addon",
                entity_id=link.id,
                action="created_override" if is_override else "created",
                before={
                    "parent_status": parent_status.value,
                    "blocked_reason": blocked_reason,
                },
                after={
                    "parent_order": parent.human_uid,
                    "addon_order": addon_order.human_uid,
                    "total": str(addon_total),
                    "override_note": override_note if is_override else None,
                    "new_consolidated_total": (
                        str(consolidated_total) if consolidated_total is not None else None
                    ),
                    "invoice_updated": invoice_updated,
                },
            )

        logger.info(
            "Add-on created",
            parent_id=str(parent.id),
            addon_id=str(addon_order.id),
            addon_number=addon_order.human_uid,
            addon_total=str(addon_total),
            override=is_override,
            invoice_updated=invoice_updated,
        )

        self.notifier.dispatch_on_commit(
            self.session,
            "addon_created",
            order_id=str(parent.id),
            addon_order_id=str(addon_order.id),
            addon_number=addon_order.human_uid,
            total=str(addon_total),
            override=is_override,
        )

        return {
            "addon_order": addon_order,
            "link": link,
            "addon_total": addon_total,
            "override": is_override,
            "consolidated_total": consolidated_total,
            "invoice_updated": invoice_updated,
        }
