"""
Order status service.

Applies status changes to sales orders. When a parent order enters the
fulfillment phase its add-on orders follow it, so parent and add-ons are
packed, invoiced and shipped together. Entering ``in_packing`` also stores the
consolidated total on the parent.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger
from orderdesk.core.security import Actor
from orderdesk.services.addons.consolidation import ConsolidationService
from orderdesk.services.audit.logger import AuditLogger
from orderdesk.services.notifications.client import (
    NotificationClient,
    get_notification_client,
)
from orderdesk.services.orders.enums import ADDON_SYNC_STATUSES, OrderStatus
from orderdesk.services.orders.repository import OrderRepository

logger = get_logger(__name__)


class StateTransitionError(Exception):
    """Raised when an invalid status change is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context: Any,
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


class OrderStatusService:
    """
    Status changes with add-on synchronization.

    Attributes:
        orders: Order repository
        consolidation: Consolidated total calculator
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
        self.consolidation = ConsolidationService(session)
        self.audit = AuditLogger(session, actor.id if actor else None)
        self.notifier = notifier or get_notification_client()

    async def change_status(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
    ) -> dict[str, Any]:
        """
        Change an order's status.

        Args:
            order_id: Order identifier
            new_status: Target status

        Returns:
            Dictionary with ``order``, ``previous_status``, ``synced_addons``
            (ids of add-ons moved along) and ``consolidated_total`` (set when
            it was stored)

        Raises:
            OrderNotFoundError: If the order does not exist
            StateTransitionError: If the order is shipped or cancelled
        """
        order = await self.orders.get_order(order_id, for_update=True)
        previous = order.status

        result: dict[str, Any] = {
            "order": order,
            "previous_status": previous,
            "synced_addons": [],
            "consolidated_total": None,
        }
        if previous == new_status:
            return result

        if previous.is_terminal():
            raise StateTransitionError(
                f"{previous.display_name} orders cannot change status",
                current_state=previous,
                target_state=new_status,
                order_id=str(order_id),
            )

        order.status = new_status
        await self.session.flush()

        await self.audit.record(
            entity="sales_order",
            entity_id=order.id,
            action="status_changed",
            before={"status": previous.value},
            after={"status": new_status.value},
        )

        if new_status in ADDON_SYNC_STATUSES and not order.is_addon:
            result["synced_addons"] = await self._sync_addons(order.id, new_status)

        if new_status == OrderStatus.IN_PACKING and not order.is_addon:
            consolidated: Decimal = await self.consolidation.store_consolidated_total(order)
            result["consolidated_total"] = consolidated

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            human_uid=order.human_uid,
            previous_status=previous.value,
            new_status=new_status.value,
            synced_addons=len(result["synced_addons"]),
        )

        self.notifier.dispatch_on_commit(
            self.session,
            "order_status_changed",
            order_id=str(order.id),
            old_status=previous.value,
            new_status=new_status.value,
        )
        return result

    async def _sync_addons(
        self,
        parent_id: uuid.UUID,
        new_status: OrderStatus,
    ) -> list[uuid.UUID]:
        """Move every linked add-on whose status differs to the parent's status."""
        synced = []
        for addon in await self.orders.get_addon_orders(parent_id):
            if addon.status == new_status:
                continue

            previous = addon.status
            addon.status = new_status
            await self.session.flush()

            await self.audit.record(
                entity="sales_order",
                entity_id=addon.id,
                action="addon_status_sync",
                before={"status": previous.value},
                after={"status": new_status.value, "parent_order_id": str(parent_id)},
            )
            synced.append(addon.id)

        return synced
