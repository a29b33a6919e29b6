"""
Consolidated totals for parent orders with add-ons.

The consolidated total is the parent subtotal plus the subtotal of every add-on
order linked to it, whatever the link's approval status. Once stored on the
parent it is what the customer owes and what the final invoice should carry.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger
from orderdesk.database.models.order import SalesOrder, SalesOrderLine
from orderdesk.database.models.sku import Sku
from orderdesk.services.orders.enums import CONSOLIDATED_VIEW_STATUSES, OrderStatus
from orderdesk.services.orders.repository import OrderRepository

logger = get_logger(__name__)


def should_show_consolidated_view(status: Union[OrderStatus, str]) -> bool:
    """True once the order is in packing or later (cancelled excluded)."""
    if not isinstance(status, OrderStatus):
        status = OrderStatus.from_string(status)
    return status in CONSOLIDATED_VIEW_STATUSES


def _line_view(line: SalesOrderLine, sku: Optional[Sku]) -> dict[str, Any]:
    return {
        "line_id": line.id,
        "sku_id": line.sku_id,
        "sku_code": sku.code if sku else None,
        "description": sku.description if sku else None,
        "sell_mode": line.sell_mode,
        "qty_entered": line.qty_entered,
        "bottle_qty": line.bottle_qty,
        "unit_price": line.unit_price,
        "line_subtotal": line.line_subtotal,
    }


class ConsolidationService:
    """Computes and stores consolidated totals."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.orders = OrderRepository(session)

    async def recalculate_consolidated_total(self, parent_id: uuid.UUID) -> Decimal:
        """
        Parent subtotal plus every linked add-on subtotal.

        Args:
            parent_id: Parent order identifier

        Returns:
            Consolidated total

        Raises:
            OrderNotFoundError: If the parent does not exist
        """
        parent = await self.orders.get_order(parent_id)
        addon_sum = await self.orders.sum_addon_subtotals(parent_id)
        total = parent.subtotal + addon_sum

        logger.debug(
            "Consolidated total recalculated",
            parent_id=str(parent_id),
            parent_subtotal=str(parent.subtotal),
            addon_subtotal=str(addon_sum),
            consolidated_total=str(total),
        )
        return total

    async def store_consolidated_total(self, parent: SalesOrder) -> Decimal:
        """Recalculate and write the consolidated total onto the parent."""
        total = await self.recalculate_consolidated_total(parent.id)
        parent.consolidated_total = total
        await self.session.flush()

        logger.info(
            "Consolidated total stored",
            parent_id=str(parent.id),
            consolidated_total=str(total),
        )
        return total

    async def get_consolidated_summary(self, parent_id: uuid.UUID) -> dict[str, Any]:
        """
        Parent and add-ons viewed as one order.

        Line groups come parent first, then add-ons in creation order.

        Returns:
            Dictionary with ``parent``, ``addons``, ``consolidated_total``,
            ``stored_consolidated_total``, ``line_item_count``, ``bottle_count``,
            ``show_consolidated`` and ``groups``
        """
        parent = await self.orders.get_order(parent_id)
        addons = await self.orders.get_addon_orders(parent_id)
        orders: Sequence[SalesOrder] = [parent, *addons]

        lines_by_order = {
            order.id: await self.orders.get_lines(order.id) for order in orders
        }
        skus = await self.orders.get_skus(
            [line.sku_id for lines in lines_by_order.values() for line in lines]
        )

        groups = []
        line_item_count = 0
        bottle_count = 0
        for order in orders:
            lines = lines_by_order[order.id]
            line_item_count += len(lines)
            bottle_count += sum(line.bottle_qty for line in lines)
            groups.append(
                {
                    "order_id": order.id,
                    "human_uid": order.human_uid,
                    "is_addon": order.id != parent.id,
                    "status": order.status,
                    "subtotal": order.subtotal,
                    "lines": [_line_view(line, skus.get(line.sku_id)) for line in lines],
                }
            )

        consolidated = parent.subtotal + sum(
            (addon.subtotal for addon in addons), Decimal("0")
        )

        return {
            "parent": parent,
            "addons": list(addons),
            "consolidated_total": consolidated,
            "stored_consolidated_total": parent.consolidated_total,
            "line_item_count": line_item_count,
            "bottle_count": bottle_count,
            "show_consolidated": should_show_consolidated_view(parent.status),
            "groups": groups,
        }
