"""
Sales order data access.

Provides the queries the add-on, production and invoice services share:
loading an order with its lines, locking a parent order for update, and
listing the add-on orders linked to a parent.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger
from orderdesk.database.models.order import OrderAddOn, SalesOrder, SalesOrderLine
from orderdesk.database.models.sku import Sku

logger = get_logger(__name__)


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when order is not found."""

    pass


class OrderRepository:
    """
    Repository for sales order data access operations.

    Lines are loaded eagerly with the order; SKUs are joined onto each line.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def get_order(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> SalesOrder:
        """
        Get order by ID with its lines.

        Args:
            order_id: Order identifier
            for_update: Lock the order row until the transaction ends

        Returns:
            The order

        Raises:
            OrderNotFoundError: If no order has this ID
            OrderRepositoryError: If the query fails
        """
        try:
            stmt = select(SalesOrder).where(SalesOrder.id == order_id)
            if for_update:
                stmt = stmt.with_for_update()

            result = await self.session.execute(stmt)
            order = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_id=str(order_id), error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order",
                order_id=str(order_id),
                error=str(e),
            ) from e

        if order is None:
            logger.debug("Order not found", order_id=str(order_id))
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        return order

    async def get_lines(self, order_id: uuid.UUID) -> Sequence[SalesOrderLine]:
        """Lines of one order, oldest first, with SKUs loaded."""
        result = await self.session.execute(
            select(SalesOrderLine)
            .where(SalesOrderLine.so_id == order_id)
            .order_by(SalesOrderLine.created_at, SalesOrderLine.id)
        )
        return result.scalars().unique().all()

    async def get_skus(self, sku_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, Sku]:
        """SKUs by ID; unknown IDs are simply absent from the result."""
        if not sku_ids:
            return {}
        result = await self.session.execute(select(Sku).where(Sku.id.in_(set(sku_ids))))
        return {sku.id: sku for sku in result.scalars().all()}

    async def get_addon_orders(self, parent_id: uuid.UUID) -> Sequence[SalesOrder]:
        """
        Add-on orders linked to a parent, in creation order.

        Every link counts, whatever its approval status.
        """
        result = await self.session.execute(
            select(SalesOrder)
            .join(OrderAddOn, OrderAddOn.addon_so_id == SalesOrder.id)
            .where(OrderAddOn.parent_so_id == parent_id)
            .order_by(OrderAddOn.created_at, SalesOrder.created_at)
        )
        return result.scalars().unique().all()

    async def sum_addon_subtotals(self, parent_id: uuid.UUID) -> Decimal:
        """Sum of subtotals of every add-on order linked to a parent."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(SalesOrder.subtotal), 0))
            .select_from(OrderAddOn)
            .join(SalesOrder, OrderAddOn.addon_so_id == SalesOrder.id)
            .where(OrderAddOn.parent_so_id == parent_id)
        )
        return Decimal(str(result.scalar_one()))

    async def add_order(self, order: SalesOrder) -> SalesOrder:
        """Stage a new order (with any lines attached) and flush it."""
        self.session.add(order)
        await self.session.flush()
        logger.debug(
            "Order staged",
            order_id=str(order.id),
            human_uid=order.human_uid,
        )
        return order

    async def add_link(self, link: OrderAddOn) -> OrderAddOn:
        self.session.add(link)
        await self.session.flush()
        return link
