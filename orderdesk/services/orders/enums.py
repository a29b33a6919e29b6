"""Order status enum and status groupings for the order lifecycle.

The lifecycle runs roughly draft -> awaiting_approval -> quoted -> deposit_due
-> in_queue -> in_production -> in_labeling -> in_packing -> awaiting_invoice
-> awaiting_payment -> ready_to_ship -> shipped, with on_hold and cancelled
reachable from most open states. ``packed`` is kept for orders created before
packing was split into in_packing/awaiting_invoice.
"""

from enum import Enum
from typing import FrozenSet


class OrderStatus(str, Enum):
    """Sales order lifecycle status."""

    DRAFT = "draft"
    AWAITING_APPROVAL = "awaiting_approval"
    QUOTED = "quoted"
    DEPOSIT_DUE = "deposit_due"
    IN_QUEUE = "in_queue"
    IN_PRODUCTION = "in_production"
    IN_LABELING = "in_labeling"
    IN_PACKING = "in_packing"
    PACKED = "packed"
    AWAITING_INVOICE = "awaiting_invoice"
    AWAITING_PAYMENT = "awaiting_payment"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    READY_TO_STOCK = "ready_to_stock"
    STOCKED = "stocked"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Args:
            value: String representation of status

        Returns:
            OrderStatus enum value

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Shipped and cancelled orders never change again."""
        return self in TERMINAL_STATUSES

    def is_fulfillment_phase(self) -> bool:
        """True once packing has started (or the order is closed)."""
        return self in FULFILLMENT_STATUSES

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.SHIPPED, OrderStatus.CANCELLED}
)

# Packing has started or the order is closed.
FULFILLMENT_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.IN_PACKING,
        OrderStatus.PACKED,
        OrderStatus.AWAITING_INVOICE,
        OrderStatus.AWAITING_PAYMENT,
        OrderStatus.READY_TO_SHIP,
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    }
)

# Statuses in which the consolidated (parent + add-ons) view is shown.
CONSOLIDATED_VIEW_STATUSES: FrozenSet[OrderStatus] = frozenset(
    FULFILLMENT_STATUSES - {OrderStatus.CANCELLED}
)

# A parent entering one of these drags its linked add-ons along.
# Legacy ``packed`` is not synced.
ADDON_SYNC_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.IN_PACKING,
        OrderStatus.AWAITING_INVOICE,
        OrderStatus.AWAITING_PAYMENT,
        OrderStatus.READY_TO_SHIP,
        OrderStatus.SHIPPED,
        OrderStatus.STOCKED,
        OrderStatus.CANCELLED,
    }
)
