"""
Add-on policy rules.

Pure functions deciding whether an add-on order may be attached to a parent
order and whether its size is acceptable. Nothing here touches the database:
the size limit is passed in by the caller, which reads it from the settings
table for each decision.
"""

from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from orderdesk.services.orders.enums import OrderStatus

Amount = Union[Decimal, int, float, str]

# Packing has started, so normal add-on creation is closed.
ADDON_BLOCKED_STATUSES = frozenset(
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

# Blocked, but an admin may still add items before the customer is charged.
ADDON_OVERRIDE_STATUSES = frozenset(
    {
        OrderStatus.IN_PACKING,
        OrderStatus.PACKED,
        OrderStatus.AWAITING_INVOICE,
        OrderStatus.AWAITING_PAYMENT,
        OrderStatus.READY_TO_SHIP,
    }
)

_BLOCKED_REASONS = {
    OrderStatus.IN_PACKING: "Add-ons cannot be created once packing has started",
    OrderStatus.PACKED: "Order has already been packed",
    OrderStatus.AWAITING_INVOICE: "Order is in the invoicing/payment stage",
    OrderStatus.AWAITING_PAYMENT: "Order is in the invoicing/payment stage",
    OrderStatus.READY_TO_SHIP: "Order is ready to ship",
    OrderStatus.SHIPPED: "Order has already been shipped",
    OrderStatus.CANCELLED: "Order has been cancelled",
}

DEFAULT_BLOCKED_REASON = "Add-ons are not available for this order status"


class AddonSizeValidation(BaseModel):
    """Outcome of an add-on size check."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    message: str = ""


def _as_status(status: Union[OrderStatus, str]) -> OrderStatus:
    if isinstance(status, OrderStatus):
        return status
    return OrderStatus.from_string(status)


def _as_decimal(value: Amount) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def can_create_addon(status: Union[OrderStatus, str]) -> bool:
    """
    Check whether an add-on may be created normally for an order status.

    Args:
        status: Parent order status

    Returns:
        False once packing has started or the order is closed, True otherwise
    """
    return _as_status(status) not in ADDON_BLOCKED_STATUSES


def can_admin_override_addon(status: Union[OrderStatus, str]) -> bool:
    """
    Check whether an admin may create an add-on past the normal window.

    Shipped and cancelled orders are never reopened, and statuses where normal
    creation is allowed need no override.
    """
    return _as_status(status) in ADDON_OVERRIDE_STATUSES


def get_addon_blocked_reason(status: Union[OrderStatus, str]) -> Optional[str]:
    """User-facing reason add-ons are blocked, or None when they are allowed."""
    status = _as_status(status)
    if status not in ADDON_BLOCKED_STATUSES:
        return None
    return _BLOCKED_REASONS.get(status, DEFAULT_BLOCKED_REASON)


def validate_addon_size(
    addon_total: Amount,
    parent_total: Amount,
    max_percent: Amount,
) -> AddonSizeValidation:
    """
    Validate an add-on total against a percentage of the parent total.

    Args:
        addon_total: Subtotal of the proposed add-on
        parent_total: Parent total (consolidated total when stored)
        max_percent: Limit in percent; zero or less disables the check

    Returns:
        AddonSizeValidation with ``valid`` and a user-facing ``message``

    Example:
        >>> validate_addon_size(100, 100, 100).valid
        True
        >>> validate_addon_size(51, 100, 50).valid
        False
    """
    addon = _as_decimal(addon_total)
    parent = _as_decimal(parent_total)
    limit = _as_decimal(max_percent)

    if limit <= 0:
        return AddonSizeValidation(valid=True)

    # Cross-multiplied so no rounding enters the comparison.
    if addon * 100 > parent * limit:
        return AddonSizeValidation(
            valid=False,
            message=(
                f"Add-on exceeds {limit.normalize():f}% of original order value. "
                "Consider creating a separate order instead."
            ),
        )

    return AddonSizeValidation(valid=True)
