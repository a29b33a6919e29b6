"""
Tests for the add-on policy rules.

Covers the normal add-on window, the admin override window, blocked reasons,
the size limit and the consolidated-view gate.
"""

from decimal import Decimal

import pytest

from orderdesk.services.addons.consolidation import should_show_consolidated_view
from orderdesk.services.addons.policy import (
    DEFAULT_BLOCKED_REASON,
    can_admin_override_addon,
    can_create_addon,
    get_addon_blocked_reason,
    validate_addon_size,
)
from orderdesk.services.orders.enums import OrderStatus

BLOCKED = {
    OrderStatus.IN_PACKING,
    OrderStatus.AWAITING_INVOICE,
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.PACKED,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.CANCELLED,
}

OVERRIDABLE = {
    OrderStatus.IN_PACKING,
    OrderStatus.AWAITING_INVOICE,
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.PACKED,
    OrderStatus.READY_TO_SHIP,
}


# ============================================================================
# Add-on Window
# ============================================================================


class TestCanCreateAddon:
    @pytest.mark.parametrize("status", sorted(BLOCKED, key=lambda s: s.value))
    def test_blocked_once_packing_starts(self, status):
        assert can_create_addon(status) is False

    @pytest.mark.parametrize(
        "status",
        sorted(set(OrderStatus) - BLOCKED, key=lambda s: s.value),
    )
    def test_open_before_packing(self, status):
        assert can_create_addon(status) is True

    def test_accepts_status_strings(self):
        assert can_create_addon("in_production") is True
        assert can_create_addon("IN_PACKING") is False

    def test_unknown_status_string_raises(self):
        with pytest.raises(ValueError, match="Invalid order status"):
            can_create_addon("teleported")


class TestCanAdminOverrideAddon:
    @pytest.mark.parametrize("status", sorted(OVERRIDABLE, key=lambda s: s.value))
    def test_override_allowed_until_shipped(self, status):
        assert can_admin_override_addon(status) is True

    @pytest.mark.parametrize("status", [OrderStatus.SHIPPED, OrderStatus.CANCELLED])
    def test_closed_orders_never_overridable(self, status):
        assert can_admin_override_addon(status) is False

    @pytest.mark.parametrize("status", list(OrderStatus))
    def test_no_override_where_normal_creation_allowed(self, status):
        if can_create_addon(status):
            assert can_admin_override_addon(status) is False


class TestBlockedReason:
    def test_none_when_allowed(self):
        assert get_addon_blocked_reason(OrderStatus.IN_QUEUE) is None

    @pytest.mark.parametrize("status", sorted(BLOCKED, key=lambda s: s.value))
    def test_every_blocked_status_has_a_reason(self, status):
        reason = get_addon_blocked_reason(status)
        assert reason
        assert reason != DEFAULT_BLOCKED_REASON

    def test_packing_reason(self):
        assert get_addon_blocked_reason(OrderStatus.IN_PACKING) == (
            "Add-ons cannot be created once packing has started"
        )

    def test_invoicing_statuses_share_reason(self):
        assert get_addon_blocked_reason(OrderStatus.AWAITING_INVOICE) == (
            get_addon_blocked_reason(OrderStatus.AWAITING_PAYMENT)
        )


# ============================================================================
# Size Limit
# ============================================================================


class TestValidateAddonSize:
    @pytest.mark.parametrize(
        "addon_total,parent_total,expected",
        [
            ("99.99", "100", True),
            ("100", "100", True),
            ("100.01", "100", False),
            ("0", "100", True),
        ],
    )
    def test_full_limit_means_up_to_parent_total(self, addon_total, parent_total, expected):
        assert validate_addon_size(addon_total, parent_total, 100).valid is expected

    @pytest.mark.parametrize(
        "addon_total,expected",
        [(Decimal("49.99"), True), (Decimal("50"), True), (Decimal("50.01"), False)],
    )
    def test_half_limit(self, addon_total, expected):
        assert validate_addon_size(addon_total, 100, 50).valid is expected

    def test_failure_message_names_limit(self):
        result = validate_addon_size(60, 100, 50)

        assert result.valid is False
        assert result.message == (
            "Add-on exceeds 50% of original order value. "
            "Consider creating a separate order instead."
        )

    def test_fractional_limit_in_message(self):
        result = validate_addon_size(30, 100, Decimal("25.5"))
        assert "25.5%" in result.message

    @pytest.mark.parametrize("limit", [0, -5])
    def test_zero_or_negative_limit_disables_check(self, limit):
        result = validate_addon_size(1_000_000, 1, limit)
        assert result.valid is True
        assert result.message == ""

    def test_no_float_rounding(self):
        assert validate_addon_size("33.34", "100", "33.34").valid is True
        assert validate_addon_size("33.35", "100", "33.34").valid is False


# ============================================================================
# Consolidated View
# ============================================================================


class TestConsolidatedViewGate:
    @pytest.mark.parametrize(
        "status",
        [
            OrderStatus.IN_PACKING,
            OrderStatus.PACKED,
            OrderStatus.AWAITING_INVOICE,
            OrderStatus.AWAITING_PAYMENT,
            OrderStatus.READY_TO_SHIP,
            OrderStatus.SHIPPED,
        ],
    )
    def test_shown_from_packing_on(self, status):
        assert should_show_consolidated_view(status) is True

    @pytest.mark.parametrize(
        "status",
        [OrderStatus.DRAFT, OrderStatus.IN_PRODUCTION, OrderStatus.CANCELLED],
    )
    def test_hidden_otherwise(self, status):
        assert should_show_consolidated_view(status) is False
