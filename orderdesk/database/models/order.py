"""
Sales order, order line and add-on link models.

An add-on is itself a ``SalesOrder`` whose ``parent_order_id`` points at the
order it extends; the ``OrderAddOn`` row records who created it, why, and its
approval state. ``consolidated_total`` on the parent holds parent subtotal plus
every linked add-on subtotal once consolidation has been triggered.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderdesk.database.base import BaseModel, db_enum
from orderdesk.database.models.sku import Sku
from orderdesk.services.orders.enums import OrderStatus


class DepositStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class SellMode(str, Enum):
    """Kits are sold in fixed bottle multiples; pieces are single bottles."""

    KIT = "kit"
    PIECE = "piece"


class AddOnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SalesOrder(BaseModel):
    """
    Customer sales order.

    Attributes:
        uid: Unique machine identifier
        human_uid: Order number shown to people (``SO-0042``, ``AO-0007``)
        status: Lifecycle status
        subtotal: Sum of this order's own line subtotals
        consolidated_total: Parent plus linked add-on subtotals, when stored
        parent_order_id: Set on add-on orders only
    """

    __tablename__ = "sales_orders"

    uid: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    human_uid: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Human-readable order number",
    )

    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )

    brand_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        index=True,
    )

    status: Mapped[OrderStatus] = mapped_column(
        db_enum(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.DRAFT,
        index=True,
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    consolidated_total: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=True,
        comment="Parent subtotal plus all linked add-on subtotals",
    )

    deposit_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    deposit_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    deposit_status: Mapped[DepositStatus] = mapped_column(
        db_enum(DepositStatus, "deposit_status"),
        nullable=False,
        default=DepositStatus.UNPAID,
    )

    label_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    parent_order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    lines: Mapped[list["SalesOrderLine"]] = relationship(
        "SalesOrderLine",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SalesOrderLine.created_at",
    )

    __table_args__ = (
        CheckConstraint("subtotal >= 0", name="ck_sales_orders_subtotal_non_negative"),
    )

    @property
    def is_addon(self) -> bool:
        return self.parent_order_id is not None

    @property
    def effective_total(self) -> Decimal:
        """Amount owed: consolidated total when stored, else own subtotal."""
        if self.consolidated_total is not None:
            return self.consolidated_total
        return self.subtotal


class SalesOrderLine(BaseModel):
    """Single SKU line on a sales order."""

    __tablename__ = "sales_order_lines"

    so_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    sku_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("skus.id", ondelete="RESTRICT"),
        nullable=False,
    )

    sell_mode: Mapped[SellMode] = mapped_column(
        db_enum(SellMode, "sell_mode"),
        nullable=False,
        default=SellMode.KIT,
    )

    qty_entered: Mapped[int] = mapped_column(Integer, nullable=False)

    bottle_qty: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Bottles to produce for this line",
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    line_subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    order: Mapped["SalesOrder"] = relationship(
        "SalesOrder",
        back_populates="lines",
    )

    sku: Mapped[Sku] = relationship(
        Sku,
        lazy="joined",
    )

    __table_args__ = (
        CheckConstraint("bottle_qty >= 0", name="ck_sales_order_lines_bottle_qty"),
        CheckConstraint("qty_entered > 0", name="ck_sales_order_lines_qty_entered"),
    )


class OrderAddOn(BaseModel):
    """Link between a parent order and one add-on order."""

    __tablename__ = "order_addons"

    parent_so_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    addon_so_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    status: Mapped[AddOnStatus] = mapped_column(
        db_enum(AddOnStatus, "addon_status"),
        nullable=False,
        default=AddOnStatus.APPROVED,
    )

    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    admin_notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Override justification when created past the add-on window",
    )

    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
