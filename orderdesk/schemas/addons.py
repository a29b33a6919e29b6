"""
Add-on Pydantic schemas for API request/response validation.

Covers add-on eligibility, add-on creation (normal and admin override) and the
consolidated parent-plus-add-ons view.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from orderdesk.database.models.order import AddOnStatus, SellMode
from orderdesk.services.orders.enums import OrderStatus


class AddOnLineRequest(BaseModel):
    """One requested add-on line."""

    model_config = ConfigDict(validate_assignment=True)

    sku_id: UUID = Field(..., description="SKU to add")
    sell_mode: SellMode = Field(
        default=SellMode.KIT,
        description="Sell by kit or by piece",
    )
    quantity: int = Field(
        ...,
        gt=0,
        le=100000,
        description="Kits or pieces, depending on sell mode",
    )


class AddOnCreateRequest(BaseModel):
    """Request to create an add-on order against a parent order."""

    model_config = ConfigDict(str_strip_whitespace=True)

    lines: list[AddOnLineRequest] = Field(
        ...,
        min_length=1,
        description="Requested lines",
    )
    reason: Optional[str] = Field(
        None,
        max_length=1000,
        description="Why the customer needs the add-on",
    )
    override: bool = Field(
        default=False,
        description="Admin override of the add-on window",
    )
    override_note: Optional[str] = Field(
        None,
        max_length=2000,
        description="Justification, required with override",
    )

    @field_validator("reason", "override_note")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @model_validator(mode="after")
    def validate_override_note(self) -> "AddOnCreateRequest":
        """An override must say why."""
        if self.override and not self.override_note:
            raise ValueError("override_note is required when override is set")
        return self


class AddOnEligibilityResponse(BaseModel):
    """Whether add-ons may be created for an order right now."""

    order_id: UUID
    status: OrderStatus
    can_create: bool
    can_override: bool
    blocked_reason: Optional[str] = None
    max_percent: Decimal
    parent_total: Decimal
    max_addon_total: Optional[Decimal] = Field(
        None,
        description="Largest allowed add-on subtotal, None when unlimited",
    )


class OrderLineResponse(BaseModel):
    """Order line as shown in consolidated views."""

    model_config = ConfigDict(from_attributes=True)

    line_id: UUID
    sku_id: UUID
    sku_code: Optional[str] = None
    description: Optional[str] = None
    sell_mode: SellMode
    qty_entered: int
    bottle_qty: int
    unit_price: Decimal
    line_subtotal: Decimal


class OrderSummaryResponse(BaseModel):
    """Order header without lines."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    human_uid: str
    status: OrderStatus
    subtotal: Decimal
    consolidated_total: Optional[Decimal] = None
    parent_order_id: Optional[UUID] = None
    created_at: datetime


class AddOnLinkResponse(BaseModel):
    """Parent/add-on link record."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    parent_so_id: UUID
    addon_so_id: UUID
    status: AddOnStatus
    reason: Optional[str] = None
    admin_notes: Optional[str] = None
    created_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None


class AddOnCreateResponse(BaseModel):
    """Result of add-on creation."""

    addon_order: OrderSummaryResponse
    link: AddOnLinkResponse
    addon_total: Decimal
    override: bool
    consolidated_total: Optional[Decimal] = None
    invoice_updated: bool = False


class ConsolidatedGroupResponse(BaseModel):
    """Lines of one order inside the consolidated view."""

    order_id: UUID
    human_uid: str
    is_addon: bool
    status: OrderStatus
    subtotal: Decimal
    lines: list[OrderLineResponse]


class ConsolidatedSummaryResponse(BaseModel):
    """Parent order and its add-ons as one order."""

    parent: OrderSummaryResponse
    addons: list[OrderSummaryResponse]
    consolidated_total: Decimal
    stored_consolidated_total: Optional[Decimal] = None
    line_item_count: int
    bottle_count: int
    show_consolidated: bool
    groups: list[ConsolidatedGroupResponse]
