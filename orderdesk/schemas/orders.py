"""
Order status Pydantic schemas for API request/response validation.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orderdesk.services.orders.enums import OrderStatus


class OrderStatusUpdate(BaseModel):
    """Status change request."""

    model_config = ConfigDict(validate_assignment=True)

    status: OrderStatus = Field(..., description="New order status")

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            return OrderStatus.from_string(v)
        return v


class OrderStatusResponse(BaseModel):
    """Result of a status change."""

    order_id: UUID
    human_uid: str
    previous_status: OrderStatus
    status: OrderStatus
    synced_addons: list[UUID]
    consolidated_total: Optional[Decimal] = None
