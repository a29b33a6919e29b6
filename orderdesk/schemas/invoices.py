"""
Invoice Pydantic schemas for API request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from orderdesk.database.models.invoice import InvoiceStatus, InvoiceType, PaymentMethod


class InvoiceCreateRequest(BaseModel):
    """Request to create a deposit or final invoice."""

    type: InvoiceType = Field(..., description="deposit or final")
    amount: Optional[Decimal] = Field(
        None,
        gt=0,
        max_digits=10,
        decimal_places=2,
        description="Overrides the default amount",
    )


class InvoicePaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: Decimal
    method: PaymentMethod
    external_ref: Optional[str] = None
    recorded_by: Optional[str] = None
    created_at: datetime


class InvoiceResponse(BaseModel):
    """Invoice with its payments."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    so_id: UUID
    invoice_no: str
    type: InvoiceType
    status: InvoiceStatus
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    issued_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    version: int
    payments: list[InvoicePaymentResponse] = Field(default_factory=list)
