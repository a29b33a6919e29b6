"""
Invoice and invoice payment models.

``version`` is bumped on every rewrite of an invoice's amounts so concurrent
writers can use it as an optimistic-concurrency guard.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from orderdesk.database.base import BaseModel, db_enum


class InvoiceType(str, Enum):
    DEPOSIT = "deposit"
    FINAL = "final"


class InvoiceStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CHECK = "check"
    ACH = "ach"
    WIRE = "wire"
    OTHER = "other"


class Invoice(BaseModel):
    """Deposit or final invoice for a sales order."""

    __tablename__ = "invoices"

    so_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sales_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    invoice_no: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    type: Mapped[InvoiceType] = mapped_column(
        db_enum(InvoiceType, "invoice_type"),
        nullable=False,
    )

    status: Mapped[InvoiceStatus] = mapped_column(
        db_enum(InvoiceStatus, "invoice_status"),
        nullable=False,
        default=InvoiceStatus.UNPAID,
        index=True,
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    tax: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    total: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    issued_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Bumped on every amount rewrite",
    )

    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_invoices_total_non_negative"),
    )


class InvoicePayment(BaseModel):
    """Payment recorded against an invoice."""

    __tablename__ = "invoice_payments"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    method: Mapped[PaymentMethod] = mapped_column(
        db_enum(PaymentMethod, "payment_method"),
        nullable=False,
    )

    external_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    recorded_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_invoice_payments_amount_positive"),
    )
