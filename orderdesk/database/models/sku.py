"""
SKU catalogue model.

A SKU's ``code`` identifies the product on order lines and seeds production
batch numbers; ``batch_prefix`` overrides the code as the batch-number prefix
when the two differ (for example SKU ``GTB10`` batched as ``GTB-2511-001``).
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column

from orderdesk.database.base import BaseModel


class Sku(BaseModel):
    """Sellable product with kit/piece pricing."""

    __tablename__ = "skus"

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="SKU code",
    )

    description: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product description",
    )

    batch_prefix: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="Prefix used in production batch numbers, defaults to code",
    )

    label_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    price_per_kit: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    price_per_piece: Mapped[Decimal] = mapped_column(
        Numeric(precision=10, scale=2),
        nullable=False,
    )

    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    @property
    def batch_key(self) -> str:
        """Prefix production batch numbers start with."""
        return self.batch_prefix or self.code
