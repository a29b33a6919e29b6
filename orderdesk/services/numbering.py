"""
Human-readable document numbers.

- Orders: ``<PREFIX>-<NNNN>`` such as ``AO-0007``
- Production batches: ``<SKU prefix>-<YYMM>-<NNN>`` such as ``GTB-2511-001``
- Invoices: ``DEP-<YYMM>-<NNNN>`` and ``INV-<YYMM>-<NNNN>``

Each number is one more than the highest existing suffix in its series. The
unique constraints on the number columns reject a duplicate produced by two
concurrent writers, and the losing transaction rolls back.
"""

import re
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.database.base import utcnow
from orderdesk.database.models.invoice import Invoice, InvoiceType
from orderdesk.database.models.order import SalesOrder
from orderdesk.database.models.production import ProductionBatch

ADDON_ORDER_PREFIX = "AO"

INVOICE_PREFIXES = {
    InvoiceType.DEPOSIT: "DEP",
    InvoiceType.FINAL: "INV",
}


def year_month(now: Optional[datetime] = None) -> str:
    """``YYMM`` for the given time, default now (UTC)."""
    return (now or utcnow()).strftime("%y%m")


def next_suffix(existing: Iterable[str], prefix: str, width: int) -> str:
    """
    Next zero-padded sequence number after ``prefix``.

    Args:
        existing: Numbers already issued in the series
        prefix: Series prefix including the trailing ``-``
        width: Number of digits in the suffix

    Returns:
        Zero-padded suffix, one more than the highest existing one
    """
    pattern = re.compile(rf"^{re.escape(prefix)}(\d{{{width}}})$")
    highest = 0
    for number in existing:
        match = pattern.match(number or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return str(highest + 1).zfill(width)


async def generate_order_number(session: AsyncSession, prefix: str) -> str:
    """Next ``<prefix>-NNNN`` order number."""
    series = f"{prefix}-"
    result = await session.execute(
        select(SalesOrder.human_uid).where(
            SalesOrder.human_uid.startswith(series, autoescape=True)
        )
    )
    return f"{series}{next_suffix(result.scalars().all(), series, 4)}"


async def generate_batch_number(
    session: AsyncSession,
    batch_key: str,
    now: Optional[datetime] = None,
) -> str:
    """
    Next batch number for a SKU prefix in the current month.

    Args:
        session: Database session
        batch_key: SKU batch prefix, or the SKU code when no prefix is set
        now: Clock override

    Returns:
        Batch number such as ``GTB-2511-004``
    """
    series = f"{batch_key}-{year_month(now)}-"
    result = await session.execute(
        select(ProductionBatch.human_uid).where(
            ProductionBatch.human_uid.startswith(series, autoescape=True)
        )
    )
    return f"{series}{next_suffix(result.scalars().all(), series, 3)}"


async def generate_invoice_number(
    session: AsyncSession,
    invoice_type: InvoiceType,
    now: Optional[datetime] = None,
) -> str:
    """Next ``DEP-YYMM-NNNN`` or ``INV-YYMM-NNNN`` invoice number."""
    series = f"{INVOICE_PREFIXES[invoice_type]}-{year_month(now)}-"
    result = await session.execute(
        select(Invoice.invoice_no).where(
            Invoice.invoice_no.startswith(series, autoescape=True)
        )
    )
    return f"{series}{next_suffix(result.scalars().all(), series, 4)}"
