"""
Pytest configuration and shared test fixtures.

Every test gets a fresh SQLite database file (through aiosqlite) with the full
schema, a session with the same options as the application's, and a data
factory for SKUs, orders, invoices and legacy batches. API tests use an httpx
client over ASGI with the database dependency pointed at the test database.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-with-at-least-32-characters")

import uuid
from decimal import Decimal
from typing import AsyncGenerator, Callable, Optional, Sequence

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from orderdesk.core.security import ActorRole, Actor, create_access_token
from orderdesk.database import models  # noqa: F401
from orderdesk.database.base import Base, utcnow
from orderdesk.database.connection import get_db
from orderdesk.database.models.invoice import (
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    InvoiceType,
    PaymentMethod,
)
from orderdesk.database.models.order import (
    AddOnStatus,
    OrderAddOn,
    SalesOrder,
    SalesOrderLine,
    SellMode,
)
from orderdesk.database.models.production import BatchStatus, ProductionBatch
from orderdesk.database.models.sku import Sku
from orderdesk.services.notifications.client import NotificationClient
from orderdesk.services.orders.enums import OrderStatus

KIT_SIZE = 10


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine(tmp_path):
    """Async engine on a throwaway SQLite file with all tables created."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'orderdesk.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Session for arranging data and calling services directly.

    Yields:
        AsyncSession: Session rolled back after the test
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Test Data Factory
# ============================================================================


class DataFactory:
    """Creates persisted domain objects through one session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._sequence = 0

    def _next(self) -> int:
        self._sequence += 1
        return self._sequence

    async def sku(
        self,
        code: Optional[str] = None,
        batch_prefix: Optional[str] = "GTB",
        price_per_kit: Decimal = Decimal("100.00"),
        price_per_piece: Decimal = Decimal("12.00"),
        active: bool = True,
    ) -> Sku:
        sku = Sku(
            code=code or f"SKU{self._next():03d}",
            description="Gin tonic 330ml",
            batch_prefix=batch_prefix,
            price_per_kit=price_per_kit,
            price_per_piece=price_per_piece,
            active=active,
        )
        self.session.add(sku)
        await self.session.flush()
        return sku

    async def order(
        self,
        status: OrderStatus = OrderStatus.IN_PRODUCTION,
        lines: Sequence[tuple[Sku, int]] = (),
        subtotal: Optional[Decimal] = None,
        consolidated_total: Optional[Decimal] = None,
        deposit_required: bool = False,
        deposit_amount: Decimal = Decimal("0.00"),
        label_required: bool = False,
        parent: Optional[SalesOrder] = None,
        human_uid: Optional[str] = None,
    ) -> SalesOrder:
        """
        Create an order with kit lines.

        Args:
            lines: ``(sku, kits)`` pairs; each kit is ten bottles
            subtotal: Overrides the sum of line subtotals
            parent: Makes the order an add-on of ``parent`` (link included)
        """
        order_lines = [
            SalesOrderLine(
                sku_id=sku.id,
                sell_mode=SellMode.KIT,
                qty_entered=kits,
                bottle_qty=kits * KIT_SIZE,
                unit_price=sku.price_per_kit,
                line_subtotal=sku.price_per_kit * kits,
            )
            for sku, kits in lines
        ]
        if subtotal is None:
            subtotal = sum((line.line_subtotal for line in order_lines), Decimal("0.00"))

        number = self._next()
        order = SalesOrder(
            uid=str(uuid.uuid4()),
            human_uid=human_uid or f"SO-{number:04d}",
            status=status,
            subtotal=subtotal,
            consolidated_total=consolidated_total,
            deposit_required=deposit_required,
            deposit_amount=deposit_amount,
            label_required=label_required,
            parent_order_id=parent.id if parent else None,
            lines=order_lines,
        )
        self.session.add(order)
        await self.session.flush()

        if parent is not None:
            await self.link(parent, order)
        return order

    async def link(
        self,
        parent: SalesOrder,
        addon: SalesOrder,
        status: AddOnStatus = AddOnStatus.APPROVED,
    ) -> OrderAddOn:
        link = OrderAddOn(
            parent_so_id=parent.id,
            addon_so_id=addon.id,
            status=status,
            reason=f"Add-on for {parent.human_uid}",
        )
        self.session.add(link)
        await self.session.flush()
        return link

    async def invoice(
        self,
        order: SalesOrder,
        invoice_type: InvoiceType = InvoiceType.FINAL,
        subtotal: Optional[Decimal] = None,
        tax: Decimal = Decimal("0.00"),
        status: InvoiceStatus = InvoiceStatus.UNPAID,
    ) -> Invoice:
        subtotal = order.subtotal if subtotal is None else subtotal
        prefix = "INV" if invoice_type == InvoiceType.FINAL else "DEP"
        invoice = Invoice(
            so_id=order.id,
            invoice_no=f"{prefix}-2501-{self._next():04d}",
            type=invoice_type,
            status=status,
            subtotal=subtotal,
            tax=tax,
            total=subtotal + tax,
            issued_at=utcnow(),
            version=1,
        )
        self.session.add(invoice)
        await self.session.flush()
        return invoice

    async def payment(self, invoice: Invoice, amount: Decimal) -> InvoicePayment:
        payment = InvoicePayment(
            invoice_id=invoice.id,
            amount=amount,
            method=PaymentMethod.ACH,
        )
        self.session.add(payment)
        await self.session.flush()
        return payment

    async def legacy_batch(
        self,
        order: SalesOrder,
        human_uid: str,
        quantity: int,
    ) -> ProductionBatch:
        """A batch created before batch items existed: no items, no steps."""
        batch = ProductionBatch(
            so_id=order.id,
            uid=human_uid,
            human_uid=human_uid,
            status=BatchStatus.QUEUED,
            priority_index=0,
            qty_bottle_planned=quantity,
            qty_bottle_good=0,
            qty_bottle_scrap=0,
        )
        self.session.add(batch)
        await self.session.flush()
        return batch

    async def commit(self) -> None:
        await self.session.commit()


@pytest.fixture
def factory(db_session) -> DataFactory:
    return DataFactory(db_session)


# ============================================================================
# Actors and Notifications
# ============================================================================


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def operator() -> Actor:
    return Actor(id="operator-1", role=ActorRole.OPERATOR)


@pytest.fixture
def notification_log() -> list[httpx.Request]:
    return []


@pytest.fixture
def notifier(notification_log) -> NotificationClient:
    """Client delivering to an in-memory webhook that records each request."""

    def handler(request: httpx.Request) -> httpx.Response:
        notification_log.append(request)
        return httpx.Response(202, json={"accepted": True})

    return NotificationClient(
        webhook_url="http://hooks.test/notify",
        transport=httpx.MockTransport(handler),
    )


# ============================================================================
# API Client
# ============================================================================


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Build an Authorization header for a subject and role."""

    def build(role: ActorRole = ActorRole.OPERATOR, subject: str = "user-1") -> dict[str, str]:
        token = create_access_token({"sub": subject, "role": role.value})
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
async def api_client(session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Asynchronous client for the FastAPI application.

    Each request gets its own session on the test database that commits on
    success and rolls back on error, like the application's own dependency.
    """
    from orderdesk.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
