"""
Shared fixtures for the order engine test suite.

Provides:
- engine / uow: in-memory SQLite database behind the real repositories
- fake collaborators: notifications, invoices, shipping provider, event publisher
- dispatcher / lifecycle: side-effect dispatcher and lifecycle manager wired to the fakes
- make_order / seed_order / seed_stock: order documents and stock levels for tests
"""

import uuid
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from order_engine.application.interfaces import (
    EventPublisher, InvoiceRenderer, NotificationsService, ShippingProvider
)
from order_engine.application.lifecycle import OrderLifecycleManager
from order_engine.application.side_effects import SideEffectDispatcher, build_handlers
from order_engine.database import create_tables
from order_engine.domain import history
from order_engine.domain.exceptions import InvoiceRenderingError, ShippingProviderError
from order_engine.domain.models import (
    Address, Order, OrderItem, OrderStatus, PaymentStatus, ShipmentInfo, utcnow
)
from order_engine.infrastructure.unit_of_work import UnitOfWork


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

class FakeNotifications(NotificationsService):
    def __init__(self):
        self.fail = False
        self.sent: List[tuple] = []

    async def _record(self, kind: str, order: Order, **extra) -> bool:
        if self.fail:
            return False
        self.sent.append((kind, order.order_id, extra))
        return True

    async def send_order_confirmation(self, order: Order, invoice: Optional[bytes]) -> bool:
        return await self._record("confirmation", order, invoice=invoice)

    async def send_cancellation_email(self, order: Order, reason: str) -> bool:
        return await self._record("cancellation", order, reason=reason)

    async def send_refund_email(self, order: Order, reason: str) -> bool:
        return await self._record("refund", order, reason=reason)

    async def send_shipping_confirmation(self, order: Order, awb_code: str, courier_name: str) -> bool:
        return await self._record("shipping", order, awb_code=awb_code, courier_name=courier_name)

    def kinds(self) -> List[str]:
        return [kind for kind, _, _ in self.sent]


class FakeInvoices(InvoiceRenderer):
    def __init__(self):
        self.fail = False

    async def render_invoice(self, snapshot: dict) -> bytes:
        if self.fail:
            raise InvoiceRenderingError("Invoice service error: 500")
        return b"%PDF-1.4 " + snapshot["order_id"].encode()


class FakeShipping(ShippingProvider):
    def __init__(self):
        self.fail = False
        self.created: List[str] = []
        self.cancelled: List[str] = []

    async def create_shipment(self, order: Order) -> Optional[ShipmentInfo]:
        if self.fail:
            raise ShippingProviderError("Shiprocket unavailable")
        self.created.append(order.order_id)
        return ShipmentInfo(
            provider_order_id=f"SR-{len(self.created)}",
            shipment_id=f"SH-{len(self.created)}",
            awb_code=f"AWB{len(self.created)}",
            courier_name="Delhivery",
        )

    async def track_shipment(self, shipment_id: str) -> dict:
        if self.fail:
            raise ShippingProviderError("Shiprocket unavailable")
        return {"tracking_data": {"shipment_id": shipment_id, "track_status": 1}}

    async def cancel_shipment(self, awb_codes: List[str]) -> dict:
        if self.fail:
            raise ShippingProviderError("Shiprocket unavailable")
        self.cancelled.extend(awb_codes)
        return {"message": "Cancelled"}


class FakePublisher(EventPublisher):
    def __init__(self):
        self.ok = True
        self.events: List[dict] = []

    async def publish(self, event: dict) -> bool:
        if not self.ok:
            return False
        self.events.append(event)
        return True


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow(engine):
    return UnitOfWork(async_sessionmaker(engine, expire_on_commit=False))


# ---------------------------------------------------------------------------
# Collaborators and services
# ---------------------------------------------------------------------------

@pytest.fixture
def notifications():
    return FakeNotifications()


@pytest.fixture
def invoices():
    return FakeInvoices()


@pytest.fixture
def shipping():
    return FakeShipping()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def dispatcher(uow, notifications, shipping, publisher, invoices):
    handlers = build_handlers(uow, notifications, shipping, publisher, invoices)
    return SideEffectDispatcher(uow, handlers, max_attempts=3, retry_delay=30)


@pytest.fixture
def lifecycle(uow, dispatcher, shipping):
    return OrderLifecycleManager(uow, dispatcher, default_commission_rate=Decimal("10"), shipping=shipping)


# ---------------------------------------------------------------------------
# Orders and stock
# ---------------------------------------------------------------------------

def _address() -> Address:
    return Address(
        first_name="Asha",
        last_name="Menon",
        phone="9876543210",
        street_address="12 MG Road",
        city="Kochi",
        state="Kerala",
        country="India",
        zip="682001",
    )


@pytest.fixture
def make_order():
    def _make(
        items=None,
        status: OrderStatus = OrderStatus.PENDING,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        **fields,
    ) -> Order:
        items = items or [OrderItem(id="p1", name="Teak Chair", price=Decimal("500"), quantity=2, vendor="v1")]
        subtotal = sum((item.total for item in items), Decimal("0"))
        created = utcnow() - timedelta(minutes=5)
        data = {
            "order_id": str(uuid.uuid4()),
            "user_id": "user-1",
            "user_email": "asha@example.com",
            "items": items,
            "address": _address(),
            "order_status": status,
            "payment_status": payment_status,
            "subtotal": subtotal,
            "shipping": Decimal("100"),
            "total": subtotal + Decimal("100"),
            "idempotency_key": str(uuid.uuid4()),
            "created_at": created,
            "updated_at": created,
        }
        data.update(fields)
        order = Order(**data)
        return history.append(order, history.make_entry(history.ORDER_CREATED, None, status, now=created))
    return _make


@pytest.fixture
def seed_order(uow, make_order):
    async def _seed(**kwargs) -> Order:
        order = make_order(**kwargs)
        async with uow() as u:
            await u.orders.create(order)
            await u.commit()
        return order
    return _seed


@pytest.fixture
def seed_stock(uow):
    async def _seed(**levels: int) -> None:
        async with uow() as u:
            for product_id, quantity in levels.items():
                await u.stock.set_stock(product_id, quantity)
            await u.commit()
    return _seed


@pytest.fixture
def stock_of(uow):
    async def _stock_of(product_id: str) -> Optional[int]:
        async with uow() as u:
            level = await u.stock.get_stock(product_id)
        return level.stock if level else None
    return _stock_of


@pytest.fixture
def load_order(uow):
    async def _load(order_id: str) -> Optional[Order]:
        async with uow() as u:
            return await u.orders.get_by_id(order_id)
    return _load


@pytest.fixture
def pending_outbox(uow):
    async def _pending() -> List[dict]:
        async with uow() as u:
            return await u.outbox.get_pending(now=utcnow() + timedelta(days=1), limit=100)
    return _pending
