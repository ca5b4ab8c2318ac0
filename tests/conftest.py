"""
Shared fixtures: a throwaway SQLite database with a small catalog, plus
in-memory stand-ins for the job scheduler and the email notifier.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import insert, select, update

from fulfillment.db import create_schema, make_engine, make_session_factory, utcnow
from fulfillment.notification.notifier import EmailMessage, Notifier
from fulfillment.order.commands import CreateOrderRequest, ShippingDetails
from fulfillment.saga.checkout import CheckoutOrchestrator
from fulfillment.tables import coupons, inventory_reservations, products, shipping_methods

# Catalog
#   1 Canvas Tote      20.00            qty 10
#   2 Ceramic Mug      12.50 - 2.50     qty 5
#   3 Sold Out Poster   8.00            qty 0
CATALOG = [
    {"id": 1, "title": "Canvas Tote", "price": Decimal("20.00"), "discount": None, "qty": 10},
    {"id": 2, "title": "Ceramic Mug", "price": Decimal("12.50"), "discount": Decimal("2.50"), "qty": 5},
    {"id": 3, "title": "Sold Out Poster", "price": Decimal("8.00"), "discount": None, "qty": 0},
]


class RecordingScheduler:
    def __init__(self):
        self.scheduled: list[tuple] = []
        self.enqueued: list[tuple] = []
        self.fail_enqueue = False

    async def schedule_once(self, operation, delay, **kwargs):
        self.scheduled.append((operation, delay, kwargs))
        return f"scheduled-{len(self.scheduled)}"

    async def enqueue(self, operation, **kwargs):
        if self.fail_enqueue:
            raise ConnectionError("job queue unavailable")
        self.enqueued.append((operation, kwargs))
        return f"ready-{len(self.enqueued)}"


class FakeNotifier(Notifier):
    def __init__(self):
        self.sent: list[EmailMessage] = []
        self.should_succeed = True

    async def send(self, message: EmailMessage) -> bool:
        if not self.should_succeed:
            return False
        self.sent.append(message)
        return True


@pytest.fixture
async def engine(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'fulfillment.db'}")
    await create_schema(engine)
    async with engine.begin() as conn:
        await conn.execute(insert(products), CATALOG)
        await conn.execute(
            insert(shipping_methods),
            [
                {"id": 1, "name": "Standard", "price": Decimal("5.00")},
                {"id": 2, "name": "Express", "price": Decimal("15.00")},
            ],
        )
        await conn.execute(insert(coupons), [{"id": 1, "name": "SAVE10", "discount_percentage": 10}])
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def stock(session_factory):
    """Read a product's on-hand quantity through a fresh session."""

    async def read(product_id: int) -> int:
        async with session_factory() as session:
            result = await session.execute(select(products.c.qty).where(products.c.id == product_id))
            return result.scalar_one()

    return read


@pytest.fixture
def expire_reservation(session_factory):
    """Move a reservation's expiry into the past, as if its window had run out."""

    async def backdate(order_id: int) -> None:
        async with session_factory() as session:
            await session.execute(
                update(inventory_reservations)
                .where(inventory_reservations.c.order_id == order_id)
                .values(expires_at=utcnow() - timedelta(minutes=1))
            )
            await session.commit()

    return backdate


@pytest.fixture
async def placed_order(session_factory, scheduler, make_order_request):
    """A committed Stripe checkout: order, active reservation, processing payment."""
    async with session_factory() as session:
        result = await CheckoutOrchestrator.from_session(session, scheduler).submit_order(make_order_request())
    assert result.is_success, result.errors
    return result.data


@pytest.fixture
def make_order_request():
    def build(**overrides) -> CreateOrderRequest:
        values = {
            "user_id": "user-1",
            "shipping_method": "Standard",
            "payment_provider": "Stripe",
            "shipping_details": ShippingDetails(
                email="ada@example.com",
                full_name="Ada Lovelace",
                address="12 Analytical Row",
                city="London",
                country="UK",
                postal_code="N1 9GU",
            ),
            "products": {1: 2, 2: 1},
            "coupon_code": None,
        }
        values.update(overrides)
        return CreateOrderRequest(**values)

    return build
