"""
Pytest configuration and shared fixtures for the ordering & payment tests.

Provides an in-memory SQLite DB per test, a recording notification sink,
a stub gateway, and seeded users / dishes / cart.
"""
import pytest
from datetime import datetime
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings
from database import Base
from db_models import CartItem, Dish, DishIngredient, Ingredient, Order, OrderItem, User
from domain.enums import OrderStatus, OrderType, PaymentMethod, PaymentStatus, UserRole
from domain.errors import ExternalGatewayError
from gateways.base import GatewayAdapter, GatewayCallback, GatewayRegistry
from services.context import ServiceContext

# ── Test Configuration ───────────────────────────────────────────────
# Set test-only values for settings that would normally come from .env
if not settings.jwt_secret:
    settings.jwt_secret = "test-jwt-secret-for-pytest-only"
settings.sweeper_enabled = False


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create an in-memory SQLite database session for each test.

    Uses StaticPool to allow in-memory SQLite with async SQLAlchemy.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


# ── Collaborator Fakes ───────────────────────────────────────────────


class RecordingNotifier:
    """NotificationSink that remembers every event."""

    def __init__(self):
        self.events: list[tuple] = []

    async def order_placed(self, order) -> None:
        self.events.append(("order_placed", order.id))

    async def payment_succeeded(self, attempt, subject) -> None:
        self.events.append(("payment_succeeded", attempt.id))

    async def order_cancelled(self, order, reason: str) -> None:
        self.events.append(("order_cancelled", order.id))

    def count(self, event: str) -> int:
        return sum(1 for e in self.events if e[0] == event)


class StubGateway(GatewayAdapter):
    """Gateway that returns a predictable URL, or fails on demand."""

    name = "STUB"

    def __init__(self):
        super().__init__()
        self.fail = False
        self.calls: list[dict] = []

    async def create_redirect(self, amount, correlation_id, object_type, context) -> str:
        self.calls.append({
            "amount": amount,
            "correlation_id": correlation_id,
            "object_type": object_type,
            "object_id": context.object_id,
        })
        if self.fail:
            raise ExternalGatewayError(self.name, "provider unavailable")
        return f"https://pay.example/checkout/{correlation_id}"

    async def parse_callback(self, params: dict) -> GatewayCallback:
        return GatewayCallback(
            provider=self.name,
            attempt_id=int(params["attempt_id"]),
            success=params.get("result") == "ok",
            result_code=params.get("result", ""),
            amount=float(params["amount"]),
            provider_txn_ref=params.get("txn"),
        )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def stub_gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def services(notifier, stub_gateway) -> ServiceContext:
    registry = GatewayRegistry({
        PaymentMethod.VNPAY: stub_gateway,
        PaymentMethod.MOMO: stub_gateway,
        PaymentMethod.MOMO_ATM: stub_gateway,
        PaymentMethod.CREDIT_CARD: stub_gateway,
    })
    return ServiceContext(gateways=registry, notifier=notifier)


# ── Seed Data ────────────────────────────────────────────────────────


@pytest.fixture
async def customer(db_session: AsyncSession) -> User:
    user = User(email="an.nguyen@example.com", name="An Nguyen", role=UserRole.CUSTOMER.value)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def other_customer(db_session: AsyncSession) -> User:
    user = User(email="binh.tran@example.com", name="Binh Tran", role=UserRole.CUSTOMER.value)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def staff(db_session: AsyncSession) -> User:
    user = User(email="staff@example.com", name="Kitchen Staff", role=UserRole.STAFF.value)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
async def dishes(db_session: AsyncSession) -> dict[str, Dish]:
    """Two dishes: pho 100,000 (stock 10) and spring rolls 50,000 (stock 5)."""
    pho = Dish(name="Pho Bo", price=120_000, discount_price=100_000, count_in_stock=10)
    rolls = Dish(name="Cha Gio", price=50_000, count_in_stock=5)
    db_session.add_all([pho, rolls])
    await db_session.flush()

    beef = Ingredient(name="Beef", unit="g")
    noodles = Ingredient(name="Rice noodles", unit="g")
    db_session.add_all([beef, noodles])
    await db_session.flush()

    db_session.add_all([
        DishIngredient(dish_id=pho.id, ingredient_id=beef.id, quantity=150),
        DishIngredient(dish_id=pho.id, ingredient_id=noodles.id, quantity=200),
        DishIngredient(dish_id=rolls.id, ingredient_id=beef.id, quantity=50),
    ])
    await db_session.commit()
    return {"pho": pho, "rolls": rolls, "beef": beef, "noodles": noodles}


@pytest.fixture
async def cart(db_session: AsyncSession, customer: User, dishes: dict) -> list[CartItem]:
    items = [
        CartItem(user_id=customer.id, dish_id=dishes["pho"].id, quantity=2),
        CartItem(user_id=customer.id, dish_id=dishes["rolls"].id, quantity=1),
    ]
    db_session.add_all(items)
    await db_session.commit()
    return items


@pytest.fixture
def make_order(db_session: AsyncSession):
    """Factory for orders inserted directly (bypassing placement)."""

    async def _make(
        user: User,
        *,
        payment_method: PaymentMethod = PaymentMethod.VNPAY,
        status: OrderStatus = OrderStatus.ORDER_PLACED,
        payment_status: PaymentStatus = PaymentStatus.UNPAID,
        total: float = 290_000,
        created_at: datetime | None = None,
        order_type: OrderType = OrderType.ONLINE,
        **fields,
    ) -> Order:
        order = Order(
            user_id=user.id,
            delivery_type="PICKUP",
            order_type=order_type.value,
            payment_method=payment_method.value,
            status=status.value,
            payment_status=payment_status.value,
            items_price=total,
            total_price=total,
            total_quantity=1,
            created_at=created_at or datetime.utcnow(),
            items=[OrderItem(dish_id=1, dish_name="Pho Bo", unit_price=total, quantity=1, total_amount=total)],
            **fields,
        )
        db_session.add(order)
        await db_session.commit()
        return order

    return _make
