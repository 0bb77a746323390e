"""
Pytest fixtures for test database, fake payment gateway and HTTP client.

Each test gets its own SQLite file database so that concurrent sessions
really are separate connections, as they would be against PostgreSQL.
Redis is disabled; the cache and claim code fall back to the database.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SWEEPER_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.main import app
from raffle.api.deps import get_claim_store, get_gateway
from raffle.core.errors import GatewayUnavailable, PaymentNotFound
from raffle.db.base import Base
from raffle.db.session import get_db, get_session_factory, make_engine, make_session_factory
from raffle.models import Order
from raffle.schemas.order import OrderDescriptor
from raffle.services.claim_service import DatabaseClaimStore
from raffle.services.interfaces.payment_gateway import (
    PaymentDetails,
    PaymentGateway,
    PaymentIntent,
    PaymentOutcome,
)
from raffle.services.mercadopago_gateway import outcome_for
from raffle.services.reconciliation_service import WebhookReconciler


class FakeGateway(PaymentGateway):
    """In-memory stand-in for MercadoPago."""

    def __init__(self):
        self.intents: list[tuple[OrderDescriptor, Optional[datetime]]] = []
        self.payments: dict[str, PaymentDetails] = {}
        self.merchant_orders: dict[str, str] = {}
        self.unavailable = False
        self.lookups = 0

    async def create_intent(self, descriptor, expires_at=None):
        if self.unavailable:
            raise GatewayUnavailable("fake gateway down")
        self.intents.append((descriptor, expires_at))
        intent_id = f"pref-{len(self.intents)}"
        return PaymentIntent(intent_id=intent_id, redirect_url=f"https://pay.test/{intent_id}")

    async def get_payment(self, payment_id):
        self.lookups += 1
        if self.unavailable:
            raise GatewayUnavailable("fake gateway down")
        if payment_id not in self.payments:
            raise PaymentNotFound(f"Payment {payment_id} not found")
        return self.payments[payment_id]

    async def search_by_merchant_order(self, merchant_order_id):
        if self.unavailable:
            raise GatewayUnavailable("fake gateway down")
        return self.merchant_orders.get(merchant_order_id)

    def add_payment(
        self,
        payment_id: str,
        status: str,
        descriptor: Optional[OrderDescriptor] = None,
        external_reference: Optional[str] = None,
    ) -> PaymentDetails:
        details = PaymentDetails(
            payment_id=payment_id,
            status=status,
            outcome=outcome_for(status),
            approved_at=datetime.now(timezone.utc) if status == "approved" else None,
            provider_reference=f"pref-for-{payment_id}",
            external_reference=(
                descriptor.to_reference() if descriptor is not None else external_reference
            ),
        )
        self.payments[payment_id] = details
        return details


def descriptor_for(order: Order, **overrides) -> OrderDescriptor:
    fields = dict(
        order_id=order.id,
        numbers=list(order.numbers),
        buyer_id=order.buyer_id,
        buyer_name="Maria Silva",
        buyer_phone="+5511999990000",
    )
    fields.update(overrides)
    return OrderDescriptor(**fields)


async def load(session_factory: async_sessionmaker[AsyncSession], order_id: str) -> Order:
    """Read an order through a fresh session."""
    async with session_factory() as session:
        return await session.get(Order, order_id)


async def expire_order(session_factory: async_sessionmaker[AsyncSession], order_id: str) -> None:
    """Push an order's hold into the past."""
    async with session_factory() as session:
        await session.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(hold_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
        )
        await session.commit()


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a fresh database, yield a session factory, dispose."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'raffle_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield make_session_factory(engine)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def claims(session_factory) -> DatabaseClaimStore:
    return DatabaseClaimStore(session_factory, lease_seconds=30)


@pytest_asyncio.fixture
async def reconciler(session_factory, gateway, claims) -> WebhookReconciler:
    return WebhookReconciler(session_factory, gateway, claims)


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway, claims) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the store, gateway and claim store replaced."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_claim_store] = lambda: claims

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
