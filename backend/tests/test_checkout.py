"""
Tests for payment intent creation.
"""

import pytest
from httpx import AsyncClient

from raffle.models import OrderStatus
from raffle.services.checkout_service import create_payment_intent
from raffle.services.reservation_service import reserve_numbers

from conftest import FakeGateway, expire_order, load


async def reserve(client: AsyncClient, numbers, buyer_id="buyer-a") -> str:
    response = await client.post(
        "/api/v1/reservations",
        json={"numbers": numbers, "buyerId": buyer_id},
    )
    assert response.status_code == 201
    return response.json()["orderId"]


CHECKOUT_BODY = {"buyerId": "buyer-a", "buyerName": "Maria Silva", "buyerPhone": "+5511999990000"}


@pytest.mark.asyncio
async def test_checkout_creates_intent(client: AsyncClient, gateway, session_factory):
    order_id = await reserve(client, ["0001", "0002"])

    response = await client.post(f"/api/v1/orders/{order_id}/checkout", json=CHECKOUT_BODY)
    assert response.status_code == 200
    data = response.json()
    assert data["intentId"] == "pref-1"
    assert data["redirectUrl"].endswith("pref-1")

    descriptor, expires_at = gateway.intents[0]
    assert descriptor.order_id == order_id
    assert descriptor.numbers == ["0001", "0002"]
    assert descriptor.buyer_id == "buyer-a"
    assert expires_at is not None

    order = await load(session_factory, order_id)
    assert order.status == OrderStatus.PENDING.value
    assert order.buyer_name == "Maria Silva"
    assert order.intent_id == "pref-1"


@pytest.mark.asyncio
async def test_checkout_can_be_repeated_while_pending(client: AsyncClient, gateway):
    order_id = await reserve(client, ["0003"])

    first = await client.post(f"/api/v1/orders/{order_id}/checkout", json=CHECKOUT_BODY)
    second = await client.post(f"/api/v1/orders/{order_id}/checkout", json=CHECKOUT_BODY)
    assert first.status_code == 200
    assert second.status_code == 200
    assert len(gateway.intents) == 2


@pytest.mark.asyncio
async def test_checkout_other_buyer_rejected(client: AsyncClient, gateway):
    order_id = await reserve(client, ["0004"])

    body = dict(CHECKOUT_BODY, buyerId="buyer-b")
    response = await client.post(f"/api/v1/orders/{order_id}/checkout", json=body)
    assert response.status_code == 409
    assert gateway.intents == []


@pytest.mark.asyncio
async def test_checkout_expired_hold_rejected(client: AsyncClient, gateway, session_factory):
    order_id = await reserve(client, ["0005"])
    await expire_order(session_factory, order_id)

    response = await client.post(f"/api/v1/orders/{order_id}/checkout", json=CHECKOUT_BODY)
    assert response.status_code == 409
    assert gateway.intents == []


@pytest.mark.asyncio
async def test_checkout_gateway_unavailable(client: AsyncClient, gateway, session_factory):
    """Provider outage returns 503 and leaves the order reserved."""
    order_id = await reserve(client, ["0006"])
    gateway.unavailable = True

    response = await client.post(f"/api/v1/orders/{order_id}/checkout", json=CHECKOUT_BODY)
    assert response.status_code == 503

    order = await load(session_factory, order_id)
    assert order.status == OrderStatus.RESERVED.value
    assert order.intent_id is None


@pytest.mark.asyncio
async def test_checkout_requires_buyer_details(client: AsyncClient):
    order_id = await reserve(client, ["0007"])

    response = await client.post(
        f"/api/v1/orders/{order_id}/checkout",
        json={"buyerId": "buyer-a", "buyerName": "   ", "buyerPhone": "123"},
    )
    assert response.status_code == 400


class TransactionRecordingGateway(FakeGateway):
    """Records whether the caller's session had a transaction open during the call."""

    def __init__(self, session):
        super().__init__()
        self.session = session
        self.open_during_call = []

    async def create_intent(self, descriptor, expires_at=None):
        self.open_during_call.append(self.session.in_transaction())
        return await super().create_intent(descriptor, expires_at)


@pytest.mark.asyncio
async def test_checkout_reads_are_finished_before_gateway_call(db_session, session_factory):
    async with session_factory() as session:
        order = await reserve_numbers(session, ["0009"], "buyer-a")

    gateway = TransactionRecordingGateway(db_session)
    intent = await create_payment_intent(
        db_session, gateway, order.id, "buyer-a", "Maria Silva", "+5511999990000"
    )

    assert gateway.open_during_call == [False]
    assert intent.intent_id == "pref-1"
    assert (await load(session_factory, order.id)).status == OrderStatus.PENDING.value
