"""
Tests for number reservation, including concurrent overlapping requests.
"""

import asyncio

import pytest
from httpx import AsyncClient

from raffle.core.config import get_settings
from raffle.core.errors import AlreadyHeld, InvalidInput
from raffle.models import OrderStatus
from raffle.services.inventory import release_order
from raffle.services.reservation_service import normalize_numbers, reserve_numbers, verify_hold

from conftest import expire_order, load


@pytest.mark.asyncio
async def test_reserve_numbers(client: AsyncClient):
    """Successful reservation returns a reserved order with an expiry."""
    response = await client.post(
        "/api/v1/reservations",
        json={"numbers": ["0002", "0001"], "buyerId": "buyer-a"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "reserved"
    assert data["numbers"] == ["0001", "0002"]
    assert data["orderId"]
    assert data["holdExpiresAt"] is not None


@pytest.mark.asyncio
async def test_reserve_conflict_lists_taken_numbers(client: AsyncClient):
    """Overlapping reservation fails with exactly the conflicting numbers."""
    first = await client.post(
        "/api/v1/reservations",
        json={"numbers": ["0001", "0002"], "buyerId": "buyer-a"},
    )
    assert first.status_code == 201

    second = await client.post(
        "/api/v1/reservations",
        json={"numbers": ["0002", "0003"], "buyerId": "buyer-b"},
    )
    assert second.status_code == 400
    body = second.json()
    assert body["code"] == "already_held"
    assert body["conflicts"] == ["0002"]

    # 0003 was not taken by the failed attempt
    third = await client.post(
        "/api/v1/reservations",
        json={"numbers": ["0003"], "buyerId": "buyer-b"},
    )
    assert third.status_code == 201


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "numbers",
    [
        ["1"],          # not zero-padded
        ["0000"],       # below range
        ["0301"],       # above TOTAL_SUPPLY
        ["00a1"],       # not a number
        ["0005", "0005"],
    ],
)
async def test_reserve_invalid_numbers(client: AsyncClient, numbers):
    response = await client.post(
        "/api/v1/reservations",
        json={"numbers": numbers, "buyerId": "buyer-a"},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_input"


@pytest.mark.asyncio
async def test_reserve_empty_numbers(client: AsyncClient):
    """Empty number list is rejected by request validation."""
    response = await client.post(
        "/api/v1/reservations",
        json={"numbers": [], "buyerId": "buyer-a"},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_reserve_too_many_numbers(db_session):
    settings = get_settings()
    numbers = [f"{n:04d}" for n in range(1, settings.MAX_NUMBERS_PER_ORDER + 2)]
    with pytest.raises(InvalidInput):
        await reserve_numbers(db_session, numbers, "buyer-a")


def test_normalize_numbers_sorts():
    assert normalize_numbers([" 0010", "0003"], get_settings()) == ["0003", "0010"]


@pytest.mark.asyncio
async def test_concurrent_overlapping_reservations(session_factory):
    """Of many concurrent reservations for the same number, exactly one wins."""

    async def attempt(buyer: str):
        async with session_factory() as session:
            try:
                return await reserve_numbers(session, ["0042", f"{100 + int(buyer):04d}"], f"buyer-{buyer}")
            except AlreadyHeld as e:
                return e

    results = await asyncio.gather(*(attempt(str(i)) for i in range(8)))

    winners = [r for r in results if not isinstance(r, AlreadyHeld)]
    losers = [r for r in results if isinstance(r, AlreadyHeld)]
    assert len(winners) == 1
    assert len(losers) == 7
    assert all(e.conflicts == ["0042"] for e in losers)


@pytest.mark.asyncio
async def test_released_numbers_are_reservable(db_session, session_factory):
    order = await reserve_numbers(db_session, ["0007"], "buyer-a")
    assert await release_order(db_session, order.id, "hold_expired")
    await db_session.commit()

    again = await reserve_numbers(db_session, ["0007"], "buyer-b")
    assert again.id != order.id
    assert (await load(session_factory, order.id)).status == OrderStatus.RELEASED.value


@pytest.mark.asyncio
async def test_verify_hold(db_session, session_factory):
    order = await reserve_numbers(db_session, ["0011"], "buyer-a")

    assert await verify_hold(db_session, order.id, "buyer-a") is True
    assert await verify_hold(db_session, order.id, "buyer-b") is False
    assert await verify_hold(db_session, "missing", "buyer-a") is False

    await expire_order(session_factory, order.id)
    assert await verify_hold(db_session, order.id, "buyer-a") is False


@pytest.mark.asyncio
async def test_verify_endpoint(client: AsyncClient):
    created = await client.post(
        "/api/v1/reservations",
        json={"numbers": ["0020"], "buyerId": "buyer-a"},
    )
    order_id = created.json()["orderId"]

    ok = await client.get(f"/api/v1/orders/{order_id}/verify", params={"buyerId": "buyer-a"})
    assert ok.status_code == 200
    assert ok.json() == {"orderId": order_id, "valid": True}

    other = await client.get(f"/api/v1/orders/{order_id}/verify", params={"buyerId": "buyer-b"})
    assert other.json()["valid"] is False


@pytest.mark.asyncio
async def test_get_order_not_found(client: AsyncClient):
    response = await client.get("/api/v1/orders/does-not-exist")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_availability_lists_held_numbers(client: AsyncClient):
    await client.post(
        "/api/v1/reservations",
        json={"numbers": ["0005", "0004"], "buyerId": "buyer-a"},
    )
    response = await client.get("/api/v1/numbers")
    assert response.status_code == 200
    data = response.json()
    assert data["totalSupply"] == 300
    assert data["unavailable"] == ["0004", "0005"]
    assert data["cached"] is False
