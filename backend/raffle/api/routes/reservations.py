"""
Reservation endpoints: hold numbers, inspect and verify an order.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.db.session import get_db
from raffle.schemas.order import ReserveRequest, OrderResponse, VerifyResponse
from raffle.services.reservation_service import reserve_numbers, verify_hold, get_order
from raffle.services.cache_service import invalidate_availability_cache

router = APIRouter(tags=["Reservations"])


@router.post(
    "/reservations",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_reservation(
    request: ReserveRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Hold a set of numbers for a buyer.

    Returns 400 with a `conflicts` list when any number already belongs to
    another live order. Two concurrent requests for overlapping numbers
    never both succeed.
    """
    order = await reserve_numbers(db, request.numbers, request.buyer_id)
    await invalidate_availability_cache()
    return OrderResponse.from_order(order)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order_endpoint(
    order_id: str,
    db: AsyncSession = Depends(get_db),
):
    order = await get_order(db, order_id)
    return OrderResponse.from_order(order)


@router.get("/orders/{order_id}/verify", response_model=VerifyResponse)
async def verify_order_endpoint(
    order_id: str,
    buyer_id: str = Query(..., alias="buyerId", min_length=1),
    db: AsyncSession = Depends(get_db),
):
    """Whether the hold is still live for this buyer. Checked before checkout."""
    valid = await verify_hold(db, order_id, buyer_id)
    return VerifyResponse(order_id=order_id, valid=valid)
