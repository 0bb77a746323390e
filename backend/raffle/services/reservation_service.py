"""
Reservation service with concurrency-safe number holds.

CONCURRENCY STRATEGY: Uniqueness Constraint, Not Read-Then-Write
================================================================

Problem:
  Buyer A asks for 0001+0002 while buyer B asks for 0002+0003.
  Both read "0002 is free", both insert an order.
  Result: 0002 sold twice.

Solution:
  Every live order owns one ticket_holds row per number, and `number` is
  the primary key of that table.

  1. Insert the order and its hold rows in one transaction
  2. Commit. The database rejects the loser with an integrity error
  3. Roll back, look up which requested numbers are held, report them

  There is no availability pre-check at all: the insert *is* the check.
  If the lookup in step 3 finds nothing (the conflicting order was released
  between our insert and the lookup) we simply try again.

Release paths (expiry, payment rejection) delete the hold rows in the same
transaction that flips the order status, so numbers become reservable the
moment the release commits.
"""

import uuid
from datetime import timedelta
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.core.config import Settings, get_settings
from raffle.core.errors import AlreadyHeld, InvalidInput, OrderNotFound
from raffle.core.logging import get_logger
from raffle.core.metrics import record_reservation, reservation_retries
from raffle.models import Order, OrderStatus, TicketHold, ACTIVE_STATUSES
from raffle.services.inventory import find_held_numbers, list_held_numbers, load_order, utcnow

logger = get_logger(__name__)


def normalize_numbers(numbers: Iterable[str], settings: Settings) -> list[str]:
    """
    Validate requested ticket numbers.
    Numbers are zero-padded decimal strings, e.g. "0001" .. "0300".
    """
    requested = [str(n).strip() for n in numbers]
    if not requested:
        raise InvalidInput("At least one number is required")
    if len(requested) > settings.MAX_NUMBERS_PER_ORDER:
        raise InvalidInput(
            f"At most {settings.MAX_NUMBERS_PER_ORDER} numbers per order",
        )

    duplicates = sorted({n for n in requested if requested.count(n) > 1})
    if duplicates:
        raise InvalidInput("Duplicate numbers in request", numbers=duplicates)

    width = settings.TICKET_NUMBER_DIGITS
    invalid = [
        n for n in requested
        if len(n) != width or not n.isdigit() or not 1 <= int(n) <= settings.TOTAL_SUPPLY
    ]
    if invalid:
        raise InvalidInput(
            f"Numbers must be {width}-digit values between 1 and {settings.TOTAL_SUPPLY}",
            numbers=invalid,
        )
    return sorted(requested)


async def reserve_numbers(
    db: AsyncSession,
    numbers: Iterable[str],
    buyer_id: str,
    settings: Settings | None = None,
) -> Order:
    """
    Hold `numbers` for `buyer_id` until now + HOLD_TTL_SECONDS.
    Raises InvalidInput or AlreadyHeld (with the conflicting numbers).
    """
    settings = settings or get_settings()
    buyer_id = (buyer_id or "").strip()
    try:
        if not buyer_id:
            raise InvalidInput("buyerId is required")
        requested = normalize_numbers(numbers, settings)
    except InvalidInput:
        record_reservation("invalid")
        raise

    for attempt in range(1, settings.RESERVE_MAX_ATTEMPTS + 1):
        order = Order(
            id=uuid.uuid4().hex,
            numbers=requested,
            buyer_id=buyer_id,
            status=OrderStatus.RESERVED.value,
            hold_expires_at=utcnow() + timedelta(seconds=settings.HOLD_TTL_SECONDS),
            version=1,
        )
        db.add(order)
        db.add_all(TicketHold(number=n, order_id=order.id) for n in requested)

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            conflicts = await find_held_numbers(db, requested)
            if conflicts:
                record_reservation("conflict")
                logger.info(
                    "reservation_conflict",
                    buyer_id=buyer_id,
                    requested=requested,
                    conflicts=conflicts,
                )
                raise AlreadyHeld(conflicts)
            # Holder was released between our insert and the lookup
            reservation_retries.inc()
            logger.info("reservation_retry", buyer_id=buyer_id, attempt=attempt)
            continue

        record_reservation("success")
        logger.info(
            "reservation_created",
            order_id=order.id,
            buyer_id=buyer_id,
            numbers=requested,
            attempt=attempt,
        )
        return order

    record_reservation("conflict")
    raise AlreadyHeld(requested)


async def verify_hold(db: AsyncSession, order_id: str, buyer_id: str) -> bool:
    """Is the order still reserved/pending, owned by buyer_id and unexpired?"""
    result = await db.execute(
        select(Order.id).where(
            Order.id == order_id,
            Order.buyer_id == buyer_id,
            Order.status.in_(ACTIVE_STATUSES),
            Order.hold_expires_at > utcnow(),
        )
    )
    return result.scalar_one_or_none() is not None


async def get_order(db: AsyncSession, order_id: str) -> Order:
    order = await load_order(db, order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


async def get_unavailable_numbers(db: AsyncSession) -> list[str]:
    """Numbers owned by reserved, pending or approved orders."""
    return await list_held_numbers(db)
