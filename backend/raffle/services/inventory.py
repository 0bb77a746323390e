"""
Shared data-access helpers for order state.

Every status change goes through transition_order: a single
UPDATE ... WHERE id = :id AND status IN (:expected) that reports whether it
matched. Callers never write status unconditionally, so a sweeper pass, a
webhook and a checkout racing on the same order resolve to exactly one
winner without in-process locks. Callers own the commit.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.models import Order, OrderStatus, TicketHold, ACTIVE_STATUSES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


async def transition_order(
    db: AsyncSession,
    order_id: str,
    expected: Iterable[str],
    values: dict[str, Any],
    *criteria,
) -> bool:
    stmt = (
        update(Order)
        .where(Order.id == order_id, Order.status.in_(list(expected)), *criteria)
        .values(**values, version=Order.version + 1)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def release_order(
    db: AsyncSession,
    order_id: str,
    reason: str,
    *criteria,
) -> bool:
    """
    Move a reserved/pending order to released and free its numbers.
    Returns False when the order already left the active statuses.
    """
    released = await transition_order(
        db,
        order_id,
        ACTIVE_STATUSES,
        {
            "status": OrderStatus.RELEASED.value,
            "released_at": utcnow(),
            "release_reason": reason,
            "hold_expires_at": None,
        },
        *criteria,
    )
    if released:
        await db.execute(delete(TicketHold).where(TicketHold.order_id == order_id))
    return released


async def load_order(db: AsyncSession, order_id: str) -> Optional[Order]:
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_order_by_payment(db: AsyncSession, payment_id: str) -> Optional[Order]:
    result = await db.execute(
        select(Order).where(Order.payment_id == payment_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_held_numbers(db: AsyncSession, numbers: Iterable[str]) -> list[str]:
    """Which of `numbers` currently belong to a reserved/pending/approved order."""
    result = await db.execute(
        select(TicketHold.number)
        .where(TicketHold.number.in_(list(numbers)))
        .order_by(TicketHold.number)
    )
    return list(result.scalars().all())


async def list_held_numbers(db: AsyncSession) -> list[str]:
    result = await db.execute(select(TicketHold.number).order_by(TicketHold.number))
    return list(result.scalars().all())


async def count_sold_numbers(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(TicketHold.number))
        .join(Order, Order.id == TicketHold.order_id)
        .where(Order.status == OrderStatus.APPROVED.value)
    )
    return result.scalar_one()
