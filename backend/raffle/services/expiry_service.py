"""
Expiry sweeper: releases holds that outlived HOLD_TTL_SECONDS.

Each candidate is released with its own conditional update
("still reserved/pending AND still expired") and hold deletion in one
transaction. A webhook that approved the order a moment earlier makes the
update match nothing, so a paid order is never swept. Running two sweepers
at once is harmless: the second finds nothing left to release.
"""

import asyncio
import time
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.core.logging import get_logger
from raffle.core.metrics import sweep_duration, sweeper_released
from raffle.models import Order, ReleaseReason, ACTIVE_STATUSES
from raffle.services.cache_service import invalidate_availability_cache
from raffle.services.inventory import release_order, utcnow

logger = get_logger(__name__)


async def sweep_expired_orders(
    session_factory: async_sessionmaker[AsyncSession],
    now: Optional[datetime] = None,
    batch_size: int = 500,
) -> list[str]:
    """Release every expired reserved/pending order. Returns the released ids."""
    now = now or utcnow()
    start = time.perf_counter()
    released: list[str] = []

    async with session_factory() as db:
        result = await db.execute(
            select(Order.id)
            .where(Order.status.in_(ACTIVE_STATUSES), Order.hold_expires_at < now)
            .order_by(Order.hold_expires_at)
            .limit(batch_size)
        )
        candidates = list(result.scalars().all())

        for order_id in candidates:
            if await release_order(
                db,
                order_id,
                ReleaseReason.HOLD_EXPIRED.value,
                Order.hold_expires_at < now,
            ):
                released.append(order_id)
            await db.commit()

    sweep_duration.observe(time.perf_counter() - start)
    if released:
        sweeper_released.inc(len(released))
        logger.info("expired_orders_released", count=len(released), order_ids=released)
        await invalidate_availability_cache()
    return released


class ExpirySweeper:
    """Runs sweep_expired_orders every `interval` seconds as an asyncio task."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval: float,
        batch_size: int = 500,
    ):
        self.session_factory = session_factory
        self.interval = interval
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        logger.info("sweeper_started", interval=self.interval)
        while True:
            try:
                await sweep_expired_orders(self.session_factory, batch_size=self.batch_size)
            except SQLAlchemyError as e:
                # Next pass retries; expired holds only wait a little longer
                logger.error("sweep_failed", error=str(e))
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="expiry-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("sweeper_stopped")
