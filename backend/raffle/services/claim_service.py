"""
Processing-claim stores for webhook deliveries.

Both implementations are leases: a claim older than CLAIM_LEASE_SECONDS is
considered abandoned (crashed worker) and can be taken over by the next
delivery for the same payment.
"""

from datetime import timedelta

import redis.asyncio as redis
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.core.logging import get_logger
from raffle.models import PaymentClaim
from raffle.services.interfaces.claims import ClaimStore
from raffle.services.inventory import utcnow

logger = get_logger(__name__)

# Delete the key only if we still own it
RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class DatabaseClaimStore(ClaimStore):
    """
    Claims as rows in payment_claims.

    acquire:
      1. INSERT the claim. Primary key on payment_id admits one winner
      2. On conflict, take over the row only WHERE expires_at < now
    Each step runs in its own short transaction, independent of the
    order transaction that follows.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], lease_seconds: int):
        self.session_factory = session_factory
        self.lease = timedelta(seconds=lease_seconds)

    async def acquire(self, payment_id: str, owner: str) -> bool:
        now = utcnow()
        async with self.session_factory() as db:
            db.add(PaymentClaim(
                payment_id=payment_id,
                owner=owner,
                claimed_at=now,
                expires_at=now + self.lease,
            ))
            try:
                await db.commit()
                return True
            except IntegrityError:
                await db.rollback()

            result = await db.execute(
                update(PaymentClaim)
                .where(PaymentClaim.payment_id == payment_id, PaymentClaim.expires_at < now)
                .values(owner=owner, claimed_at=now, expires_at=now + self.lease)
            )
            await db.commit()
            if result.rowcount == 1:
                logger.warning("payment_claim_taken_over", payment_id=payment_id)
                return True
            return False

    async def release(self, payment_id: str, owner: str) -> None:
        async with self.session_factory() as db:
            await db.execute(
                delete(PaymentClaim).where(
                    PaymentClaim.payment_id == payment_id,
                    PaymentClaim.owner == owner,
                )
            )
            await db.commit()


class RedisClaimStore(ClaimStore):
    """
    Claims as Redis keys with a PX expiry.
    Use when several API instances already share a Redis and the database
    should not absorb webhook bursts.
    """

    def __init__(self, client: redis.Redis, lease_seconds: int):
        self.redis = client
        self.lease_ms = lease_seconds * 1000
        self.release_script = self.redis.register_script(RELEASE_SCRIPT)

    @staticmethod
    def _key(payment_id: str) -> str:
        return f"claim:payment:{payment_id}"

    async def acquire(self, payment_id: str, owner: str) -> bool:
        claimed = await self.redis.set(self._key(payment_id), owner, nx=True, px=self.lease_ms)
        return bool(claimed)

    async def release(self, payment_id: str, owner: str) -> None:
        await self.release_script(keys=[self._key(payment_id)], args=[owner])
