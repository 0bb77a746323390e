"""
Claim store and gateway factory.
Configures which implementations the application wires in at startup.
"""

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.core.config import Settings, get_settings
from raffle.core.logging import get_logger
from raffle.infrastructure.redis_client import get_redis
from raffle.services.claim_service import DatabaseClaimStore, RedisClaimStore
from raffle.services.interfaces.claims import ClaimStore
from raffle.services.interfaces.payment_gateway import PaymentGateway
from raffle.services.mercadopago_gateway import MercadoPagoGateway

logger = get_logger(__name__)


async def create_claim_store(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
) -> ClaimStore:
    """
    Strategy selection via CLAIM_BACKEND:
    - database (default): payment_claims table, no extra moving parts
    - redis: SET NX PX leases

    If Redis is selected but unreachable we fall back to the database
    rather than refusing every webhook.
    """
    settings = settings or get_settings()

    if settings.CLAIM_BACKEND == "redis":
        client = await get_redis()
        if client is not None:
            return RedisClaimStore(client, settings.CLAIM_LEASE_SECONDS)
        logger.warning("redis_claims_unavailable", fallback="database")

    return DatabaseClaimStore(session_factory, settings.CLAIM_LEASE_SECONDS)


def create_gateway(http: httpx.AsyncClient, settings: Settings | None = None) -> PaymentGateway:
    settings = settings or get_settings()
    if not settings.MP_ACCESS_TOKEN:
        logger.warning("mercadopago_token_missing")
    return MercadoPagoGateway(http, settings)
