"""
Redis caching for the number availability snapshot.

CACHING STRATEGY
================

What we cache:
  - The list of unavailable numbers served by GET /numbers
  - Single key: "numbers:availability"

Why:
  - The number grid is polled by every open browser tab
  - Building it is one indexed scan of ticket_holds, but it is the
    hottest read in the system

Invalidation:
  - After a reservation, an approval, a rejection release or a sweeper pass
  - Short TTL as safety net; other instances behind the load balancer
    invalidate the same key

The cache never decides anything. Reservation exclusivity is enforced by the
ticket_holds primary key, so a stale grid only costs the buyer a 400 with a
conflict list.
"""

import json
from typing import Optional

import redis.asyncio as redis

from raffle.core.config import get_settings
from raffle.core.logging import get_logger
from raffle.infrastructure.redis_client import get_redis

logger = get_logger(__name__)

AVAILABILITY_KEY = "numbers:availability"


async def get_cached_availability() -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    try:
        data = await client.get(AVAILABILITY_KEY)
        if data:
            logger.debug("cache_hit", key=AVAILABILITY_KEY)
            return json.loads(data)
        logger.debug("cache_miss", key=AVAILABILITY_KEY)
    except redis.RedisError as e:
        logger.error("cache_get_error", key=AVAILABILITY_KEY, error=str(e))

    return None


async def set_cached_availability(data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    ttl = get_settings().REDIS_CACHE_TTL
    try:
        await client.setex(AVAILABILITY_KEY, ttl, json.dumps(data, default=str))
        logger.debug("cache_set", key=AVAILABILITY_KEY, ttl=ttl)
    except redis.RedisError as e:
        logger.error("cache_set_error", key=AVAILABILITY_KEY, error=str(e))


async def invalidate_availability_cache() -> None:
    client = await get_redis()
    if not client:
        return

    try:
        await client.delete(AVAILABILITY_KEY)
        logger.debug("cache_invalidated", key=AVAILABILITY_KEY)
    except redis.RedisError as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
