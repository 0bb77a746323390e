"""
Number grid endpoint with Redis caching.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.core.config import get_settings
from raffle.core.logging import get_logger
from raffle.db.session import get_db
from raffle.schemas.order import AvailabilityResponse
from raffle.services.cache_service import get_cached_availability, set_cached_availability
from raffle.services.reservation_service import get_unavailable_numbers

logger = get_logger(__name__)
router = APIRouter(prefix="/numbers", tags=["Numbers"])


@router.get("", response_model=AvailabilityResponse)
async def list_availability(db: AsyncSession = Depends(get_db)):
    """
    Numbers that are reserved, awaiting payment or sold.
    Served from Redis when possible; invalidated on every inventory change.
    """
    cached = await get_cached_availability()
    if cached:
        logger.debug("availability_cache_hit")
        return AvailabilityResponse(**cached, cached=True)

    response = AvailabilityResponse(
        total_supply=get_settings().TOTAL_SUPPLY,
        unavailable=await get_unavailable_numbers(db),
    )
    await set_cached_availability(response.model_dump(exclude={"cached"}))
    return response
