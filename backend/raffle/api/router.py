"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from raffle.api.routes import reservations, checkout, numbers, webhooks

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(reservations.router)
api_router.include_router(checkout.router)
api_router.include_router(numbers.router)
api_router.include_router(webhooks.router)
