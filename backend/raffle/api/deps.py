"""
FastAPI dependencies for collaborators built in the application lifespan.
Tests replace them through app.dependency_overrides.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from raffle.db.session import get_session_factory
from raffle.services.interfaces.claims import ClaimStore
from raffle.services.interfaces.payment_gateway import PaymentGateway
from raffle.services.reconciliation_service import WebhookReconciler


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_claim_store(request: Request) -> ClaimStore:
    return request.app.state.claims


def get_reconciler(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    gateway: PaymentGateway = Depends(get_gateway),
    claims: ClaimStore = Depends(get_claim_store),
) -> WebhookReconciler:
    return WebhookReconciler(session_factory, gateway, claims)
