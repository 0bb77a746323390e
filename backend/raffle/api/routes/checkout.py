"""
Checkout endpoint: turn a held order into a payment intent.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from raffle.api.deps import get_gateway
from raffle.db.session import get_db
from raffle.schemas.order import CheckoutRequest, CheckoutResponse
from raffle.services.checkout_service import create_payment_intent
from raffle.services.interfaces.payment_gateway import PaymentGateway

router = APIRouter(prefix="/orders", tags=["Checkout"])


@router.post("/{order_id}/checkout", response_model=CheckoutResponse)
async def checkout(
    order_id: str,
    request: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Create the provider preference for a held order.
    409 if the hold expired or belongs to someone else, 503 if the
    provider is unreachable.
    """
    intent = await create_payment_intent(
        db,
        gateway,
        order_id,
        request.buyer_id,
        request.buyer_name,
        request.buyer_phone,
    )
    return CheckoutResponse(intent_id=intent.intent_id, redirect_url=intent.redirect_url)
