"""
Payment intent creation for a held order.

The gateway call happens before the order moves to `pending`, so a
provider outage leaves the order exactly as it was. The pending transition
is conditional on the hold still being live; a hold that expired while the
provider was answering loses, and the orphaned preference cannot be paid
because it expires together with the hold.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from raffle.core.errors import GatewayUnavailable, InvalidInput, OrderNotHeld
from raffle.core.logging import get_logger
from raffle.core.metrics import record_checkout
from raffle.models import Order, OrderStatus, ACTIVE_STATUSES
from raffle.schemas.order import OrderDescriptor
from raffle.services.interfaces.payment_gateway import PaymentGateway, PaymentIntent
from raffle.services.inventory import load_order, transition_order, utcnow
from raffle.services.reservation_service import verify_hold

logger = get_logger(__name__)


async def create_payment_intent(
    db: AsyncSession,
    gateway: PaymentGateway,
    order_id: str,
    buyer_id: str,
    buyer_name: str,
    buyer_phone: str,
) -> PaymentIntent:
    buyer_name = (buyer_name or "").strip()
    buyer_phone = (buyer_phone or "").strip()
    if not buyer_name or not buyer_phone:
        raise InvalidInput("buyerName and buyerPhone are required")

    if not await verify_hold(db, order_id, buyer_id):
        record_checkout("not_held")
        raise OrderNotHeld(f"Order {order_id} is not held by this buyer")

    order = await load_order(db, order_id)
    descriptor = OrderDescriptor(
        order_id=order.id,
        numbers=list(order.numbers),
        buyer_id=buyer_id,
        buyer_name=buyer_name,
        buyer_phone=buyer_phone,
    )
    # No connection stays checked out while the provider answers
    await db.commit()

    try:
        intent = await gateway.create_intent(descriptor, expires_at=order.hold_expires_at)
    except GatewayUnavailable:
        record_checkout("gateway_unavailable")
        raise

    moved = await transition_order(
        db,
        order.id,
        ACTIVE_STATUSES,
        {
            "status": OrderStatus.PENDING.value,
            "buyer_name": buyer_name,
            "buyer_phone": buyer_phone,
            "intent_id": intent.intent_id,
        },
        Order.buyer_id == buyer_id,
        Order.hold_expires_at > utcnow(),
    )
    await db.commit()

    if not moved:
        record_checkout("not_held")
        logger.warning("checkout_hold_lost", order_id=order.id, intent_id=intent.intent_id)
        raise OrderNotHeld(f"Order {order_id} expired during checkout")

    record_checkout("success")
    logger.info(
        "payment_intent_created",
        order_id=order.id,
        intent_id=intent.intent_id,
        numbers=order.numbers,
    )
    return intent
