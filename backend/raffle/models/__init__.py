from raffle.models.order import Order, OrderStatus, ReleaseReason, ACTIVE_STATUSES
from raffle.models.ticket_hold import TicketHold
from raffle.models.payment_claim import PaymentClaim

__all__ = [
    "Order", "OrderStatus", "ReleaseReason", "ACTIVE_STATUSES",
    "TicketHold", "PaymentClaim",
]
