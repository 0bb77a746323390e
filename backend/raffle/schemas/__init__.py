from raffle.schemas.order import (
    ReserveRequest, OrderResponse, VerifyResponse,
    CheckoutRequest, CheckoutResponse, AvailabilityResponse, OrderDescriptor,
)
from raffle.schemas.notification import (
    Notification, PaymentNotification, ResourceNotification,
    MerchantOrderNotification, parse_notification,
)

__all__ = [
    "ReserveRequest", "OrderResponse", "VerifyResponse",
    "CheckoutRequest", "CheckoutResponse", "AvailabilityResponse", "OrderDescriptor",
    "Notification", "PaymentNotification", "ResourceNotification",
    "MerchantOrderNotification", "parse_notification",
]
