"""
Payment gateway interface.
The reconciler only needs three operations from the provider; everything
provider-specific (endpoints, auth, status vocabulary) lives behind it.
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from raffle.schemas.order import OrderDescriptor


class PaymentOutcome(str, enum.Enum):
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"
    # Refund or chargeback of a payment that was already settled
    REVERSED = "reversed"


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    redirect_url: str


@dataclass(frozen=True)
class PaymentDetails:
    payment_id: str
    status: str
    outcome: PaymentOutcome
    approved_at: Optional[datetime] = None
    provider_reference: Optional[str] = None
    external_reference: Optional[str] = None


class PaymentGateway(ABC):
    """
    Implementations:
    - MercadoPagoGateway: REST client over httpx
    - test fakes holding payments in memory
    """

    @abstractmethod
    async def create_intent(
        self,
        descriptor: OrderDescriptor,
        expires_at: Optional[datetime] = None,
    ) -> PaymentIntent:
        """
        Create a checkout preference carrying `descriptor` as its
        opaque reference.

        Raises:
            GatewayUnavailable: on timeout, transport error or 5xx
        """

    @abstractmethod
    async def get_payment(self, payment_id: str) -> PaymentDetails:
        """
        Fetch the authoritative state of a payment.

        Raises:
            GatewayUnavailable: on timeout, transport error or 5xx
            PaymentNotFound: when the provider does not know the id
        """

    @abstractmethod
    async def search_by_merchant_order(self, merchant_order_id: str) -> Optional[str]:
        """Return the first payment id attached to a merchant order, if any."""
