"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .claims import ClaimStore
from .payment_gateway import PaymentGateway, PaymentIntent, PaymentDetails, PaymentOutcome

__all__ = ['ClaimStore', 'PaymentGateway', 'PaymentIntent', 'PaymentDetails', 'PaymentOutcome']
