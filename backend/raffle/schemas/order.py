"""
Pydantic schemas for reservation, checkout and availability endpoints.
The public API speaks camelCase; Python code uses snake_case names.
"""

import json
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from raffle.core.errors import StructuralError
from raffle.services.inventory import as_utc


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReserveRequest(CamelModel):
    numbers: list[str] = Field(..., min_length=1)
    buyer_id: str = Field(..., min_length=1, max_length=128)


class OrderResponse(CamelModel):
    order_id: str
    numbers: list[str]
    status: str
    hold_expires_at: Optional[datetime] = None
    buyer_name: Optional[str] = None
    approved_at: Optional[datetime] = None

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        return cls(
            order_id=order.id,
            numbers=list(order.numbers),
            status=order.status,
            hold_expires_at=as_utc(order.hold_expires_at),
            buyer_name=order.buyer_name,
            approved_at=as_utc(order.approved_at),
        )


class VerifyResponse(CamelModel):
    order_id: str
    valid: bool


class CheckoutRequest(CamelModel):
    buyer_id: str = Field(..., min_length=1, max_length=128)
    buyer_name: str = Field(..., min_length=1, max_length=255)
    buyer_phone: str = Field(..., min_length=1, max_length=64)


class CheckoutResponse(CamelModel):
    intent_id: str
    redirect_url: str


class AvailabilityResponse(CamelModel):
    total_supply: int
    unavailable: list[str]
    cached: bool = False


class OrderDescriptor(CamelModel):
    """
    Opaque order reference embedded in the payment intent and read back
    from the payment when its notification arrives.
    """

    order_id: str
    numbers: list[str]
    buyer_id: str
    buyer_name: Optional[str] = None
    buyer_phone: Optional[str] = None

    def to_reference(self) -> str:
        return json.dumps(self.model_dump(by_alias=True), separators=(",", ":"))

    @classmethod
    def from_reference(cls, raw: Optional[str]) -> "OrderDescriptor":
        if not raw:
            raise StructuralError("Payment carries no order reference")
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise StructuralError(
                "Unreadable order reference",
                errors=e.error_count(),
            ) from e
