"""
Payment provider notification shapes.

MercadoPago delivers the same information in several forms:

  {"type": "payment", "data": {"id": "123"}}                 webhook
  {"action": "payment.updated", "data": {"id": "123"}}       webhook
  {"topic": "payment", "resource": "123"}                    IPN
  {"topic": "merchant_order", "resource": ".../merchant_orders/456"}
  ?topic=payment&id=123  /  ?type=payment&data.id=123        IPN query string

parse_notification folds all of them into one tagged variant; anything that
names no payment decodes to None.
"""

import re
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

MERCHANT_ORDER_TOPIC = "merchant_order"
PAYMENT_TOPIC = "payment"

_BARE_ID = re.compile(r"^\d+$")
_TRAILING_ID = re.compile(r"/(\d+)/?$")


class PaymentNotification(BaseModel):
    kind: Literal["payment"] = "payment"
    payment_id: str


class ResourceNotification(BaseModel):
    kind: Literal["resource"] = "resource"
    topic: Optional[str] = None
    resource: str

    @property
    def payment_id(self) -> str:
        return _extract_id(self.resource)


class MerchantOrderNotification(BaseModel):
    kind: Literal["merchant_order"] = "merchant_order"
    merchant_order_id: str


Notification = Annotated[
    Union[PaymentNotification, ResourceNotification, MerchantOrderNotification],
    Field(discriminator="kind"),
]


def _extract_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    if _BARE_ID.match(value):
        return value
    match = _TRAILING_ID.search(value)
    return match.group(1) if match else None


def _text(value: Any) -> Optional[str]:
    # topic and action are names, never numbers or objects
    return value if isinstance(value, str) and value else None


def _data_id(body: Mapping[str, Any]) -> Optional[str]:
    data = body.get("data")
    if isinstance(data, Mapping) and data.get("id") is not None:
        return str(data["id"])
    return None


def parse_notification(
    body: Mapping[str, Any],
    query: Optional[Mapping[str, Any]] = None,
) -> Optional[Notification]:
    query = query or {}
    topic = (
        _text(body.get("topic"))
        or _text(body.get("type"))
        or _text(query.get("topic"))
        or _text(query.get("type"))
    )
    action = _text(body.get("action")) or ""
    data_id = _data_id(body) or query.get("data.id")

    if topic == MERCHANT_ORDER_TOPIC:
        merchant_order_id = (
            _extract_id(body.get("resource"))
            or _extract_id(data_id)
            or _extract_id(query.get("id"))
        )
        if merchant_order_id:
            return MerchantOrderNotification(merchant_order_id=merchant_order_id)
        return None

    if topic not in (None, PAYMENT_TOPIC) and not action.startswith("payment."):
        return None

    if data_id:
        return PaymentNotification(payment_id=data_id)

    resource = body.get("resource")
    if resource is not None and _extract_id(resource):
        return ResourceNotification(topic=topic, resource=str(resource))

    if query.get("id") and _extract_id(query["id"]):
        return PaymentNotification(payment_id=_extract_id(query["id"]))

    return None
