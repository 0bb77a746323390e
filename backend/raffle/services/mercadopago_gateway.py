"""
MercadoPago REST client.

Only three endpoints are used:
  POST /checkout/preferences             create the payment intent
  GET  /v1/payments/{id}                 authoritative payment state
  GET  /v1/payments/search               payment behind a merchant order

Every call carries a bounded timeout. Timeouts, transport errors, 429, 5xx
and 2xx bodies that are not the expected JSON become GatewayUnavailable:
the outcome is unknown and the caller must not touch inventory.
"""

import time
from datetime import datetime
from typing import Optional

import httpx

from raffle.core.config import Settings, get_settings
from raffle.core.errors import GatewayUnavailable, PaymentNotFound
from raffle.core.logging import get_logger
from raffle.core.metrics import gateway_latency, record_gateway_request
from raffle.schemas.order import OrderDescriptor
from raffle.services.interfaces.payment_gateway import (
    PaymentDetails,
    PaymentGateway,
    PaymentIntent,
    PaymentOutcome,
)
from raffle.services.inventory import as_utc

logger = get_logger(__name__)

STATUS_OUTCOMES = {
    "approved": PaymentOutcome.APPROVED,
    "pending": PaymentOutcome.PENDING,
    "in_process": PaymentOutcome.PENDING,
    "authorized": PaymentOutcome.PENDING,
    "in_mediation": PaymentOutcome.PENDING,
    "rejected": PaymentOutcome.REJECTED,
    "cancelled": PaymentOutcome.REJECTED,
    "refunded": PaymentOutcome.REVERSED,
    "charged_back": PaymentOutcome.REVERSED,
}


def outcome_for(status: Optional[str]) -> PaymentOutcome:
    # Unknown statuses wait for a later notification
    return STATUS_OUTCOMES.get(status or "", PaymentOutcome.PENDING)


def _text(value) -> Optional[str]:
    return value if isinstance(value, str) else None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("gateway_bad_timestamp", value=value)
        return None


class MercadoPagoGateway(PaymentGateway):

    def __init__(self, http: httpx.AsyncClient, settings: Settings | None = None):
        self.http = http
        self.settings = settings or get_settings()

    @classmethod
    def create_http_client(cls, settings: Settings | None = None) -> httpx.AsyncClient:
        settings = settings or get_settings()
        return httpx.AsyncClient(
            base_url=settings.MP_API_BASE_URL,
            timeout=httpx.Timeout(settings.GATEWAY_TIMEOUT_SECONDS),
            headers={"Authorization": f"Bearer {settings.MP_ACCESS_TOKEN}"},
            limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
        )

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        start = time.perf_counter()
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            record_gateway_request(operation, "timeout")
            logger.warning("gateway_timeout", operation=operation, url=url)
            raise GatewayUnavailable(f"MercadoPago {operation} timed out") from e
        except httpx.TransportError as e:
            record_gateway_request(operation, "error")
            logger.warning("gateway_transport_error", operation=operation, error=str(e))
            raise GatewayUnavailable(f"MercadoPago {operation} failed: {e}") from e
        finally:
            gateway_latency.labels(operation=operation).observe(time.perf_counter() - start)

        if response.status_code == 429 or response.status_code >= 500:
            record_gateway_request(operation, "error")
            logger.warning(
                "gateway_unavailable",
                operation=operation,
                status_code=response.status_code,
            )
            raise GatewayUnavailable(
                f"MercadoPago {operation} returned {response.status_code}"
            )
        return response

    def _decode(self, operation: str, response: httpx.Response) -> dict:
        # Proxies and maintenance pages answer 200 with HTML
        try:
            body = response.json()
        except ValueError as e:
            record_gateway_request(operation, "error")
            logger.warning(
                "gateway_unreadable_body",
                operation=operation,
                content_type=response.headers.get("content-type"),
                body=response.text[:200],
            )
            raise GatewayUnavailable(f"MercadoPago {operation} returned an unreadable body") from e
        if not isinstance(body, dict):
            record_gateway_request(operation, "error")
            logger.warning("gateway_unexpected_body", operation=operation, body=response.text[:200])
            raise GatewayUnavailable(f"MercadoPago {operation} returned an unexpected body")
        return body

    async def create_intent(
        self,
        descriptor: OrderDescriptor,
        expires_at: Optional[datetime] = None,
    ) -> PaymentIntent:
        settings = self.settings
        payload = {
            "items": [
                {
                    "id": number,
                    "title": f"{settings.TICKET_TITLE} {number}",
                    "quantity": 1,
                    "unit_price": settings.TICKET_PRICE,
                    "currency_id": settings.CURRENCY_ID,
                }
                for number in descriptor.numbers
            ],
            "payer": {
                "name": descriptor.buyer_name,
                "phone": {"number": descriptor.buyer_phone},
            },
            "external_reference": descriptor.to_reference(),
        }
        if settings.MP_NOTIFICATION_URL:
            payload["notification_url"] = settings.MP_NOTIFICATION_URL
        back_urls = {
            key: url for key, url in (
                ("success", settings.MP_SUCCESS_URL),
                ("failure", settings.MP_FAILURE_URL),
                ("pending", settings.MP_PENDING_URL),
            ) if url
        }
        if back_urls:
            payload["back_urls"] = back_urls
            if "success" in back_urls:
                payload["auto_return"] = "approved"
        if expires_at is not None:
            # Buyer cannot pay after the hold is gone
            payload["expires"] = True
            payload["expiration_date_to"] = as_utc(expires_at).isoformat(timespec="milliseconds")

        response = await self._request("create_intent", "POST", "/checkout/preferences", json=payload)
        if response.is_error:
            record_gateway_request("create_intent", "rejected")
            logger.error(
                "gateway_preference_rejected",
                order_id=descriptor.order_id,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GatewayUnavailable(
                f"MercadoPago rejected preference with {response.status_code}"
            )

        body = self._decode("create_intent", response)
        if not body.get("id") or not body.get("init_point"):
            record_gateway_request("create_intent", "error")
            logger.warning("gateway_preference_incomplete", order_id=descriptor.order_id, keys=sorted(body))
            raise GatewayUnavailable("MercadoPago preference is missing its id or checkout link")
        record_gateway_request("create_intent", "ok")
        return PaymentIntent(intent_id=str(body["id"]), redirect_url=str(body["init_point"]))

    async def get_payment(self, payment_id: str) -> PaymentDetails:
        response = await self._request("get_payment", "GET", f"/v1/payments/{payment_id}")
        if response.status_code == 404:
            record_gateway_request("get_payment", "not_found")
            raise PaymentNotFound(f"Payment {payment_id} not found", payment_id=payment_id)
        if response.is_error:
            record_gateway_request("get_payment", "error")
            raise GatewayUnavailable(
                f"MercadoPago payment lookup returned {response.status_code}"
            )

        body = self._decode("get_payment", response)
        record_gateway_request("get_payment", "ok")
        status = _text(body.get("status"))
        merchant_order = body.get("order")
        if not isinstance(merchant_order, dict):
            merchant_order = {}
        reference = body.get("preference_id") or merchant_order.get("id")
        return PaymentDetails(
            payment_id=str(body.get("id", payment_id)),
            status=status or "unknown",
            outcome=outcome_for(status),
            approved_at=_parse_timestamp(_text(body.get("date_approved"))),
            provider_reference=str(reference) if reference else None,
            external_reference=_text(body.get("external_reference")),
        )

    async def search_by_merchant_order(self, merchant_order_id: str) -> Optional[str]:
        response = await self._request(
            "search",
            "GET",
            "/v1/payments/search",
            params={"merchant_order_id": merchant_order_id},
        )
        if response.is_error:
            record_gateway_request("search", "error")
            raise GatewayUnavailable(
                f"MercadoPago payment search returned {response.status_code}"
            )

        results = self._decode("search", response).get("results")
        if not isinstance(results, list):
            results = []
        record_gateway_request("search", "ok")
        payments = [
            result for result in results
            if isinstance(result, dict) and result.get("id") is not None
        ]
        if not payments:
            return None
        # A rejected attempt may precede the approved one
        approved = [p for p in payments if p.get("status") == "approved"]
        return str((approved or payments)[0]["id"])
