"""
Tests for the MercadoPago client against a mocked transport.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from raffle.core.config import get_settings
from raffle.core.errors import GatewayUnavailable, PaymentNotFound, StructuralError
from raffle.schemas.order import OrderDescriptor
from raffle.services.interfaces.payment_gateway import PaymentOutcome
from raffle.services.mercadopago_gateway import MercadoPagoGateway, outcome_for

DESCRIPTOR = OrderDescriptor(
    order_id="ord-1",
    numbers=["0001", "0002"],
    buyer_id="buyer-a",
    buyer_name="Maria Silva",
    buyer_phone="+5511999990000",
)


def make_gateway(handler, **overrides) -> MercadoPagoGateway:
    settings = get_settings().model_copy(update={"MP_ACCESS_TOKEN": "test-token", **overrides})
    http = httpx.AsyncClient(
        base_url="https://mp.test",
        transport=httpx.MockTransport(handler),
        headers={"Authorization": f"Bearer {settings.MP_ACCESS_TOKEN}"},
    )
    return MercadoPagoGateway(http, settings)


@pytest.mark.parametrize(
    "status,outcome",
    [
        ("approved", PaymentOutcome.APPROVED),
        ("pending", PaymentOutcome.PENDING),
        ("in_process", PaymentOutcome.PENDING),
        ("rejected", PaymentOutcome.REJECTED),
        ("cancelled", PaymentOutcome.REJECTED),
        ("refunded", PaymentOutcome.REVERSED),
        ("charged_back", PaymentOutcome.REVERSED),
        ("brand_new_status", PaymentOutcome.PENDING),
        (None, PaymentOutcome.PENDING),
    ],
)
def test_status_mapping(status, outcome):
    assert outcome_for(status) is outcome


@pytest.mark.asyncio
async def test_create_intent_payload():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "pref-123", "init_point": "https://mp.test/pay/pref-123"})

    gateway = make_gateway(
        handler,
        MP_NOTIFICATION_URL="https://raffle.test/api/v1/webhooks/mercadopago",
        MP_SUCCESS_URL="https://raffle.test/ok",
    )
    expires_at = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    intent = await gateway.create_intent(DESCRIPTOR, expires_at=expires_at)

    assert intent.intent_id == "pref-123"
    assert intent.redirect_url == "https://mp.test/pay/pref-123"
    assert captured["path"] == "/checkout/preferences"
    assert captured["auth"] == "Bearer test-token"

    body = captured["body"]
    assert [item["id"] for item in body["items"]] == ["0001", "0002"]
    assert all(item["quantity"] == 1 for item in body["items"])
    assert body["notification_url"] == "https://raffle.test/api/v1/webhooks/mercadopago"
    assert body["back_urls"] == {"success": "https://raffle.test/ok"}
    assert body["auto_return"] == "approved"
    assert body["expires"] is True
    assert body["expiration_date_to"].startswith("2026-01-01T12:00:00.000")
    assert OrderDescriptor.from_reference(body["external_reference"]) == DESCRIPTOR


@pytest.mark.asyncio
async def test_create_intent_rejected_by_provider():
    gateway = make_gateway(lambda request: httpx.Response(400, json={"message": "invalid items"}))
    with pytest.raises(GatewayUnavailable):
        await gateway.create_intent(DESCRIPTOR)


@pytest.mark.asyncio
async def test_get_payment():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments/555"
        return httpx.Response(200, json={
            "id": 555,
            "status": "approved",
            "date_approved": "2026-01-01T09:00:00.000-03:00",
            "preference_id": "pref-123",
            "external_reference": DESCRIPTOR.to_reference(),
        })

    details = await make_gateway(handler).get_payment("555")
    assert details.payment_id == "555"
    assert details.outcome is PaymentOutcome.APPROVED
    assert details.approved_at == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert details.provider_reference == "pref-123"
    assert OrderDescriptor.from_reference(details.external_reference) == DESCRIPTOR


@pytest.mark.asyncio
async def test_get_payment_falls_back_to_merchant_order_reference():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": 556, "status": "pending", "order": {"id": 9001}})

    details = await make_gateway(handler).get_payment("556")
    assert details.outcome is PaymentOutcome.PENDING
    assert details.provider_reference == "9001"
    assert details.approved_at is None
    assert details.external_reference is None


@pytest.mark.asyncio
async def test_get_payment_not_found():
    gateway = make_gateway(lambda request: httpx.Response(404, json={"message": "not found"}))
    with pytest.raises(PaymentNotFound) as exc_info:
        await gateway.get_payment("404")
    assert isinstance(exc_info.value, StructuralError)


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [429, 500, 502, 503])
async def test_provider_errors_are_unavailable(status_code):
    gateway = make_gateway(lambda request: httpx.Response(status_code))
    with pytest.raises(GatewayUnavailable):
        await gateway.get_payment("555")


@pytest.mark.asyncio
async def test_timeout_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayUnavailable):
        await make_gateway(handler).get_payment("555")


@pytest.mark.asyncio
async def test_connection_error_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayUnavailable):
        await make_gateway(handler).create_intent(DESCRIPTOR)


@pytest.mark.asyncio
async def test_search_by_merchant_order():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/payments/search"
        if request.url.params["merchant_order_id"] == "777":
            return httpx.Response(200, json={"results": [{"id": 1014, "status": "approved"}]})
        return httpx.Response(200, json={"results": []})

    gateway = make_gateway(handler)
    assert await gateway.search_by_merchant_order("777") == "1014"
    assert await gateway.search_by_merchant_order("778") is None


@pytest.mark.asyncio
async def test_search_prefers_approved_payment():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"results": [
            {"id": 2001, "status": "rejected"},
            {"status": "approved"},
            {"id": 2002, "status": "approved"},
        ]})

    assert await make_gateway(handler).search_by_merchant_order("779") == "2002"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "results",
    [
        [{"status": "approved"}],
        ["1014"],
        {"id": 1014},
        None,
    ],
)
async def test_search_without_usable_payment(results):
    gateway = make_gateway(lambda request: httpx.Response(200, json={"results": results}))
    assert await gateway.search_by_merchant_order("780") is None


def maintenance_page(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="<html>maintenance</html>", headers={"content-type": "text/html"})


@pytest.mark.asyncio
async def test_non_json_success_body_is_unavailable():
    gateway = make_gateway(maintenance_page)
    with pytest.raises(GatewayUnavailable):
        await gateway.get_payment("555")
    with pytest.raises(GatewayUnavailable):
        await gateway.create_intent(DESCRIPTOR)
    with pytest.raises(GatewayUnavailable):
        await gateway.search_by_merchant_order("777")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        ["not", "an", "object"],
        {"init_point": "https://mp.test/pay/x"},
        {"id": "pref-123"},
    ],
)
async def test_incomplete_preference_is_unavailable(body):
    gateway = make_gateway(lambda request: httpx.Response(201, json=body))
    with pytest.raises(GatewayUnavailable):
        await gateway.create_intent(DESCRIPTOR)


@pytest.mark.asyncio
async def test_get_payment_ignores_malformed_fields():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "id": 557,
            "status": ["approved"],
            "date_approved": 1700000000,
            "order": "9001",
            "external_reference": {"orderId": "ord-1"},
        })

    details = await make_gateway(handler).get_payment("557")
    assert details.outcome is PaymentOutcome.PENDING
    assert details.status == "unknown"
    assert details.approved_at is None
    assert details.provider_reference is None
    assert details.external_reference is None
