import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from windi.core.exceptions import GatewayResponseError, GatewayTimeout, GatewayUnavailable
from windi.services.mercadopago_service import MercadoPagoService, build_preference_payload


def _client(handler, **kwargs) -> MercadoPagoService:
    return MercadoPagoService(
        access_token="TEST-token",
        base_url="https://api.mp.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


async def test_create_preference_returns_init_point():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "pref-9", "init_point": "https://mp.test/init/pref-9"})

    preference = await _client(handler).create_preference({"items": []})

    assert preference.id == "pref-9"
    assert preference.checkout_url == "https://mp.test/init/pref-9"
    assert seen["method"] == "POST"
    assert seen["url"] == "https://api.mp.test/checkout/preferences"
    assert seen["auth"] == "Bearer TEST-token"
    assert seen["body"] == {"items": []}


async def test_create_preference_falls_back_to_sandbox_url():
    def handler(request):
        return httpx.Response(201, json={"id": 77, "sandbox_init_point": "https://sandbox.mp.test/77"})

    preference = await _client(handler).create_preference({})
    assert preference.id == "77"
    assert preference.checkout_url == "https://sandbox.mp.test/77"


async def test_missing_checkout_url_is_an_error():
    def handler(request):
        return httpx.Response(201, json={"id": "pref-1"})

    with pytest.raises(GatewayResponseError):
        await _client(handler).create_preference({})


async def test_non_2xx_maps_to_response_error():
    def handler(request):
        return httpx.Response(400, json={"message": "invalid unit_price"})

    with pytest.raises(GatewayResponseError) as exc_info:
        await _client(handler).create_preference({})
    assert exc_info.value.http_status == 400
    assert exc_info.value.status_code == 502


async def test_transport_timeout_maps_to_gateway_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(GatewayTimeout):
        await _client(handler).get_payment("1")


async def test_deadline_bounds_slow_gateway():
    async def handler(request):
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    with pytest.raises(GatewayTimeout) as exc_info:
        await _client(handler, payment_timeout=0.05).get_payment("1")
    assert exc_info.value.status_code == 504


async def test_connection_error_maps_to_response_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(GatewayResponseError):
        await _client(handler).create_preference({})


async def test_unconfigured_client_refuses():
    client = MercadoPagoService(access_token="  ", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    assert not client.is_configured
    with pytest.raises(GatewayUnavailable):
        await client.get_payment("1")


async def test_get_payment_parses_reconciliation_fields():
    def handler(request):
        assert request.url.path == "/v1/payments/123"
        return httpx.Response(200, json={
            "id": 123,
            "status": "Approved",
            "transaction_amount": 12999,
            "external_reference": "sub:5|biz:2|plan:BASIC",
            "metadata": {"subscription_id": "5"},
            "order": {"id": 8080},
        })

    payment = await _client(handler).get_payment("123")

    assert payment.id == "123"
    assert payment.status == "approved"
    assert payment.amount == Decimal("12999.00")
    assert payment.metadata_subscription_id == 5
    assert payment.merchant_order_id == "8080"
    assert payment.external_reference == "sub:5|biz:2|plan:BASIC"


def test_preference_payload_shape():
    payload = build_preference_payload(
        subscription_id=5,
        business_id=2,
        business_name="La Esquina",
        plan_id=1,
        plan_code="BASIC",
        plan_name="Basico",
        amount=Decimal("12999"),
        currency="ARS",
        external_reference="sub:5|biz:2|plan:BASIC",
        payer_email="owner@esquina.test",
    )

    assert payload["items"][0]["title"] == "Plan Basico - La Esquina"
    assert payload["items"][0]["currency_id"] == "ARS"
    assert payload["metadata"] == {"subscription_id": 5, "business_id": 2, "plan_id": 1, "plan_code": "BASIC"}
    assert payload["notification_url"].endswith("/webhooks/mercadopago")
    assert payload["back_urls"]["failure"].endswith("?status=failure&sub=5")
    assert payload["auto_return"] == "approved"
    assert payload["payer"]["email"] == "owner@esquina.test"
