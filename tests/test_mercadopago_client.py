"""Tests for the MercadoPago payment-link client.

Covers:
- Preference body: single item, float price, external reference,
  generic back_urls, auto_return
- init_point preferred, sandbox fallback, missing URL
- HTTP and transport failures raise PaymentError
- Payment verification: known statuses, unknown status, HTTP errors
"""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from src.config import PaymentSettings
from src.integrations.mercadopago.client import MercadoPagoClient, PaymentError
from src.models.enums import PaymentStatus
from src.schemas.payment import BackUrls, PaymentLinkRequest

# ── Helpers ──────────────────────────────────────────────────────────


def _make_client(handler) -> MercadoPagoClient:
    config = PaymentSettings(
        mercadopago_api_url="https://mp.test",
        mercadopago_access_token="TEST-token",
    )
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MercadoPagoClient(config, http_client=http)


def _request(**overrides) -> PaymentLinkRequest:
    fields = {
        "title": "Turno - Barba",
        "description": "Turno para Ana Gomez el 15/03/2025 14:00",
        "currency_id": "ARS",
        "unit_price": Decimal("1000"),
        "external_reference": '{"eventTypeId":3}',
    }
    fields.update(overrides)
    return PaymentLinkRequest(**fields)


# ── create_payment_link ──────────────────────────────────────────────


class TestCreatePaymentLink:
    @pytest.mark.asyncio()
    async def test_preference_body(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": "pref_1", "init_point": "https://mp.test/pay/pref_1"})

        client = _make_client(handler)
        link = await client.create_payment_link(_request())

        assert link.url == "https://mp.test/pay/pref_1"
        assert link.id == "pref_1"

        [request] = seen
        assert request.method == "POST"
        assert request.url.path == "/checkout/preferences"
        assert request.headers["Authorization"] == "Bearer TEST-token"
        body = json.loads(request.content)
        assert body["items"] == [{
            "title": "Turno - Barba",
            "description": "Turno para Ana Gomez el 15/03/2025 14:00",
            "quantity": 1,
            "currency_id": "ARS",
            "unit_price": 1000.0,
        }]
        assert body["external_reference"] == '{"eventTypeId":3}'
        assert body["back_urls"] == {
            "success": "https://www.mercadopago.com.ar",
            "pending": "https://www.mercadopago.com.ar",
            "failure": "https://www.mercadopago.com.ar",
        }
        assert body["auto_return"] == "approved"

    @pytest.mark.asyncio()
    async def test_explicit_back_urls(self):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"id": "p", "init_point": "https://mp.test/p"})

        client = _make_client(handler)
        urls = BackUrls(success="https://s", pending="https://p", failure="https://f")
        await client.create_payment_link(_request(back_urls=urls))

        assert json.loads(seen[0].content)["back_urls"]["failure"] == "https://f"

    @pytest.mark.asyncio()
    async def test_sandbox_fallback(self):
        client = _make_client(
            lambda request: httpx.Response(201, json={"id": "p", "sandbox_init_point": "https://sandbox.mp.test/p"})
        )
        link = await client.create_payment_link(_request())
        assert link.url == "https://sandbox.mp.test/p"

    @pytest.mark.asyncio()
    async def test_missing_url_raises(self):
        client = _make_client(lambda request: httpx.Response(201, json={"id": "p", "init_point": ""}))
        with pytest.raises(PaymentError, match="no checkout URL"):
            await client.create_payment_link(_request())

    @pytest.mark.asyncio()
    async def test_http_error_raises(self):
        client = _make_client(lambda request: httpx.Response(401, json={"message": "invalid token"}))
        with pytest.raises(PaymentError, match="HTTP 401"):
            await client.create_payment_link(_request())

    @pytest.mark.asyncio()
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        client = _make_client(handler)
        with pytest.raises(PaymentError):
            await client.create_payment_link(_request())


# ── verify_payment ───────────────────────────────────────────────────


class TestVerifyPayment:
    @pytest.mark.asyncio()
    @pytest.mark.parametrize("status", [s.value for s in PaymentStatus])
    async def test_known_statuses(self, status):
        seen: list[httpx.Request] = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "id": 99,
                "status": status,
                "status_detail": "accredited",
                "external_reference": "ref",
            })

        client = _make_client(handler)
        result = await client.verify_payment("99")

        assert result.status == PaymentStatus(status)
        assert result.status_detail == "accredited"
        assert result.external_reference == "ref"
        assert seen[0].url.path == "/v1/payments/99"

    @pytest.mark.asyncio()
    async def test_unknown_status_raises(self):
        client = _make_client(lambda request: httpx.Response(200, json={"status": "charged_back"}))
        with pytest.raises(PaymentError, match="unusable payment"):
            await client.verify_payment("99")

    @pytest.mark.asyncio()
    async def test_not_found_raises(self):
        client = _make_client(lambda request: httpx.Response(404, json={"message": "not found"}))
        with pytest.raises(PaymentError, match="HTTP 404"):
            await client.verify_payment("99")
