"""Async httpx client for MercadoPago checkout preferences and payments."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from src.config import PaymentSettings
from src.events import emit
from src.schemas.events import EventType, SystemEvent
from src.schemas.payment import BackUrls, PaymentLink, PaymentLinkRequest, PaymentVerification

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """MercadoPago could not mint a link or report a payment."""


class MercadoPagoClient:
    """Thin async wrapper around the MercadoPago REST API.

    Endpoints:
        POST {api_url}/checkout/preferences
        GET  {api_url}/v1/payments/{payment_id}
    Auth: Bearer access token

    The bot never hosts its own return pages: every back_url points at the
    gateway's generic page and ``auto_return`` fires on approval.
    """

    def __init__(self, config: PaymentSettings, http_client: httpx.AsyncClient | None = None) -> None:
        if not config.mercadopago_access_token:
            logger.warning("MERCADOPAGO_ACCESS_TOKEN not set, payment links will be rejected")

        self._config = config
        self._base_url = config.mercadopago_api_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.mercadopago_timeout, connect=5.0),
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.mercadopago_access_token}",
            "Content-Type": "application/json",
        }

    def _build_preference(self, request: PaymentLinkRequest) -> dict[str, Any]:
        """Map a PaymentLinkRequest to a MercadoPago preference body."""
        redirect = self._config.redirect_url
        back_urls = request.back_urls or BackUrls(success=redirect, pending=redirect, failure=redirect)
        return {
            "items": [
                {
                    "title": request.title,
                    "description": request.description,
                    "quantity": request.quantity,
                    "currency_id": request.currency_id,
                    "unit_price": float(request.unit_price),
                },
            ],
            "external_reference": request.external_reference,
            "notification_url": request.notification_url or self._config.notification_url,
            "back_urls": back_urls.model_dump(),
            "auto_return": "approved",
        }

    async def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        """Create a checkout preference and return its redirect URL.

        Prefers the live ``init_point`` and falls back to ``sandbox_init_point``.

        Raises:
            PaymentError: If the request fails or the gateway returns no URL.
        """
        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_CALL,
            data={"integration": "mercadopago", "endpoint": "preferences", "amount": str(request.unit_price)},
            source_module="integrations.mercadopago.client",
        ))

        try:
            response = await self._client.post(
                f"{self._base_url}/checkout/preferences",
                json=self._build_preference(request),
                headers=self._auth_headers(),
            )
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as exc:
            await self._report_error("preferences", f"http_{exc.response.status_code}")
            msg = f"MercadoPago rejected the preference with HTTP {exc.response.status_code}"
            raise PaymentError(msg) from exc
        except (httpx.HTTPError, ValueError) as exc:
            await self._report_error("preferences", type(exc).__name__)
            msg = f"MercadoPago preference request failed: {exc}"
            raise PaymentError(msg) from exc

        if not isinstance(payload, dict):
            msg = "MercadoPago preference response is not an object"
            raise PaymentError(msg)

        url = payload.get("init_point") or payload.get("sandbox_init_point") or ""
        preference_id = str(payload.get("id") or "")
        if not url:
            await self._report_error("preferences", "missing_init_point")
            msg = "MercadoPago returned no checkout URL"
            raise PaymentError(msg)

        await emit(SystemEvent(
            event_type=EventType.PAYMENT_LINK_CREATED,
            data={"integration": "mercadopago", "preference_id": preference_id},
            source_module="integrations.mercadopago.client",
        ))
        logger.info("Payment link created: preference=%s", preference_id)
        return PaymentLink(url=url, id=preference_id)

    async def verify_payment(self, payment_id: str) -> PaymentVerification:
        """Look up a payment's status and its external reference.

        Raises:
            PaymentError: If the lookup fails or the status is not recognized.
        """
        try:
            response = await self._client.get(
                f"{self._base_url}/v1/payments/{payment_id}",
                headers=self._auth_headers(),
            )
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as exc:
            await self._report_error("payments", f"http_{exc.response.status_code}")
            msg = f"MercadoPago payment lookup failed with HTTP {exc.response.status_code}"
            raise PaymentError(msg) from exc
        except (httpx.HTTPError, ValueError) as exc:
            await self._report_error("payments", type(exc).__name__)
            msg = f"MercadoPago payment lookup failed: {exc}"
            raise PaymentError(msg) from exc

        try:
            verification = PaymentVerification(
                status=payload.get("status"),
                status_detail=payload.get("status_detail") or "",
                external_reference=payload.get("external_reference") or "",
            )
        except (ValidationError, AttributeError) as exc:
            msg = f"MercadoPago returned an unusable payment: {exc}"
            raise PaymentError(msg) from exc

        await emit(SystemEvent(
            event_type=EventType.PAYMENT_VERIFIED,
            data={"payment_id": payment_id, "status": verification.status.value},
            source_module="integrations.mercadopago.client",
        ))
        return verification

    async def _report_error(self, endpoint: str, error: str) -> None:
        logger.warning("MercadoPago %s error: %s", endpoint, error)
        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_ERROR,
            data={"integration": "mercadopago", "endpoint": endpoint, "error": error},
            source_module="integrations.mercadopago.client",
        ))
