"""Booking negotiator: turns a validated booking into a payment link.

The calendar booking is NOT created here. The booking travels, compacted,
inside the payment's external reference so that, once MercadoPago reports
the payment as approved, ``reconcile`` can rebuild it and book it on Cal.com
without any database. Turnos cancelled from the menu in the meantime are
skipped.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError

from src.booking.ledger import TurnoLedger
from src.config import PaymentSettings, SchedulingSettings
from src.events import emit
from src.integrations.calcom.client import CalcomClient
from src.integrations.mercadopago.client import MercadoPagoClient, PaymentError
from src.models.enums import PaymentStatus, TurnoStatus
from src.schemas.booking import BookingRequest
from src.schemas.events import EventType, SystemEvent
from src.schemas.payment import PaymentLinkRequest

logger = logging.getLogger(__name__)

# MercadoPago rejects longer external references
EXTERNAL_REFERENCE_LIMIT = 256


class NegotiationError(Exception):
    """No payment link could be produced for a booking."""


class NegotiationResult(BaseModel):
    """Outcome of a negotiation. ``booking_record`` stays None until payment."""

    booking_record: dict[str, Any] | None = None
    payment_url: str
    payment_id: str


class BookingNegotiator:
    """Requests payment links for bookings and books them once paid."""

    def __init__(
        self,
        payment_issuer: MercadoPagoClient,
        config: PaymentSettings,
        scheduling: SchedulingSettings | None = None,
        ledger: TurnoLedger | None = None,
    ) -> None:
        self._issuer = payment_issuer
        self._config = config
        self._scheduling = scheduling or SchedulingSettings()
        self._ledger = ledger

    @staticmethod
    def _describe(booking: BookingRequest) -> str:
        """Human-readable description shown on the checkout page."""
        local_start = booking.start.astimezone(ZoneInfo(booking.time_zone))
        return f"Turno para {booking.responses.name} el {local_start:%d/%m/%Y %H:%M}"

    async def negotiate(self, booking: BookingRequest) -> NegotiationResult:
        """Ask the payment issuer for a link carrying the serialized booking.

        Raises:
            NegotiationError: On a missing or non-positive price, an issuer
                failure, or a response without a URL.
        """
        price = booking.metadata.price
        if price is None or price <= Decimal("0"):
            msg = f"Booking has no chargeable price: {price!r}"
            raise NegotiationError(msg)

        reference = booking.to_external_reference()
        if len(reference) > EXTERNAL_REFERENCE_LIMIT:
            logger.warning(
                "External reference is %d chars (limit %d); MercadoPago may reject it",
                len(reference),
                EXTERNAL_REFERENCE_LIMIT,
            )

        try:
            request = PaymentLinkRequest(
                title=f"Turno - {booking.metadata.service or 'Servicio'}",
                description=self._describe(booking),
                quantity=1,
                currency_id=self._config.currency_id,
                unit_price=price,
                external_reference=reference,
                notification_url=self._config.notification_url,
            )
        except ValidationError as exc:
            msg = f"Invalid payment request: {exc}"
            raise NegotiationError(msg) from exc

        try:
            link = await self._issuer.create_payment_link(request)
        except PaymentError as exc:
            msg = f"Payment link could not be created: {exc}"
            raise NegotiationError(msg) from exc

        if not link or not link.url:
            msg = "Payment issuer returned no URL"
            raise NegotiationError(msg)

        logger.info(
            "Booking negotiated: event_type=%s start=%s preference=%s",
            booking.event_type_id,
            booking.start.isoformat(),
            link.id,
        )
        return NegotiationResult(booking_record=None, payment_url=link.url, payment_id=link.id)

    async def reconcile(self, payment_id: str, calendar: CalcomClient) -> dict[str, Any] | None:
        """Book the turno on Cal.com if the payment was approved.

        Returns the Cal.com booking record, or None when the payment is not
        (yet) approved, or when the turno is no longer pending: cancelled from
        the menu, or booked by an earlier reconciliation.

        Raises:
            PaymentError: If the payment cannot be looked up.
            NegotiationError: If the external reference is not a booking.
            AvailabilityError: If Cal.com refuses the booking.
        """
        verification = await self._issuer.verify_payment(payment_id)
        if verification.status != PaymentStatus.APPROVED:
            logger.info("Payment %s not approved yet (status=%s)", payment_id, verification.status.value)
            return None

        try:
            booking = BookingRequest.from_external_reference(
                verification.external_reference,
                time_zone=self._scheduling.timezone,
                language=self._scheduling.language,
            )
        except ValidationError as exc:
            msg = f"Payment {payment_id} carries no usable booking reference"
            raise NegotiationError(msg) from exc

        turno_id = booking.metadata.turno_id
        if turno_id and self._ledger is not None:
            turno = self._ledger.get(turno_id)
            if turno is not None and turno.status != TurnoStatus.PENDING_PAYMENT:
                logger.warning(
                    "Payment %s is for turno %s, already %s; not booking",
                    payment_id,
                    turno_id,
                    turno.status.value,
                )
                return None

        record = await calendar.confirm_booking(booking)
        if turno_id and self._ledger is not None:
            self._ledger.confirm(turno_id)

        await emit(SystemEvent(
            event_type=EventType.BOOKING_CONFIRMED,
            sender_id=booking.metadata.whatsapp,
            data={"payment_id": payment_id, "booking_uid": record.get("uid"), "turno_id": turno_id},
            source_module="booking.negotiator",
        ))
        return record
