"""Pydantic schemas for the booking handed to the payment gateway.

BookingRequest mirrors the Cal.com booking payload. ExternalReference is
its compact form, which travels inside the payment so the booking can be
rebuilt once the payment is approved. TurnoSnapshot is the
strict check run over the conversation scratch before negotiating.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def to_utc_iso(value: datetime) -> str:
    """Render an aware datetime as ISO-8601 UTC with milliseconds: 2025-03-10T17:00:00.000Z"""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Attendee(BaseModel):
    """Booking responses: who the turno is for."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    phone: str


class BookingMetadata(BaseModel):
    """Free-form metadata carried with the booking."""

    model_config = ConfigDict(frozen=True)

    service: str
    price: Decimal | None = None
    whatsapp: str | None = None
    turno_id: str | None = None


class ExternalReference(BaseModel):
    """Wire form of a booking inside a payment: one-letter keys, UTC instants."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_type_id: int = Field(alias="e")
    start: AwareDatetime = Field(alias="s")
    end: AwareDatetime = Field(alias="f")
    name: str = Field(alias="n")
    email: str = Field(alias="m")
    phone: str = Field(alias="p")
    service: str = Field(alias="v")
    price: Decimal | None = Field(default=None, alias="$")
    turno_id: str | None = Field(default=None, alias="t")

    @field_serializer("start", "end")
    def _serialize_instant(self, value: datetime) -> str:
        return to_utc_iso(value)


class BookingRequest(BaseModel):
    """Immutable booking intent assembled at confirmation time."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    event_type_id: int
    start: AwareDatetime
    end: AwareDatetime
    time_zone: str
    language: str
    responses: Attendee
    metadata: BookingMetadata

    @field_serializer("start", "end")
    def _serialize_instant(self, value: datetime) -> str:
        return to_utc_iso(value)

    def to_external_reference(self) -> str:
        """Serialize the booking into MercadoPago's 256-char external reference.

        Time zone and language come from configuration and the WhatsApp id
        equals the attendee phone, so none of them travel.
        """
        compact = ExternalReference(
            event_type_id=self.event_type_id,
            start=self.start,
            end=self.end,
            name=self.responses.name,
            email=self.responses.email,
            phone=self.responses.phone,
            service=self.metadata.service,
            price=self.metadata.price,
            turno_id=self.metadata.turno_id,
        )
        return compact.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_external_reference(cls, reference: str, *, time_zone: str, language: str) -> BookingRequest:
        """Rebuild a BookingRequest from a payment's external reference.

        Raises:
            ValidationError: If the reference is not one of ours.
        """
        compact = ExternalReference.model_validate_json(reference)
        return cls(
            event_type_id=compact.event_type_id,
            start=compact.start,
            end=compact.end,
            time_zone=time_zone,
            language=language,
            responses=Attendee(name=compact.name, email=compact.email, phone=compact.phone),
            metadata=BookingMetadata(
                service=compact.service,
                price=compact.price,
                whatsapp=compact.phone,
                turno_id=compact.turno_id,
            ),
        )

    def to_calcom_payload(self) -> dict:
        """Body for Cal.com POST /bookings. Unset metadata entries are left out."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TurnoSnapshot(BaseModel):
    """Everything collected by the conversation, validated as a whole."""

    nombre: str = Field(min_length=2)
    email: str
    servicio: str = Field(min_length=1)
    precio: Decimal = Field(gt=0)
    fecha: str
    hora: str
    start_time: AwareDatetime
    end_time: AwareDatetime
    telefono: str = Field(min_length=8)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Same shape check the email step applies."""
        if not EMAIL_PATTERN.match(v):
            msg = f"Invalid email: {v!r}"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_time_window(self) -> TurnoSnapshot:
        if self.end_time <= self.start_time:
            msg = "end_time must be after start_time"
            raise ValueError(msg)
        return self
