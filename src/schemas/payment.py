"""Pydantic schemas for the MercadoPago checkout API."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.enums import PaymentStatus


class BackUrls(BaseModel):
    """Where the gateway sends the buyer after checkout."""

    success: str
    pending: str
    failure: str


class PaymentLinkRequest(BaseModel):
    """Input for a checkout preference with a single line item."""

    model_config = ConfigDict(frozen=True)

    title: str = Field(min_length=1)
    description: str
    quantity: int = Field(default=1, ge=1, le=1)
    currency_id: str = "ARS"
    unit_price: Decimal = Field(gt=0, allow_inf_nan=False)
    external_reference: str
    notification_url: str = ""
    back_urls: BackUrls | None = None

    @field_validator("unit_price", mode="before")
    @classmethod
    def coerce_unit_price(cls, v: Any) -> Any:
        """Accept numbers and numeric strings; booleans are never prices."""
        if isinstance(v, bool):
            msg = "unit_price must be a number"
            raise ValueError(msg)
        if isinstance(v, str):
            return v.strip()
        return v


class PaymentLink(BaseModel):
    """Checkout URL minted by the gateway."""

    url: str
    id: str


class PaymentVerification(BaseModel):
    """Status of a previously issued payment."""

    status: PaymentStatus
    status_detail: str = ""
    external_reference: str = ""
