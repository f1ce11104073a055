"""Application configuration via pydantic-settings.

All secrets are loaded from environment variables (.env file).
Settings are organized into logical groups and composed into a single Settings object.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulingSettings(BaseSettings):
    """Cal.com availability and booking settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    calcom_api_url: str = Field(default="https://api.cal.com/v1", description="Cal.com API URL")
    calcom_api_key: str = Field(default="", description="Cal.com API key (required)")
    calcom_timeout: float = Field(default=10.0, description="Cal.com request timeout in seconds")

    timezone: str = Field(default="America/Argentina/Buenos_Aires", description="Business timezone")
    language: str = Field(default="es", description="Locale sent with bookings")

    # One Cal.com event type per service on the menu
    event_type_corte: int = Field(default=1, description="Event type id for 'Corte de cabello'")
    event_type_corte_barba: int = Field(default=2, description="Event type id for 'Corte y barba'")
    event_type_barba: int = Field(default=3, description="Event type id for 'Barba'")

    business_open_hour: int = Field(default=9, description="First bookable start hour (inclusive)")
    business_close_hour: int = Field(default=20, description="Last bookable start hour (exclusive)")

    @field_validator("business_open_hour", "business_close_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Hours must fall inside a single day."""
        if not 0 <= v <= 24:
            msg = f"Invalid business hour: {v}. Must be between 0 and 24"
            raise ValueError(msg)
        return v


class PaymentSettings(BaseSettings):
    """MercadoPago checkout settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mercadopago_api_url: str = Field(default="https://api.mercadopago.com", description="MercadoPago API URL")
    mercadopago_access_token: str = Field(default="", description="MercadoPago access token")
    mercadopago_timeout: float = Field(default=5.0, description="MercadoPago request timeout in seconds")

    currency_id: str = Field(default="ARS", description="Checkout currency")
    redirect_url: str = Field(
        default="https://www.mercadopago.com.ar",
        description="Generic gateway page used for every back_url",
    )
    notification_url: str = Field(default="", description="Payment notification URL (unused by the bot)")
    payment_window_minutes: int = Field(default=30, description="Minutes the customer has to pay")


class WhatsAppSettings(BaseSettings):
    """WhatsApp Business API configuration."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    whatsapp_api_url: str = Field(default="", description="WhatsApp Business API URL")
    whatsapp_api_token: str = Field(default="", description="WhatsApp API token")
    whatsapp_verify_token: str = Field(default="", description="Webhook verification token")
    whatsapp_app_secret: str = Field(default="", description="App secret for X-Hub-Signature-256")


class ConversationSettings(BaseSettings):
    """Dialogue timing."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    step_timeout: float = Field(
        default=15.0,
        description="Upper bound in seconds for any external call made inside one step",
    )
    greeting_delay: float = Field(default=1.0, description="Delay in seconds before the flow greeting")
    idle_timeout: float = Field(
        default=1800.0,
        description="Seconds without a message after which an unfinished flow is abandoned",
    )


class Settings(BaseSettings):
    """Root settings composing all sub-settings.

    Usage:
        settings = Settings()
        settings.scheduling.calcom_api_key
        settings.payment.currency_id
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    environment: str = Field(default="development")
    log_level: str = Field(default="DEBUG")
    port: int = Field(default=3008)

    # Composed settings (loaded from same .env)
    scheduling: SchedulingSettings = Field(default_factory=SchedulingSettings)
    payment: PaymentSettings = Field(default_factory=PaymentSettings)
    whatsapp: WhatsAppSettings = Field(default_factory=WhatsAppSettings)
    conversation: ConversationSettings = Field(default_factory=ConversationSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            msg = f"Invalid log level: {v}. Must be one of {valid}"
            raise ValueError(msg)
        return upper

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


# Module-level singleton, import this wherever settings are needed.
settings = Settings()
