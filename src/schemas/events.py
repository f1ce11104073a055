"""SystemEvent schema: the core event type that flows through the entire system.

Every notable action emits a SystemEvent. Subscribers (the audit logger)
consume these events asynchronously.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the system."""

    # Conversation lifecycle
    CONVERSATION_STARTED = "conversation.started"
    CONVERSATION_STATE_CHANGED = "conversation.state_changed"
    CONVERSATION_CANCELLED = "conversation.cancelled"
    CONVERSATION_FAILED = "conversation.failed"
    CONVERSATION_ABANDONED = "conversation.abandoned"

    # Messages
    MESSAGE_RECEIVED = "message.received"
    MESSAGE_SENT = "message.sent"

    # Availability
    AVAILABILITY_CHECKED = "availability.checked"

    # Booking & payment
    BOOKING_NEGOTIATED = "booking.negotiated"
    BOOKING_CONFIRMED = "booking.confirmed"
    TURNO_CANCELLED = "turno.cancelled"
    PAYMENT_LINK_CREATED = "payment.link_created"
    PAYMENT_VERIFIED = "payment.verified"

    # External integrations
    EXTERNAL_API_CALL = "external.api_call"
    EXTERNAL_API_RESPONSE = "external.api_response"
    EXTERNAL_API_ERROR = "external.api_error"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"
    SYSTEM_ERROR = "system.error"


class SystemEvent(BaseModel):
    """Core event that flows through the entire TurnoBot system.

    Immutable once created. Consumed by the audit logger.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Context (optional, not every event has a conversation)
    conversation_id: uuid.UUID | None = None
    sender_id: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
