"""Domain enums used across the conversation engine and Pydantic schemas.

All enums use str mixin for JSON serialization.
"""

from __future__ import annotations

from enum import Enum


class TurnoState(str, Enum):
    """FSM states for the turno-request flow."""

    AWAIT_NAME = "await_name"
    AWAIT_EMAIL = "await_email"
    AWAIT_SERVICE = "await_service"
    AWAIT_DATE = "await_date"
    AWAIT_TIME = "await_time"
    CONFIRM_SUMMARY = "confirm_summary"
    AWAIT_CONFIRMATION = "await_confirmation"
    BOOKING_NEGOTIATED = "booking_negotiated"
    CANCELLED = "cancelled"


class StepOutcome(str, Enum):
    """What a dialogue step decided after reading one message."""

    ADVANCE = "advance"
    RETRY = "retry"
    CANCEL = "cancel"
    ABORT = "abort"


class FlowKind(str, Enum):
    """Conversation entry points reachable from the welcome menu."""

    REQUEST = "request"
    CANCEL = "cancel"
    LIST = "list"


class PaymentStatus(str, Enum):
    """Payment states reported by MercadoPago."""

    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    IN_PROCESS = "in_process"
    REFUNDED = "refunded"


class TurnoStatus(str, Enum):
    """Lifecycle of a turno recorded by the bot."""

    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
