"""FSM state definitions and transition map for the turno-request flow.

Steps decide what the customer's message means; the FSM decides where that
leaves the conversation. A trigger missing from a state's row is refused.
"""

from __future__ import annotations

from src.models.enums import TurnoState

# Transition map: {current_state: {trigger_name: next_state}}
# Triggers come from a step's StepResult ("advance", "retry", "abort"),
# plus "cancel" when the customer answers "no" at the confirmation prompt.
TRANSITIONS: dict[TurnoState, dict[str, TurnoState]] = {
    TurnoState.AWAIT_NAME: {
        "advance": TurnoState.AWAIT_EMAIL,
        "retry": TurnoState.AWAIT_NAME,
        "abort": TurnoState.CANCELLED,
    },
    TurnoState.AWAIT_EMAIL: {
        "advance": TurnoState.AWAIT_SERVICE,
        "retry": TurnoState.AWAIT_EMAIL,
        "abort": TurnoState.CANCELLED,
    },
    TurnoState.AWAIT_SERVICE: {
        "advance": TurnoState.AWAIT_DATE,
        "retry": TurnoState.AWAIT_SERVICE,
        "abort": TurnoState.CANCELLED,
    },
    TurnoState.AWAIT_DATE: {
        "advance": TurnoState.AWAIT_TIME,
        "retry": TurnoState.AWAIT_DATE,
        "abort": TurnoState.CANCELLED,
    },
    TurnoState.AWAIT_TIME: {
        "advance": TurnoState.CONFIRM_SUMMARY,
        "retry": TurnoState.AWAIT_TIME,
        "abort": TurnoState.CANCELLED,
    },
    # Non-capturing: the summary is rendered and the flow moves on
    TurnoState.CONFIRM_SUMMARY: {
        "advance": TurnoState.AWAIT_CONFIRMATION,
    },
    TurnoState.AWAIT_CONFIRMATION: {
        "advance": TurnoState.BOOKING_NEGOTIATED,
        "retry": TurnoState.AWAIT_CONFIRMATION,
        "cancel": TurnoState.CANCELLED,
        "abort": TurnoState.CANCELLED,
    },
    TurnoState.BOOKING_NEGOTIATED: {},
    TurnoState.CANCELLED: {},
}

# States that read one customer message each
CAPTURING_STATES: set[TurnoState] = {
    s for s, row in TRANSITIONS.items()
    if "retry" in row
}

TERMINAL_STATES: set[TurnoState] = {s for s, row in TRANSITIONS.items() if not row}
