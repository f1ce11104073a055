"""Finite state machine for the turno-request flow.

The FSM validates transitions and emits state-change events.
Steps never move the conversation themselves; only the FSM does.
"""

from __future__ import annotations

import logging
import uuid

from src.conversation.states import TRANSITIONS
from src.events import emit
from src.models.enums import TurnoState
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


class FSM:
    """Manages turno-flow state transitions for a single conversation."""

    def __init__(
        self,
        conversation_id: uuid.UUID,
        initial_state: TurnoState = TurnoState.AWAIT_NAME,
        sender_id: str | None = None,
    ) -> None:
        self.conversation_id = conversation_id
        self.sender_id = sender_id
        self.current_state = initial_state

    def can_transition(self, trigger: str) -> bool:
        """Check if a trigger is valid from the current state."""
        return trigger in TRANSITIONS.get(self.current_state, {})

    def get_valid_triggers(self) -> list[str]:
        """Return all valid trigger names for the current state."""
        return list(TRANSITIONS.get(self.current_state, {}).keys())

    async def transition(self, trigger: str) -> TurnoState:
        """Execute a state transition.

        Args:
            trigger: The trigger name, usually ``StepResult.trigger``.

        Returns:
            The new state after transition.

        Raises:
            ValueError: If the trigger is not valid from the current state.
        """
        old_state = self.current_state

        state_transitions = TRANSITIONS.get(self.current_state, {})
        if trigger not in state_transitions:
            msg = (
                f"Invalid transition: {self.current_state.value} --{trigger}--> ??? "
                f"(valid: {list(state_transitions.keys())})"
            )
            raise ValueError(msg)
        self.current_state = state_transitions[trigger]

        if old_state == self.current_state:
            # Re-prompt; no state change to report
            return self.current_state

        logger.info(
            "State transition: %s --%s--> %s (conversation=%s)",
            old_state.value,
            trigger,
            self.current_state.value,
            self.conversation_id,
        )

        await emit(SystemEvent(
            event_type=EventType.CONVERSATION_STATE_CHANGED,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            data={
                "from_state": old_state.value,
                "to_state": self.current_state.value,
                "trigger": trigger,
            },
            source_module="conversation.fsm",
        ))

        return self.current_state

    @property
    def is_terminal(self) -> bool:
        """Check if the current state is a terminal state."""
        return len(TRANSITIONS.get(self.current_state, {})) == 0
