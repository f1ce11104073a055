"""Typed results exchanged between dialogue steps and the FSM."""

from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import BaseModel

from src.models.enums import StepOutcome


class OutboundMessage(BaseModel):
    """A text to send back, optionally after a pause (seconds)."""

    text: str
    delay: float = 0.0


@dataclass(frozen=True)
class StepResult:
    """What a step decided about one customer message."""

    outcome: StepOutcome
    messages: list[OutboundMessage] = field(default_factory=list)

    @property
    def trigger(self) -> str:
        """FSM trigger name for this outcome."""
        return self.outcome.value

    @classmethod
    def advance(cls, *texts: str) -> StepResult:
        return cls(StepOutcome.ADVANCE, [OutboundMessage(text=t) for t in texts])

    @classmethod
    def retry(cls, text: str) -> StepResult:
        return cls(StepOutcome.RETRY, [OutboundMessage(text=text)])

    @classmethod
    def cancel(cls, text: str) -> StepResult:
        return cls(StepOutcome.CANCEL, [OutboundMessage(text=text)])

    @classmethod
    def abort(cls, text: str) -> StepResult:
        return cls(StepOutcome.ABORT, [OutboundMessage(text=text)])
