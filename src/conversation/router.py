"""Top-level router: welcome menu and per-sender conversation ownership.

Every inbound message goes through ``ConversationRouter.handle``. Messages
from the same sender are processed one at a time under that sender's lock;
different senders proceed concurrently and share only the read-only
catalog and the injected service instances.

A request flow ends when it finishes, when the customer asks for a new
turno midway, or after ``idle_timeout`` seconds without a message. Senders
with nothing pending are forgotten, lock included.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from enum import Enum

from src.booking.ledger import TurnoLedger
from src.booking.negotiator import BookingNegotiator
from src.config import Settings
from src.conversation import messages
from src.conversation.catalog import ServiceOption
from src.conversation.steps import OutboundMessage
from src.conversation.turno_flow import TurnoConversation, is_request_trigger
from src.integrations.calcom.client import CalcomClient
from src.models.enums import FlowKind

logger = logging.getLogger(__name__)


class _Awaiting(str, Enum):
    """Single-question prompts the router itself is waiting on."""

    MENU_CHOICE = "menu_choice"
    TURNO_ID = "turno_id"


_MENU_OPTIONS = {"1": FlowKind.REQUEST, "2": FlowKind.CANCEL, "3": FlowKind.LIST}
_MENU_KEYWORDS = {"solicitar": FlowKind.REQUEST, "cancelar": FlowKind.CANCEL, "ver": FlowKind.LIST}


def parse_menu_choice(text: str) -> FlowKind | None:
    """Map a welcome-menu answer to a flow: the option number or a keyword.

    Keywords match whole words only, so "volver" is not "ver".
    """
    option = text.strip().lower()
    if option in _MENU_OPTIONS:
        return _MENU_OPTIONS[option]
    words = set(re.findall(r"\w+", option))
    for keyword, kind in _MENU_KEYWORDS.items():
        if keyword in words:
            return kind
    return None


class ConversationRouter:
    """Owns the conversations of every sender."""

    def __init__(
        self,
        calendar: CalcomClient,
        negotiator: BookingNegotiator,
        ledger: TurnoLedger,
        catalog: Mapping[str, ServiceOption],
        settings: Settings,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._calendar = calendar
        self._negotiator = negotiator
        self._ledger = ledger
        self._catalog = catalog
        self._settings = settings
        self._now = now
        self._clock = now or (lambda: datetime.now(UTC))
        self._idle = timedelta(seconds=settings.conversation.idle_timeout)

        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._turnos: dict[str, TurnoConversation] = {}
        self._awaiting: dict[str, _Awaiting] = {}
        self._last_seen: dict[str, datetime] = {}
        # Messages currently queued on or holding each sender's lock
        self._in_flight: dict[str, int] = {}

    def active_conversation(self, sender_id: str) -> TurnoConversation | None:
        return self._turnos.get(sender_id)

    def tracked_senders(self) -> set[str]:
        """Senders the router still holds any state for."""
        return set(self._locks) | set(self._turnos) | set(self._awaiting) | set(self._last_seen)

    async def handle(self, sender_id: str, text: str) -> list[OutboundMessage]:
        """Process one inbound message and return the replies, in order."""
        self._in_flight[sender_id] = self._in_flight.get(sender_id, 0) + 1
        try:
            async with self._locks[sender_id]:
                return await self._dispatch(sender_id, text)
        finally:
            self._in_flight[sender_id] -= 1
            await self._sweep()

    async def _dispatch(self, sender_id: str, text: str) -> list[OutboundMessage]:
        now = self._clock()
        previous = self._last_seen.get(sender_id)
        self._last_seen[sender_id] = now
        if previous is not None and now - previous >= self._idle:
            # A menu question left unanswered that long no longer applies
            self._awaiting.pop(sender_id, None)

        notices: list[OutboundMessage] = []

        conversation = self._turnos.get(sender_id)
        if conversation is not None and conversation.is_idle(self._idle.total_seconds()):
            del self._turnos[sender_id]
            await conversation.abandon("idle")
            conversation = None
            notices.append(OutboundMessage(text=messages.FLOW_EXPIRED))

        if conversation is not None and is_request_trigger(text):
            # Asking for a new turno midway restarts the flow
            del self._turnos[sender_id]
            await conversation.abandon("restarted")
            return await self._open(sender_id, FlowKind.REQUEST)

        if conversation is not None:
            replies = await conversation.handle(text)
            if conversation.is_finished:
                # Dropping the conversation discards its scratch
                del self._turnos[sender_id]
                logger.info(
                    "Turno flow finished for %s in state %s", sender_id, conversation.state.value
                )
            return replies

        awaiting = self._awaiting.pop(sender_id, None)

        if is_request_trigger(text):
            return notices + await self._open(sender_id, FlowKind.REQUEST)

        if awaiting == _Awaiting.TURNO_ID:
            return await self._cancel_turno(sender_id, text)

        if awaiting == _Awaiting.MENU_CHOICE:
            choice = parse_menu_choice(text)
            if choice is not None:
                return await self._open(sender_id, choice)
            self._awaiting[sender_id] = _Awaiting.MENU_CHOICE
            return [OutboundMessage(text=messages.MENU)]

        self._awaiting[sender_id] = _Awaiting.MENU_CHOICE
        return notices + [OutboundMessage(text=messages.WELCOME), OutboundMessage(text=messages.MENU)]

    async def _sweep(self) -> None:
        """Forget idle senders and senders with nothing left pending.

        Runs without yielding until every removal is done, so no other
        message can pick up a lock that is about to be discarded.
        """
        now = self._clock()
        abandoned: list[TurnoConversation] = []

        for sender_id in list(self.tracked_senders()):
            if self._in_flight.get(sender_id):
                continue
            last_seen = self._last_seen.get(sender_id)
            if last_seen is not None and now - last_seen >= self._idle:
                conversation = self._turnos.pop(sender_id, None)
                if conversation is not None:
                    abandoned.append(conversation)
                self._awaiting.pop(sender_id, None)
            if sender_id not in self._turnos and sender_id not in self._awaiting:
                self._locks.pop(sender_id, None)
                self._last_seen.pop(sender_id, None)
                self._in_flight.pop(sender_id, None)

        for conversation in abandoned:
            await conversation.abandon("idle")

    async def _open(self, sender_id: str, kind: FlowKind) -> list[OutboundMessage]:
        logger.info("Opening %s flow for %s", kind.value, sender_id)

        if kind == FlowKind.REQUEST:
            conversation = TurnoConversation(
                sender_id=sender_id,
                calendar=self._calendar,
                negotiator=self._negotiator,
                ledger=self._ledger,
                catalog=self._catalog,
                settings=self._settings,
                now=self._now,
            )
            self._turnos[sender_id] = conversation
            return await conversation.start()

        if kind == FlowKind.CANCEL:
            self._awaiting[sender_id] = _Awaiting.TURNO_ID
            return [OutboundMessage(text=messages.ASK_TURNO_ID)]

        turnos = self._ledger.list_for(sender_id)
        if not turnos:
            return [OutboundMessage(text=messages.NO_TURNOS)]
        return [OutboundMessage(text=messages.turno_list(turnos))]

    async def _cancel_turno(self, sender_id: str, text: str) -> list[OutboundMessage]:
        cancelled = await self._ledger.cancel(sender_id, text)
        if cancelled is None:
            return [OutboundMessage(text=messages.TURNO_NOT_FOUND)]
        return [OutboundMessage(text=messages.TURNO_CANCELLED.format(turno_id=cancelled.id))]
