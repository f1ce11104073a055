"""Turno-request conversation: the sequential dialogue behind "agendar".

Each capturing state has one step. A step reads the customer's message,
validates it (locally, then against Cal.com where needed), writes its
scratch keys and returns a StepResult; the FSM applies the result.

Messages for one conversation are handled strictly one at a time (the
router holds a per-sender lock), so a step's external call always
finishes, or times out, before the next prompt goes out.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from src.booking.ledger import TurnoLedger, new_turno_id
from src.booking.negotiator import BookingNegotiator
from src.config import Settings
from src.conversation import messages
from src.conversation.catalog import ServiceOption
from src.conversation.fsm import FSM
from src.conversation.scratch import ConversationScratch, ScratchCorruptedError, ScratchKey
from src.conversation.steps import OutboundMessage, StepResult
from src.conversation.validators import (
    parse_confirmation,
    parse_date,
    parse_email,
    parse_name,
    parse_service,
    parse_time,
    within_business_hours,
)
from src.events import emit
from src.integrations.calcom.client import CalcomClient
from src.models.enums import TurnoState
from src.schemas.booking import Attendee, BookingMetadata, BookingRequest, TurnoSnapshot, to_utc_iso
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

TRIGGER_PHRASES: tuple[str, ...] = ("solicitar", "agendar", "nuevo turno")


def is_request_trigger(text: str) -> bool:
    """True if the message asks to book a turno."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in TRIGGER_PHRASES)


class ConversationClosedError(Exception):
    """A message arrived for a conversation that already ended."""


class TurnoConversation:
    """One customer's pass through the turno-request flow."""

    def __init__(
        self,
        sender_id: str,
        calendar: CalcomClient,
        negotiator: BookingNegotiator,
        ledger: TurnoLedger,
        catalog: Mapping[str, ServiceOption],
        settings: Settings,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.sender_id = sender_id
        self.conversation_id = uuid.uuid4()
        self.fsm = FSM(self.conversation_id, TurnoState.AWAIT_NAME, sender_id=sender_id)
        self.scratch = ConversationScratch()

        self._calendar = calendar
        self._negotiator = negotiator
        self._ledger = ledger
        self._catalog = catalog
        self._scheduling = settings.scheduling
        self._payment = settings.payment
        self._conversation = settings.conversation
        self._tz = ZoneInfo(settings.scheduling.timezone)
        self._now = now or (lambda: datetime.now(UTC))
        self.last_activity = self._now()

        self._steps: dict[TurnoState, Callable[[str], Awaitable[StepResult]]] = {
            TurnoState.AWAIT_NAME: self._capture_name,
            TurnoState.AWAIT_EMAIL: self._capture_email,
            TurnoState.AWAIT_SERVICE: self._capture_service,
            TurnoState.AWAIT_DATE: self._capture_date,
            TurnoState.AWAIT_TIME: self._capture_time,
            TurnoState.AWAIT_CONFIRMATION: self._capture_confirmation,
        }

    @property
    def state(self) -> TurnoState:
        return self.fsm.current_state

    @property
    def is_finished(self) -> bool:
        return self.fsm.is_terminal

    def is_idle(self, timeout: float) -> bool:
        """True once ``timeout`` seconds passed since the customer last wrote."""
        return (self._now() - self.last_activity).total_seconds() >= timeout

    async def start(self) -> list[OutboundMessage]:
        """Greeting and first question."""
        await emit(SystemEvent(
            event_type=EventType.CONVERSATION_STARTED,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            data={"flow": "request"},
            source_module="conversation.turno_flow",
        ))
        return [
            OutboundMessage(text=messages.GREETING, delay=self._conversation.greeting_delay),
            OutboundMessage(text=messages.ASK_NAME),
        ]

    async def handle(self, text: str) -> list[OutboundMessage]:
        """Run the current step on one customer message.

        Raises:
            ConversationClosedError: If the flow already reached a terminal state.
        """
        if self.fsm.is_terminal:
            msg = f"Conversation {self.conversation_id} is closed ({self.state.value})"
            raise ConversationClosedError(msg)
        self.last_activity = self._now()

        step = self._steps[self.state]
        try:
            result = await step(text)
        except ScratchCorruptedError:
            logger.exception(
                "Scratch corrupted at %s (conversation=%s)", self.state.value, self.conversation_id
            )
            result = StepResult.abort(messages.GENERIC_ERROR)

        await self.fsm.transition(result.trigger)
        outbound = list(result.messages)

        if self.state == TurnoState.CONFIRM_SUMMARY:
            summary = self._render_summary()
            await self.fsm.transition(summary.trigger)
            outbound.extend(summary.messages)

        if self.state == TurnoState.CANCELLED:
            await self._emit_closed(result)

        return outbound

    async def abandon(self, reason: str) -> None:
        """Drop an unfinished flow: discard the scratch and record why."""
        self.scratch = ConversationScratch()
        logger.info(
            "Turno flow abandoned at %s (conversation=%s, reason=%s)",
            self.state.value,
            self.conversation_id,
            reason,
        )
        await emit(SystemEvent(
            event_type=EventType.CONVERSATION_ABANDONED,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            data={"state": self.state.value, "reason": reason},
            source_module="conversation.turno_flow",
        ))

    # ── Steps ────────────────────────────────────────────────────────

    async def _capture_name(self, text: str) -> StepResult:
        check = parse_name(text)
        if not check.ok:
            return StepResult.retry(check.error)
        self.scratch.update(nombre=check.value)
        return StepResult.advance(messages.ASK_EMAIL)

    async def _capture_email(self, text: str) -> StepResult:
        check = parse_email(text)
        if not check.ok:
            return StepResult.retry(check.error)
        self.scratch.update(email=check.value)
        return StepResult.advance(messages.service_menu(self._catalog))

    async def _capture_service(self, text: str) -> StepResult:
        check = parse_service(text, self._catalog)
        if not check.ok:
            return StepResult.retry(check.error)
        option = check.value
        self.scratch.update(
            servicio=option.nombre,
            duracion=option.duracion,
            precio=option.precio,
            eventTypeId=option.event_type_id,
        )
        return StepResult.advance(
            messages.SERVICE_SELECTED.format(nombre=option.nombre, duracion=option.duracion),
            messages.ASK_DATE,
        )

    async def _capture_date(self, text: str) -> StepResult:
        today = self._now().astimezone(self._tz).date()
        check = parse_date(text, today)
        if not check.ok:
            return StepResult.retry(check.error)
        day = check.value

        event_type_id = self.scratch.require(ScratchKey.EVENT_TYPE_ID)
        available = await self._gate(
            self._calendar.is_day_available(event_type_id, day, self._scheduling.timezone),
            "day",
        )
        if available is None:
            return StepResult.retry(messages.SERVICE_UNAVAILABLE)
        if not available:
            return StepResult.retry(messages.NO_DAY_AVAILABILITY)

        self.scratch.update(fecha=f"{day:%d/%m/%Y}", fechaObj=day)
        return StepResult.advance(messages.ASK_TIME)

    async def _capture_time(self, text: str) -> StepResult:
        check = parse_time(text)
        if not check.ok:
            return StepResult.retry(check.error)
        chosen = check.value

        day = self.scratch.require(ScratchKey.FECHA_OBJ)
        duracion = self.scratch.require(ScratchKey.DURACION)
        event_type_id = self.scratch.require(ScratchKey.EVENT_TYPE_ID)

        start = datetime.combine(day, chosen, tzinfo=self._tz)
        end = start + timedelta(minutes=duracion)

        open_hour = self._scheduling.business_open_hour
        close_hour = self._scheduling.business_close_hour
        if not within_business_hours(chosen, open_hour, close_hour):
            return StepResult.retry(
                messages.OUTSIDE_BUSINESS_HOURS.format(open_hour=open_hour, close_hour=close_hour)
            )

        available = await self._gate(
            self._calendar.is_slot_available(event_type_id, start, end, self._scheduling.timezone),
            "slot",
        )
        if available is None:
            return StepResult.retry(messages.SERVICE_UNAVAILABLE)
        if not available:
            return StepResult.retry(messages.SLOT_TAKEN)

        self.scratch.update(hora=f"{chosen:%H:%M}", startTime=start, endTime=end)
        return StepResult.advance()

    def _render_summary(self) -> StepResult:
        """Non-capturing: show what was collected and ask for SI/NO."""
        get = self.scratch.get
        return StepResult.advance(
            messages.CONFIRM_HEADER,
            messages.summary(
                nombre=get(ScratchKey.NOMBRE),
                email=get(ScratchKey.EMAIL),
                servicio=get(ScratchKey.SERVICIO),
                precio=get(ScratchKey.PRECIO),
                fecha=get(ScratchKey.FECHA),
                hora=get(ScratchKey.HORA),
            ),
            messages.ASK_CONFIRMATION,
        )

    async def _capture_confirmation(self, text: str) -> StepResult:
        check = parse_confirmation(text)
        if not check.ok:
            return StepResult.retry(check.error)
        if not check.value:
            return StepResult.cancel(messages.FAREWELL)
        return await self._negotiate()

    async def _negotiate(self) -> StepResult:
        require = self.scratch.require
        try:
            snapshot = TurnoSnapshot(
                nombre=require(ScratchKey.NOMBRE),
                email=require(ScratchKey.EMAIL),
                servicio=require(ScratchKey.SERVICIO),
                precio=require(ScratchKey.PRECIO),
                fecha=require(ScratchKey.FECHA),
                hora=require(ScratchKey.HORA),
                start_time=require(ScratchKey.START_TIME),
                end_time=require(ScratchKey.END_TIME),
                telefono=self.sender_id,
            )
        except ValidationError as exc:
            logger.warning(
                "Turno data failed validation (conversation=%s): %s", self.conversation_id, exc
            )
            return StepResult.abort(messages.GENERIC_ERROR)

        turno_id = new_turno_id()
        booking = BookingRequest(
            event_type_id=require(ScratchKey.EVENT_TYPE_ID),
            start=snapshot.start_time,
            end=snapshot.end_time,
            time_zone=self._scheduling.timezone,
            language=self._scheduling.language,
            responses=Attendee(name=snapshot.nombre, email=snapshot.email, phone=snapshot.telefono),
            metadata=BookingMetadata(
                service=snapshot.servicio,
                price=snapshot.precio,
                whatsapp=self.sender_id,
                turno_id=turno_id,
            ),
        )

        try:
            result = await asyncio.wait_for(
                self._negotiator.negotiate(booking),
                timeout=self._conversation.step_timeout,
            )
        except TimeoutError:
            logger.error("Booking negotiation timed out (conversation=%s)", self.conversation_id)
            return StepResult.abort(messages.GENERIC_ERROR)
        except Exception:
            logger.exception("Booking negotiation failed (conversation=%s)", self.conversation_id)
            return StepResult.abort(messages.GENERIC_ERROR)

        if not result.payment_url:
            logger.error("Negotiation returned no payment URL (conversation=%s)", self.conversation_id)
            return StepResult.abort(messages.GENERIC_ERROR)

        self.scratch.update(pendingBooking=booking, paymentUrl=result.payment_url)
        turno = self._ledger.record(
            sender_id=self.sender_id,
            servicio=snapshot.servicio,
            fecha=snapshot.fecha,
            hora=snapshot.hora,
            payment_url=result.payment_url,
            payment_id=result.payment_id,
            turno_id=turno_id,
        )

        await emit(SystemEvent(
            event_type=EventType.BOOKING_NEGOTIATED,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            data={
                "turno_id": turno.id,
                "payment_id": result.payment_id,
                "event_type_id": booking.event_type_id,
                "start": to_utc_iso(booking.start),
            },
            source_module="conversation.turno_flow",
        ))

        return StepResult.advance(
            messages.payment_link(
                precio=snapshot.precio,
                start_local=snapshot.start_time.astimezone(self._tz),
                url=result.payment_url,
                window_minutes=self._payment.payment_window_minutes,
            ),
            messages.PAYMENT_LINK_ONLY.format(url=result.payment_url),
        )

    # ── Helpers ──────────────────────────────────────────────────────

    async def _gate(self, check: Awaitable[bool], scope: str) -> bool | None:
        """Await an availability check under the step deadline.

        Returns None on timeout so the step can say "try later"; any other
        failure counts as unavailable.
        """
        try:
            return await asyncio.wait_for(check, timeout=self._conversation.step_timeout)
        except TimeoutError:
            logger.warning(
                "Availability check (%s) timed out (conversation=%s)", scope, self.conversation_id
            )
            return None
        except Exception:
            logger.exception(
                "Availability check (%s) failed (conversation=%s)", scope, self.conversation_id
            )
            return False

    async def _emit_closed(self, result: StepResult) -> None:
        event_type = (
            EventType.CONVERSATION_CANCELLED
            if result.trigger == "cancel"
            else EventType.CONVERSATION_FAILED
        )
        await emit(SystemEvent(
            event_type=event_type,
            conversation_id=self.conversation_id,
            sender_id=self.sender_id,
            data={"trigger": result.trigger},
            source_module="conversation.turno_flow",
        ))
