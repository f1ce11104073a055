"""Async httpx client for the Cal.com v1 API (slots and bookings)."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import httpx
from pydantic import ValidationError

from src.config import SchedulingSettings
from src.events import emit
from src.schemas.availability import Slot, SlotsByDay
from src.schemas.booking import BookingRequest, to_utc_iso
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

# Cal.com response field names
_FIELD_SLOTS = "slots"
_FIELD_TIME = "time"
_FIELD_BOOKING = "booking"


class AvailabilityError(Exception):
    """Cal.com could not be reached or answered with something unusable."""


def _to_millis(value: datetime) -> int:
    return round(value.timestamp() * 1000)


class CalcomClient:
    """Thin async wrapper around the Cal.com slots and bookings endpoints.

    Endpoints:
        GET  {base_url}/slots?eventTypeId=&startTime=&endTime=&timeZone=
        POST {base_url}/bookings
    Auth: apiKey query parameter

    The two ``is_*_available`` checks fail closed: any error means the slot
    is treated as taken.
    """

    def __init__(self, config: SchedulingSettings, http_client: httpx.AsyncClient | None = None) -> None:
        api_key = config.calcom_api_key.strip()
        if not api_key:
            msg = "CALCOM_API_KEY is not configured"
            raise ValueError(msg)

        self._api_key = api_key
        self._base_url = config.calcom_api_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.calcom_timeout, connect=5.0),
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ── Raw API ──────────────────────────────────────────────────────

    async def get_slots(
        self,
        event_type_id: int,
        start: datetime,
        end: datetime,
        time_zone: str,
    ) -> SlotsByDay:
        """Fetch open slots between two instants, grouped by local day.

        Raises:
            AvailabilityError: On timeout, HTTP error or an unparseable body.
        """
        params = {
            "eventTypeId": event_type_id,
            "startTime": to_utc_iso(start),
            "endTime": to_utc_iso(end),
            "timeZone": time_zone,
            "apiKey": self._api_key,
        }

        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_CALL,
            data={"integration": "calcom", "endpoint": "slots", "event_type_id": event_type_id},
            source_module="integrations.calcom.client",
        ))

        try:
            response = await self._client.get(f"{self._base_url}/slots", params=params)
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.TimeoutException as exc:
            await self._report_error("slots", "timeout")
            msg = "Cal.com slots request timed out"
            raise AvailabilityError(msg) from exc
        except httpx.HTTPStatusError as exc:
            await self._report_error("slots", f"http_{exc.response.status_code}")
            msg = f"Cal.com slots request failed with HTTP {exc.response.status_code}"
            raise AvailabilityError(msg) from exc
        except (httpx.HTTPError, ValueError) as exc:
            await self._report_error("slots", type(exc).__name__)
            msg = f"Cal.com slots request failed: {exc}"
            raise AvailabilityError(msg) from exc

        slots = self._parse_slots(payload)

        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_RESPONSE,
            data={
                "integration": "calcom",
                "endpoint": "slots",
                "days": len(slots),
                "slot_count": sum(len(v) for v in slots.values()),
            },
            source_module="integrations.calcom.client",
        ))
        return slots

    async def confirm_booking(self, booking: BookingRequest) -> dict[str, Any]:
        """Create the calendar booking once the payment is approved.

        Raises:
            AvailabilityError: If Cal.com rejects or cannot receive the booking.
        """
        try:
            response = await self._client.post(
                f"{self._base_url}/bookings",
                params={"apiKey": self._api_key},
                json=booking.to_calcom_payload(),
            )
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as exc:
            await self._report_error("bookings", f"http_{exc.response.status_code}")
            msg = f"Cal.com rejected the booking with HTTP {exc.response.status_code}"
            raise AvailabilityError(msg) from exc
        except (httpx.HTTPError, ValueError) as exc:
            await self._report_error("bookings", type(exc).__name__)
            msg = f"Cal.com booking request failed: {exc}"
            raise AvailabilityError(msg) from exc

        record = payload.get(_FIELD_BOOKING, payload) if isinstance(payload, dict) else None
        if not isinstance(record, dict):
            msg = "Cal.com booking response is not an object"
            raise AvailabilityError(msg)

        logger.info("Cal.com booking created: uid=%s", record.get("uid"))
        return record

    # ── Availability checks (fail closed) ────────────────────────────

    async def is_day_available(self, event_type_id: int, day: date, time_zone: str) -> bool:
        """True if the local calendar day has at least one open slot."""
        tz = ZoneInfo(time_zone)
        window_start = datetime.combine(day, time.min, tzinfo=tz)
        window_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)

        try:
            slots = await self.get_slots(event_type_id, window_start, window_end, time_zone)
        except AvailabilityError:
            logger.warning("Day availability check failed for %s (event_type=%s)", day, event_type_id, exc_info=True)
            available = False
        else:
            available = bool(slots.get(day.isoformat()))

        await emit(SystemEvent(
            event_type=EventType.AVAILABILITY_CHECKED,
            data={"scope": "day", "day": day.isoformat(), "event_type_id": event_type_id, "available": available},
            source_module="integrations.calcom.client",
        ))
        return available

    async def is_slot_available(
        self,
        event_type_id: int,
        start: datetime,
        end: datetime,
        time_zone: str,
    ) -> bool:
        """True if Cal.com offers a slot starting exactly at ``start``."""
        try:
            slots = await self.get_slots(event_type_id, start, end, time_zone)
        except AvailabilityError:
            logger.warning("Slot availability check failed for %s (event_type=%s)", start, event_type_id, exc_info=True)
            available = False
        else:
            wanted = _to_millis(start)
            available = any(
                _to_millis(slot.time) == wanted
                for day_slots in slots.values()
                for slot in day_slots
            )

        await emit(SystemEvent(
            event_type=EventType.AVAILABILITY_CHECKED,
            data={"scope": "slot", "start": to_utc_iso(start), "event_type_id": event_type_id, "available": available},
            source_module="integrations.calcom.client",
        ))
        return available

    # ── Helpers ──────────────────────────────────────────────────────

    def _parse_slots(self, payload: Any) -> SlotsByDay:
        """Parse ``{"slots": {"YYYY-MM-DD": [{"time": ...}]}}`` into Slot objects."""
        raw = payload.get(_FIELD_SLOTS) if isinstance(payload, dict) else None
        if not isinstance(raw, dict):
            msg = "Cal.com slots response has no 'slots' object"
            raise AvailabilityError(msg)

        result: SlotsByDay = {}
        try:
            for day_key, entries in raw.items():
                result[day_key] = [
                    Slot.model_validate({_FIELD_TIME: entry} if isinstance(entry, str) else entry)
                    for entry in entries
                ]
        except (ValidationError, TypeError) as exc:
            msg = f"Cal.com returned a malformed slot: {exc}"
            raise AvailabilityError(msg) from exc
        return result

    async def _report_error(self, endpoint: str, error: str) -> None:
        logger.warning("Cal.com %s error: %s", endpoint, error)
        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_API_ERROR,
            data={"integration": "calcom", "endpoint": endpoint, "error": error},
            source_module="integrations.calcom.client",
        ))
