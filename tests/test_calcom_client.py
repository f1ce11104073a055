"""Tests for the Cal.com availability client.

Covers:
- Slots request: URL, query parameters, UTC rendering of the window
- Slot parsing (objects and bare strings), malformed payloads
- Day availability: local-midnight window, empty day, fail closed
- Exact-slot availability: instant equality across offsets, fail closed
- Booking confirmation payload
- Missing API key is fatal
"""

from __future__ import annotations

import json
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import httpx
import pytest

from src.config import SchedulingSettings
from src.integrations.calcom.client import AvailabilityError, CalcomClient
from src.schemas.booking import Attendee, BookingMetadata, BookingRequest

TZ_NAME = "America/Argentina/Buenos_Aires"
BA = ZoneInfo(TZ_NAME)
DAY = date(2025, 3, 15)

# ── Helpers ──────────────────────────────────────────────────────────


def _make_client(handler, api_key: str = "cal_test") -> CalcomClient:
    config = SchedulingSettings(calcom_api_key=api_key, calcom_api_url="https://cal.test/v1/")
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CalcomClient(config, http_client=http)


def _slots_handler(slots: dict, seen: list[httpx.Request] | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(200, json={"slots": slots})
    return handler


def _booking() -> BookingRequest:
    return BookingRequest(
        event_type_id=1,
        start=datetime(2025, 3, 15, 14, 0, tzinfo=BA),
        end=datetime(2025, 3, 15, 14, 30, tzinfo=BA),
        time_zone=TZ_NAME,
        language="es",
        responses=Attendee(name="Ana Gomez", email="ana@x.com", phone="5491122334455"),
        metadata=BookingMetadata(service="Corte de cabello", price=Decimal("1500"), whatsapp="5491122334455"),
    )


# ── Construction ─────────────────────────────────────────────────────


class TestConstruction:
    @pytest.mark.parametrize("key", ["", "   "])
    def test_missing_key_is_fatal(self, key):
        with pytest.raises(ValueError, match="CALCOM_API_KEY"):
            CalcomClient(SchedulingSettings(calcom_api_key=key))


# ── get_slots ────────────────────────────────────────────────────────


class TestGetSlots:
    @pytest.mark.asyncio()
    async def test_request_shape(self):
        seen: list[httpx.Request] = []
        client = _make_client(_slots_handler({}, seen))

        start = datetime(2025, 3, 15, 0, 0, tzinfo=BA)
        await client.get_slots(7, start, start + timedelta(days=1), TZ_NAME)

        [request] = seen
        assert request.method == "GET"
        assert request.url.path == "/v1/slots"
        params = request.url.params
        assert params["eventTypeId"] == "7"
        assert params["startTime"] == "2025-03-15T03:00:00.000Z"
        assert params["endTime"] == "2025-03-16T03:00:00.000Z"
        assert params["timeZone"] == TZ_NAME
        assert params["apiKey"] == "cal_test"

    @pytest.mark.asyncio()
    async def test_parses_objects_and_strings(self):
        client = _make_client(_slots_handler({
            "2025-03-15": [{"time": "2025-03-15T14:00:00-03:00"}, "2025-03-15T17:30:00.000Z"],
        }))
        slots = await client.get_slots(1, datetime.now(UTC), datetime.now(UTC), TZ_NAME)

        times = [s.time for s in slots["2025-03-15"]]
        assert times[0] == datetime(2025, 3, 15, 17, 0, tzinfo=UTC)
        assert times[1] == datetime(2025, 3, 15, 17, 30, tzinfo=UTC)

    @pytest.mark.asyncio()
    @pytest.mark.parametrize(
        "body",
        [
            {"busy": []},
            {"slots": ["2025-03-15T14:00:00Z"]},
            {"slots": {"2025-03-15": [{"time": "not a date"}]}},
            {"slots": {"2025-03-15": [{"time": "2025-03-15T14:00:00"}]}},  # naive
        ],
    )
    async def test_malformed_payload_raises(self, body):
        client = _make_client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(AvailabilityError):
            await client.get_slots(1, datetime.now(UTC), datetime.now(UTC), TZ_NAME)

    @pytest.mark.asyncio()
    async def test_http_error_raises(self):
        client = _make_client(lambda request: httpx.Response(500, json={"message": "down"}))
        with pytest.raises(AvailabilityError, match="HTTP 500"):
            await client.get_slots(1, datetime.now(UTC), datetime.now(UTC), TZ_NAME)

    @pytest.mark.asyncio()
    async def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = _make_client(handler)
        with pytest.raises(AvailabilityError, match="timed out"):
            await client.get_slots(1, datetime.now(UTC), datetime.now(UTC), TZ_NAME)

    @pytest.mark.asyncio()
    async def test_non_json_raises(self):
        client = _make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(AvailabilityError):
            await client.get_slots(1, datetime.now(UTC), datetime.now(UTC), TZ_NAME)


# ── Day availability ─────────────────────────────────────────────────


class TestDayAvailability:
    @pytest.mark.asyncio()
    async def test_day_with_slots(self):
        client = _make_client(_slots_handler({"2025-03-15": [{"time": "2025-03-15T13:00:00.000Z"}]}))
        assert await client.is_day_available(1, DAY, TZ_NAME) is True

    @pytest.mark.asyncio()
    async def test_day_without_slots(self):
        client = _make_client(_slots_handler({"2025-03-15": []}))
        assert await client.is_day_available(1, DAY, TZ_NAME) is False

    @pytest.mark.asyncio()
    async def test_only_other_days(self):
        client = _make_client(_slots_handler({"2025-03-16": [{"time": "2025-03-16T13:00:00.000Z"}]}))
        assert await client.is_day_available(1, DAY, TZ_NAME) is False

    @pytest.mark.asyncio()
    async def test_window_is_local_day(self):
        seen: list[httpx.Request] = []
        client = _make_client(_slots_handler({}, seen))
        await client.is_day_available(3, DAY, TZ_NAME)

        params = seen[0].url.params
        assert params["startTime"] == "2025-03-15T03:00:00.000Z"
        assert params["endTime"] == "2025-03-16T03:00:00.000Z"
        assert params["eventTypeId"] == "3"

    @pytest.mark.asyncio()
    async def test_fails_closed(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = _make_client(handler)
        assert await client.is_day_available(1, DAY, TZ_NAME) is False


# ── Exact-slot availability ──────────────────────────────────────────


class TestSlotAvailability:
    @pytest.mark.asyncio()
    async def test_exact_match_across_offsets(self):
        client = _make_client(_slots_handler({"2025-03-15": [{"time": "2025-03-15T17:00:00.000Z"}]}))
        start = datetime(2025, 3, 15, 14, 0, tzinfo=BA)
        assert await client.is_slot_available(1, start, start + timedelta(minutes=30), TZ_NAME) is True

    @pytest.mark.asyncio()
    async def test_inexact_time_rejected(self):
        client = _make_client(_slots_handler({"2025-03-15": [{"time": "2025-03-15T17:00:00.000Z"}]}))
        start = datetime(2025, 3, 15, 14, 10, tzinfo=BA)
        assert await client.is_slot_available(1, start, start + timedelta(minutes=30), TZ_NAME) is False

    @pytest.mark.asyncio()
    async def test_window_is_exact(self):
        seen: list[httpx.Request] = []
        client = _make_client(_slots_handler({}, seen))
        start = datetime(2025, 3, 15, 19, 45, tzinfo=BA)
        await client.is_slot_available(1, start, start + timedelta(minutes=30), TZ_NAME)

        params = seen[0].url.params
        assert params["startTime"] == "2025-03-15T22:45:00.000Z"
        assert params["endTime"] == "2025-03-15T23:15:00.000Z"

    @pytest.mark.asyncio()
    async def test_fails_closed(self):
        client = _make_client(lambda request: httpx.Response(503))
        start = datetime(2025, 3, 15, 14, 0, tzinfo=BA)
        assert await client.is_slot_available(1, start, start + timedelta(minutes=30), TZ_NAME) is False


# ── Booking confirmation ─────────────────────────────────────────────


class TestConfirmBooking:
    @pytest.mark.asyncio()
    async def test_posts_booking_payload(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"booking": {"uid": "bk_1", "status": "ACCEPTED"}})

        client = _make_client(handler)
        record = await client.confirm_booking(_booking())

        assert record == {"uid": "bk_1", "status": "ACCEPTED"}
        [request] = seen
        assert request.method == "POST"
        assert request.url.path == "/v1/bookings"
        assert request.url.params["apiKey"] == "cal_test"
        body = json.loads(request.content)
        assert body["eventTypeId"] == 1
        assert body["start"] == "2025-03-15T17:00:00.000Z"
        assert body["timeZone"] == TZ_NAME
        assert body["responses"]["email"] == "ana@x.com"
        assert body["metadata"]["service"] == "Corte de cabello"
        assert "turno_id" not in body["metadata"]

    @pytest.mark.asyncio()
    async def test_rejected_booking_raises(self):
        client = _make_client(lambda request: httpx.Response(409, json={"message": "taken"}))
        with pytest.raises(AvailabilityError, match="HTTP 409"):
            await client.confirm_booking(_booking())
