"""Tests for the in-process turno ledger.

Covers:
- Recording turnos pending payment
- Listing per sender, oldest first, without cancelled turnos
- Cancellation: owner only, case-insensitive id, idempotent, event emitted,
  paid turnos not cancellable
- Confirmation after payment; cancelled turnos stay cancelled
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from src.booking.ledger import TurnoLedger
from src.models.enums import TurnoStatus
from src.schemas.events import EventType

SENDER = "5491122334455"
OTHER = "5491199998888"


class TestRecord:
    def test_record_pending_payment(self):
        ledger = TurnoLedger()
        turno = ledger.record(SENDER, "Barba", "15/03/2025", "11:00", "https://mp.test/pay/1")

        assert turno.status == TurnoStatus.PENDING_PAYMENT
        assert len(turno.id) == 8
        assert turno.id == turno.id.upper()
        assert turno.payment_url == "https://mp.test/pay/1"

    def test_list_for_sender_in_order(self):
        ledger = TurnoLedger()
        first = ledger.record(SENDER, "Barba", "15/03/2025", "11:00")
        ledger.record(OTHER, "Barba", "15/03/2025", "12:00")
        second = ledger.record(SENDER, "Corte de cabello", "16/03/2025", "10:00")

        assert [t.id for t in ledger.list_for(SENDER)] == [first.id, second.id]

    def test_list_empty(self):
        assert TurnoLedger().list_for(SENDER) == []


class TestCancel:
    @pytest.mark.asyncio()
    async def test_cancel_own(self):
        ledger = TurnoLedger()
        turno = ledger.record(SENDER, "Barba", "15/03/2025", "11:00")

        with patch("src.booking.ledger.emit", new_callable=AsyncMock) as mock_emit:
            cancelled = await ledger.cancel(SENDER, f"  {turno.id.lower()} ")

        assert cancelled.status == TurnoStatus.CANCELLED
        assert ledger.list_for(SENDER) == []
        event = mock_emit.call_args.args[0]
        assert event.event_type == EventType.TURNO_CANCELLED
        assert event.data == {"turno_id": turno.id}

    @pytest.mark.asyncio()
    async def test_cancel_other_senders(self):
        ledger = TurnoLedger()
        turno = ledger.record(OTHER, "Barba", "15/03/2025", "11:00")

        assert await ledger.cancel(SENDER, turno.id) is None
        assert ledger.list_for(OTHER)[0].status == TurnoStatus.PENDING_PAYMENT

    @pytest.mark.asyncio()
    async def test_cancel_unknown(self):
        assert await TurnoLedger().cancel(SENDER, "ABCDEF12") is None

    @pytest.mark.asyncio()
    async def test_cancel_twice(self):
        ledger = TurnoLedger()
        turno = ledger.record(SENDER, "Barba", "15/03/2025", "11:00")

        assert await ledger.cancel(SENDER, turno.id) is not None
        assert await ledger.cancel(SENDER, turno.id) is None

    @pytest.mark.asyncio()
    async def test_confirmed_turno_not_cancellable(self):
        ledger = TurnoLedger()
        turno = ledger.record(SENDER, "Barba", "15/03/2025", "11:00")
        ledger.confirm(turno.id)

        assert await ledger.cancel(SENDER, turno.id) is None
        assert ledger.get(turno.id).status == TurnoStatus.CONFIRMED


class TestConfirm:
    def test_record_with_given_ids(self):
        ledger = TurnoLedger()
        turno = ledger.record(SENDER, "Barba", "15/03/2025", "11:00", payment_id="pref_1", turno_id="ABCDEF12")

        assert turno.id == "ABCDEF12"
        assert turno.payment_id == "pref_1"
        assert ledger.get("abcdef12") == turno

    def test_confirm_pending(self):
        ledger = TurnoLedger()
        turno = ledger.record(SENDER, "Barba", "15/03/2025", "11:00")

        confirmed = ledger.confirm(turno.id)

        assert confirmed.status == TurnoStatus.CONFIRMED
        assert ledger.list_for(SENDER) == [confirmed]

    @pytest.mark.asyncio()
    async def test_confirm_cancelled_is_refused(self):
        ledger = TurnoLedger()
        turno = ledger.record(SENDER, "Barba", "15/03/2025", "11:00")
        await ledger.cancel(SENDER, turno.id)

        assert ledger.confirm(turno.id) is None
        assert ledger.get(turno.id).status == TurnoStatus.CANCELLED

    def test_confirm_unknown(self):
        assert TurnoLedger().confirm("ABCDEF12") is None
