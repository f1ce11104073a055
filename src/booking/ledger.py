"""Turno ledger: the turnos negotiated by this process, per sender.

Implements the in-process bookkeeping behind the "ver mis turnos" and
"cancelar turno" menu options: every successful negotiation records a
turno pending payment, keyed by the sender's WhatsApp id. Reconciliation
consults it so a cancelled turno is never booked, and marks paid turnos
confirmed.

Not durable: the ledger lives as long as the process does.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from src.events import emit
from src.models.enums import TurnoStatus
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


def new_turno_id() -> str:
    """Short id the customer types to cancel: 8 uppercase hex characters."""
    return uuid.uuid4().hex[:8].upper()


class TurnoRecord(BaseModel):
    """One turno as shown to the customer."""

    id: str = Field(default_factory=new_turno_id)
    sender_id: str
    servicio: str
    fecha: str
    hora: str
    payment_url: str = ""
    payment_id: str = ""
    status: TurnoStatus = TurnoStatus.PENDING_PAYMENT
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class TurnoLedger:
    """Keeps turnos per sender."""

    def __init__(self) -> None:
        self._turnos: dict[str, TurnoRecord] = {}

    def record(
        self,
        sender_id: str,
        servicio: str,
        fecha: str,
        hora: str,
        payment_url: str = "",
        payment_id: str = "",
        turno_id: str | None = None,
    ) -> TurnoRecord:
        """Record a turno pending payment and return it.

        ``turno_id`` is given when the id was already handed to the payment
        issuer; otherwise a fresh one is drawn.
        """
        turno = TurnoRecord(
            id=turno_id or new_turno_id(),
            sender_id=sender_id,
            servicio=servicio,
            fecha=fecha,
            hora=hora,
            payment_url=payment_url,
            payment_id=payment_id,
        )
        self._turnos[turno.id] = turno
        logger.info("Turno recorded: id=%s sender=%s", turno.id, sender_id)
        return turno

    def get(self, turno_id: str) -> TurnoRecord | None:
        return self._turnos.get(turno_id.strip().upper())

    def confirm(self, turno_id: str) -> TurnoRecord | None:
        """Mark a paid turno confirmed. Cancelled or unknown turnos are left alone."""
        turno = self.get(turno_id)
        if turno is None or turno.status == TurnoStatus.CANCELLED:
            return None

        confirmed = turno.model_copy(update={"status": TurnoStatus.CONFIRMED})
        self._turnos[confirmed.id] = confirmed
        logger.info("Turno confirmed: id=%s", confirmed.id)
        return confirmed

    def list_for(self, sender_id: str) -> list[TurnoRecord]:
        """Active turnos of one sender, oldest first."""
        return sorted(
            (
                t for t in self._turnos.values()
                if t.sender_id == sender_id and t.status != TurnoStatus.CANCELLED
            ),
            key=lambda t: t.created_at,
        )

    async def cancel(self, sender_id: str, turno_id: str) -> TurnoRecord | None:
        """Cancel a turno still pending payment.

        Returns None if the id is unknown, belongs to another sender, or the
        turno is already cancelled or paid.
        """
        turno = self.get(turno_id)
        if turno is None or turno.sender_id != sender_id:
            return None
        if turno.status != TurnoStatus.PENDING_PAYMENT:
            return None

        cancelled = turno.model_copy(update={"status": TurnoStatus.CANCELLED})
        self._turnos[cancelled.id] = cancelled

        await emit(SystemEvent(
            event_type=EventType.TURNO_CANCELLED,
            sender_id=sender_id,
            data={"turno_id": cancelled.id},
            source_module="booking.ledger",
        ))

        logger.info("Turno cancelled: id=%s", cancelled.id)
        return cancelled
