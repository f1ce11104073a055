"""Per-conversation scratch record filled in one step at a time."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ScratchKey(str, Enum):
    """Keys written by the turno-request steps, in order."""

    NOMBRE = "nombre"
    EMAIL = "email"
    SERVICIO = "servicio"
    DURACION = "duracion"
    PRECIO = "precio"
    EVENT_TYPE_ID = "eventTypeId"
    FECHA = "fecha"
    FECHA_OBJ = "fechaObj"
    HORA = "hora"
    START_TIME = "startTime"
    END_TIME = "endTime"
    PENDING_BOOKING = "pendingBooking"
    PAYMENT_URL = "paymentUrl"


class ScratchCorruptedError(Exception):
    """A step needed a key that an earlier step should have written."""


class ConversationScratch:
    """Write-once key/value store owned by a single conversation.

    A missing key on ``require`` is state corruption, never a default.
    """

    def __init__(self) -> None:
        self._values: dict[ScratchKey, Any] = {}

    def update(self, **values: Any) -> None:
        """Write keys by their wire name (``fechaObj=...``)."""
        for name, value in values.items():
            key = ScratchKey(name)
            if key in self._values:
                msg = f"Scratch key {key.value!r} already written"
                raise ValueError(msg)
            self._values[key] = value

    def require(self, key: ScratchKey) -> Any:
        if key not in self._values or self._values[key] is None:
            msg = f"Missing scratch key {key.value!r}"
            raise ScratchCorruptedError(msg)
        return self._values[key]

    def get(self, key: ScratchKey, default: Any = None) -> Any:
        return self._values.get(key, default)

    def discard(self, key: ScratchKey) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def as_dict(self) -> dict[str, Any]:
        return {k.value: v for k, v in self._values.items()}
