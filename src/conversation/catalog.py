"""The closed service menu offered by the turno-request flow."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType

from src.config import SchedulingSettings


@dataclass(frozen=True)
class ServiceOption:
    """One bookable service."""

    key: str
    nombre: str
    duracion: int  # minutes
    precio: Decimal
    event_type_id: int
    emoji: str = ""


def build_catalog(config: SchedulingSettings) -> Mapping[str, ServiceOption]:
    """Menu keyed by the option the customer types. Read-only."""
    options = [
        ServiceOption("1", "Corte de cabello", 30, Decimal("1500"), config.event_type_corte, "✂️"),
        ServiceOption("2", "Corte y barba", 45, Decimal("2000"), config.event_type_corte_barba, "✂️\U0001f488"),
        ServiceOption("3", "Barba", 30, Decimal("1000"), config.event_type_barba, "\U0001f488"),
    ]
    return MappingProxyType({opt.key: opt for opt in options})
