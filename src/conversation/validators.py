"""Deterministic input checks for the turno-request steps.

Synchronous, no I/O. Each parser returns a FieldCheck carrying either the
parsed value or the Spanish message to re-prompt with. Availability checks
live in the flow, since they need Cal.com.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, time
from typing import Generic, TypeVar

from src.conversation import messages
from src.conversation.catalog import ServiceOption
from src.schemas.booking import EMAIL_PATTERN

T = TypeVar("T")

DATE_PATTERN = re.compile(r"^(0[1-9]|[12][0-9]|3[01])/(0[1-9]|1[0-2])/(20\d{2})$")
TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")

YES_ANSWERS = frozenset({"si", "sí"})
NO_ANSWERS = frozenset({"no"})


@dataclass(frozen=True)
class FieldCheck(Generic[T]):
    """Parsed value, or the reason the input was rejected."""

    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def accept(cls, value: T) -> FieldCheck[T]:
        return cls(value=value)

    @classmethod
    def reject(cls, error: str) -> FieldCheck[T]:
        return cls(error=error)


def parse_name(text: str) -> FieldCheck[str]:
    name = text.strip()
    if not name:
        return FieldCheck.reject(messages.INVALID_NAME)
    return FieldCheck.accept(name)


def parse_email(text: str) -> FieldCheck[str]:
    email = text.strip()
    if not EMAIL_PATTERN.match(email):
        return FieldCheck.reject(messages.INVALID_EMAIL)
    return FieldCheck.accept(email)


def parse_service(text: str, catalog: Mapping[str, ServiceOption]) -> FieldCheck[ServiceOption]:
    option = catalog.get(text.strip())
    if option is None:
        return FieldCheck.reject(messages.INVALID_SERVICE.format(count=len(catalog)))
    return FieldCheck.accept(option)


def parse_date(text: str, today: date) -> FieldCheck[date]:
    """DD/MM/YYYY, a real calendar day, not before ``today``."""
    match = DATE_PATTERN.match(text.strip())
    if match is None:
        return FieldCheck.reject(messages.INVALID_DATE_FORMAT)

    day, month, year = (int(part) for part in match.groups())
    try:
        selected = date(year, month, day)
    except ValueError:
        # e.g. 31/02 passes the pattern but is not a day
        return FieldCheck.reject(messages.INVALID_CALENDAR_DATE)

    if selected < today:
        return FieldCheck.reject(messages.PAST_DATE)
    return FieldCheck.accept(selected)


def parse_time(text: str) -> FieldCheck[time]:
    """24-hour HH:MM (the hour may have one digit)."""
    raw = text.strip()
    if not TIME_PATTERN.match(raw):
        return FieldCheck.reject(messages.INVALID_TIME_FORMAT)
    hours, minutes = (int(part) for part in raw.split(":"))
    return FieldCheck.accept(time(hours, minutes))


def within_business_hours(start: time, open_hour: int, close_hour: int) -> bool:
    """Only the start hour counts: a 19:45 turno ending at 20:15 is fine."""
    return open_hour <= start.hour < close_hour


def parse_confirmation(text: str) -> FieldCheck[bool]:
    answer = text.strip().lower()
    if answer in YES_ANSWERS:
        return FieldCheck.accept(True)
    if answer in NO_ANSWERS:
        return FieldCheck.accept(False)
    return FieldCheck.reject(messages.INVALID_CONFIRMATION)
