"""Pydantic schemas for the Cal.com slots API."""

from __future__ import annotations

from pydantic import AwareDatetime, BaseModel


class Slot(BaseModel):
    """A bookable start instant."""

    time: AwareDatetime


# Day key (YYYY-MM-DD, business timezone) → slots on that day
SlotsByDay = dict[str, list[Slot]]
