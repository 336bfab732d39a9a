"""Slot query response schemas (camelCase on the wire)."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from uuid import UUID


class SlotRead(BaseModel):
    """One bookable meeting window."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start: datetime
    end: datetime
    activator_id: UUID
    activator_name: str
    meeting_link: str | None = None
    viewer_date: date


class SlotListResponse(BaseModel):
    """Slots sorted by start, with the number of activators considered."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    slots: list[SlotRead]
    activator_count: int
    message: str | None = None
