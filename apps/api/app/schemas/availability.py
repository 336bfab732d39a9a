"""Activator availability schemas."""

from datetime import time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.utils.timezones import is_valid_timezone


class ShiftInput(BaseModel):
    """A single weekly shift."""
    day_of_week: int = Field(..., ge=0, le=6, description="Monday=0, Sunday=6")
    start_time: str = Field(..., pattern=r"^\d{2}:\d{2}$", description="HH:MM format")
    end_time: str = Field(..., pattern=r"^\d{2}:\d{2}$", description="HH:MM format")
    timezone: str = Field("America/New_York", max_length=50)
    meeting_duration_minutes: int = Field(30, ge=10, le=240)
    buffer_before_minutes: int = Field(15, ge=0, le=120)
    buffer_after_minutes: int = Field(15, ge=0, le=120)
    max_meetings_per_day: int = Field(6, ge=1, le=50)
    min_notice_hours: int = Field(2, ge=0, le=168)
    booking_window_days: int = Field(14, ge=1, le=90)
    meeting_link: str | None = Field(None, max_length=500)
    is_accepting_meetings: bool = True
    is_active: bool = True

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if not is_valid_timezone(value):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @model_validator(mode="after")
    def _end_after_start(self):
        try:
            start = time.fromisoformat(self.start_time)
            end = time.fromisoformat(self.end_time)
        except ValueError as exc:
            raise ValueError(f"Invalid time: {exc}") from exc
        if end <= start:
            raise ValueError("end_time must be after start_time (split shifts that cross midnight)")
        return self


class ShiftsSet(BaseModel):
    """Replace all shifts for the current activator."""
    shifts: list[ShiftInput]


class ShiftRead(BaseModel):
    """Shift as stored."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    day_of_week: int
    start_time: time
    end_time: time
    timezone: str
    meeting_duration_minutes: int
    buffer_before_minutes: int
    buffer_after_minutes: int
    max_meetings_per_day: int
    min_notice_hours: int
    booking_window_days: int
    meeting_link: str | None
    is_accepting_meetings: bool
    is_active: bool
