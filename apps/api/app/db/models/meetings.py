"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime, time

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import MeetingStatus
from app.db.types import JSONType, utc_now

if TYPE_CHECKING:
    from app.db.models import Pipeline, User


class AvailabilityShift(Base):
    """
    Weekly activator shift (e.g., "Monday 9am-5pm America/New_York").

    Uses ISO weekday: Monday=0, Sunday=6.
    Shifts may not cross midnight; split them into two shifts instead.
    """

    __tablename__ = "availability_shifts"
    __table_args__ = (
        Index("idx_availability_shifts_user", "user_id", "day_of_week"),
        Index("idx_availability_shifts_org", "organization_id"),
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_shift_day_of_week"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    # Day of week (ISO: Monday=0, Sunday=6)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)

    # Local wall-clock window, interpreted in `timezone`
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    timezone: Mapped[str] = mapped_column(String(50), default="America/New_York", nullable=False)

    # Booking settings
    meeting_duration_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    buffer_before_minutes: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    buffer_after_minutes: Mapped[int] = mapped_column(Integer, default=15, nullable=False)
    max_meetings_per_day: Mapped[int] = mapped_column(Integer, default=6, nullable=False)
    min_notice_hours: Mapped[int] = mapped_column(Integer, default=2, nullable=False)
    booking_window_days: Mapped[int] = mapped_column(Integer, default=14, nullable=False)
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)

    is_accepting_meetings: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)

    user: Mapped["User"] = relationship()


class Meeting(Base):
    """
    Activation meeting.

    A reschedule closes the current row and creates a new one linked via
    parent_meeting_id with attempt_number + 1. Only `scheduled` rows can be
    completed.
    """

    __tablename__ = "activation_meetings"
    __table_args__ = (
        Index("idx_meetings_pipeline", "pipeline_id"),
        Index("idx_meetings_activator_start", "activator_user_id", "scheduled_start_at"),
        Index("idx_meetings_org_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("activation_pipelines.id", ondelete="CASCADE"), nullable=False
    )
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )

    # Reschedule chain
    parent_meeting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("activation_meetings.id", ondelete="SET NULL"), nullable=True
    )
    attempt_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Scheduling (copied forward on reschedule)
    scheduled_start_at: Mapped[datetime] = mapped_column(nullable=False)
    scheduled_end_at: Mapped[datetime] = mapped_column(nullable=False)
    scheduled_timezone: Mapped[str] = mapped_column(String(50), nullable=False)
    activator_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    scheduled_by_sdr_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    attendee_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attendee_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attendee_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    attendee_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    website_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    website_platform: Mapped[str | None] = mapped_column(String(100), nullable=True)
    goal: Mapped[str | None] = mapped_column(Text, nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    sdr_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), default=MeetingStatus.SCHEDULED.value, nullable=False
    )

    # Outcome (set once when the meeting is closed)
    outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)
    outcome_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    proof_method: Mapped[str | None] = mapped_column(String(100), nullable=True)
    install_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lead_delivery_methods: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    block_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    block_owner: Mapped[str | None] = mapped_column(String(50), nullable=True)
    next_step: Mapped[str | None] = mapped_column(Text, nullable=True)
    followup_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reschedule_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_attempted: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    canceled_by: Mapped[str | None] = mapped_column(String(50), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    kill_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_by_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    pipeline: Mapped["Pipeline"] = relationship(back_populates="meetings")
    activator: Mapped["User"] = relationship(foreign_keys=[activator_user_id])
