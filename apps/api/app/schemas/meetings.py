"""Activation meeting schemas.

Outcome payloads are a tagged union keyed by `outcome`; each variant declares
its own required fields.
"""

from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

RequiredStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# =============================================================================
# Booking
# =============================================================================

class MeetingCreate(BaseModel):
    """Book an activation meeting (SDR)."""
    lead_id: UUID
    scheduled_start_at: datetime
    scheduled_timezone: RequiredStr
    activator_user_id: UUID
    attendee_name: RequiredStr
    attendee_role: RequiredStr
    attendee_phone: RequiredStr
    website_platform: RequiredStr
    goal: RequiredStr
    attendee_email: str | None = None
    website_url: str | None = None
    sdr_notes: str | None = None


class MeetingRead(BaseModel):
    """Meeting as stored."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    pipeline_id: UUID
    lead_id: UUID
    parent_meeting_id: UUID | None
    attempt_number: int
    scheduled_start_at: datetime
    scheduled_end_at: datetime
    scheduled_timezone: str
    activator_user_id: UUID
    scheduled_by_sdr_user_id: UUID | None
    attendee_name: str | None
    attendee_role: str | None
    meeting_link: str | None
    status: str
    outcome: str | None
    outcome_notes: str | None
    completed_at: datetime | None


# =============================================================================
# Outcomes
# =============================================================================

class _OutcomeBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    notes: str | None = None


class InstalledProvenOutcome(_OutcomeBase):
    outcome: Literal["installed_proven"]
    install_url: RequiredStr
    proof_method: RequiredStr
    lead_delivery_methods: Annotated[list[RequiredStr], Field(min_length=1)]


class BlockedOutcome(_OutcomeBase):
    outcome: Literal["blocked", "partial"]
    block_reason: RequiredStr
    block_owner: RequiredStr
    next_step: RequiredStr
    followup_at: datetime | None = None


class RescheduledOutcome(_OutcomeBase):
    outcome: Literal["rescheduled"]
    new_datetime: datetime
    reschedule_reason: RequiredStr


class NoShowOutcome(_OutcomeBase):
    outcome: Literal["no_show"]
    contact_attempted: Annotated[list[RequiredStr], Field(min_length=1)]


class CanceledOutcome(_OutcomeBase):
    outcome: Literal["canceled"]
    canceled_by: RequiredStr
    cancel_reason: RequiredStr


class KilledOutcome(_OutcomeBase):
    outcome: Literal["killed"]
    kill_reason: RequiredStr


MeetingOutcomePayload = Annotated[
    Union[
        InstalledProvenOutcome,
        BlockedOutcome,
        RescheduledOutcome,
        NoShowOutcome,
        CanceledOutcome,
        KilledOutcome,
    ],
    Field(discriminator="outcome"),
]


class OutcomeResponse(BaseModel):
    """Result of closing a meeting."""
    outcome: str
    meeting_id: UUID
    meeting_status: str
    pipeline_status: str
    kill_reason: str | None = None
    new_meeting_id: UUID | None = None


# =============================================================================
# Status PATCH
# =============================================================================

class MeetingStatusUpdate(BaseModel):
    """Convenience status change without a structured outcome."""
    status: Literal["completed", "no_show", "canceled", "rescheduled"]
    notes: str | None = None


class MeetingStatusResponse(BaseModel):
    meeting_id: UUID
    meeting_status: str
    pipeline_status: str | None
