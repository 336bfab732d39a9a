"""Activation pipeline read schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.schemas.meetings import MeetingRead


class ActivationEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: str
    meeting_id: UUID | None
    actor_user_id: UUID | None
    metadata_json: dict | None
    created_at: datetime


class PipelineRead(BaseModel):
    """Pipeline with its meeting chain and audit history."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    crm_lead_id: UUID
    external_user_id: str | None
    owner_sdr_id: UUID | None
    assigned_activator_id: UUID | None
    activation_status: str
    activation_kill_reason: str | None
    no_show_count: int
    reschedule_count: int
    trial_started_at: datetime | None
    calculator_modified_at: datetime | None
    first_lead_received_at: datetime | None
    activated_at: datetime | None
    converted_at: datetime | None
    marked_lost_at: datetime | None
    followup_owner_role: str | None
    next_followup_at: datetime | None
    next_action: str | None
    block_reason: str | None
    block_owner: str | None
    next_step: str | None
    install_url: str | None
    meetings: list[MeetingRead] = []
    events: list[ActivationEventRead] = []
