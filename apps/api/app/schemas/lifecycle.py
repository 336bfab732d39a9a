"""Product lifecycle webhook schemas."""

from uuid import UUID

from pydantic import BaseModel, Field

from app.db.enums import LifecycleEventType


class LifecycleEventIn(BaseModel):
    """POST /webhooks/lifecycle-event body."""
    user_id: str = Field(..., min_length=1, max_length=255)
    event_type: LifecycleEventType
    payload: dict = Field(default_factory=dict)


class LifecycleEventAccepted(BaseModel):
    event_id: UUID
    has_link: bool
    will_process: bool


class SignupIn(BaseModel):
    """POST /webhooks/signup body."""
    user_id: str = Field(..., min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    name: str | None = None
    company: str | None = None
    website: str | None = None
    crm_lead_id: UUID | None = None
    sdr_first_touch_code: str | None = None
    sdr_last_touch_code: str | None = None


class SignupLinked(BaseModel):
    lead_id: UUID
    pipeline_id: UUID
    sdr_user_id: UUID | None
    lead_created: bool
    events_processed: int


class ReconcileResponse(BaseModel):
    scanned: int
    processed: int
    skipped_unlinked: int
    failed: int


class StaleSweepResponse(BaseModel):
    stale_blocked_killed: int
    no_show_killed: int
    reschedule_killed: int
