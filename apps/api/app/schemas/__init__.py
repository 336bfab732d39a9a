"""Pydantic schemas for API request/response models."""

from app.schemas.auth import UserSession
from app.schemas.availability import ShiftInput, ShiftRead, ShiftsSet
from app.schemas.lifecycle import (
    LifecycleEventAccepted,
    LifecycleEventIn,
    ReconcileResponse,
    SignupIn,
    SignupLinked,
    StaleSweepResponse,
)
from app.schemas.meetings import (
    MeetingCreate,
    MeetingOutcomePayload,
    MeetingRead,
    MeetingStatusResponse,
    MeetingStatusUpdate,
    OutcomeResponse,
)
from app.schemas.pipeline import ActivationEventRead, PipelineRead
from app.schemas.slots import SlotListResponse, SlotRead

__all__ = [
    "ActivationEventRead",
    "LifecycleEventAccepted",
    "LifecycleEventIn",
    "MeetingCreate",
    "MeetingOutcomePayload",
    "MeetingRead",
    "MeetingStatusResponse",
    "MeetingStatusUpdate",
    "OutcomeResponse",
    "PipelineRead",
    "ReconcileResponse",
    "ShiftInput",
    "ShiftRead",
    "ShiftsSet",
    "SignupIn",
    "SignupLinked",
    "SlotListResponse",
    "SlotRead",
    "StaleSweepResponse",
    "UserSession",
]
