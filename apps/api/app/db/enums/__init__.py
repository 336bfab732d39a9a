"""Enum definitions for application constants."""

from app.db.enums.activation import (
    ActivationEventType,
    ActivationStatus,
    DEFAULT_ACTIVATION_STATUS,
    FollowupOwnerRole,
    KillReason,
    MeetingOutcome,
    MeetingStatus,
    PerformanceEventType,
    TERMINAL_ACTIVATION_STATUSES,
)
from app.db.enums.lifecycle import (
    ACTIVATION_TRIGGER_EVENTS,
    BonusState,
    BonusTrigger,
    ClientStatus,
    EVENT_BADGES,
    LeadBadge,
    LifecycleEventType,
)

__all__ = [
    "ACTIVATION_TRIGGER_EVENTS",
    "ActivationEventType",
    "ActivationStatus",
    "BonusState",
    "BonusTrigger",
    "ClientStatus",
    "DEFAULT_ACTIVATION_STATUS",
    "EVENT_BADGES",
    "FollowupOwnerRole",
    "KillReason",
    "LeadBadge",
    "LifecycleEventType",
    "MeetingOutcome",
    "MeetingStatus",
    "PerformanceEventType",
    "TERMINAL_ACTIVATION_STATUSES",
]
