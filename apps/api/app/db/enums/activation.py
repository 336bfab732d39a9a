"""Activation pipeline and meeting enums."""

from enum import Enum


class ActivationStatus(str, Enum):
    """
    Trial activation lifecycle status.

    Flow: queued → blocked ⇄ queued
                 → no_show ⇄ queued
                 → active (terminal)
                 → killed (terminal)
    """

    QUEUED = "queued"  # Waiting on (re)scheduled activation meeting
    BLOCKED = "blocked"  # Install blocked, activator follows up
    NO_SHOW = "no_show"  # Client missed meeting, SDR follows up
    ACTIVE = "active"  # Proven install (terminal)
    KILLED = "killed"  # Lost (terminal)


TERMINAL_ACTIVATION_STATUSES = frozenset({ActivationStatus.ACTIVE, ActivationStatus.KILLED})


class MeetingStatus(str, Enum):
    """
    Activation meeting status.

    Flow: scheduled → completed
                    ↘ no_show
                    ↘ canceled
                    ↘ rescheduled (a new meeting continues the chain)
    """

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELED = "canceled"
    RESCHEDULED = "rescheduled"


class MeetingOutcome(str, Enum):
    """Structured outcome recorded by the activator when closing a meeting."""

    INSTALLED_PROVEN = "installed_proven"
    BLOCKED = "blocked"
    PARTIAL = "partial"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no_show"
    CANCELED = "canceled"
    KILLED = "killed"


class FollowupOwnerRole(str, Enum):
    """Who owns the next follow-up on a pipeline."""

    SDR = "sdr"
    ACTIVATOR = "activator"


class KillReason(str, Enum):
    """Reasons recorded by automatic kills."""

    REPEATED_NO_SHOW = "repeated_no_show"
    EXCESSIVE_RESCHEDULES = "excessive_reschedules"
    STALLED_INSTALL = "stalled_install"


class ActivationEventType(str, Enum):
    """Audit event types appended to the activation history."""

    SCHEDULED = "scheduled"
    INSTALLED_PROVEN = "installed_proven"
    BLOCKED = "blocked"
    PARTIAL = "partial"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no_show"
    CANCELED = "canceled"
    KILLED = "killed"
    STATUS_CHANGED = "status_changed"
    AUTO_KILLED = "auto_killed"


class PerformanceEventType(str, Enum):
    """Campaign performance signals emitted to the governance ledger."""

    INSTALL_SCHEDULED = "install_scheduled"
    INSTALL_ATTENDED = "install_attended"
    CALCULATOR_INSTALLED = "calculator_installed"
    PAID_CONVERSION = "paid_conversion"


# Default pipeline status
DEFAULT_ACTIVATION_STATUS = ActivationStatus.QUEUED
