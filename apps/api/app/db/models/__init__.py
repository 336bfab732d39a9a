"""SQLAlchemy ORM models."""

from app.db.models.auth import Organization, User
from app.db.models.campaigns import Campaign, Lead
from app.db.models.lifecycle import ClientEvent, ClientLink
from app.db.models.meetings import AvailabilityShift, Meeting
from app.db.models.payouts import ActivationCredit, BonusEvent, PerformanceEvent
from app.db.models.pipelines import ActivationEvent, Pipeline

__all__ = [
    "ActivationCredit",
    "ActivationEvent",
    "AvailabilityShift",
    "BonusEvent",
    "Campaign",
    "ClientEvent",
    "ClientLink",
    "Lead",
    "Meeting",
    "Organization",
    "PerformanceEvent",
    "Pipeline",
    "User",
]
