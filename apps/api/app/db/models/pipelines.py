"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.enums import DEFAULT_ACTIVATION_STATUS
from app.db.types import JSONType, utc_now

if TYPE_CHECKING:
    from app.db.models import Lead, Meeting


class Pipeline(Base):
    """
    Activation pipeline for one trial customer (one row per lead).

    activation_status is the single source of truth for activation.
    active/killed are terminal: once reached, status, kill reason and
    follow-up fields are frozen. Counters only ever increase.
    """

    __tablename__ = "activation_pipelines"
    __table_args__ = (
        Index("idx_pipelines_org_status", "organization_id", "activation_status"),
        Index("idx_pipelines_external_user", "external_user_id"),
        Index("idx_pipelines_blocked", "activation_status", "blocked_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    crm_lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    external_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Ownership (owner_sdr_id is attribution only, written once)
    owner_sdr_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    assigned_activator_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Status
    activation_status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_ACTIVATION_STATUS.value, nullable=False
    )
    activation_kill_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_meeting_outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Counters (monotonic)
    no_show_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Milestones
    trial_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    password_set_at: Mapped[datetime | None] = mapped_column(nullable=True)
    first_login_at: Mapped[datetime | None] = mapped_column(nullable=True)
    calculator_modified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    embed_snippet_copied_at: Mapped[datetime | None] = mapped_column(nullable=True)
    first_lead_received_at: Mapped[datetime | None] = mapped_column(nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    no_show_at: Mapped[datetime | None] = mapped_column(nullable=True)
    marked_lost_at: Mapped[datetime | None] = mapped_column(nullable=True)
    calculator_installed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    blocked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    install_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Follow-up
    followup_owner_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    next_followup_at: Mapped[datetime | None] = mapped_column(nullable=True)
    next_action: Mapped[str | None] = mapped_column(String(255), nullable=True)
    followup_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    block_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    block_owner: Mapped[str | None] = mapped_column(String(50), nullable=True)
    next_step: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Current meeting snapshot
    scheduled_start_at: Mapped[datetime | None] = mapped_column(nullable=True)
    scheduled_end_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Product lifecycle mirror
    trial_ends_at: Mapped[datetime | None] = mapped_column(nullable=True)
    credits_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)
    plan: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mrr: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    bonus_state: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_event_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)

    # Relationships
    lead: Mapped["Lead"] = relationship()
    meetings: Mapped[list["Meeting"]] = relationship(
        back_populates="pipeline",
        order_by="Meeting.attempt_number",
    )
    events: Mapped[list["ActivationEvent"]] = relationship(
        back_populates="pipeline",
        order_by="ActivationEvent.created_at",
    )


class ActivationEvent(Base):
    """
    Append-only audit record of pipeline transitions.

    metadata_json snapshots the outcome payload at the time of the write.
    """

    __tablename__ = "activation_events"
    __table_args__ = (Index("idx_activation_events_pipeline", "pipeline_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pipeline_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("activation_pipelines.id", ondelete="CASCADE"), nullable=False
    )
    meeting_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("activation_meetings.id", ondelete="SET NULL"), nullable=True
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    metadata_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    pipeline: Mapped["Pipeline"] = relationship(back_populates="events")
