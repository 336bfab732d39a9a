"""SQLAlchemy ORM models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base
from app.db.types import JSONType, utc_now
from app.utils.normalization import phone_digits as normalize_phone_digits

if TYPE_CHECKING:
    from app.db.models import Organization, User


class Campaign(Base):
    """
    Sales campaign that owns leads.

    bonus_rules format:
        [{"trigger": "proven_install", "sdr_amount": 25, "activator_amount": 15}, ...]
    """

    __tablename__ = "campaigns"
    __table_args__ = (Index("idx_campaigns_org", "organization_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    bonus_rules: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    organization: Mapped["Organization"] = relationship()


class Lead(Base):
    """
    CRM lead, limited to the fields the activation pipeline reads and writes.

    client_* fields mirror the product lifecycle for list views.
    """

    __tablename__ = "leads"
    __table_args__ = (
        Index("idx_leads_org", "organization_id"),
        Index("idx_leads_email", "email"),
        Index("idx_leads_campaign", "assigned_campaign_id"),
        Index("idx_leads_org_phone_digits", "organization_id", "phone_digits"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    # Last 10 digits of phone, kept in sync for signup matching
    phone_digits: Mapped[str | None] = mapped_column(String(10), nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    lead_status: Mapped[str | None] = mapped_column(String(50), nullable=True)

    assigned_to: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    assigned_campaign_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True
    )

    # Attribution (first-touch is write-once)
    sdr_first_touch_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sdr_last_touch_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Lifecycle mirror
    badge_key: Mapped[str | None] = mapped_column(String(50), nullable=True)
    next_follow_up_at: Mapped[datetime | None] = mapped_column(nullable=True)
    client_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_plan: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_trial_ends_at: Mapped[datetime | None] = mapped_column(nullable=True)
    client_activated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    client_snippet_installed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    client_snippet_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_credits_left: Mapped[int | None] = mapped_column(nullable=True)
    client_mrr: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    client_paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now, nullable=False)

    assignee: Mapped["User | None"] = relationship(foreign_keys=[assigned_to])
    campaign: Mapped["Campaign | None"] = relationship()

    @validates("phone")
    def _sync_phone_digits(self, key: str, value: str | None) -> str | None:
        self.phone_digits = normalize_phone_digits(value)
        return value
