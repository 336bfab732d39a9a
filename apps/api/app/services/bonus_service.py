"""Bonus service - proven-install bonuses and activator conversion credits.

Both payouts are idempotent on a natural key:
- BonusEvent: (campaign, team member, event_type, external user)
- ActivationCredit: lead

The key is checked before insert; a duplicate-key error from a concurrent
writer is treated as "already awarded".
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import NamedTuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import BonusState, BonusTrigger, MeetingStatus
from app.db.models import (
    ActivationCredit,
    BonusEvent,
    Campaign,
    Lead,
    Meeting,
    Pipeline,
    User,
)

logger = logging.getLogger(__name__)


class BonusAward(NamedTuple):
    team_member_id: UUID
    amount: Decimal
    created: bool


def get_bonus_rule(campaign: Campaign | None, trigger: str) -> dict | None:
    """First rule in the campaign's bonus table matching `trigger`."""
    if not campaign or not campaign.bonus_rules:
        return None
    for rule in campaign.bonus_rules:
        if isinstance(rule, dict) and rule.get("trigger") == trigger:
            return rule
    return None


def _amount(value) -> Decimal:
    try:
        return Decimal(str(value or 0))
    except InvalidOperation:
        return Decimal("0")


def _latest_completed_activator(db: Session, pipeline_id: UUID) -> UUID | None:
    meeting = (
        db.query(Meeting)
        .filter(
            Meeting.pipeline_id == pipeline_id,
            Meeting.status == MeetingStatus.COMPLETED.value,
        )
        .order_by(Meeting.completed_at.desc())
        .first()
    )
    if not meeting:
        return None
    return meeting.completed_by_user_id or meeting.activator_user_id


def _insert_bonus(
    db: Session,
    *,
    campaign_id: UUID,
    team_member_id: UUID,
    event_type: str,
    external_user_id: str,
    amount: Decimal,
) -> bool:
    """Insert one bonus row; returns False when it already existed."""
    exists = db.query(BonusEvent.id).filter(
        BonusEvent.campaign_id == campaign_id,
        BonusEvent.team_member_id == team_member_id,
        BonusEvent.event_type == event_type,
        BonusEvent.external_user_id == external_user_id,
    ).first()
    if exists:
        return False

    try:
        db.add(
            BonusEvent(
                campaign_id=campaign_id,
                team_member_id=team_member_id,
                event_type=event_type,
                external_user_id=external_user_id,
                bonus_amount_usd=amount,
            )
        )
        db.commit()
        return True
    except IntegrityError:
        # Concurrent delivery inserted the same natural key first
        db.rollback()
        return False


def award_proven_install_bonuses(
    db: Session,
    *,
    lead_id: UUID,
    external_user_id: str,
) -> list[BonusAward]:
    """
    Pay the campaign's proven_install bonus to the pipeline's SDR and activator.

    Redelivery returns the same members with created=False. Write failures are
    logged and never raised.
    """
    lead = db.get(Lead, lead_id)
    campaign = db.get(Campaign, lead.assigned_campaign_id) if lead and lead.assigned_campaign_id else None
    rule = get_bonus_rule(campaign, BonusTrigger.PROVEN_INSTALL.value)
    if not rule:
        return []

    pipeline = db.query(Pipeline).filter(Pipeline.crm_lead_id == lead_id).first()
    if not pipeline:
        return []

    recipients: list[tuple[UUID, Decimal]] = []
    sdr_amount = _amount(rule.get("sdr_amount"))
    if sdr_amount > 0 and pipeline.owner_sdr_id:
        recipients.append((pipeline.owner_sdr_id, sdr_amount))
    activator_amount = _amount(rule.get("activator_amount"))
    activator_id = _latest_completed_activator(db, pipeline.id)
    if activator_amount > 0 and activator_id:
        recipients.append((activator_id, activator_amount))

    awards: list[BonusAward] = []
    for member_id, amount in recipients:
        try:
            created = _insert_bonus(
                db,
                campaign_id=campaign.id,
                team_member_id=member_id,
                event_type=BonusTrigger.PROVEN_INSTALL.value,
                external_user_id=external_user_id,
                amount=amount,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Failed to award proven_install bonus",
                extra=build_log_context(
                    pipeline_id=pipeline.id, external_user_id=external_user_id, actor_id=member_id
                ),
            )
            continue
        awards.append(BonusAward(member_id, amount, created))
        if created:
            logger.info(
                "Awarded %s proven_install bonus",
                amount,
                extra=build_log_context(
                    pipeline_id=pipeline.id, external_user_id=external_user_id, actor_id=member_id
                ),
            )

    if any(award.created for award in awards):
        db.query(Pipeline).filter(Pipeline.id == pipeline.id).update(
            {Pipeline.bonus_state: BonusState.AWARDED.value}, synchronize_session=False
        )
        db.commit()
    return awards


def days_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() // 86400)


def create_activation_credit(db: Session, *, lead_id: UUID) -> ActivationCredit | None:
    """
    Credit the lead's activator when the trial converted inside the credit window.

    Requires trial_started_at and converted_at on the pipeline and an assignee
    flagged as activator. At most one credit exists per lead.
    """
    pipeline = db.query(Pipeline).filter(Pipeline.crm_lead_id == lead_id).first()
    if not pipeline or not pipeline.trial_started_at or not pipeline.converted_at:
        return None

    days_to_convert = days_between(pipeline.trial_started_at, pipeline.converted_at)
    if days_to_convert > settings.ACTIVATION_CREDIT_WINDOW_DAYS:
        return None

    lead = db.get(Lead, lead_id)
    if not lead or not lead.assigned_to:
        return None
    activator = db.get(User, lead.assigned_to)
    if not activator or not activator.is_activator:
        return None

    existing = db.query(ActivationCredit).filter(ActivationCredit.lead_id == lead_id).first()
    if existing:
        return existing

    credit = ActivationCredit(
        organization_id=lead.organization_id,
        lead_id=lead_id,
        pipeline_id=pipeline.id,
        activator_user_id=activator.id,
        sdr_user_id=pipeline.owner_sdr_id,
        trial_started_at=pipeline.trial_started_at,
        converted_at=pipeline.converted_at,
        days_to_convert=days_to_convert,
        amount=settings.ACTIVATION_CREDIT_AMOUNT,
    )
    try:
        db.add(credit)
        db.commit()
    except IntegrityError:
        db.rollback()
        return db.query(ActivationCredit).filter(ActivationCredit.lead_id == lead_id).first()

    logger.info(
        "Created activation credit (%s days to convert)",
        days_to_convert,
        extra=build_log_context(pipeline_id=pipeline.id, actor_id=activator.id),
    )
    return credit
