"""Signup service - link an external product user to a CRM lead.

Matching order: explicit crm_lead_id → email (case-insensitive) → phone
(last 10 digits). When nothing matches, a lead is created in the signup
campaign. Once linked, any events the user sent before signup completed
are reconciled.
"""

import logging
from datetime import datetime, timezone
from typing import NamedTuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import MissingFieldError, NotFoundError, ValidationError
from app.core.structured_logging import build_log_context
from app.db.enums import ClientStatus
from app.db.models import Campaign, ClientLink, Lead, User
from app.services import lifecycle_service, pipeline_service
from app.utils.normalization import normalize_email, phone_digits

logger = logging.getLogger(__name__)

LEAD_STATUS_TRIAL_STARTED = "trial_started"


class SignupResult(NamedTuple):
    lead_id: UUID
    pipeline_id: UUID
    sdr_user_id: UUID | None
    lead_created: bool
    match_method: str
    events_processed: int


def get_signup_campaign(db: Session) -> Campaign | None:
    return db.query(Campaign).filter(Campaign.name == settings.LIFECYCLE_CAMPAIGN_NAME).first()


def find_sdr_by_code(db: Session, code: str | None) -> User | None:
    if not code:
        return None
    return db.query(User).filter(User.sdr_code == code, User.is_active == True).first()


def match_lead(
    db: Session,
    *,
    org_id: UUID | None,
    crm_lead_id: UUID | None = None,
    email: str | None = None,
    phone: str | None = None,
) -> tuple[Lead | None, str]:
    """Return (lead, match_method); method is "none" when nothing matched."""
    def scoped(query):
        return query.filter(Lead.organization_id == org_id) if org_id else query

    if crm_lead_id:
        lead = scoped(db.query(Lead).filter(Lead.id == crm_lead_id)).first()
        if lead:
            return lead, "crm_lead_id"

    normalized = normalize_email(email)
    if normalized:
        lead = (
            scoped(db.query(Lead).filter(func.lower(Lead.email) == normalized))
            .order_by(Lead.created_at)
            .first()
        )
        if lead:
            return lead, "email"

    digits = phone_digits(phone)
    if digits:
        lead = (
            scoped(db.query(Lead).filter(Lead.phone_digits == digits))
            .order_by(Lead.created_at)
            .first()
        )
        if lead:
            return lead, "phone"

    return None, "none"


def link_signup(
    db: Session,
    *,
    external_user_id: str,
    email: str | None = None,
    phone: str | None = None,
    name: str | None = None,
    website: str | None = None,
    crm_lead_id: UUID | None = None,
    sdr_first_touch_code: str | None = None,
    sdr_last_touch_code: str | None = None,
    now: datetime | None = None,
) -> SignupResult:
    """
    Create or update the ClientLink for a product signup.

    Raises:
        MissingFieldError: no user id
        ValidationError: no email, phone or crm_lead_id to match on
        NotFoundError: no match and the signup campaign does not exist
    """
    if not external_user_id:
        raise MissingFieldError("user_id")
    if not email and not phone and not crm_lead_id:
        raise ValidationError(
            "At least one of email, phone, or crm_lead_id is required",
            reason="missing_identity",
        )

    now = now or datetime.now(timezone.utc)
    campaign = get_signup_campaign(db)
    org_id = campaign.organization_id if campaign else None

    lead, match_method = match_lead(
        db, org_id=org_id, crm_lead_id=crm_lead_id, email=email, phone=phone
    )
    tracking_sdr = find_sdr_by_code(db, sdr_first_touch_code or sdr_last_touch_code)

    lead_created = False
    if lead:
        sdr_user_id = lead.assigned_to or (tracking_sdr.id if tracking_sdr else None)
        if not lead.assigned_campaign_id and campaign:
            lead.assigned_campaign_id = campaign.id
    else:
        if not campaign:
            raise NotFoundError(f"Campaign '{settings.LIFECYCLE_CAMPAIGN_NAME}' not found")
        if not email and not phone:
            raise ValidationError(
                "No identifying info (email/phone) to create lead",
                reason="missing_identity",
            )
        sdr_user_id = tracking_sdr.id if tracking_sdr else None
        lead = Lead(
            organization_id=campaign.organization_id,
            name=name or (normalize_email(email) or "").split("@")[0] or phone or "Trial signup",
            email=normalize_email(email),
            phone=phone,
            website=website,
            assigned_to=sdr_user_id,
            assigned_campaign_id=campaign.id,
            client_status=ClientStatus.TRIALING.value,
        )
        db.add(lead)
        db.flush()
        lead_created = True
        match_method = "created"

    link = lifecycle_service.get_link(db, external_user_id)
    if link:
        link.crm_lead_id = lead.id
        if sdr_user_id:
            link.sdr_user_id = sdr_user_id
    else:
        db.add(ClientLink(external_user_id=external_user_id, crm_lead_id=lead.id, sdr_user_id=sdr_user_id))

    lead.lead_status = LEAD_STATUS_TRIAL_STARTED
    pipeline, _ = pipeline_service.get_or_create_pipeline(
        db,
        organization_id=lead.organization_id,
        lead_id=lead.id,
        owner_sdr_id=sdr_user_id,
        external_user_id=external_user_id,
    )
    if pipeline.trial_started_at is None:
        pipeline.trial_started_at = now

    lead_id = lead.id
    pipeline_id = pipeline.id
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Linked signup via %s",
        match_method,
        extra=build_log_context(
            pipeline_id=pipeline_id, external_user_id=external_user_id, actor_id=sdr_user_id
        ),
    )

    if sdr_first_touch_code or sdr_last_touch_code:
        lifecycle_service.apply_attribution(
            db, lead_id, first_touch=sdr_first_touch_code, last_touch=sdr_last_touch_code
        )

    reconciled = lifecycle_service.reconcile_unprocessed(db, external_user_id=external_user_id)
    return SignupResult(
        lead_id=lead_id,
        pipeline_id=pipeline_id,
        sdr_user_id=sdr_user_id,
        lead_created=lead_created,
        match_method=match_method,
        events_processed=reconciled.processed,
    )
