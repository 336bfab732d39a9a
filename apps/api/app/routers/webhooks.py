"""Webhooks router - product lifecycle and signup events."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.deps import get_db, verify_webhook_secret
from app.core.rate_limit import WEBHOOK_LIMIT, limiter
from app.db.enums import LifecycleEventType
from app.schemas.lifecycle import LifecycleEventAccepted, LifecycleEventIn, SignupIn, SignupLinked
from app.services import lifecycle_service, signup_service

router = APIRouter()
logger = logging.getLogger(__name__)

DEPRECATED_EVENT_TYPES = {
    LifecycleEventType.TRIAL_ACTIVATED.value,
    LifecycleEventType.SNIPPET_INSTALLED.value,
}


@router.get("/lifecycle-event")
def describe_lifecycle_webhook():
    """Health check and documentation for the lifecycle webhook."""
    return {
        "status": "ok",
        "endpoint": "lifecycle-event webhook",
        "event_types": [
            e.value for e in LifecycleEventType if e.value not in DEPRECATED_EVENT_TYPES
        ],
        "deprecated_event_types": sorted(DEPRECATED_EVENT_TYPES),
        "example_payloads": {
            "trial_started": {"plan": "trial", "trial_ends_at": "2026-01-15T00:00:00Z"},
            "first_lead_received": {"source_url": "https://example.com/quote"},
            "credits_first_used": {"credits_remaining": 19},
            "paid_subscribed": {"plan": "starter", "mrr": 49},
        },
    }


@router.post(
    "/lifecycle-event",
    response_model=LifecycleEventAccepted,
    dependencies=[Depends(verify_webhook_secret)],
)
@limiter.limit(WEBHOOK_LIMIT)
def receive_lifecycle_event(
    request: Request,
    data: LifecycleEventIn,
    db: Session = Depends(get_db),
):
    """
    Receive a lifecycle event from the product.

    The event is always stored. It is processed immediately when the user
    is linked to a lead; otherwise it waits for signup linking or the
    reconcile job.
    """
    result = lifecycle_service.ingest_event(
        db,
        external_user_id=data.user_id,
        event_type=data.event_type.value,
        payload=data.payload,
    )
    return LifecycleEventAccepted(
        event_id=result.event_id,
        has_link=result.has_link,
        will_process=result.has_link,
    )


@router.post(
    "/signup",
    response_model=SignupLinked,
    dependencies=[Depends(verify_webhook_secret)],
)
@limiter.limit(WEBHOOK_LIMIT)
def receive_signup(
    request: Request,
    data: SignupIn,
    db: Session = Depends(get_db),
):
    """Link a product signup to a CRM lead and replay its pending events."""
    result = signup_service.link_signup(
        db,
        external_user_id=data.user_id,
        email=data.email,
        phone=data.phone,
        name=data.name or data.company,
        website=data.website,
        crm_lead_id=data.crm_lead_id,
        sdr_first_touch_code=data.sdr_first_touch_code,
        sdr_last_touch_code=data.sdr_last_touch_code,
    )
    return SignupLinked(
        lead_id=result.lead_id,
        pipeline_id=result.pipeline_id,
        sdr_user_id=result.sdr_user_id,
        lead_created=result.lead_created,
        events_processed=result.events_processed,
    )
