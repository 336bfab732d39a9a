"""Lifecycle service - product lifecycle events to lead/pipeline state.

Flow:
1. `ingest_event` always persists the ClientEvent first (events are never
   dropped, even when the external user is not linked to a lead yet).
2. When a ClientLink exists the event is processed immediately; otherwise
   it waits for `reconcile_unprocessed` after signup linking.
3. Processing claims the event (`processed` false → true, conditional
   UPDATE), applies the derived lead/pipeline updates and commits them in
   one transaction. Replays of processed events are no-ops.
4. Side effects (attribution, performance signal, bonuses, activation
   credit) run after commit and are isolated from the result.

Milestone timestamps come from the event's receipt time (created_at) and
are first-write-wins, so duplicates and out-of-order delivery converge on
the same state.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, NamedTuple
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import (
    ACTIVATION_TRIGGER_EVENTS,
    EVENT_BADGES,
    ActivationStatus,
    BonusState,
    ClientStatus,
    LifecycleEventType,
    PerformanceEventType,
)
from app.db.models import ClientEvent, ClientLink, Lead, Pipeline
from app.services import bonus_service, performance_service, pipeline_service
from app.utils.datetime_parsing import parse_payload_datetime, parse_payload_decimal, parse_payload_int
from app.utils.normalization import hostname_from_url

logger = logging.getLogger(__name__)


# Pipeline timestamps that are only ever written once
PIPELINE_MILESTONES = frozenset({
    "trial_started_at",
    "password_set_at",
    "first_login_at",
    "calculator_modified_at",
    "embed_snippet_copied_at",
    "first_lead_received_at",
    "converted_at",
})

LEAD_WRITE_ONCE = frozenset({
    "client_activated_at",
    "client_snippet_installed_at",
    "client_paid_at",
})

TRIAL_FOLLOW_UP_DAYS = 3
TRIAL_FOLLOW_UP_HOUR_UTC = 9
DEFAULT_CREDITS_AFTER_FIRST_USE = 19


class EventUpdates(NamedTuple):
    """Derived field updates for one event."""
    lead: dict[str, Any]
    pipeline: dict[str, Any]
    check_activation: bool


class IngestResult(NamedTuple):
    event_id: UUID
    has_link: bool
    processed: bool


class ReconcileResult(NamedTuple):
    scanned: int
    processed: int
    skipped_unlinked: int
    failed: int


# =============================================================================
# Pure mapping
# =============================================================================

def follow_up_date(occurred_at: datetime, days: int = TRIAL_FOLLOW_UP_DAYS) -> datetime:
    """Follow-up `days` after the event at 09:00 UTC."""
    target = occurred_at.astimezone(timezone.utc) + timedelta(days=days)
    return target.replace(hour=TRIAL_FOLLOW_UP_HOUR_UTC, minute=0, second=0, microsecond=0)


def derive_updates(event_type: str, payload: dict | None, occurred_at: datetime) -> EventUpdates:
    """
    Map (event_type, payload) to lead and pipeline field updates.

    Deterministic: every timestamp is `occurred_at`, never the wall clock.
    Unknown event types only touch `last_event_at`.
    """
    payload = payload or {}
    lead: dict[str, Any] = {}
    pipeline: dict[str, Any] = {"last_event_at": occurred_at}

    try:
        kind = LifecycleEventType(event_type)
    except ValueError:
        return EventUpdates(lead, pipeline, False)

    badge = EVENT_BADGES.get(kind)
    if badge:
        lead["badge_key"] = badge.value

    if kind == LifecycleEventType.TRIAL_STARTED:
        trial_ends_at = parse_payload_datetime(payload.get("trial_ends_at"))
        lead.update({
            "next_follow_up_at": follow_up_date(occurred_at),
            "client_status": ClientStatus.TRIALING.value,
            "client_plan": payload.get("plan"),
            "client_trial_ends_at": trial_ends_at,
        })
        pipeline.update({"trial_started_at": occurred_at, "trial_ends_at": trial_ends_at})

    elif kind == LifecycleEventType.PASSWORD_SET:
        lead["client_status"] = ClientStatus.PASSWORD_SET.value
        pipeline["password_set_at"] = occurred_at

    elif kind == LifecycleEventType.FIRST_LOGIN:
        lead.update({
            "client_status": ClientStatus.TRIAL_ACTIVATED.value,
            "client_activated_at": occurred_at,
        })
        pipeline["first_login_at"] = occurred_at

    elif kind == LifecycleEventType.CALCULATOR_VIEWED:
        lead["client_status"] = ClientStatus.CALCULATOR_VIEWED.value

    elif kind == LifecycleEventType.CALCULATOR_MODIFIED:
        lead.update({
            "client_status": ClientStatus.TRIAL_ACTIVATED.value,
            "client_activated_at": occurred_at,
        })
        pipeline["calculator_modified_at"] = occurred_at

    elif kind == LifecycleEventType.EMBED_SNIPPET_COPIED:
        lead["client_status"] = ClientStatus.SNIPPET_COPIED.value
        pipeline["embed_snippet_copied_at"] = occurred_at

    elif kind == LifecycleEventType.FIRST_LEAD_RECEIVED:
        source_url = payload.get("source_url")
        lead.update({
            "client_status": ClientStatus.SNIPPET_INSTALLED.value,
            "client_snippet_installed_at": occurred_at,
        })
        if source_url:
            lead["client_snippet_domain"] = hostname_from_url(source_url)
            pipeline["install_url"] = source_url
        pipeline["first_lead_received_at"] = occurred_at

    elif kind == LifecycleEventType.TRIAL_ACTIVATED:
        lead.update({
            "client_status": ClientStatus.TRIAL_ACTIVATED.value,
            "client_activated_at": occurred_at,
        })
        if payload.get("activation_type") == "settings_change":
            pipeline["calculator_modified_at"] = occurred_at
        else:
            pipeline["first_login_at"] = occurred_at

    elif kind == LifecycleEventType.SNIPPET_INSTALLED:
        lead.update({
            "client_status": ClientStatus.SNIPPET_INSTALLED.value,
            "client_snippet_installed_at": occurred_at,
        })
        if payload.get("website_domain"):
            lead["client_snippet_domain"] = payload["website_domain"]
        pipeline["embed_snippet_copied_at"] = occurred_at

    elif kind == LifecycleEventType.TRIAL_QUALIFIED:
        lead["client_status"] = ClientStatus.TRIAL_QUALIFIED.value

    elif kind == LifecycleEventType.CREDITS_LOW:
        lead.update({
            "client_status": ClientStatus.CREDITS_LOW.value,
            "client_credits_left": parse_payload_int(
                payload.get("credits_remaining", payload.get("credits_left"))
            ),
        })
        if payload.get("plan"):
            lead["client_plan"] = payload["plan"]

    elif kind == LifecycleEventType.CREDITS_FIRST_USED:
        credits = parse_payload_int(payload.get("credits_remaining"))
        if credits is None:
            credits = DEFAULT_CREDITS_AFTER_FIRST_USE
        lead.update({
            "client_status": ClientStatus.PROVEN_LIVE.value,
            "client_credits_left": credits,
        })
        pipeline.update({
            "credits_remaining": credits,
            "activation_status": ActivationStatus.ACTIVE.value,
            **pipeline_service.cleared_followup(),
        })

    elif kind == LifecycleEventType.TRIAL_EXPIRING:
        lead.update({
            "client_status": ClientStatus.TRIAL_EXPIRING.value,
            "client_trial_ends_at": parse_payload_datetime(payload.get("trial_ends_at")),
        })

    elif kind == LifecycleEventType.PAID_SUBSCRIBED:
        mrr = parse_payload_decimal(payload.get("mrr"))
        lead.update({
            "client_status": ClientStatus.PAID.value,
            "client_plan": payload.get("plan"),
            "client_credits_left": None,
            "client_mrr": mrr,
            "client_paid_at": occurred_at,
        })
        pipeline.update({
            "converted_at": occurred_at,
            "plan": payload.get("plan"),
            "mrr": mrr,
            "bonus_state": BonusState.PENDING.value,
        })

    check_activation = kind in ACTIVATION_TRIGGER_EVENTS or "calculator_modified_at" in pipeline
    return EventUpdates(lead, pipeline, check_activation)


def activation_time(pipeline: Pipeline) -> datetime | None:
    """Later of the two activation milestones, or None until both exist."""
    if pipeline.calculator_modified_at and pipeline.first_lead_received_at:
        return max(pipeline.calculator_modified_at, pipeline.first_lead_received_at)
    return None


# =============================================================================
# Apply
# =============================================================================

def get_link(db: Session, external_user_id: str) -> ClientLink | None:
    return db.query(ClientLink).filter(ClientLink.external_user_id == external_user_id).first()


def apply_lead_updates(lead: Lead, updates: dict[str, Any]) -> None:
    for field, value in updates.items():
        if field in LEAD_WRITE_ONCE and getattr(lead, field) is not None:
            continue
        setattr(lead, field, value)


def filter_pipeline_updates(pipeline: Pipeline, updates: dict[str, Any]) -> dict[str, Any]:
    """Drop milestone rewrites, older last_event_at and empty optional values."""
    values: dict[str, Any] = {}
    for field, value in updates.items():
        if field in PIPELINE_MILESTONES and getattr(pipeline, field) is not None:
            continue
        if field == "last_event_at" and pipeline.last_event_at and pipeline.last_event_at >= value:
            continue
        if field == "bonus_state" and pipeline.bonus_state:
            continue
        if field in {"install_url", "plan", "mrr", "trial_ends_at"} and value is None:
            continue
        values[field] = value
    return values


def apply_pipeline_updates(db: Session, pipeline: Pipeline, updates: dict[str, Any]) -> dict[str, Any]:
    """Apply milestone-aware, state-machine-guarded updates; returns what was applied."""
    return pipeline_service.apply_updates(db, pipeline, filter_pipeline_updates(pipeline, updates))


def maybe_mark_activated(pipeline: Pipeline) -> bool:
    """Set activated_at once, when both milestones exist."""
    if pipeline.activated_at is not None:
        return False
    activated_at = activation_time(pipeline)
    if activated_at is None:
        return False
    pipeline.activated_at = activated_at
    return True


def _claim_event(db: Session, event_id: UUID, now: datetime) -> bool:
    """Flip processed false → true; False when another worker already did."""
    result = db.execute(
        update(ClientEvent)
        .where(ClientEvent.id == event_id, ClientEvent.processed == False)  # noqa: E712
        .values(processed=True, processed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def process_event(db: Session, event: ClientEvent, link: ClientLink) -> bool:
    """
    Apply one event for a linked user.

    Returns True when this call processed the event, False when it was
    already processed. Raises SQLAlchemyError on write failure (after
    rolling back, so the event stays unprocessed).
    """
    if event.processed:
        return False

    event_id = event.id
    event_type = event.event_type
    external_user_id = event.user_id
    payload = event.payload or {}
    lead_id = link.crm_lead_id

    try:
        if not _claim_event(db, event_id, datetime.now(timezone.utc)):
            db.rollback()
            return False

        lead = db.get(Lead, lead_id)
        if not lead:
            db.rollback()
            logger.warning(
                "Linked lead missing, leaving event unprocessed",
                extra=build_log_context(event_id=event_id, external_user_id=external_user_id),
            )
            return False

        updates = derive_updates(event_type, payload, event.created_at)
        apply_lead_updates(lead, updates.lead)

        pipeline, _ = pipeline_service.get_or_create_pipeline(
            db,
            organization_id=lead.organization_id,
            lead_id=lead.id,
            owner_sdr_id=link.sdr_user_id,
            external_user_id=external_user_id,
        )
        apply_pipeline_updates(db, pipeline, updates.pipeline)
        db.flush()
        if updates.check_activation and maybe_mark_activated(pipeline):
            logger.info(
                "Pipeline activated",
                extra=build_log_context(pipeline_id=pipeline.id, external_user_id=external_user_id),
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info(
        "Processed lifecycle event %s",
        event_type,
        extra=build_log_context(event_id=event_id, external_user_id=external_user_id),
    )
    _run_side_effects(db, event_type, payload, external_user_id, lead_id)
    return True


def _run_side_effects(
    db: Session,
    event_type: str,
    payload: dict,
    external_user_id: str,
    lead_id: UUID,
) -> None:
    """Post-commit effects; each failure is logged and contained."""
    first_touch = payload.get("sdr_first_touch_code")
    last_touch = payload.get("sdr_last_touch_code")
    if first_touch or last_touch:
        apply_attribution(db, lead_id, first_touch=first_touch, last_touch=last_touch)

    if event_type == LifecycleEventType.PAID_SUBSCRIBED.value:
        performance_service.emit_for_lead(
            db,
            lead_id=lead_id,
            event_types=[PerformanceEventType.PAID_CONVERSION.value],
            metadata={
                "external_user_id": external_user_id,
                "plan": payload.get("plan"),
                "mrr": payload.get("mrr"),
            },
        )
        try:
            bonus_service.create_activation_credit(db, lead_id=lead_id)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Failed to create activation credit",
                extra=build_log_context(external_user_id=external_user_id),
            )

    if event_type == LifecycleEventType.CREDITS_FIRST_USED.value:
        try:
            bonus_service.award_proven_install_bonuses(
                db, lead_id=lead_id, external_user_id=external_user_id
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "Failed to award proven install bonuses",
                extra=build_log_context(external_user_id=external_user_id),
            )


def apply_attribution(
    db: Session,
    lead_id: UUID,
    *,
    first_touch: str | None = None,
    last_touch: str | None = None,
) -> bool:
    """
    First-touch is written only when empty; last-touch always overwrites.

    Runs in its own commit; failures are logged and reported as False.
    """
    try:
        lead = db.get(Lead, lead_id)
        if not lead:
            return False
        if first_touch and not lead.sdr_first_touch_code:
            lead.sdr_first_touch_code = first_touch
        if last_touch:
            lead.sdr_last_touch_code = last_touch
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to apply attribution codes")
        return False


# =============================================================================
# Entry points
# =============================================================================

def ingest_event(
    db: Session,
    *,
    external_user_id: str,
    event_type: str,
    payload: dict | None = None,
    now: datetime | None = None,
) -> IngestResult:
    """Persist an event and process it when the user is linked."""
    event = ClientEvent(
        user_id=external_user_id,
        event_type=event_type,
        payload=payload or {},
        processed=False,
        created_at=now or datetime.now(timezone.utc),
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    event_id = event.id

    link = get_link(db, external_user_id)
    if not link:
        logger.info(
            "No client link yet; event stored for later processing",
            extra=build_log_context(event_id=event_id, external_user_id=external_user_id),
        )
        return IngestResult(event_id, False, False)

    try:
        processed = process_event(db, event, link)
    except SQLAlchemyError:
        # Stays unprocessed; the reconcile job picks it up
        logger.exception(
            "Immediate processing failed",
            extra=build_log_context(event_id=event_id, external_user_id=external_user_id),
        )
        processed = False
    return IngestResult(event_id, True, processed)


def reconcile_unprocessed(
    db: Session,
    *,
    limit: int | None = None,
    external_user_id: str | None = None,
) -> ReconcileResult:
    """
    Process pending events in receipt order.

    Already-processed events are never selected; unlinked events are skipped
    and stay pending.
    """
    query = db.query(ClientEvent).filter(ClientEvent.processed == False)  # noqa: E712
    if external_user_id:
        query = query.filter(ClientEvent.user_id == external_user_id)
    events = (
        query.order_by(ClientEvent.created_at, ClientEvent.id)
        .limit(limit or settings.RECONCILE_BATCH_SIZE)
        .all()
    )

    processed = skipped = failed = 0
    links: dict[str, ClientLink | None] = {}
    for event in events:
        if event.user_id not in links:
            links[event.user_id] = get_link(db, event.user_id)
        link = links[event.user_id]
        if not link:
            skipped += 1
            continue
        try:
            if process_event(db, event, link):
                processed += 1
        except SQLAlchemyError:
            failed += 1
            logger.exception(
                "Reconcile failed for event",
                extra=build_log_context(event_id=event.id, external_user_id=event.user_id),
            )

    logger.info(
        "Reconciled client events: scanned=%s processed=%s skipped=%s failed=%s",
        len(events),
        processed,
        skipped,
        failed,
    )
    return ReconcileResult(len(events), processed, skipped, failed)
