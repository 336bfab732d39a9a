"""Outcome service - closing activation meetings and driving the pipeline.

Check order: meeting exists → meeting still scheduled → pipeline not
terminal → outcome payload valid. Nothing is written until every check
passes.

Concurrency:
- The meeting is claimed with `UPDATE ... WHERE status = 'scheduled'`; the
  loser of a race sees rowcount 0 and gets AlreadyCompleted.
- Counters are incremented in SQL and read back from the same statement, so
  the auto-kill threshold is evaluated against the value this request wrote.
- Pipeline writes are conditional on a non-terminal status.
- A reschedule re-checks the new slot against the activator's calendar and
  rolls everything back on conflict.

Performance signals are emitted after commit and never affect the result.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, NamedTuple
from uuid import UUID

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AlreadyCompletedError,
    MissingFieldError,
    NotFoundError,
    TerminalStateError,
    ValidationError,
)
from app.core.structured_logging import build_log_context
from app.db.enums import (
    ActivationEventType,
    ActivationStatus,
    FollowupOwnerRole,
    KillReason,
    MeetingOutcome,
    MeetingStatus,
    PerformanceEventType,
)
from app.db.models import Meeting, Pipeline
from app.schemas.meetings import MeetingOutcomePayload
from app.services import meeting_service, performance_service, pipeline_service
from app.utils.business_days import add_business_days
from app.utils.timezones import ensure_utc

logger = logging.getLogger(__name__)

_outcome_adapter = TypeAdapter(MeetingOutcomePayload)

# Pydantic error types that mean "required value absent or empty"
_MISSING_ERROR_TYPES = frozenset({"missing", "string_too_short", "too_short"})

MEETING_STATUS_BY_OUTCOME = {
    MeetingOutcome.INSTALLED_PROVEN.value: MeetingStatus.COMPLETED.value,
    MeetingOutcome.BLOCKED.value: MeetingStatus.COMPLETED.value,
    MeetingOutcome.PARTIAL.value: MeetingStatus.COMPLETED.value,
    MeetingOutcome.KILLED.value: MeetingStatus.COMPLETED.value,
    MeetingOutcome.RESCHEDULED.value: MeetingStatus.RESCHEDULED.value,
    MeetingOutcome.NO_SHOW.value: MeetingStatus.NO_SHOW.value,
    MeetingOutcome.CANCELED.value: MeetingStatus.CANCELED.value,
}


class OutcomeResult(NamedTuple):
    outcome: str
    meeting_id: UUID
    meeting_status: str
    pipeline_status: str
    kill_reason: str | None = None
    new_meeting_id: UUID | None = None


class _Transition(NamedTuple):
    """Pipeline values plus an optional follow-on meeting."""
    pipeline_values: dict[str, Any]
    new_meeting: Meeting | None = None


# =============================================================================
# Validation
# =============================================================================

def parse_outcome(payload: dict) -> Any:
    """
    Validate an outcome payload against its variant.

    Raises:
        MissingFieldError: required field absent or empty (first one reported)
        ValidationError: unknown outcome or malformed value
    """
    try:
        return _outcome_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        error_type = error.get("type", "")
        field = _field_from_loc(error.get("loc", ()))
        if error_type == "union_tag_not_found":
            raise MissingFieldError("outcome") from exc
        if error_type == "union_tag_invalid":
            raise ValidationError(
                f"Invalid outcome: {payload.get('outcome')}", reason="invalid_outcome"
            ) from exc
        if error_type in _MISSING_ERROR_TYPES and field:
            raise MissingFieldError(field) from exc
        raise ValidationError(
            f"Invalid value for {field or 'payload'}: {error.get('msg')}",
            reason="invalid_field",
        ) from exc


def _field_from_loc(loc: tuple) -> str | None:
    # loc looks like ("installed_proven", "proof_method") or (..., "lead_delivery_methods", 0)
    names = [part for part in loc[1:] if isinstance(part, str)]
    return names[0] if names else None


# =============================================================================
# Complete
# =============================================================================

def complete_meeting(
    db: Session,
    meeting_id: UUID,
    payload: dict,
    actor_id: UUID,
    *,
    org_id: UUID | None = None,
    now: datetime | None = None,
) -> OutcomeResult:
    """Close a scheduled meeting with a structured outcome and transition its pipeline."""
    query = db.query(Meeting).filter(Meeting.id == meeting_id)
    if org_id:
        query = query.filter(Meeting.organization_id == org_id)
    meeting = query.first()
    if not meeting:
        raise NotFoundError("Meeting not found")

    if meeting.status != MeetingStatus.SCHEDULED.value:
        raise AlreadyCompletedError(f"Meeting already {meeting.status}")

    pipeline = db.get(Pipeline, meeting.pipeline_id)
    if not pipeline:
        raise NotFoundError("Pipeline not found")
    if pipeline_service.is_terminal(pipeline.activation_status):
        raise TerminalStateError(f"Pipeline is {pipeline.activation_status}")

    data = parse_outcome(payload)
    outcome = data.outcome
    now = now or datetime.now(timezone.utc)
    meeting_status = MEETING_STATUS_BY_OUTCOME[outcome]
    pipeline_id = pipeline.id
    lead_id = pipeline.crm_lead_id

    _claim_meeting(db, meeting, data, meeting_status, actor_id, now)

    transition = _TRANSITIONS[outcome](db, meeting, data, now)
    values = {"last_meeting_outcome": outcome, "updated_at": now, **transition.pipeline_values}
    if not pipeline_service.guarded_update(db, pipeline_id, values):
        db.rollback()
        raise TerminalStateError("Pipeline reached a terminal state")

    if transition.new_meeting is not None:
        db.add(transition.new_meeting)
        db.flush()

    pipeline_service.record_activation_event(
        db,
        pipeline_id=pipeline_id,
        meeting_id=meeting.id,
        event_type=outcome,
        actor_user_id=actor_id,
        metadata={"meeting_id": str(meeting.id), **data.model_dump(mode="json")},
    )
    db.commit()

    pipeline_status = values.get("activation_status", pipeline.activation_status)
    kill_reason = values.get("activation_kill_reason")
    logger.info(
        "Meeting outcome recorded: %s -> %s",
        outcome,
        pipeline_status,
        extra=build_log_context(
            pipeline_id=pipeline_id, meeting_id=meeting.id, actor_id=actor_id, outcome=outcome
        ),
    )

    signals = [PerformanceEventType.INSTALL_ATTENDED.value]
    if outcome == MeetingOutcome.INSTALLED_PROVEN.value:
        signals.append(PerformanceEventType.CALCULATOR_INSTALLED.value)
    performance_service.emit_for_lead(db, lead_id=lead_id, event_types=signals, user_id=actor_id)

    return OutcomeResult(
        outcome=outcome,
        meeting_id=meeting.id,
        meeting_status=meeting_status,
        pipeline_status=pipeline_status,
        kill_reason=kill_reason,
        new_meeting_id=transition.new_meeting.id if transition.new_meeting is not None else None,
    )


def _claim_meeting(
    db: Session,
    meeting: Meeting,
    data: Any,
    meeting_status: str,
    actor_id: UUID,
    now: datetime,
) -> None:
    """Move the meeting out of `scheduled`; loses the race → AlreadyCompleted."""
    values = {
        "status": meeting_status,
        "outcome": data.outcome,
        "outcome_notes": data.notes,
        "completed_at": now,
        "completed_by_user_id": actor_id,
        "updated_at": now,
    }
    for field in (
        "install_url",
        "proof_method",
        "lead_delivery_methods",
        "block_reason",
        "block_owner",
        "next_step",
        "reschedule_reason",
        "contact_attempted",
        "canceled_by",
        "cancel_reason",
        "kill_reason",
    ):
        if hasattr(data, field):
            values[field] = getattr(data, field)
    if getattr(data, "followup_at", None):
        values["followup_at"] = ensure_utc(data.followup_at)

    result = db.execute(
        update(Meeting)
        .where(Meeting.id == meeting.id, Meeting.status == MeetingStatus.SCHEDULED.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise AlreadyCompletedError("Meeting already completed")


# =============================================================================
# Transitions
# =============================================================================

def _installed_proven(db: Session, meeting: Meeting, data: Any, now: datetime) -> _Transition:
    return _Transition({
        "activation_status": ActivationStatus.ACTIVE.value,
        "calculator_installed_at": now,
        "install_url": data.install_url,
        **pipeline_service.cleared_followup(),
    })


def _blocked(db: Session, meeting: Meeting, data: Any, now: datetime) -> _Transition:
    business_days = 1 if data.outcome == MeetingOutcome.BLOCKED.value else 2
    followup = ensure_utc(data.followup_at) if data.followup_at else add_business_days(now, business_days)
    return _Transition({
        "activation_status": ActivationStatus.BLOCKED.value,
        "blocked_at": now,
        "followup_owner_role": FollowupOwnerRole.ACTIVATOR.value,
        "next_followup_at": followup,
        "followup_reason": data.block_reason,
        "block_reason": data.block_reason,
        "block_owner": data.block_owner,
        "next_step": data.next_step,
        "next_action": data.next_step,
    })


def _rescheduled(db: Session, meeting: Meeting, data: Any, now: datetime) -> _Transition:
    count = _increment(db, meeting.pipeline_id, "reschedule_count")
    if count >= settings.RESCHEDULE_KILL_THRESHOLD:
        return _Transition(_killed_values(KillReason.EXCESSIVE_RESCHEDULES.value, now))

    new_start = ensure_utc(data.new_datetime, meeting.scheduled_timezone)
    duration = meeting.scheduled_end_at - meeting.scheduled_start_at
    new_end = new_start + (duration or timedelta(minutes=settings.DEFAULT_MEETING_MINUTES))
    if meeting.activator_user_id:
        # Conflict rolls back the claim and the counter with it
        _, buffer_before, buffer_after, _ = meeting_service.meeting_settings(
            db, meeting.activator_user_id, new_start
        )
        meeting_service.ensure_slot_available(
            db,
            meeting.activator_user_id,
            new_start,
            new_end,
            buffer_before=buffer_before,
            buffer_after=buffer_after,
            exclude_meeting_id=meeting.id,
        )
    new_meeting = Meeting(
        organization_id=meeting.organization_id,
        pipeline_id=meeting.pipeline_id,
        lead_id=meeting.lead_id,
        parent_meeting_id=meeting.id,
        attempt_number=meeting.attempt_number + 1,
        scheduled_start_at=new_start,
        scheduled_end_at=new_end,
        scheduled_timezone=meeting.scheduled_timezone,
        activator_user_id=meeting.activator_user_id,
        scheduled_by_sdr_user_id=meeting.scheduled_by_sdr_user_id,
        attendee_name=meeting.attendee_name,
        attendee_role=meeting.attendee_role,
        attendee_email=meeting.attendee_email,
        attendee_phone=meeting.attendee_phone,
        website_url=meeting.website_url,
        website_platform=meeting.website_platform,
        goal=meeting.goal,
        meeting_link=meeting.meeting_link,
        status=MeetingStatus.SCHEDULED.value,
    )
    return _Transition(
        {
            "activation_status": ActivationStatus.QUEUED.value,
            "scheduled_start_at": new_meeting.scheduled_start_at,
            "scheduled_end_at": new_meeting.scheduled_end_at,
            **pipeline_service.cleared_followup(),
        },
        new_meeting,
    )


def _no_show(db: Session, meeting: Meeting, data: Any, now: datetime) -> _Transition:
    count = _increment(db, meeting.pipeline_id, "no_show_count")
    values = {"no_show_at": now}
    if count >= settings.NO_SHOW_KILL_THRESHOLD:
        values.update(_killed_values(KillReason.REPEATED_NO_SHOW.value, now))
        return _Transition(values)
    values.update({
        "activation_status": ActivationStatus.NO_SHOW.value,
        "followup_owner_role": FollowupOwnerRole.SDR.value,
        "next_followup_at": add_business_days(now, 1),
        "next_action": "Reschedule install",
    })
    return _Transition(values)


def _canceled(db: Session, meeting: Meeting, data: Any, now: datetime) -> _Transition:
    return _Transition({
        "activation_status": ActivationStatus.QUEUED.value,
        "followup_owner_role": FollowupOwnerRole.SDR.value,
        "next_followup_at": add_business_days(now, 1),
        "next_action": "Reschedule install",
    })


def _killed(db: Session, meeting: Meeting, data: Any, now: datetime) -> _Transition:
    return _Transition(_killed_values(data.kill_reason, now))


def _killed_values(reason: str, now: datetime) -> dict[str, Any]:
    return {
        "activation_status": ActivationStatus.KILLED.value,
        "activation_kill_reason": reason,
        "marked_lost_at": now,
        **pipeline_service.cleared_followup(),
    }


def _increment(db: Session, pipeline_id: UUID, column: str) -> int:
    count = pipeline_service.increment_counter(db, pipeline_id, column)
    if count is None:
        db.rollback()
        raise TerminalStateError("Pipeline reached a terminal state")
    return count


_TRANSITIONS: dict[str, Callable[[Session, Meeting, Any, datetime], _Transition]] = {
    MeetingOutcome.INSTALLED_PROVEN.value: _installed_proven,
    MeetingOutcome.BLOCKED.value: _blocked,
    MeetingOutcome.PARTIAL.value: _blocked,
    MeetingOutcome.RESCHEDULED.value: _rescheduled,
    MeetingOutcome.NO_SHOW.value: _no_show,
    MeetingOutcome.CANCELED.value: _canceled,
    MeetingOutcome.KILLED.value: _killed,
}


# =============================================================================
# Status PATCH (convenience transitions without a structured outcome)
# =============================================================================

def update_meeting_status(
    db: Session,
    meeting_id: UUID,
    status: str,
    actor_id: UUID,
    *,
    notes: str | None = None,
    org_id: UUID | None = None,
    now: datetime | None = None,
) -> tuple[Meeting, str | None]:
    """
    Mark a scheduled meeting completed / no_show / canceled / rescheduled.

    Pipeline effects mirror the outcome processor:
    - completed → active (terminal)
    - no_show → no_show counter with the same auto-kill threshold
    - canceled / rescheduled → queued, SDR follows up next business day
    Returns the meeting and the resulting pipeline status.
    """
    query = db.query(Meeting).filter(Meeting.id == meeting_id)
    if org_id:
        query = query.filter(Meeting.organization_id == org_id)
    meeting = query.first()
    if not meeting:
        raise NotFoundError("Meeting not found")
    if meeting.status != MeetingStatus.SCHEDULED.value:
        raise AlreadyCompletedError(f"Meeting already {meeting.status}")

    pipeline = db.get(Pipeline, meeting.pipeline_id)
    if pipeline and pipeline_service.is_terminal(pipeline.activation_status):
        raise TerminalStateError(f"Pipeline is {pipeline.activation_status}")

    now = now or datetime.now(timezone.utc)
    result = db.execute(
        update(Meeting)
        .where(Meeting.id == meeting.id, Meeting.status == MeetingStatus.SCHEDULED.value)
        .values(
            status=status,
            outcome_notes=notes,
            completed_at=now,
            completed_by_user_id=actor_id,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise AlreadyCompletedError("Meeting already completed")

    pipeline_status = pipeline.activation_status if pipeline else None
    if pipeline:
        values: dict[str, Any] = {"updated_at": now}
        if status == MeetingStatus.COMPLETED.value:
            values.update({
                "activation_status": ActivationStatus.ACTIVE.value,
                **pipeline_service.cleared_followup(),
            })
        elif status == MeetingStatus.NO_SHOW.value:
            count = _increment(db, pipeline.id, "no_show_count")
            values["no_show_at"] = now
            if count >= settings.NO_SHOW_KILL_THRESHOLD:
                values.update(_killed_values(KillReason.REPEATED_NO_SHOW.value, now))
            else:
                values.update({
                    "activation_status": ActivationStatus.NO_SHOW.value,
                    "followup_owner_role": FollowupOwnerRole.SDR.value,
                    "next_followup_at": add_business_days(now, 1),
                    "next_action": "Reschedule install",
                })
        else:
            values.update({
                "activation_status": ActivationStatus.QUEUED.value,
                "followup_owner_role": FollowupOwnerRole.SDR.value,
                "next_followup_at": add_business_days(now, 1),
                "next_action": "Reschedule install",
            })
        if not pipeline_service.guarded_update(db, pipeline.id, values):
            db.rollback()
            raise TerminalStateError("Pipeline reached a terminal state")
        pipeline_status = values.get("activation_status", pipeline_status)
        pipeline_service.record_activation_event(
            db,
            pipeline_id=pipeline.id,
            meeting_id=meeting.id,
            event_type=ActivationEventType.STATUS_CHANGED.value,
            actor_user_id=actor_id,
            metadata={"status": status, "notes": notes, "pipeline_status": pipeline_status},
        )

    db.commit()
    db.refresh(meeting)
    logger.info(
        "Meeting status set to %s",
        status,
        extra=build_log_context(meeting_id=meeting.id, actor_id=actor_id),
    )
    return meeting, pipeline_status
