"""Meeting service - booking and reading activation meetings.

Booking re-validates the slot against the activator's scheduled meetings at
write time; the slot list a caller booked from may be stale.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError, SlotUnavailableError, TerminalStateError, ValidationError
from app.core.structured_logging import build_log_context
from app.db.enums import ActivationEventType, ActivationStatus, MeetingStatus, PerformanceEventType
from app.db.models import AvailabilityShift, Lead, Meeting, User
from app.services import availability_service, notification_service, performance_service, pipeline_service
from app.services.slot_service import BusyBlock, has_conflict
from app.utils.timezones import ensure_utc, is_valid_timezone, utc_to_local

logger = logging.getLogger(__name__)


def get_meeting(db: Session, meeting_id: UUID, org_id: UUID | None = None) -> Meeting | None:
    """Get meeting by id, optionally scoped to an organization."""
    query = db.query(Meeting).filter(Meeting.id == meeting_id)
    if org_id:
        query = query.filter(Meeting.organization_id == org_id)
    return query.first()


def list_meetings(
    db: Session,
    org_id: UUID,
    *,
    activator_id: UUID | None = None,
    status: str | None = None,
    date_start: date | None = None,
    date_end: date | None = None,
) -> list[Meeting]:
    """List meetings for an organization ordered by start time."""
    query = db.query(Meeting).filter(Meeting.organization_id == org_id)
    if activator_id:
        query = query.filter(Meeting.activator_user_id == activator_id)
    if status:
        query = query.filter(Meeting.status == status)
    if date_start:
        query = query.filter(
            Meeting.scheduled_start_at >= datetime.combine(date_start, time.min, tzinfo=timezone.utc)
        )
    if date_end:
        query = query.filter(
            Meeting.scheduled_start_at < datetime.combine(date_end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        )
    return query.order_by(Meeting.scheduled_start_at).all()


def meeting_settings(db: Session, activator_id: UUID, start: datetime) -> tuple[int, int, int, str | None]:
    """(duration, buffer_before, buffer_after, meeting_link) from the shift covering `start`."""
    any_shift = db.query(AvailabilityShift).filter(AvailabilityShift.user_id == activator_id).first()
    if any_shift:
        local = utc_to_local(start, any_shift.timezone)
        shift = availability_service.find_shift_for(
            db, activator_id, local.weekday(), local.time()
        )
        if shift:
            return (
                shift.meeting_duration_minutes,
                shift.buffer_before_minutes,
                shift.buffer_after_minutes,
                shift.meeting_link,
            )
        return settings.DEFAULT_MEETING_MINUTES, 0, 0, any_shift.meeting_link
    return settings.DEFAULT_MEETING_MINUTES, 0, 0, None


def ensure_slot_available(
    db: Session,
    activator_id: UUID,
    start: datetime,
    end: datetime,
    *,
    buffer_before: int = 0,
    buffer_after: int = 0,
    exclude_meeting_id: UUID | None = None,
) -> None:
    """
    Raise SlotUnavailable when [start, end), widened by the buffers, overlaps
    one of the activator's scheduled meetings. Rolls back before raising.
    """
    window_start = start - timedelta(minutes=buffer_before)
    window_end = end + timedelta(minutes=buffer_after)
    query = db.query(Meeting).filter(
        Meeting.activator_user_id == activator_id,
        Meeting.status == MeetingStatus.SCHEDULED.value,
        Meeting.scheduled_start_at < window_end,
        Meeting.scheduled_end_at > window_start,
    )
    if exclude_meeting_id:
        query = query.filter(Meeting.id != exclude_meeting_id)
    busy = [BusyBlock(m.scheduled_start_at, m.scheduled_end_at) for m in query.all()]
    if has_conflict(window_start, window_end, busy):
        db.rollback()
        raise SlotUnavailableError("This time slot is no longer available")


def create_meeting(
    db: Session,
    *,
    org_id: UUID,
    sdr_user_id: UUID,
    data: dict,
) -> Meeting:
    """
    Book an activation meeting.

    - Resolves (or creates) the lead's pipeline; terminal pipelines reject.
    - Re-validates the slot (buffer-expanded) against scheduled meetings.
    - Pipeline → queued with the scheduling snapshot; audit event appended.
    - Performance signal and confirmation are sent after commit.
    """
    lead = db.query(Lead).filter(Lead.id == data["lead_id"], Lead.organization_id == org_id).first()
    if not lead:
        raise NotFoundError("Lead not found")

    activator = db.query(User).filter(
        User.id == data["activator_user_id"],
        User.organization_id == org_id,
        User.is_activator == True,
    ).first()
    if not activator:
        raise NotFoundError("Activator not found")

    if not is_valid_timezone(data["scheduled_timezone"]):
        raise ValidationError(f"Unknown timezone: {data['scheduled_timezone']}", reason="invalid_timezone")

    start = ensure_utc(data["scheduled_start_at"], data["scheduled_timezone"])
    duration, buffer_before, buffer_after, meeting_link = meeting_settings(db, activator.id, start)
    end = start + timedelta(minutes=duration)

    pipeline, _ = pipeline_service.get_or_create_pipeline(
        db,
        organization_id=org_id,
        lead_id=lead.id,
        owner_sdr_id=sdr_user_id,
    )
    if pipeline_service.is_terminal(pipeline.activation_status):
        db.rollback()
        raise TerminalStateError(f"Pipeline is {pipeline.activation_status}")

    # Race-safe: re-check against the store at write time
    ensure_slot_available(
        db, activator.id, start, end, buffer_before=buffer_before, buffer_after=buffer_after
    )

    meeting = Meeting(
        organization_id=org_id,
        pipeline_id=pipeline.id,
        lead_id=lead.id,
        attempt_number=1,
        scheduled_start_at=start,
        scheduled_end_at=end,
        scheduled_timezone=data["scheduled_timezone"],
        activator_user_id=activator.id,
        scheduled_by_sdr_user_id=sdr_user_id,
        attendee_name=data.get("attendee_name"),
        attendee_role=data.get("attendee_role"),
        attendee_email=data.get("attendee_email"),
        attendee_phone=data.get("attendee_phone"),
        website_url=data.get("website_url"),
        website_platform=data.get("website_platform"),
        goal=data.get("goal"),
        sdr_notes=data.get("sdr_notes"),
        meeting_link=meeting_link,
        status=MeetingStatus.SCHEDULED.value,
    )
    db.add(meeting)
    db.flush()

    local_start = utc_to_local(start, data["scheduled_timezone"])
    applied = pipeline_service.guarded_update(
        db,
        pipeline.id,
        {
            "activation_status": ActivationStatus.QUEUED.value,
            "assigned_activator_id": activator.id,
            "scheduled_start_at": start,
            "scheduled_end_at": end,
            "next_action": f"Onboarding scheduled for {local_start:%Y-%m-%d}",
            "updated_at": datetime.now(timezone.utc),
        },
    )
    if not applied:
        db.rollback()
        raise TerminalStateError("Pipeline reached a terminal state")

    pipeline_service.record_activation_event(
        db,
        pipeline_id=pipeline.id,
        meeting_id=meeting.id,
        event_type=ActivationEventType.SCHEDULED.value,
        actor_user_id=sdr_user_id,
        metadata={
            "scheduled_start_at": start.isoformat(),
            "scheduled_end_at": end.isoformat(),
            "scheduled_timezone": data["scheduled_timezone"],
            "activator_user_id": str(activator.id),
            "attendee_name": data.get("attendee_name"),
            "attendee_role": data.get("attendee_role"),
        },
    )
    db.commit()
    db.refresh(meeting)
    logger.info(
        "Activation meeting booked",
        extra=build_log_context(
            org_id=org_id, pipeline_id=pipeline.id, meeting_id=meeting.id, actor_id=sdr_user_id
        ),
    )

    # Side effects (isolated from the booking)
    performance_service.emit_for_lead(
        db,
        lead_id=lead.id,
        event_types=[PerformanceEventType.INSTALL_SCHEDULED.value],
        user_id=sdr_user_id,
    )
    recipient = data.get("attendee_email") or data.get("attendee_phone")
    if recipient:
        result = notification_service.notify(
            recipient,
            notification_service.meeting_confirmation_content(
                attendee_name=data.get("attendee_name"),
                start_local=f"{local_start:%A %B %d, %I:%M %p}",
                timezone_name=data["scheduled_timezone"],
                meeting_link=meeting_link,
            ),
            subject="Your activation call is booked",
        )
        if result == "failed":
            logger.warning(
                "Meeting confirmation not delivered",
                extra=build_log_context(meeting_id=meeting.id),
            )
    return meeting
