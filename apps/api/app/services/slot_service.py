"""Slot service - bookable activation meeting windows across all activators.

For each calendar day in range, each activator and each active shift on that
weekday, the shift window is walked in steps of
(duration + buffer_before + buffer_after). A slot [start, start + duration)
is offered when it starts at or after now + min_notice_hours and its
buffer-expanded interval does not overlap a scheduled meeting. An activator
whose day already holds max_meetings_per_day scheduled meetings offers
nothing that day.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.db.enums import MeetingStatus
from app.db.models import AvailabilityShift, Meeting, User
from app.utils.timezones import get_timezone, local_date, local_to_utc

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================

class Slot(NamedTuple):
    """Bookable slot (UTC instants)."""
    start: datetime
    end: datetime
    activator_id: UUID
    activator_name: str
    meeting_link: str | None
    viewer_date: date


class SlotResult(NamedTuple):
    slots: list[Slot]
    activator_count: int
    message: str | None = None


class BusyBlock(NamedTuple):
    start: datetime
    end: datetime


# =============================================================================
# Generation
# =============================================================================

def generate_slots(
    db: Session,
    org_id: UUID,
    date_start: date,
    date_end: date,
    viewer_timezone: str | None,
    now: datetime | None = None,
) -> SlotResult:
    """
    Compute bookable slots for every activator accepting meetings.

    Read-only; booking re-validates conflicts at write time.
    """
    if date_end < date_start:
        raise ValidationError("endDate must not be before startDate", reason="invalid_date_range")

    now = now or datetime.now(timezone.utc)
    viewer_tz_name = get_timezone(viewer_timezone).key

    activators = db.query(User).filter(
        User.organization_id == org_id,
        User.is_activator == True,
        User.is_active == True,
    ).all()
    if not activators:
        return SlotResult([], 0, "No activators available")

    shifts = db.query(AvailabilityShift).filter(
        AvailabilityShift.organization_id == org_id,
        AvailabilityShift.user_id.in_([a.id for a in activators]),
        AvailabilityShift.is_accepting_meetings == True,
    ).order_by(AvailabilityShift.day_of_week, AvailabilityShift.start_time).all()

    shifts_by_activator: dict[UUID, list[AvailabilityShift]] = defaultdict(list)
    for shift in shifts:
        shifts_by_activator[shift.user_id].append(shift)

    accepting = [a for a in activators if shifts_by_activator.get(a.id)]
    if not accepting:
        return SlotResult([], 0, "No activators accepting meetings")

    # Most conservative booking window wins
    window_days = min(
        [s.booking_window_days or settings.MAX_BOOKING_WINDOW_DAYS for s in shifts]
        + [settings.MAX_BOOKING_WINDOW_DAYS]
    )
    effective_end = min(date_end, (now + timedelta(days=window_days)).date())

    busy = _get_busy_blocks(db, [a.id for a in accepting], date_start, effective_end)

    slots: list[Slot] = []
    current_date = date_start
    while current_date <= effective_end:
        for activator in accepting:
            slots.extend(
                _build_activator_day(
                    activator,
                    shifts_by_activator[activator.id],
                    current_date,
                    busy.get(activator.id, []),
                    viewer_tz_name,
                    now,
                )
            )
        current_date += timedelta(days=1)

    slots.sort(key=lambda s: (s.start, str(s.activator_id)))
    return SlotResult(slots, len(accepting))


def _build_activator_day(
    activator: User,
    activator_shifts: list[AvailabilityShift],
    day: date,
    busy: list[BusyBlock],
    viewer_tz_name: str,
    now: datetime,
) -> list[Slot]:
    """Slots for one activator on one calendar day."""
    day_shifts = [
        s for s in activator_shifts
        if s.day_of_week == day.weekday() and s.is_active
    ]
    if not day_shifts:
        return []

    activator_tz = day_shifts[0].timezone
    max_per_day = min(s.max_meetings_per_day for s in day_shifts)
    booked_today = sum(1 for block in busy if local_date(block.start, activator_tz) == day)
    if booked_today >= max_per_day:
        return []

    meeting_link = next((s.meeting_link for s in activator_shifts if s.meeting_link), None)

    slots = []
    for shift in day_shifts:
        for start, end in _walk_shift(shift, day, busy, now):
            slots.append(
                Slot(
                    start=start,
                    end=end,
                    activator_id=activator.id,
                    activator_name=activator.display_name,
                    meeting_link=meeting_link,
                    viewer_date=local_date(start, viewer_tz_name),
                )
            )
    return slots


def _walk_shift(
    shift: AvailabilityShift,
    day: date,
    busy: list[BusyBlock],
    now: datetime,
) -> list[tuple[datetime, datetime]]:
    """Free [start, end) windows inside one shift on `day`."""
    # Midnight-crossing or empty windows are misconfigured; skip them
    if shift.end_time <= shift.start_time:
        return []

    shift_start = local_to_utc(day, shift.start_time, shift.timezone)
    shift_end = local_to_utc(day, shift.end_time, shift.timezone)
    if shift_end <= shift_start:
        return []

    duration = timedelta(minutes=shift.meeting_duration_minutes)
    buffer_before = timedelta(minutes=shift.buffer_before_minutes)
    buffer_after = timedelta(minutes=shift.buffer_after_minutes)
    step = duration + buffer_before + buffer_after
    notice_cutoff = now + timedelta(hours=shift.min_notice_hours)

    windows = []
    slot_start = shift_start
    while slot_start + duration <= shift_end:
        slot_end = slot_start + duration
        if slot_start >= notice_cutoff and not has_conflict(
            slot_start - buffer_before, slot_end + buffer_after, busy
        ):
            windows.append((slot_start, slot_end))
        slot_start += step
    return windows


def has_conflict(block_start: datetime, block_end: datetime, busy: list[BusyBlock]) -> bool:
    """Half-open interval overlap against scheduled meetings."""
    return any(block_start < b.end and block_end > b.start for b in busy)


def _get_busy_blocks(
    db: Session,
    activator_ids: list[UUID],
    date_start: date,
    date_end: date,
) -> dict[UUID, list[BusyBlock]]:
    """Scheduled meetings that could touch the range (padded one day for offsets)."""
    range_start = datetime.combine(date_start - timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
    range_end = datetime.combine(date_end + timedelta(days=2), datetime.min.time(), tzinfo=timezone.utc)

    meetings = db.query(Meeting).filter(
        Meeting.activator_user_id.in_(activator_ids),
        Meeting.status == MeetingStatus.SCHEDULED.value,
        Meeting.scheduled_start_at < range_end,
        Meeting.scheduled_end_at > range_start,
    ).all()

    busy: dict[UUID, list[BusyBlock]] = defaultdict(list)
    for meeting in meetings:
        busy[meeting.activator_user_id].append(
            BusyBlock(meeting.scheduled_start_at, meeting.scheduled_end_at)
        )
    return busy
