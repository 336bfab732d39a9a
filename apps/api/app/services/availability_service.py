"""Activator availability - weekly shift configuration."""

from datetime import time
from uuid import UUID

from sqlalchemy.orm import Session

from app.db.models import AvailabilityShift


def set_shifts(
    db: Session,
    user_id: UUID,
    org_id: UUID,
    shifts: list[dict],
) -> list[AvailabilityShift]:
    """
    Replace all shifts for an activator.

    shifts format: [{"day_of_week": 0, "start_time": "09:00", "end_time": "17:00",
                     "timezone": "America/New_York", ...}, ...]
    """
    db.query(AvailabilityShift).filter(
        AvailabilityShift.user_id == user_id,
        AvailabilityShift.organization_id == org_id,
    ).delete()

    new_shifts = []
    for shift_data in shifts:
        data = dict(shift_data)
        shift = AvailabilityShift(
            organization_id=org_id,
            user_id=user_id,
            day_of_week=data.pop("day_of_week"),
            start_time=time.fromisoformat(data.pop("start_time")),
            end_time=time.fromisoformat(data.pop("end_time")),
            **data,
        )
        db.add(shift)
        new_shifts.append(shift)

    db.commit()
    for shift in new_shifts:
        db.refresh(shift)
    return new_shifts


def get_shifts(
    db: Session,
    user_id: UUID,
    org_id: UUID,
) -> list[AvailabilityShift]:
    """Get all shifts for an activator."""
    return db.query(AvailabilityShift).filter(
        AvailabilityShift.user_id == user_id,
        AvailabilityShift.organization_id == org_id,
    ).order_by(AvailabilityShift.day_of_week, AvailabilityShift.start_time).all()


def find_shift_for(
    db: Session,
    user_id: UUID,
    day_of_week: int,
    local_time: time,
) -> AvailabilityShift | None:
    """Active shift covering a local wall-clock time, if any."""
    return db.query(AvailabilityShift).filter(
        AvailabilityShift.user_id == user_id,
        AvailabilityShift.day_of_week == day_of_week,
        AvailabilityShift.is_active == True,
        AvailabilityShift.start_time <= local_time,
        AvailabilityShift.end_time > local_time,
    ).first()
