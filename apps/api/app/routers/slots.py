"""Slot query router - bookable activation meeting windows."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db
from app.core.exceptions import MissingFieldError, ValidationError
from app.schemas.auth import UserSession
from app.schemas.slots import SlotListResponse, SlotRead
from app.services import slot_service
from app.utils.timezones import is_valid_timezone

router = APIRouter()


def _parse_date(value: str | None, field: str) -> date:
    if not value:
        raise MissingFieldError(field)
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: expected YYYY-MM-DD", reason="invalid_date")


@router.get("/slots", response_model=SlotListResponse)
def list_slots(
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    tz: str | None = Query(None, alias="timezone"),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """
    Bookable slots across all activators in the caller's organization.

    `viewerDate` on each slot is the calendar date in `timezone`, so the UI
    can group by the viewer's day rather than the activator's.
    """
    date_start = _parse_date(start_date, "startDate")
    date_end = _parse_date(end_date, "endDate")
    if tz and not is_valid_timezone(tz):
        raise ValidationError(f"Unknown timezone: {tz}", reason="invalid_timezone")

    result = slot_service.generate_slots(db, session.org_id, date_start, date_end, tz)
    return SlotListResponse(
        slots=[SlotRead(**slot._asdict()) for slot in result.slots],
        activator_count=result.activator_count,
        message=result.message,
    )
