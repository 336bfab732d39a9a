"""Activator availability router - weekly shifts for the current activator."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_db, require_activator
from app.schemas.auth import UserSession
from app.schemas.availability import ShiftRead, ShiftsSet
from app.services import availability_service

router = APIRouter()


@router.get("", response_model=list[ShiftRead])
def get_my_availability(
    session: UserSession = Depends(require_activator),
    db: Session = Depends(get_db),
):
    """Current activator's shifts ordered by weekday then start."""
    return availability_service.get_shifts(db, session.user_id, session.org_id)


@router.put("", response_model=list[ShiftRead])
def set_my_availability(
    data: ShiftsSet,
    session: UserSession = Depends(require_activator),
    db: Session = Depends(get_db),
):
    """Replace all shifts. Shifts may not cross midnight."""
    return availability_service.set_shifts(
        db,
        session.user_id,
        session.org_id,
        [shift.model_dump() for shift in data.shifts],
    )
