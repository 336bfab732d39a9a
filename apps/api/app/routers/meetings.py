"""Activation meetings router - booking, outcomes and status changes."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db
from app.core.exceptions import NotFoundError, ValidationError
from app.schemas.auth import UserSession
from app.schemas.meetings import (
    MeetingCreate,
    MeetingRead,
    MeetingStatusResponse,
    MeetingStatusUpdate,
    OutcomeResponse,
)
from app.services import meeting_service, outcome_service

router = APIRouter()


def _parse_optional_date(value: str | None, field: str) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: expected YYYY-MM-DD", reason="invalid_date")


@router.post("", response_model=MeetingRead, status_code=201)
def book_meeting(
    data: MeetingCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Book an activation meeting for a lead (SDR)."""
    return meeting_service.create_meeting(
        db,
        org_id=session.org_id,
        sdr_user_id=session.user_id,
        data=data.model_dump(),
    )


@router.get("", response_model=list[MeetingRead])
def list_meetings(
    status: str | None = Query(None),
    start_date: str | None = Query(None, alias="startDate"),
    end_date: str | None = Query(None, alias="endDate"),
    activator_id: UUID | None = Query(None, alias="activatorId"),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """List meetings; activators see their own unless another activator is requested."""
    if activator_id is None and session.is_activator:
        activator_id = session.user_id
    return meeting_service.list_meetings(
        db,
        session.org_id,
        activator_id=activator_id,
        status=status,
        date_start=_parse_optional_date(start_date, "startDate"),
        date_end=_parse_optional_date(end_date, "endDate"),
    )


@router.get("/{meeting_id}", response_model=MeetingRead)
def get_meeting(
    meeting_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    meeting = meeting_service.get_meeting(db, meeting_id, session.org_id)
    if not meeting:
        raise NotFoundError("Meeting not found")
    return meeting


@router.post("/{meeting_id}/complete", response_model=OutcomeResponse)
def complete_meeting(
    meeting_id: UUID,
    payload: dict = Body(...),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """
    Close a scheduled meeting with a structured outcome.

    The body is `{outcome, ...outcome-specific fields}`; see
    `app.schemas.meetings` for the required fields of each outcome.
    Auto-kills are successful responses carrying `kill_reason`.
    """
    result = outcome_service.complete_meeting(
        db,
        meeting_id,
        payload,
        session.user_id,
        org_id=session.org_id,
    )
    return OutcomeResponse(**result._asdict())


@router.patch("/{meeting_id}/status", response_model=MeetingStatusResponse)
def update_meeting_status(
    meeting_id: UUID,
    data: MeetingStatusUpdate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Convenience status change without a structured outcome."""
    meeting, pipeline_status = outcome_service.update_meeting_status(
        db,
        meeting_id,
        data.status,
        session.user_id,
        notes=data.notes,
        org_id=session.org_id,
    )
    return MeetingStatusResponse(
        meeting_id=meeting.id,
        meeting_status=meeting.status,
        pipeline_status=pipeline_status,
    )
