"""Activation pipelines router - read access to pipeline state."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_session, get_db
from app.core.exceptions import NotFoundError
from app.schemas.auth import UserSession
from app.schemas.pipeline import PipelineRead
from app.services import pipeline_service

router = APIRouter()


@router.get("/{pipeline_id}", response_model=PipelineRead)
def get_pipeline(
    pipeline_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Pipeline with its reschedule chain and activation events."""
    pipeline = pipeline_service.get_pipeline(db, pipeline_id, session.org_id)
    if not pipeline:
        raise NotFoundError("Pipeline not found")
    return pipeline
