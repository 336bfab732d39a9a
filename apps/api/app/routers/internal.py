"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external scheduler (cron, GH Actions).
"""

from fastapi import APIRouter, Header, Query

from app.core.config import settings
from app.core.exceptions import ForbiddenError, NotConfiguredError
from app.core.security import verify_secret
from app.db.session import SessionLocal
from app.schemas.lifecycle import ReconcileResponse, StaleSweepResponse
from app.services import lifecycle_service, pipeline_service


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str | None) -> None:
    """Verify the internal secret header."""
    if not settings.INTERNAL_SECRET:
        raise NotConfiguredError("INTERNAL_SECRET not configured", reason="internal_secret_not_configured")
    if not verify_secret(x_internal_secret, settings.INTERNAL_SECRET):
        raise ForbiddenError("Invalid internal secret", reason="invalid_internal_secret")


@router.post("/reconcile-client-events", response_model=ReconcileResponse)
def reconcile_client_events(
    limit: int | None = Query(None, ge=1, le=1000),
    x_internal_secret: str | None = Header(None),
):
    """
    Process pending lifecycle events in receipt order.

    Already-processed events are never re-applied; events for users without
    a link are skipped and remain pending.
    """
    verify_internal_secret(x_internal_secret)

    with SessionLocal() as db:
        result = lifecycle_service.reconcile_unprocessed(db, limit=limit)
    return ReconcileResponse(**result._asdict())


@router.post("/auto-kill-stale", response_model=StaleSweepResponse)
def auto_kill_stale(x_internal_secret: str | None = Header(None)):
    """
    Kill pipelines that stalled.

    - blocked for longer than STALE_BLOCKED_DAYS → stalled_install
    - counters already at the auto-kill thresholds → repeated_no_show /
      excessive_reschedules
    """
    verify_internal_secret(x_internal_secret)

    with SessionLocal() as db:
        result = pipeline_service.kill_stale_pipelines(db)
    return StaleSweepResponse(**result._asdict())
