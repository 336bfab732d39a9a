"""Campaign performance signals (install_scheduled, install_attended, ...).

Signals are fire-and-forget: a failed write is logged and swallowed so the
caller's committed transition is never affected.
"""

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.structured_logging import build_log_context
from app.db.models import Lead, PerformanceEvent

logger = logging.getLogger(__name__)


def resolve_campaign_id(db: Session, lead_id: UUID | None) -> UUID | None:
    """Campaign the lead is assigned to, if any."""
    if not lead_id:
        return None
    row = db.query(Lead.assigned_campaign_id).filter(Lead.id == lead_id).first()
    return row[0] if row else None


def record_performance_event(
    db: Session,
    *,
    campaign_id: UUID,
    event_type: str,
    lead_id: UUID | None = None,
    user_id: UUID | None = None,
    metadata: dict | None = None,
) -> bool:
    """
    Persist one performance signal in its own commit.

    Returns False (after rolling back) when the write fails.
    """
    try:
        db.add(
            PerformanceEvent(
                campaign_id=campaign_id,
                event_type=event_type,
                lead_id=lead_id,
                user_id=user_id,
                metadata_json=metadata or {},
            )
        )
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to record performance event %s",
            event_type,
            extra=build_log_context(actor_id=user_id),
        )
        return False


def emit_for_lead(
    db: Session,
    *,
    lead_id: UUID | None,
    event_types: list[str],
    user_id: UUID | None = None,
    metadata: dict | None = None,
) -> int:
    """Emit signals when the lead's campaign is resolvable; returns how many were recorded."""
    try:
        campaign_id = resolve_campaign_id(db, lead_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to resolve campaign for performance signals")
        return 0
    if not campaign_id:
        return 0
    recorded = 0
    for event_type in event_types:
        if record_performance_event(
            db,
            campaign_id=campaign_id,
            event_type=event_type,
            lead_id=lead_id,
            user_id=user_id,
            metadata=metadata,
        ):
            recorded += 1
    return recorded
