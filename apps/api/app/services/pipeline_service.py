"""Pipeline service - activation state machine for trial pipelines.

States: queued → {blocked, no_show, active, killed}
blocked/no_show can return to queued; active and killed are terminal.

Terminal guard: once a pipeline is active or killed, activation_status,
activation_kill_reason and follow-up fields are frozen. Guarded fields are
only ever written by a conditional UPDATE on
`activation_status NOT IN (active, killed)`, so the check runs against the
row, not a possibly stale ORM object.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, NamedTuple
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.structured_logging import build_log_context
from app.db.enums import (
    ActivationEventType,
    ActivationStatus,
    KillReason,
    TERMINAL_ACTIVATION_STATUSES,
)
from app.db.models import ActivationEvent, Pipeline

logger = logging.getLogger(__name__)


TERMINAL_STATUSES = tuple(sorted(s.value for s in TERMINAL_ACTIVATION_STATUSES))

FOLLOWUP_FIELDS = (
    "followup_owner_role",
    "next_followup_at",
    "next_action",
    "followup_reason",
    "block_reason",
    "block_owner",
    "next_step",
)

# Fields frozen once the pipeline is terminal
GUARDED_FIELDS = frozenset({"activation_status", "activation_kill_reason", "blocked_at", *FOLLOWUP_FIELDS})

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    ActivationStatus.QUEUED.value: frozenset({
        ActivationStatus.QUEUED.value,
        ActivationStatus.BLOCKED.value,
        ActivationStatus.NO_SHOW.value,
        ActivationStatus.ACTIVE.value,
        ActivationStatus.KILLED.value,
    }),
    ActivationStatus.BLOCKED.value: frozenset({
        ActivationStatus.QUEUED.value,
        ActivationStatus.BLOCKED.value,
        ActivationStatus.NO_SHOW.value,
        ActivationStatus.ACTIVE.value,
        ActivationStatus.KILLED.value,
    }),
    ActivationStatus.NO_SHOW.value: frozenset({
        ActivationStatus.QUEUED.value,
        ActivationStatus.BLOCKED.value,
        ActivationStatus.NO_SHOW.value,
        ActivationStatus.ACTIVE.value,
        ActivationStatus.KILLED.value,
    }),
    ActivationStatus.ACTIVE.value: frozenset(),
    ActivationStatus.KILLED.value: frozenset(),
}


class StaleSweepResult(NamedTuple):
    """Counts of pipelines killed by the scheduled sweep."""
    stale_blocked_killed: int
    no_show_killed: int
    reschedule_killed: int


# =============================================================================
# State helpers
# =============================================================================

def is_terminal(status: str | None) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    """Check the transition table (unknown current states allow nothing)."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def cleared_followup() -> dict[str, None]:
    """Update dict that clears every follow-up field."""
    return {field: None for field in FOLLOWUP_FIELDS}


def filter_guarded_updates(pipeline: Pipeline, updates: dict[str, Any]) -> dict[str, Any]:
    """
    Drop writes the state machine does not permit.

    - Terminal pipeline: guarded fields are removed.
    - activation_status: removed when the transition table forbids it.
    """
    allowed = dict(updates)
    if is_terminal(pipeline.activation_status):
        for field in GUARDED_FIELDS:
            allowed.pop(field, None)
        return allowed

    target = allowed.get("activation_status")
    if target is not None and not can_transition(pipeline.activation_status, target):
        logger.warning(
            "Rejected pipeline transition %s -> %s",
            pipeline.activation_status,
            target,
            extra=build_log_context(pipeline_id=pipeline.id),
        )
        allowed.pop("activation_status")
    return allowed


def apply_updates(db: Session, pipeline: Pipeline, updates: dict[str, Any]) -> dict[str, Any]:
    """
    Apply permitted updates; returns what was applied.

    Unguarded fields are set on the ORM object. Guarded fields go through
    `guarded_update`, so a pipeline that turned terminal after it was loaded
    keeps its status and follow-up fields.
    """
    allowed = filter_guarded_updates(pipeline, updates)
    guarded = {field: value for field, value in allowed.items() if field in GUARDED_FIELDS}
    plain = {field: value for field, value in allowed.items() if field not in GUARDED_FIELDS}
    for field, value in plain.items():
        setattr(pipeline, field, value)
    if not guarded:
        return plain

    db.flush()
    written = guarded_update(db, pipeline.id, guarded)
    db.refresh(pipeline)
    if not written:
        logger.info(
            "Pipeline is terminal; skipped %s",
            ", ".join(sorted(guarded)),
            extra=build_log_context(pipeline_id=pipeline.id),
        )
        return plain
    return allowed


# =============================================================================
# Queries
# =============================================================================

def get_pipeline(db: Session, pipeline_id: UUID, org_id: UUID | None = None) -> Pipeline | None:
    """Get pipeline by id, optionally scoped to an organization."""
    query = db.query(Pipeline).filter(Pipeline.id == pipeline_id)
    if org_id:
        query = query.filter(Pipeline.organization_id == org_id)
    return query.first()


def get_pipeline_for_lead(db: Session, lead_id: UUID) -> Pipeline | None:
    return db.query(Pipeline).filter(Pipeline.crm_lead_id == lead_id).first()


def get_or_create_pipeline(
    db: Session,
    *,
    organization_id: UUID,
    lead_id: UUID,
    owner_sdr_id: UUID | None = None,
    external_user_id: str | None = None,
) -> tuple[Pipeline, bool]:
    """
    Return the lead's pipeline, creating it when missing.

    owner_sdr_id is attribution only and is written on creation, never
    overwritten. Does not commit.
    """
    pipeline = get_pipeline_for_lead(db, lead_id)
    if pipeline:
        if external_user_id and not pipeline.external_user_id:
            pipeline.external_user_id = external_user_id
        return pipeline, False

    pipeline = Pipeline(
        organization_id=organization_id,
        crm_lead_id=lead_id,
        owner_sdr_id=owner_sdr_id,
        external_user_id=external_user_id,
        activation_status=ActivationStatus.QUEUED.value,
        no_show_count=0,
        reschedule_count=0,
    )
    db.add(pipeline)
    db.flush()
    logger.info(
        "Created activation pipeline",
        extra=build_log_context(org_id=organization_id, pipeline_id=pipeline.id),
    )
    return pipeline, True


def list_stale_blocked(
    db: Session,
    older_than: datetime,
    org_id: UUID | None = None,
) -> list[UUID]:
    """
    Pipelines that entered `blocked` before `older_than` and are still blocked.

    Consumed by the scheduled sweep; the cutoff is a policy parameter.
    """
    query = db.query(Pipeline.id).filter(
        Pipeline.activation_status == ActivationStatus.BLOCKED.value,
        Pipeline.blocked_at.isnot(None),
        Pipeline.blocked_at < older_than,
    )
    if org_id:
        query = query.filter(Pipeline.organization_id == org_id)
    return [row[0] for row in query.order_by(Pipeline.blocked_at).all()]


# =============================================================================
# Writes
# =============================================================================

def record_activation_event(
    db: Session,
    *,
    pipeline_id: UUID,
    event_type: str,
    actor_user_id: UUID | None = None,
    meeting_id: UUID | None = None,
    metadata: dict | None = None,
) -> ActivationEvent:
    """Append an audit event (does not commit)."""
    event = ActivationEvent(
        pipeline_id=pipeline_id,
        meeting_id=meeting_id,
        event_type=event_type,
        actor_user_id=actor_user_id,
        metadata_json=metadata or {},
    )
    db.add(event)
    return event


def guarded_update(db: Session, pipeline_id: UUID, values: dict[str, Any]) -> bool:
    """
    Conditional UPDATE that only applies while the pipeline is non-terminal.

    Returns False when the row is already terminal (or missing), in which
    case nothing was written.
    """
    result = db.execute(
        update(Pipeline)
        .where(
            Pipeline.id == pipeline_id,
            Pipeline.activation_status.notin_(TERMINAL_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def increment_counter(db: Session, pipeline_id: UUID, column: str) -> int | None:
    """
    Atomically increment no_show_count or reschedule_count.

    The increment happens in the database (count = count + 1) and the new
    value is read back from the same statement, so the auto-kill decision is
    made against the value this transaction wrote. Returns None when the
    pipeline is terminal.
    """
    counter = getattr(Pipeline, column)
    result = db.execute(
        update(Pipeline)
        .where(
            Pipeline.id == pipeline_id,
            Pipeline.activation_status.notin_(TERMINAL_STATUSES),
        )
        .values({column: counter + 1})
        .returning(counter)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


def kill_pipeline(
    db: Session,
    pipeline_id: UUID,
    reason: str,
    *,
    now: datetime,
    actor_user_id: UUID | None = None,
    event_type: str = ActivationEventType.AUTO_KILLED.value,
    metadata: dict | None = None,
) -> bool:
    """Force a non-terminal pipeline to killed. Does not commit."""
    values = {
        "activation_status": ActivationStatus.KILLED.value,
        "activation_kill_reason": reason,
        "marked_lost_at": now,
        "updated_at": now,
        **cleared_followup(),
    }
    if not guarded_update(db, pipeline_id, values):
        return False
    record_activation_event(
        db,
        pipeline_id=pipeline_id,
        event_type=event_type,
        actor_user_id=actor_user_id,
        metadata={"kill_reason": reason, **(metadata or {})},
    )
    logger.info(
        "Pipeline killed: %s",
        reason,
        extra=build_log_context(pipeline_id=pipeline_id, actor_id=actor_user_id),
    )
    return True


def kill_stale_pipelines(db: Session, now: datetime | None = None) -> StaleSweepResult:
    """
    Scheduled sweep.

    - blocked longer than STALE_BLOCKED_DAYS → killed (stalled_install)
    - safety net: counters already at the auto-kill thresholds → killed
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=settings.STALE_BLOCKED_DAYS)

    stale_killed = 0
    for pipeline_id in list_stale_blocked(db, cutoff):
        if kill_pipeline(
            db,
            pipeline_id,
            KillReason.STALLED_INSTALL.value,
            now=now,
            metadata={"cutoff": cutoff.isoformat()},
        ):
            stale_killed += 1

    no_show_killed = 0
    no_show_ids = [
        row[0]
        for row in db.query(Pipeline.id).filter(
            Pipeline.activation_status.notin_(TERMINAL_STATUSES),
            Pipeline.no_show_count >= settings.NO_SHOW_KILL_THRESHOLD,
        ).all()
    ]
    for pipeline_id in no_show_ids:
        if kill_pipeline(db, pipeline_id, KillReason.REPEATED_NO_SHOW.value, now=now):
            no_show_killed += 1

    reschedule_killed = 0
    reschedule_ids = [
        row[0]
        for row in db.query(Pipeline.id).filter(
            Pipeline.activation_status.notin_(TERMINAL_STATUSES),
            Pipeline.reschedule_count >= settings.RESCHEDULE_KILL_THRESHOLD,
        ).all()
    ]
    for pipeline_id in reschedule_ids:
        if kill_pipeline(db, pipeline_id, KillReason.EXCESSIVE_RESCHEDULES.value, now=now):
            reschedule_killed += 1

    db.commit()
    logger.info(
        "Stale sweep complete: blocked=%s no_show=%s reschedule=%s",
        stale_killed,
        no_show_killed,
        reschedule_killed,
    )
    return StaleSweepResult(stale_killed, no_show_killed, reschedule_killed)
