"""Tests for the activation pipeline state machine and the stale sweep."""

from datetime import datetime, timedelta, timezone

import pytest

from app.db.models import ActivationEvent, Pipeline
from app.db.session import SessionLocal
from app.services import pipeline_service

NOW = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def pipeline(db, test_org, test_lead, sdr_user) -> Pipeline:
    created, _ = pipeline_service.get_or_create_pipeline(
        db,
        organization_id=test_org.id,
        lead_id=test_lead.id,
        owner_sdr_id=sdr_user.id,
    )
    db.commit()
    return created


def _reload(db, pipeline_id) -> Pipeline:
    db.expire_all()
    return db.get(Pipeline, pipeline_id)


# =============================================================================
# Transition table
# =============================================================================

@pytest.mark.parametrize(
    "current,target,allowed",
    [
        ("queued", "blocked", True),
        ("queued", "active", True),
        ("blocked", "queued", True),
        ("no_show", "queued", True),
        ("no_show", "killed", True),
        ("active", "queued", False),
        ("active", "killed", False),
        ("killed", "queued", False),
        ("killed", "active", False),
        ("unknown", "queued", False),
    ],
)
def test_can_transition(current, target, allowed):
    assert pipeline_service.can_transition(current, target) is allowed


def test_is_terminal():
    assert pipeline_service.is_terminal("active")
    assert pipeline_service.is_terminal("killed")
    assert not pipeline_service.is_terminal("blocked")
    assert not pipeline_service.is_terminal(None)


def test_cleared_followup_nulls_every_field():
    cleared = pipeline_service.cleared_followup()

    assert set(cleared) == set(pipeline_service.FOLLOWUP_FIELDS)
    assert all(value is None for value in cleared.values())


def test_filter_drops_guarded_fields_on_terminal(pipeline):
    pipeline.activation_status = "killed"

    allowed = pipeline_service.filter_guarded_updates(
        pipeline,
        {
            "activation_status": "queued",
            "next_action": "Call again",
            "activation_kill_reason": None,
            "credits_remaining": 12,
        },
    )

    assert allowed == {"credits_remaining": 12}


def test_apply_updates_passes_allowed_transition(db, pipeline):
    applied = pipeline_service.apply_updates(db, pipeline, {"activation_status": "blocked", "next_step": "Ping"})

    assert applied == {"activation_status": "blocked", "next_step": "Ping"}
    assert pipeline.activation_status == "blocked"


# =============================================================================
# Creation
# =============================================================================

def test_get_or_create_is_idempotent(db, test_org, test_lead, sdr_user, activator_user, pipeline):
    again, created = pipeline_service.get_or_create_pipeline(
        db,
        organization_id=test_org.id,
        lead_id=test_lead.id,
        owner_sdr_id=activator_user.id,
        external_user_id="user-42",
    )

    assert created is False
    assert again.id == pipeline.id
    # Attribution is never overwritten; the external id fills in once
    assert again.owner_sdr_id == sdr_user.id
    assert again.external_user_id == "user-42"


def test_new_pipeline_starts_queued(pipeline):
    assert pipeline.activation_status == "queued"
    assert pipeline.no_show_count == 0
    assert pipeline.reschedule_count == 0


# =============================================================================
# Race-safe writes
# =============================================================================

def test_guarded_update_skips_terminal_rows(db, pipeline):
    assert pipeline_service.guarded_update(db, pipeline.id, {"activation_status": "active"})
    db.commit()

    applied = pipeline_service.guarded_update(
        db, pipeline.id, {"activation_status": "queued", "next_action": "Call"}
    )
    db.commit()

    assert applied is False
    reloaded = _reload(db, pipeline.id)
    assert reloaded.activation_status == "active"
    assert reloaded.next_action is None


def test_apply_updates_respects_kill_from_another_session(db, pipeline):
    # Loaded as queued here; killed and committed by a second session
    assert pipeline.activation_status == "queued"
    other = SessionLocal()
    try:
        assert pipeline_service.kill_pipeline(other, pipeline.id, "repeated_no_show", now=NOW)
        other.commit()
    finally:
        other.close()

    applied = pipeline_service.apply_updates(
        db,
        pipeline,
        {"activation_status": "active", "next_action": None, "credits_remaining": 7},
    )
    db.commit()

    assert applied == {"credits_remaining": 7}
    reloaded = _reload(db, pipeline.id)
    assert reloaded.activation_status == "killed"
    assert reloaded.activation_kill_reason == "repeated_no_show"
    assert reloaded.credits_remaining == 7


def test_increment_counter_returns_new_value(db, pipeline):
    assert pipeline_service.increment_counter(db, pipeline.id, "no_show_count") == 1
    assert pipeline_service.increment_counter(db, pipeline.id, "no_show_count") == 2
    db.commit()

    assert _reload(db, pipeline.id).no_show_count == 2


def test_increment_counter_refuses_terminal(db, pipeline):
    pipeline.activation_status = "killed"
    db.commit()

    assert pipeline_service.increment_counter(db, pipeline.id, "reschedule_count") is None


def test_kill_pipeline_records_event(db, pipeline):
    assert pipeline_service.kill_pipeline(db, pipeline.id, "stalled_install", now=NOW)
    db.commit()

    reloaded = _reload(db, pipeline.id)
    assert reloaded.activation_status == "killed"
    assert reloaded.activation_kill_reason == "stalled_install"
    assert reloaded.marked_lost_at == NOW
    event = db.query(ActivationEvent).filter(ActivationEvent.pipeline_id == pipeline.id).one()
    assert event.event_type == "auto_killed"
    assert event.metadata_json["kill_reason"] == "stalled_install"

    assert pipeline_service.kill_pipeline(db, pipeline.id, "repeated_no_show", now=NOW) is False


# =============================================================================
# Stale sweep
# =============================================================================

def test_list_stale_blocked(db, pipeline):
    pipeline.activation_status = "blocked"
    pipeline.blocked_at = NOW - timedelta(days=20)
    db.commit()

    assert pipeline_service.list_stale_blocked(db, NOW - timedelta(days=14)) == [pipeline.id]
    assert pipeline_service.list_stale_blocked(db, NOW - timedelta(days=30)) == []


def test_sweep_kills_stale_blocked(db, pipeline):
    pipeline.activation_status = "blocked"
    pipeline.blocked_at = NOW - timedelta(days=15)
    db.commit()

    result = pipeline_service.kill_stale_pipelines(db, now=NOW)

    assert result.stale_blocked_killed == 1
    reloaded = _reload(db, pipeline.id)
    assert reloaded.activation_status == "killed"
    assert reloaded.activation_kill_reason == "stalled_install"


def test_sweep_leaves_recently_blocked(db, pipeline):
    pipeline.activation_status = "blocked"
    pipeline.blocked_at = NOW - timedelta(days=3)
    db.commit()

    result = pipeline_service.kill_stale_pipelines(db, now=NOW)

    assert result == pipeline_service.StaleSweepResult(0, 0, 0)
    assert _reload(db, pipeline.id).activation_status == "blocked"


def test_sweep_applies_counter_thresholds(db, pipeline):
    pipeline.no_show_count = 2
    db.commit()

    result = pipeline_service.kill_stale_pipelines(db, now=NOW)

    assert result.no_show_killed == 1
    assert _reload(db, pipeline.id).activation_kill_reason == "repeated_no_show"


def test_sweep_ignores_terminal(db, pipeline):
    pipeline.activation_status = "active"
    pipeline.reschedule_count = 5
    db.commit()

    result = pipeline_service.kill_stale_pipelines(db, now=NOW)

    assert result.reschedule_killed == 0
    assert _reload(db, pipeline.id).activation_status == "active"
