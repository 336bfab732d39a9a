"""
Tests for the meeting outcome processor.

Coverage:
- Outcome validation (tagged payloads, missing fields)
- Pipeline transitions per outcome
- Auto-kill thresholds (no-show, reschedule)
- Terminal and double-completion guards
- Business-day follow-ups
- Status PATCH transitions
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import (
    AlreadyCompletedError,
    MissingFieldError,
    NotFoundError,
    SlotUnavailableError,
    TerminalStateError,
    ValidationError,
)
from app.db.models import ActivationEvent, Meeting, PerformanceEvent, Pipeline
from app.services import meeting_service, outcome_service, performance_service

# Monday 10:00 New York
MEETING_START = datetime(2026, 3, 9, 14, 0, tzinfo=timezone.utc)
# Friday afternoon, so next-business-day lands on Monday
FRIDAY_NOW = datetime(2026, 3, 13, 15, 0, tzinfo=timezone.utc)

INSTALLED = {
    "outcome": "installed_proven",
    "install_url": "https://acmetowing.com/quote",
    "proof_method": "test_lead_submitted",
    "lead_delivery_methods": ["email", "sms"],
}
BLOCKED = {
    "outcome": "blocked",
    "block_reason": "Waiting on web developer",
    "block_owner": "client",
    "next_step": "Send snippet to developer",
}
NO_SHOW = {"outcome": "no_show", "contact_attempted": ["call", "sms"]}


@pytest.fixture
def book(db, test_org, sdr_user, meeting_data):
    def _book(start: datetime = MEETING_START) -> Meeting:
        return meeting_service.create_meeting(
            db,
            org_id=test_org.id,
            sdr_user_id=sdr_user.id,
            data=meeting_data(start),
        )

    return _book


def _pipeline(db, lead) -> Pipeline:
    return db.query(Pipeline).filter(Pipeline.crm_lead_id == lead.id).one()


def _complete(db, meeting, payload, actor, now=FRIDAY_NOW):
    return outcome_service.complete_meeting(db, meeting.id, payload, actor.id, now=now)


def _reschedule(new_start: datetime) -> dict:
    return {
        "outcome": "rescheduled",
        "new_datetime": new_start.isoformat(),
        "reschedule_reason": "Owner on a tow call",
    }


# =============================================================================
# Validation
# =============================================================================

def test_installed_proven_without_proof_method_mutates_nothing(db, test_lead, activator_user, book):
    meeting = book()
    payload = {k: v for k, v in INSTALLED.items() if k != "proof_method"}

    with pytest.raises(MissingFieldError) as exc:
        _complete(db, meeting, payload, activator_user)

    assert exc.value.field == "proof_method"
    assert exc.value.status_code == 400
    db.expire_all()
    assert db.get(Meeting, meeting.id).status == "scheduled"
    assert db.get(Meeting, meeting.id).outcome is None
    pipeline = _pipeline(db, test_lead)
    assert pipeline.activation_status == "queued"
    assert pipeline.last_meeting_outcome is None
    events = db.query(ActivationEvent).filter(ActivationEvent.pipeline_id == pipeline.id).all()
    assert [e.event_type for e in events] == ["scheduled"]


def test_blank_and_empty_values_count_as_missing(db, activator_user, book):
    meeting = book()

    with pytest.raises(MissingFieldError) as exc:
        _complete(db, meeting, {**INSTALLED, "lead_delivery_methods": []}, activator_user)
    assert exc.value.field == "lead_delivery_methods"

    with pytest.raises(MissingFieldError) as exc:
        _complete(db, meeting, {**BLOCKED, "block_owner": "   "}, activator_user)
    assert exc.value.field == "block_owner"


def test_missing_outcome_tag():
    with pytest.raises(MissingFieldError) as exc:
        outcome_service.parse_outcome({"notes": "went fine"})

    assert exc.value.field == "outcome"


def test_unknown_outcome_rejected():
    with pytest.raises(ValidationError) as exc:
        outcome_service.parse_outcome({"outcome": "exploded"})

    assert exc.value.reason == "invalid_outcome"


def test_malformed_value_rejected():
    with pytest.raises(ValidationError) as exc:
        outcome_service.parse_outcome(
            {"outcome": "rescheduled", "new_datetime": "next tuesday-ish", "reschedule_reason": "x"}
        )

    assert exc.value.reason == "invalid_field"
    assert not isinstance(exc.value, MissingFieldError)


def test_parse_outcome_keeps_variant_fields():
    data = outcome_service.parse_outcome({**BLOCKED, "outcome": "partial", "notes": "half done"})

    assert data.outcome == "partial"
    assert data.block_owner == "client"
    assert data.notes == "half done"


# =============================================================================
# Transitions
# =============================================================================

def test_installed_proven_activates_pipeline(db, test_lead, activator_user, book):
    meeting = book()

    result = _complete(db, meeting, INSTALLED, activator_user)

    assert result.pipeline_status == "active"
    assert result.meeting_status == "completed"
    db.expire_all()
    stored = db.get(Meeting, meeting.id)
    assert stored.outcome == "installed_proven"
    assert stored.proof_method == "test_lead_submitted"
    assert stored.lead_delivery_methods == ["email", "sms"]
    assert stored.completed_by_user_id == activator_user.id
    pipeline = _pipeline(db, test_lead)
    assert pipeline.activation_status == "active"
    assert pipeline.calculator_installed_at == FRIDAY_NOW
    assert pipeline.install_url == "https://acmetowing.com/quote"
    assert pipeline.last_meeting_outcome == "installed_proven"
    assert pipeline.next_followup_at is None


def test_installed_proven_emits_performance_signals(db, test_lead, test_campaign, activator_user, book):
    meeting = book()
    _complete(db, meeting, INSTALLED, activator_user)

    signals = sorted(
        e.event_type
        for e in db.query(PerformanceEvent).filter(PerformanceEvent.campaign_id == test_campaign.id)
    )
    assert signals == ["calculator_installed", "install_attended", "install_scheduled"]


def test_signal_lookup_failure_keeps_committed_outcome(
    db, test_lead, test_campaign, activator_user, book, monkeypatch
):
    meeting = book()

    def _lost_connection(db, lead_id):
        raise OperationalError("SELECT assigned_campaign_id", {}, Exception("connection lost"))

    monkeypatch.setattr(performance_service, "resolve_campaign_id", _lost_connection)

    result = _complete(db, meeting, INSTALLED, activator_user)

    assert result.pipeline_status == "active"
    db.expire_all()
    assert _pipeline(db, test_lead).activation_status == "active"
    signals = [e.event_type for e in db.query(PerformanceEvent)]
    assert signals == ["install_scheduled"]


def test_outcome_appends_audit_event(db, test_lead, activator_user, book):
    meeting = book()
    _complete(db, meeting, BLOCKED, activator_user)

    pipeline = _pipeline(db, test_lead)
    event = (
        db.query(ActivationEvent)
        .filter(ActivationEvent.pipeline_id == pipeline.id, ActivationEvent.event_type == "blocked")
        .one()
    )
    assert event.meeting_id == meeting.id
    assert event.actor_user_id == activator_user.id
    assert event.metadata_json["meeting_id"] == str(meeting.id)
    assert event.metadata_json["block_reason"] == "Waiting on web developer"


def test_blocked_follow_up_skips_weekend(db, test_lead, activator_user, book):
    meeting = book()

    result = _complete(db, meeting, BLOCKED, activator_user)

    assert result.pipeline_status == "blocked"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.blocked_at == FRIDAY_NOW
    assert pipeline.followup_owner_role == "activator"
    assert pipeline.next_followup_at == datetime(2026, 3, 16, 15, 0, tzinfo=timezone.utc)
    assert pipeline.block_reason == "Waiting on web developer"
    assert pipeline.next_action == "Send snippet to developer"


def test_partial_follows_up_in_two_business_days(db, test_lead, activator_user, book):
    meeting = book()

    _complete(db, meeting, {**BLOCKED, "outcome": "partial"}, activator_user)

    pipeline = _pipeline(db, test_lead)
    assert pipeline.activation_status == "blocked"
    assert pipeline.last_meeting_outcome == "partial"
    assert pipeline.next_followup_at == datetime(2026, 3, 17, 15, 0, tzinfo=timezone.utc)


def test_blocked_with_explicit_follow_up(db, test_lead, activator_user, book):
    meeting = book()

    _complete(db, meeting, {**BLOCKED, "followup_at": "2026-03-20T13:00:00Z"}, activator_user)

    pipeline = _pipeline(db, test_lead)
    assert pipeline.next_followup_at == datetime(2026, 3, 20, 13, 0, tzinfo=timezone.utc)


def test_canceled_returns_to_queue_for_sdr(db, test_lead, activator_user, book):
    meeting = book()

    result = _complete(
        db,
        meeting,
        {"outcome": "canceled", "canceled_by": "client", "cancel_reason": "Busy season"},
        activator_user,
    )

    assert result.meeting_status == "canceled"
    assert result.pipeline_status == "queued"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.followup_owner_role == "sdr"
    assert pipeline.next_followup_at == datetime(2026, 3, 16, 15, 0, tzinfo=timezone.utc)
    assert pipeline.next_action == "Reschedule install"


def test_killed_records_reason(db, test_lead, activator_user, book):
    meeting = book()

    result = _complete(db, meeting, {"outcome": "killed", "kill_reason": "not_interested"}, activator_user)

    assert result.pipeline_status == "killed"
    assert result.kill_reason == "not_interested"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.activation_kill_reason == "not_interested"
    assert pipeline.marked_lost_at == FRIDAY_NOW


def test_first_no_show_hands_follow_up_to_sdr(db, test_lead, activator_user, book):
    meeting = book()

    result = _complete(db, meeting, NO_SHOW, activator_user)

    assert result.meeting_status == "no_show"
    assert result.pipeline_status == "no_show"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.no_show_count == 1
    assert pipeline.no_show_at == FRIDAY_NOW
    assert pipeline.followup_owner_role == "sdr"
    assert pipeline.next_followup_at == datetime(2026, 3, 16, 15, 0, tzinfo=timezone.utc)


def test_second_no_show_kills_pipeline(db, test_lead, activator_user, book):
    first = book()
    _complete(db, first, NO_SHOW, activator_user)
    second = book(MEETING_START + timedelta(days=7))

    result = _complete(db, second, NO_SHOW, activator_user, now=FRIDAY_NOW + timedelta(days=7))

    assert result.pipeline_status == "killed"
    assert result.kill_reason == "repeated_no_show"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.no_show_count == 2
    assert pipeline.activation_status == "killed"
    assert pipeline.activation_kill_reason == "repeated_no_show"
    assert pipeline.followup_owner_role is None
    assert pipeline.next_followup_at is None
    assert pipeline.next_action is None


def test_reschedule_creates_linked_meeting(db, test_lead, activator_user, book):
    meeting = book()
    new_start = datetime(2026, 3, 18, 18, 0, tzinfo=timezone.utc)

    result = _complete(db, meeting, _reschedule(new_start), activator_user)

    assert result.meeting_status == "rescheduled"
    assert result.pipeline_status == "queued"
    follow_on = db.get(Meeting, result.new_meeting_id)
    assert follow_on.parent_meeting_id == meeting.id
    assert follow_on.attempt_number == 2
    assert follow_on.status == "scheduled"
    assert follow_on.scheduled_start_at == new_start
    assert follow_on.scheduled_end_at - follow_on.scheduled_start_at == timedelta(minutes=30)
    assert follow_on.activator_user_id == activator_user.id
    assert follow_on.attendee_name == "Pat Owner"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.reschedule_count == 1
    assert pipeline.scheduled_start_at == new_start


def test_reschedule_into_booked_slot_is_rejected(db, test_lead, activator_user, book):
    meeting = book()
    later = MEETING_START + timedelta(hours=2)
    book(later)

    with pytest.raises(SlotUnavailableError) as exc:
        _complete(db, meeting, _reschedule(later), activator_user)

    assert exc.value.status_code == 409
    db.expire_all()
    assert db.get(Meeting, meeting.id).status == "scheduled"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.reschedule_count == 0
    scheduled = db.query(Meeting).filter(
        Meeting.activator_user_id == activator_user.id,
        Meeting.scheduled_start_at == later,
    ).count()
    assert scheduled == 1
    events = db.query(ActivationEvent).filter(ActivationEvent.pipeline_id == pipeline.id).all()
    assert [e.event_type for e in events] == ["scheduled", "scheduled"]


def test_reschedule_may_end_where_next_meeting_starts(db, activator_user, book):
    meeting = book()
    book(MEETING_START + timedelta(hours=2))

    result = _complete(db, meeting, _reschedule(MEETING_START + timedelta(hours=1, minutes=30)), activator_user)

    assert result.meeting_status == "rescheduled"
    assert result.new_meeting_id is not None


def test_reschedule_threshold_kills_without_new_meeting(db, test_lead, activator_user, book):
    meeting = book()
    pipeline = _pipeline(db, test_lead)
    pipeline.reschedule_count = 1
    db.commit()

    first = _complete(db, meeting, _reschedule(datetime(2026, 3, 18, 18, 0, tzinfo=timezone.utc)), activator_user)
    assert first.pipeline_status == "queued"
    second_meeting = db.get(Meeting, first.new_meeting_id)

    second = _complete(
        db, second_meeting, _reschedule(datetime(2026, 3, 25, 18, 0, tzinfo=timezone.utc)), activator_user
    )

    assert second.pipeline_status == "killed"
    assert second.kill_reason == "excessive_reschedules"
    assert second.new_meeting_id is None
    assert db.query(Meeting).filter(Meeting.lead_id == test_lead.id).count() == 2
    pipeline = _pipeline(db, test_lead)
    assert pipeline.reschedule_count == 3
    assert pipeline.activation_kill_reason == "excessive_reschedules"


# =============================================================================
# Guards
# =============================================================================

def test_completing_twice_conflicts(db, activator_user, book):
    meeting = book()
    _complete(db, meeting, BLOCKED, activator_user)

    with pytest.raises(AlreadyCompletedError) as exc:
        _complete(db, meeting, INSTALLED, activator_user)

    assert exc.value.status_code == 409


def test_terminal_pipeline_rejects_outcomes(db, test_lead, activator_user, book):
    first = book()
    second = book(MEETING_START + timedelta(days=1))
    _complete(db, first, INSTALLED, activator_user)

    with pytest.raises(TerminalStateError):
        _complete(db, second, NO_SHOW, activator_user)

    db.expire_all()
    assert db.get(Meeting, second.id).status == "scheduled"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.activation_status == "active"
    assert pipeline.no_show_count == 0


def test_terminal_check_runs_before_payload_validation(db, activator_user, book):
    first = book()
    second = book(MEETING_START + timedelta(days=1))
    _complete(db, first, {"outcome": "killed", "kill_reason": "bad_fit"}, activator_user)

    with pytest.raises(TerminalStateError):
        _complete(db, second, {"outcome": "installed_proven"}, activator_user)


def test_unknown_meeting(db, activator_user):
    with pytest.raises(NotFoundError):
        outcome_service.complete_meeting(db, uuid4(), INSTALLED, activator_user.id)


def test_other_org_cannot_complete(db, activator_user, book):
    meeting = book()

    with pytest.raises(NotFoundError):
        outcome_service.complete_meeting(db, meeting.id, INSTALLED, activator_user.id, org_id=uuid4())


# =============================================================================
# Status PATCH
# =============================================================================

def test_status_completed_activates(db, test_lead, activator_user, book):
    meeting = book()

    updated, pipeline_status = outcome_service.update_meeting_status(
        db, meeting.id, "completed", activator_user.id, notes="Quick win", now=FRIDAY_NOW
    )

    assert updated.status == "completed"
    assert updated.outcome_notes == "Quick win"
    assert pipeline_status == "active"
    assert _pipeline(db, test_lead).activation_status == "active"


def test_status_no_show_uses_kill_threshold(db, test_lead, activator_user, book):
    meeting = book()
    pipeline = _pipeline(db, test_lead)
    pipeline.no_show_count = 1
    db.commit()

    _, pipeline_status = outcome_service.update_meeting_status(
        db, meeting.id, "no_show", activator_user.id, now=FRIDAY_NOW
    )

    assert pipeline_status == "killed"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.activation_kill_reason == "repeated_no_show"
    assert pipeline.no_show_count == 2


def test_status_canceled_requeues(db, test_lead, activator_user, book):
    meeting = book()

    _, pipeline_status = outcome_service.update_meeting_status(
        db, meeting.id, "canceled", activator_user.id, now=FRIDAY_NOW
    )

    assert pipeline_status == "queued"
    pipeline = _pipeline(db, test_lead)
    assert pipeline.followup_owner_role == "sdr"
    events = [
        e.event_type
        for e in db.query(ActivationEvent).filter(ActivationEvent.pipeline_id == pipeline.id)
    ]
    assert "status_changed" in events


def test_status_change_on_closed_meeting_conflicts(db, activator_user, book):
    meeting = book()
    outcome_service.update_meeting_status(db, meeting.id, "canceled", activator_user.id)

    with pytest.raises(AlreadyCompletedError):
        outcome_service.update_meeting_status(db, meeting.id, "completed", activator_user.id)
