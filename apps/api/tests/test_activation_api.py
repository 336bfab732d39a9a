"""API tests for slots, availability, meetings and pipelines."""

from datetime import datetime, time, timedelta
from uuid import UUID, uuid4

import pytest

from app.core.security import create_session_token
from app.db.models import Meeting


def _body(data: dict) -> dict:
    """JSON-safe copy of a booking dict."""
    out = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, UUID):
            value = str(value)
        out[key] = value
    return out


@pytest.fixture
async def booked(sdr_client, meeting_data, next_weekday) -> dict:
    response = await sdr_client.post("/activation-meetings", json=_body(meeting_data(next_weekday(15))))
    assert response.status_code == 201, response.text
    return response.json()


# =============================================================================
# Health
# =============================================================================

@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# =============================================================================
# Slots
# =============================================================================

@pytest.mark.asyncio
async def test_slots_returns_camel_case_slots(sdr_client, activator_user, make_shift, next_weekday):
    day = next_weekday(14).date()
    make_shift(activator_user, day.weekday(), time(9, 0), time(10, 0))

    response = await sdr_client.get(
        "/activator-availability/slots",
        params={"startDate": day.isoformat(), "endDate": day.isoformat(), "timezone": "America/Los_Angeles"},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["activatorCount"] == 1
    assert len(body["slots"]) == 2
    slot = body["slots"][0]
    assert slot["activatorId"] == str(activator_user.id)
    assert slot["activatorName"] == "Ava Activator"
    assert slot["meetingLink"] == "https://meet.example.com/ava"
    assert slot["viewerDate"] == day.isoformat()


@pytest.mark.asyncio
async def test_slots_empty_roster_message(sdr_client, next_weekday):
    day = next_weekday(14).date().isoformat()

    response = await sdr_client.get("/activator-availability/slots", params={"startDate": day, "endDate": day})

    assert response.status_code == 200
    assert response.json()["slots"] == []
    assert response.json()["message"] == "No activators available"


@pytest.mark.asyncio
async def test_slots_missing_start_date(sdr_client):
    response = await sdr_client.get("/activator-availability/slots", params={"endDate": "2026-03-09"})

    assert response.status_code == 400
    assert response.json() == {
        "error": "Missing required field: startDate",
        "reason": "missing_field",
        "field": "startDate",
    }


@pytest.mark.asyncio
async def test_slots_bad_timezone(sdr_client):
    response = await sdr_client.get(
        "/activator-availability/slots",
        params={"startDate": "2026-03-09", "endDate": "2026-03-09", "timezone": "Mars/Olympus"},
    )

    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_timezone"


@pytest.mark.asyncio
async def test_slots_require_auth(client):
    response = await client.get(
        "/activator-availability/slots", params={"startDate": "2026-03-09", "endDate": "2026-03-09"}
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Not authenticated", "reason": "not_authenticated"}


@pytest.mark.asyncio
async def test_revoked_session_rejected(client, sdr_user, test_org):
    token = create_session_token(
        user_id=sdr_user.id,
        org_id=test_org.id,
        token_version=sdr_user.token_version + 1,
    )

    response = await client.get(
        "/activator-availability/slots",
        params={"startDate": "2026-03-09", "endDate": "2026-03-09"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 401
    assert response.json() == {"error": "Session revoked", "reason": "session_revoked"}


# =============================================================================
# Availability
# =============================================================================

@pytest.mark.asyncio
async def test_activator_replaces_shifts(activator_client):
    shifts = [
        {"day_of_week": 0, "start_time": "09:00", "end_time": "12:00", "timezone": "America/Chicago"},
        {"day_of_week": 0, "start_time": "13:00", "end_time": "17:00", "timezone": "America/Chicago"},
    ]

    response = await activator_client.put("/activator/availability", json={"shifts": shifts})
    assert response.status_code == 200, response.text
    assert len(response.json()) == 2

    response = await activator_client.put("/activator/availability", json={"shifts": shifts[:1]})
    listed = await activator_client.get("/activator/availability")
    assert [s["start_time"] for s in listed.json()] == ["09:00:00"]


@pytest.mark.asyncio
async def test_shift_crossing_midnight_rejected(activator_client):
    response = await activator_client.put(
        "/activator/availability",
        json={"shifts": [{"day_of_week": 4, "start_time": "22:00", "end_time": "02:00"}]},
    )

    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_field"


@pytest.mark.asyncio
async def test_sdr_cannot_edit_availability(sdr_client):
    response = await sdr_client.put("/activator/availability", json={"shifts": []})

    assert response.status_code == 403
    assert response.json()["reason"] == "activator_required"


# =============================================================================
# Meetings
# =============================================================================

@pytest.mark.asyncio
async def test_book_meeting(booked, test_lead, activator_user, sdr_user):
    assert booked["status"] == "scheduled"
    assert booked["lead_id"] == str(test_lead.id)
    assert booked["activator_user_id"] == str(activator_user.id)
    assert booked["scheduled_by_sdr_user_id"] == str(sdr_user.id)
    assert booked["attempt_number"] == 1


@pytest.mark.asyncio
async def test_double_booking_conflicts(sdr_client, booked, meeting_data, next_weekday):
    response = await sdr_client.post(
        "/activation-meetings", json=_body(meeting_data(next_weekday(15) + timedelta(minutes=15)))
    )

    assert response.status_code == 409
    assert response.json()["reason"] == "slot_unavailable"


@pytest.mark.asyncio
async def test_booking_requires_goal(sdr_client, meeting_data, next_weekday):
    body = _body(meeting_data(next_weekday(15)))
    del body["goal"]

    response = await sdr_client.post("/activation-meetings", json=body)

    assert response.status_code == 400
    assert response.json()["field"] == "goal"


@pytest.mark.asyncio
async def test_booking_unknown_lead(sdr_client, meeting_data, next_weekday):
    body = _body(meeting_data(next_weekday(15)))
    body["lead_id"] = str(uuid4())

    response = await sdr_client.post("/activation-meetings", json=body)

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_activator_lists_own_meetings(activator_client, booked):
    response = await activator_client.get("/activation-meetings", params={"status": "scheduled"})

    assert response.status_code == 200
    assert [m["id"] for m in response.json()] == [booked["id"]]


@pytest.mark.asyncio
async def test_complete_meeting(activator_client, booked):
    response = await activator_client.post(
        f"/activation-meetings/{booked['id']}/complete",
        json={
            "outcome": "installed_proven",
            "install_url": "https://acmetowing.com/quote",
            "proof_method": "test_lead_submitted",
            "lead_delivery_methods": ["email"],
        },
    )

    assert response.status_code == 200, response.text
    assert response.json()["pipeline_status"] == "active"
    assert response.json()["meeting_status"] == "completed"

    again = await activator_client.post(
        f"/activation-meetings/{booked['id']}/complete",
        json={"outcome": "killed", "kill_reason": "bad_fit"},
    )
    assert again.status_code == 409
    assert again.json()["reason"] == "already_completed"


@pytest.mark.asyncio
async def test_complete_meeting_names_missing_field(db, activator_client, booked):
    response = await activator_client.post(
        f"/activation-meetings/{booked['id']}/complete",
        json={"outcome": "installed_proven", "install_url": "https://acmetowing.com", "lead_delivery_methods": ["sms"]},
    )

    assert response.status_code == 400
    assert response.json()["field"] == "proof_method"
    db.expire_all()
    assert db.get(Meeting, UUID(booked["id"])).status == "scheduled"


@pytest.mark.asyncio
async def test_complete_unknown_meeting(activator_client):
    response = await activator_client.post(
        f"/activation-meetings/{uuid4()}/complete", json={"outcome": "killed", "kill_reason": "x"}
    )

    assert response.status_code == 404
    assert response.json()["reason"] == "not_found"


@pytest.mark.asyncio
async def test_patch_status(activator_client, booked):
    response = await activator_client.patch(
        f"/activation-meetings/{booked['id']}/status", json={"status": "no_show"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "meeting_id": booked["id"],
        "meeting_status": "no_show",
        "pipeline_status": "no_show",
    }


@pytest.mark.asyncio
async def test_patch_status_rejects_unknown_status(activator_client, booked):
    response = await activator_client.patch(
        f"/activation-meetings/{booked['id']}/status", json={"status": "vanished"}
    )

    assert response.status_code == 400


# =============================================================================
# Pipelines
# =============================================================================

@pytest.mark.asyncio
async def test_pipeline_shows_meeting_chain(activator_client, booked, next_weekday):
    new_start = next_weekday(16, days_ahead=9)
    completed = await activator_client.post(
        f"/activation-meetings/{booked['id']}/complete",
        json={
            "outcome": "rescheduled",
            "new_datetime": new_start.isoformat(),
            "reschedule_reason": "Owner traveling",
        },
    )
    assert completed.status_code == 200, completed.text

    response = await activator_client.get(f"/pipelines/{booked['pipeline_id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["activation_status"] == "queued"
    assert body["reschedule_count"] == 1
    assert len(body["meetings"]) == 2
    assert {e["event_type"] for e in body["events"]} == {"scheduled", "rescheduled"}


@pytest.mark.asyncio
async def test_pipeline_not_found(sdr_client):
    response = await sdr_client.get(f"/pipelines/{uuid4()}")

    assert response.status_code == 404
