"""API tests for the product lifecycle and signup webhooks."""

import pytest

from app.core.config import settings
from app.db.models import ClientEvent, Pipeline


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "LIFECYCLE_WEBHOOK_SECRET", "whsec-test")
    return "whsec-test"


@pytest.mark.asyncio
async def test_lifecycle_docs(client):
    response = await client.get("/webhooks/lifecycle-event")

    assert response.status_code == 200
    body = response.json()
    assert "credits_first_used" in body["event_types"]
    assert "trial_activated" not in body["event_types"]
    assert body["deprecated_event_types"] == ["snippet_installed", "trial_activated"]


@pytest.mark.asyncio
async def test_unlinked_event_is_accepted_and_stored(client, db):
    response = await client.post(
        "/webhooks/lifecycle-event",
        json={"user_id": "user-77", "event_type": "trial_started", "payload": {"plan": "trial"}},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["has_link"] is False
    assert body["will_process"] is False
    event = db.query(ClientEvent).filter(ClientEvent.user_id == "user-77").one()
    assert event.processed is False
    assert event.payload == {"plan": "trial"}


@pytest.mark.asyncio
async def test_unknown_event_type_rejected(client):
    response = await client.post(
        "/webhooks/lifecycle-event", json={"user_id": "user-77", "event_type": "teleported"}
    )

    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_field"


@pytest.mark.asyncio
async def test_missing_user_id(client):
    response = await client.post("/webhooks/lifecycle-event", json={"event_type": "trial_started"})

    assert response.status_code == 400
    assert response.json()["field"] == "user_id"


@pytest.mark.asyncio
async def test_secret_required_when_configured(client, webhook_secret):
    body = {"user_id": "user-77", "event_type": "password_set"}

    missing = await client.post("/webhooks/lifecycle-event", json=body)
    wrong = await client.post(
        "/webhooks/lifecycle-event", json=body, headers={"Authorization": "Bearer nope"}
    )
    right = await client.post(
        "/webhooks/lifecycle-event", json=body, headers={"Authorization": f"Bearer {webhook_secret}"}
    )

    assert missing.status_code == 401
    assert missing.json()["reason"] == "invalid_webhook_secret"
    assert wrong.status_code == 401
    assert right.status_code == 200


@pytest.mark.asyncio
async def test_signup_then_events_flow(client, db, test_lead, sdr_user):
    early = await client.post(
        "/webhooks/lifecycle-event",
        json={"user_id": "user-88", "event_type": "calculator_modified"},
    )
    assert early.json()["has_link"] is False

    signup = await client.post(
        "/webhooks/signup",
        json={"user_id": "user-88", "email": "Owner@AcmeTowing.com", "sdr_last_touch_code": "SDR-ALPHA"},
    )
    assert signup.status_code == 200, signup.text
    linked = signup.json()
    assert linked["lead_id"] == str(test_lead.id)
    assert linked["lead_created"] is False
    assert linked["sdr_user_id"] == str(sdr_user.id)
    assert linked["events_processed"] == 1

    late = await client.post(
        "/webhooks/lifecycle-event",
        json={"user_id": "user-88", "event_type": "first_lead_received", "payload": {"source_url": "acmetowing.com"}},
    )
    assert late.json()["will_process"] is True

    db.expire_all()
    pipeline = db.query(Pipeline).filter(Pipeline.crm_lead_id == test_lead.id).one()
    assert pipeline.activated_at is not None
    assert pipeline.activated_at == pipeline.first_lead_received_at
    assert pipeline.install_url == "acmetowing.com"


@pytest.mark.asyncio
async def test_signup_requires_identity(client, test_campaign):
    response = await client.post("/webhooks/signup", json={"user_id": "user-99"})

    assert response.status_code == 400
    assert response.json()["reason"] == "missing_identity"


@pytest.mark.asyncio
async def test_signup_without_campaign(client, test_org):
    response = await client.post(
        "/webhooks/signup", json={"user_id": "user-99", "email": "nobody@example.com"}
    )

    assert response.status_code == 404
