"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt for every test
- Organization, SDR, activator, campaign and lead fixtures
- JWT token minting for authenticated tests
- HTTPX AsyncClient with proper headers
"""
import os
import uuid
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import AsyncGenerator, Generator

# Must be set before the app (and its settings) are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TESTING"] = "1"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import COOKIE_NAME, get_db
from app.core.security import create_session_token
from app.db.base import Base
from app.db.models import AvailabilityShift, Campaign, Lead, Organization, User
from app.db.session import SessionLocal, engine
from app.main import app


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    App code commits freely; isolation comes from dropping every table
    afterwards.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_org(db: Session) -> Organization:
    """Create a test organization."""
    org = Organization(
        id=uuid.uuid4(),
        name="Test Organization",
        slug=f"test-org-{uuid.uuid4().hex[:8]}",
    )
    db.add(org)
    db.commit()
    return org


@pytest.fixture(scope="function")
def sdr_user(db: Session, test_org: Organization) -> User:
    """SDR who books meetings; owns tracking code SDR-ALPHA."""
    user = User(
        id=uuid.uuid4(),
        organization_id=test_org.id,
        email=f"sdr-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Sam SDR",
        sdr_code="SDR-ALPHA",
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture(scope="function")
def activator_user(db: Session, test_org: Organization) -> User:
    """Activator accepting meetings."""
    user = User(
        id=uuid.uuid4(),
        organization_id=test_org.id,
        email=f"activator-{uuid.uuid4().hex[:8]}@test.com",
        display_name="Ava Activator",
        is_activator=True,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture(scope="function")
def test_campaign(db: Session, test_org: Organization) -> Campaign:
    """Signup campaign with a proven_install bonus rule."""
    campaign = Campaign(
        id=uuid.uuid4(),
        organization_id=test_org.id,
        name=settings.LIFECYCLE_CAMPAIGN_NAME,
        bonus_rules=[{"trigger": "proven_install", "sdr_amount": 25, "activator_amount": 15}],
    )
    db.add(campaign)
    db.commit()
    return campaign


@pytest.fixture(scope="function")
def test_lead(db: Session, test_org: Organization, sdr_user: User, test_campaign: Campaign) -> Lead:
    """Lead owned by the SDR inside the signup campaign."""
    lead = Lead(
        id=uuid.uuid4(),
        organization_id=test_org.id,
        name="Acme Towing",
        email="owner@acmetowing.com",
        phone="(555) 123-4567",
        assigned_to=sdr_user.id,
        assigned_campaign_id=test_campaign.id,
    )
    db.add(lead)
    db.commit()
    return lead


@pytest.fixture(scope="function")
def make_shift(db: Session):
    """Factory inserting one active shift (30 min meetings, no buffers, no notice)."""
    def _make(
        user: User,
        day_of_week: int,
        start: time = time(9, 0),
        end: time = time(17, 0),
        tz: str = "America/New_York",
        **overrides,
    ) -> AvailabilityShift:
        values = {
            "meeting_duration_minutes": 30,
            "buffer_before_minutes": 0,
            "buffer_after_minutes": 0,
            "max_meetings_per_day": 6,
            "min_notice_hours": 0,
            "booking_window_days": 14,
            "meeting_link": "https://meet.example.com/ava",
            **overrides,
        }
        shift = AvailabilityShift(
            organization_id=user.organization_id,
            user_id=user.id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            timezone=tz,
            **values,
        )
        db.add(shift)
        db.commit()
        return shift

    return _make


@pytest.fixture(scope="function")
def meeting_data(test_lead: Lead, activator_user: User):
    """Factory for a valid booking body (create_meeting / POST /activation-meetings)."""
    def _data(start: datetime, tz: str = "America/New_York") -> dict:
        return {
            "lead_id": test_lead.id,
            "scheduled_start_at": start,
            "scheduled_timezone": tz,
            "activator_user_id": activator_user.id,
            "attendee_name": "Pat Owner",
            "attendee_role": "Owner",
            "attendee_phone": "555-123-4567",
            "attendee_email": "owner@acmetowing.com",
            "website_url": "https://acmetowing.com",
            "website_platform": "WordPress",
            "goal": "Install the calculator on the quote page",
        }

    return _data


@pytest.fixture(scope="function")
def next_weekday():
    """Factory: UTC instant at least `days_ahead` days out, on a weekday, at `hour`:00."""
    def _at(hour: int, days_ahead: int = 2) -> datetime:
        day = datetime.now(timezone.utc) + timedelta(days=days_ahead)
        while day.weekday() >= 5:
            day += timedelta(days=1)
        return day.replace(hour=hour, minute=0, second=0, microsecond=0)

    return _at


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    org: Organization
    token: str
    cookie_name: str = COOKIE_NAME


def _auth_for(user: User, org: Organization) -> TestAuth:
    token = create_session_token(
        user_id=user.id,
        org_id=org.id,
        token_version=user.token_version,
    )
    return TestAuth(user=user, org=org, token=token)


@pytest.fixture(scope="function")
def sdr_auth(sdr_user: User, test_org: Organization) -> TestAuth:
    return _auth_for(sdr_user, test_org)


@pytest.fixture(scope="function")
def activator_auth(activator_user: User, test_org: Organization) -> TestAuth:
    return _auth_for(activator_user, test_org)


# =============================================================================
# Client Fixtures
# =============================================================================

def _override_db(db: Session):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for webhooks and internal endpoints."""
    _override_db(db)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def sdr_client(db: Session, sdr_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient authenticated as the SDR (session cookie)."""
    _override_db(db)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={sdr_auth.cookie_name: sdr_auth.token},
    ) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def activator_client(db: Session, activator_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient authenticated as the activator (bearer header)."""
    _override_db(db)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {activator_auth.token}"},
    ) as c:
        yield c
    app.dependency_overrides.clear()
