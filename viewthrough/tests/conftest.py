"""Pytest configuration for view-through integration tests

WHAT: Provides shared fixtures for service, persistence and HTTP endpoint tests
WHY: Ensures consistent test setup, database isolation and authenticated clients
REFERENCES:
    - viewthrough/main.py: FastAPI application
    - viewthrough/database.py: Database configuration
    - viewthrough/deps.py: Dependency injection
"""

import os
from datetime import date, datetime
from decimal import Decimal
from typing import Generator, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure project root is in path
import sys
from pathlib import Path
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Set test environment
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.pop("SENTRY_DSN", None)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """In-memory SQLite shared by every connection (TestClient runs in threads)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from viewthrough.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    """Session constructor for code that opens its own sessions (scheduler)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """Create FastAPI test application."""
    from viewthrough.main import create_app
    from viewthrough.database import get_db

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def auth_client(client, test_user) -> TestClient:
    """Client carrying a valid `access_token` cookie for test_user."""
    from viewthrough.security import create_access_token

    client.cookies.set("access_token", create_access_token(test_user.email))
    return client


# ============================================================================
# Model Fixtures
# ============================================================================

class EventStoreSeeder:
    """Writes event store and click model rows for one test."""

    def __init__(self, db: Session):
        self.db = db

    def _add(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def workspace(self, name: str = "Test Workspace"):
        from viewthrough.models import Workspace

        return self._add(Workspace(id=uuid4(), name=name, created_at=datetime.utcnow()))

    def user(self, workspace, email: str = "test@example.com"):
        from viewthrough.models import RoleEnum, User

        return self._add(User(
            id=uuid4(),
            email=email,
            name="Test User",
            role=RoleEnum.admin,
            workspace_id=workspace.id,
        ))

    def purchase(self, workspace, order_id: str, visitor_id: Optional[str], revenue, at: datetime):
        from viewthrough.models import PixelEvent

        return self._add(PixelEvent(
            id=uuid4(),
            workspace_id=workspace.id,
            visitor_id=visitor_id,
            event_id=str(uuid4()),
            event_type="checkout_completed",
            event_data={},
            order_id=order_id,
            revenue=None if revenue is None else Decimal(str(revenue)),
            created_at=at,
        ))

    def impressions(
        self,
        workspace,
        provider: str,
        campaign_id: Optional[str],
        day: date,
        impressions: int = 1000,
        reach: int = 100,
        campaign_name: Optional[str] = None,
        ad_id: Optional[str] = None,
    ):
        from viewthrough.models import AdImpression

        return self._add(AdImpression(
            id=uuid4(),
            workspace_id=workspace.id,
            provider=provider,
            campaign_id=campaign_id,
            campaign_name=campaign_name,
            ad_id=ad_id,
            impressions=impressions,
            reach=reach,
            frequency=Decimal(str(round(impressions / max(reach, 1), 2))),
            date=day,
        ))

    def click(self, workspace, visitor_id: str, provider: str, at: datetime):
        from viewthrough.models import CustomerJourney, JourneyTouchpoint

        journey = (
            self.db.query(CustomerJourney)
            .filter(CustomerJourney.workspace_id == workspace.id, CustomerJourney.visitor_id == visitor_id)
            .first()
        )
        if journey is None:
            journey = CustomerJourney(
                id=uuid4(),
                workspace_id=workspace.id,
                visitor_id=visitor_id,
                first_seen_at=at,
                last_seen_at=at,
            )
            self.db.add(journey)
        journey.touchpoint_count = (journey.touchpoint_count or 0) + 1

        return self._add(JourneyTouchpoint(
            id=uuid4(),
            journey_id=journey.id,
            event_type="page_viewed",
            utm_source=provider,
            provider=provider,
            touched_at=at,
        ))

    def click_attribution(
        self,
        workspace,
        order_id: str,
        provider: str,
        credit,
        attributed_revenue,
        order_created_at: datetime,
        model: str = "last_click",
    ):
        from viewthrough.models import Attribution

        return self._add(Attribution(
            id=uuid4(),
            workspace_id=workspace.id,
            order_id=order_id,
            provider=provider,
            attribution_model=model,
            revenue=Decimal(str(attributed_revenue)),
            attribution_credit=Decimal(str(credit)),
            attributed_revenue=Decimal(str(attributed_revenue)),
            order_created_at=order_created_at,
            attributed_at=order_created_at,
        ))

    def summary_row(self, workspace, day: date, provider: str, model: str = "last_click"):
        from viewthrough.models import AttributionDailySummary

        return self._add(AttributionDailySummary(
            id=uuid4(),
            workspace_id=workspace.id,
            date=day,
            attribution_model=model,
            provider=provider,
            attributed_conversions=Decimal("1"),
            attributed_revenue=Decimal("50.00"),
            touchpoints=1,
            unique_visitors=1,
        ))


@pytest.fixture
def seed(test_db_session) -> EventStoreSeeder:
    return EventStoreSeeder(test_db_session)


@pytest.fixture
def test_workspace(seed):
    return seed.workspace()


@pytest.fixture
def test_user(seed, test_workspace):
    return seed.user(test_workspace)


@pytest.fixture
def view_config():
    """Deterministic model parameters.

    With impressions on the conversion day (decay 1.0), frequency >= 10 and
    every campaign at the global max reach, probability == base rate.
    """
    from viewthrough.services.view_probability import ViewThroughConfig

    return ViewThroughConfig(base_rates={"google": 0.25, "meta": 0.20, "tiktok": 0.10})
