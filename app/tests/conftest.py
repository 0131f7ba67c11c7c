"""Pytest configuration for app integration tests

WHAT: Provides shared fixtures for service, adapter and HTTP endpoint tests
WHY: Ensures consistent test setup, database isolation and fake adapters
REFERENCES:
    - app/main.py: FastAPI application
    - app/database.py: Database configuration
    - app/deps.py: Tenant dependency
    - app/services/unified_sync_service.py: Sync orchestrator
"""

import os
from datetime import date, datetime, timedelta
from typing import Dict, Generator, List, Optional

import pytest

# Set test environment before any app import
# Must be URL-safe base64-encoded 32-byte string (app.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.services.adapters import (
    AdapterFetchError,
    CampaignPayload,
    DailyMetric,
    DateRange,
    PlatformAdapter,
    PlatformCredentials,
)
from app.models import PlatformEnum


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """In-memory SQLite shared across threads (TestClient runs handlers in a threadpool)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from app.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory over a SQLite file, for tests that open one session per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'sync.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    from app.database import Base
    Base.metadata.create_all(bind=engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)

    engine.dispose()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session):
    """Create FastAPI test application."""
    from app.main import create_app
    from app.database import get_db

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    return test_app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


# ============================================================================
# Model Fixtures
# ============================================================================

def _create_tenant(db: Session, name: str):
    from app.models import Tenant

    tenant = Tenant(name=name, created_at=datetime.utcnow())
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


@pytest.fixture
def tenant(test_db_session):
    return _create_tenant(test_db_session, "Test Tenant")


@pytest.fixture
def other_tenant(test_db_session):
    """Second tenant (for isolation tests)."""
    return _create_tenant(test_db_session, "Other Tenant")


@pytest.fixture
def tenant_headers(tenant) -> Dict[str, str]:
    return {"X-Tenant-ID": str(tenant.id)}


@pytest.fixture
def make_account(test_db_session, tenant):
    """Factory: connect an account with encrypted tokens."""
    from app.services.token_service import connect_account

    def _make(
        platform=PlatformEnum.facebook,
        external_account_id: str = "acct-1",
        name: str = "Test Account",
        access_token: str = "access-token",
        refresh_token: Optional[str] = None,
        tenant_id=None,
        db: Optional[Session] = None,
    ):
        return connect_account(
            db or test_db_session,
            tenant_id or tenant.id,
            platform,
            external_account_id,
            name,
            access_token,
            refresh_token,
        )

    return _make


@pytest.fixture
def make_campaign(test_db_session, tenant):
    """Factory: campaign row without an account link."""
    from app.models import Campaign, CampaignStatusEnum

    def _make(
        name: str = "Campaign",
        platform=PlatformEnum.facebook,
        external_id: Optional[str] = None,
        budget: Optional[float] = None,
        status=CampaignStatusEnum.active,
        tenant_id=None,
    ):
        campaign = Campaign(
            tenant_id=tenant_id or tenant.id,
            platform=platform,
            external_id=external_id or f"ext-{name}",
            name=name,
            status=status,
            budget=budget,
        )
        test_db_session.add(campaign)
        test_db_session.commit()
        test_db_session.refresh(campaign)
        return campaign

    return _make


@pytest.fixture
def add_metric(test_db_session):
    """Factory: one metric row with derived fields computed from its counters."""
    from app.services.upserts import upsert_metric

    def _add(
        campaign,
        day: date,
        impressions: int = 0,
        clicks: int = 0,
        spend: float = 0.0,
        conversions: float = 0.0,
        revenue: float = 0.0,
        is_mock_data: bool = False,
    ):
        metric = DailyMetric.from_counters(day, impressions, clicks, spend, conversions, revenue)
        upsert_metric(test_db_session, campaign.id, metric, is_mock_data=is_mock_data)
        test_db_session.commit()
        return metric

    return _add


@pytest.fixture
def today() -> date:
    from app.utils.date_range import utc_today
    return utc_today()


# ============================================================================
# Fake adapters
# ============================================================================

class FakeAdapter(PlatformAdapter):
    """In-memory adapter.

    `campaigns` maps account id -> payloads; `metrics` maps campaign
    external id -> DailyMetric list. `fail_accounts` makes fetch_campaigns
    raise for those account ids.
    """

    def __init__(
        self,
        platform: PlatformEnum = PlatformEnum.facebook,
        campaigns: Optional[Dict[str, List[CampaignPayload]]] = None,
        metrics: Optional[Dict[str, List[DailyMetric]]] = None,
        fail_accounts=(),
        valid: bool = True,
        has_campaigns: bool = True,
    ):
        self.platform = platform
        self.has_campaigns = has_campaigns
        self.campaigns = campaigns or {}
        self.metrics = metrics or {}
        self.fail_accounts = set(fail_accounts)
        self.valid = valid
        self.calls: List[str] = []

    def validate_credentials(self, credentials: PlatformCredentials) -> bool:
        return self.valid

    def fetch_campaigns(self, credentials: PlatformCredentials) -> List[CampaignPayload]:
        self.calls.append(credentials.account_id)
        if credentials.account_id in self.fail_accounts:
            raise AdapterFetchError(f"boom for {credentials.account_id}", status_code=500)
        return list(self.campaigns.get(credentials.account_id, []))

    def fetch_metrics(self, credentials: PlatformCredentials, campaign_id: str, date_range: DateRange) -> List[DailyMetric]:
        return [m for m in self.metrics.get(campaign_id, []) if date_range.start <= m.date <= date_range.end]


@pytest.fixture
def fake_adapter_cls():
    return FakeAdapter


@pytest.fixture
def recent_days(today) -> List[date]:
    """The last three UTC days, oldest first."""
    return [today - timedelta(days=offset) for offset in (2, 1, 0)]
