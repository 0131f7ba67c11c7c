"""Idempotent writes keyed by natural identity.

WHAT:
    Dialect-native `INSERT ... ON CONFLICT DO UPDATE` for campaigns, daily
    campaign metrics and daily web analytics rows.

WHY:
    Two overlapping syncs of the same account must never produce duplicate
    rows. The storage-level unique constraints (see app/models.py) plus
    ON CONFLICT make every write last-write-wins without an application lock.

REFERENCES:
    - app/services/unified_sync_service.py (sync writes)
    - app/services/mock_data.py (seed writes)
"""

import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.models import Campaign, Metric, PlatformEnum, WebAnalyticsDaily
from app.services.adapters.base import CampaignPayload, DailyMetric

_CAMPAIGN_KEY = ["tenant_id", "platform", "external_id"]
_METRIC_KEY = ["campaign_id", "date"]
_WEB_KEY = ["tenant_id", "property_id", "date"]

_METRIC_FIELDS = (
    "impressions", "clicks", "spend", "conversions", "revenue",
    "ctr", "cpc", "cpm", "roas", "is_mock_data",
)
_WEB_FIELDS = (
    "sessions", "active_users", "new_users", "page_views",
    "conversions", "revenue", "is_mock_data",
)


def _insert(db: Session, model):
    """Dialect-specific insert construct supporting ON CONFLICT."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert not supported for dialect {dialect!r}")


def _upsert(db: Session, model, values: dict, key: list, update_fields: Iterable[str]) -> None:
    stmt = _insert(db, model).values(**values)
    set_ = {field: stmt.excluded[field] for field in update_fields}
    set_["updated_at"] = stmt.excluded.updated_at
    db.execute(stmt.on_conflict_do_update(index_elements=key, set_=set_))


def upsert_campaign(
    db: Session,
    tenant_id: uuid.UUID,
    platform: PlatformEnum,
    payload: CampaignPayload,
    account_id: Optional[uuid.UUID] = None,
) -> None:
    """Insert or update one campaign by (tenant_id, platform, external_id).

    `account_id` is only written when given, so a seed without an account
    never detaches a campaign that a real sync already linked.
    """
    now = datetime.utcnow()
    values = {
        "id": uuid.uuid4(),
        "tenant_id": tenant_id,
        "account_id": account_id,
        "platform": platform,
        "external_id": payload.external_id,
        "name": payload.name,
        "status": payload.status,
        "budget": payload.budget,
        "start_date": payload.start_date,
        "end_date": payload.end_date,
        "created_at": now,
        "updated_at": now,
    }
    update_fields = ["name", "status", "budget", "start_date", "end_date"]
    if account_id is not None:
        update_fields.append("account_id")
    _upsert(db, Campaign, values, _CAMPAIGN_KEY, update_fields)


def upsert_metric(db: Session, campaign_id: uuid.UUID, metric: DailyMetric, is_mock_data: bool = False) -> None:
    """Insert or overwrite one day of campaign metrics by (campaign_id, date)."""
    now = datetime.utcnow()
    values = {
        "id": uuid.uuid4(),
        "campaign_id": campaign_id,
        "date": metric.date,
        "impressions": metric.impressions,
        "clicks": metric.clicks,
        "spend": metric.spend,
        "conversions": metric.conversions,
        "revenue": metric.revenue,
        "ctr": metric.ctr,
        "cpc": metric.cpc,
        "cpm": metric.cpm,
        "roas": metric.roas,
        "is_mock_data": is_mock_data,
        "created_at": now,
        "updated_at": now,
    }
    _upsert(db, Metric, values, _METRIC_KEY, _METRIC_FIELDS)


def upsert_web_analytics(
    db: Session,
    tenant_id: uuid.UUID,
    property_id: str,
    metric: DailyMetric,
    is_mock_data: bool = False,
) -> None:
    """Insert or overwrite one day of property analytics by (tenant_id, property_id, date)."""
    now = datetime.utcnow()
    values = {
        "id": uuid.uuid4(),
        "tenant_id": tenant_id,
        "property_id": property_id,
        "date": metric.date,
        "sessions": metric.sessions,
        "active_users": metric.active_users,
        "new_users": metric.new_users,
        "page_views": metric.page_views,
        "conversions": metric.conversions,
        "revenue": metric.revenue,
        "is_mock_data": is_mock_data,
        "created_at": now,
        "updated_at": now,
    }
    _upsert(db, WebAnalyticsDaily, values, _WEB_KEY, _WEB_FIELDS)
