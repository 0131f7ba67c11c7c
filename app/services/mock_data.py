"""Mock marketing data for demos and platforms without live API access.

WHAT:
    - A fixed campaign catalog per ad platform.
    - Random daily generators for ad metrics and GA4 web analytics.
    - `seed_mock_data` / `clear_mock_data` for a tenant.

WHY:
    New tenants see a populated dashboard before connecting anything, and
    the LINE adapter serves this catalog while LINE_ADS_USE_MOCK is on.
    Seeded rows go through the same upserts as real syncs (so re-seeding is
    idempotent) and are flagged `is_mock_data` so they can be removed
    without touching synced data.

REFERENCES:
    - app/services/adapters/line_ads.py
    - app/services/upserts.py
"""

import logging
import random
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import (
    Campaign,
    CampaignStatusEnum,
    Metric,
    PlatformEnum,
    WebAnalyticsDaily,
)
from app.services.adapters.base import CampaignPayload, DailyMetric, DateRange
from app.services.upserts import upsert_campaign, upsert_metric, upsert_web_analytics
from app.utils.date_range import as_date, get_date_range

logger = logging.getLogger(__name__)

MOCK_SEED_DAYS = 90
MOCK_GA4_PROPERTY_ID = "mock-ga4-property"

_ACTIVE = CampaignStatusEnum.active
_PAUSED = CampaignStatusEnum.paused

# (external_id, name, status, budget)
MOCK_CAMPAIGNS = {
    PlatformEnum.google_ads: [
        ("gads-001", "Google Search - Brand Keywords", _ACTIVE, 50000),
        ("gads-002", "Google Search - Generic Keywords", _ACTIVE, 80000),
        ("gads-003", "Display Remarketing", _ACTIVE, 30000),
        ("gads-004", "Google Shopping", _PAUSED, 45000),
    ],
    PlatformEnum.facebook: [
        ("fb-001", "Facebook Lead Gen - Form", _ACTIVE, 35000),
        ("fb-002", "Facebook Video Views", _ACTIVE, 25000),
        ("fb-003", "Facebook Conversions - Website", _PAUSED, 60000),
    ],
    PlatformEnum.tiktok: [
        ("tiktok-001", "TikTok Awareness - Reach", _ACTIVE, 40000),
        ("tiktok-002", "TikTok Traffic - Website Visits", _ACTIVE, 55000),
    ],
    PlatformEnum.line_ads: [
        ("line-001", "LINE Ads - Brand Awareness", _ACTIVE, 50000),
        ("line-002", "LINE Ads - Lead Generation", _ACTIVE, 75000),
        ("line-003", "LINE Ads - Retargeting", _PAUSED, 30000),
    ],
}


def get_mock_campaigns(platform: PlatformEnum) -> List[CampaignPayload]:
    """Fresh payload copies of the catalog for one platform ([] if none)."""
    return [
        CampaignPayload(external_id=external_id, name=name, status=status, budget=float(budget))
        for external_id, name, status, budget in MOCK_CAMPAIGNS.get(platform, [])
    ]


def generate_daily_ad_metrics(day, rng: Optional[random.Random] = None) -> DailyMetric:
    """One day of plausible ad delivery (2-5% CTR, 2-5% conversion rate)."""
    rng = rng or random
    impressions = rng.randint(1000, 5999)
    clicks = int(impressions * (0.02 + rng.random() * 0.03))
    spend = float(rng.randint(100, 599))
    conversions = int(clicks * (0.02 + rng.random() * 0.03))
    revenue = conversions * (50 + rng.random() * 100)
    return DailyMetric.from_counters(
        day,
        impressions=impressions,
        clicks=clicks,
        spend=spend,
        conversions=conversions,
        revenue=round(revenue, 2),
    )


def generate_daily_ga4_metrics(day, rng: Optional[random.Random] = None) -> DailyMetric:
    """One day of plausible GA4 property traffic."""
    rng = rng or random
    active_users = rng.randint(100, 1099)
    new_users = int(active_users * (0.3 + rng.random() * 0.2))
    sessions = int(active_users * (1.2 + rng.random() * 0.5))
    page_views = int(sessions * (2 + rng.random() * 3))
    conversions = int(sessions * (0.01 + rng.random() * 0.02))
    revenue = conversions * (50 + rng.random() * 100)
    return DailyMetric.from_counters(
        day,
        conversions=conversions,
        revenue=round(revenue, 2),
        sessions=sessions,
        active_users=active_users,
        new_users=new_users,
        page_views=page_views,
    )


def generate_metrics_for_range(
    date_range: DateRange,
    kind: str = "ads",
    rng: Optional[random.Random] = None,
) -> List[DailyMetric]:
    """One generated metric per day of `date_range`; kind is "ads" or "ga4"."""
    generator = generate_daily_ad_metrics if kind == "ads" else generate_daily_ga4_metrics
    return [generator(day, rng) for day in date_range.days()]


def seed_mock_data(
    db: Session,
    tenant_id,
    days: int = MOCK_SEED_DAYS,
    rng: Optional[random.Random] = None,
) -> Dict[str, int]:
    """Seed the catalog plus `days` of metrics and GA4 rows for a tenant.

    Campaigns are upserted without an account link; catalog campaigns that a
    sync already linked to an account are skipped so their synced metrics are
    never overwritten. Returns counts of the rows written.
    """
    start, end = get_date_range(days)
    date_range = DateRange(start=as_date(start), end=as_date(end))
    counts = {"campaigns": 0, "metrics": 0, "web_analytics": 0}

    for platform in MOCK_CAMPAIGNS:
        # Catalog ids a real sync already owns (LINE in mock mode) are left alone
        synced_ids = {
            external_id
            for (external_id,) in db.query(Campaign.external_id).filter(
                Campaign.tenant_id == tenant_id,
                Campaign.platform == platform,
                Campaign.account_id.isnot(None),
            )
        }
        payloads = [p for p in get_mock_campaigns(platform) if p.external_id not in synced_ids]
        for payload in payloads:
            upsert_campaign(db, tenant_id, platform, payload)
        counts["campaigns"] += len(payloads)

        campaigns = (
            db.query(Campaign)
            .filter(
                Campaign.tenant_id == tenant_id,
                Campaign.platform == platform,
                Campaign.account_id.is_(None),
                Campaign.external_id.in_([p.external_id for p in payloads]),
            )
            .all()
        )
        for campaign in campaigns:
            for metric in generate_metrics_for_range(date_range, "ads", rng):
                upsert_metric(db, campaign.id, metric, is_mock_data=True)
                counts["metrics"] += 1

    for metric in generate_metrics_for_range(date_range, "ga4", rng):
        upsert_web_analytics(db, tenant_id, MOCK_GA4_PROPERTY_ID, metric, is_mock_data=True)
        counts["web_analytics"] += 1

    db.commit()
    logger.info(
        "[MOCK_DATA] Seeded tenant %s: %d campaigns, %d metric rows, %d GA4 rows",
        tenant_id, counts["campaigns"], counts["metrics"], counts["web_analytics"],
    )
    return counts


def clear_mock_data(db: Session, tenant_id) -> Dict[str, int]:
    """Delete the tenant's mock-flagged rows.

    Catalog campaigns with no account link are removed once they have no
    metric rows left; synced campaigns and real metrics are never touched.
    """
    campaign_ids = db.query(Campaign.id).filter(Campaign.tenant_id == tenant_id)

    metrics_deleted = (
        db.query(Metric)
        .filter(Metric.is_mock_data.is_(True), Metric.campaign_id.in_(campaign_ids.scalar_subquery()))
        .delete(synchronize_session=False)
    )
    web_deleted = (
        db.query(WebAnalyticsDaily)
        .filter(WebAnalyticsDaily.tenant_id == tenant_id, WebAnalyticsDaily.is_mock_data.is_(True))
        .delete(synchronize_session=False)
    )

    catalog_ids = [row[0] for rows in MOCK_CAMPAIGNS.values() for row in rows]
    orphans = (
        db.query(Campaign)
        .filter(
            Campaign.tenant_id == tenant_id,
            Campaign.account_id.is_(None),
            Campaign.external_id.in_(catalog_ids),
            ~Campaign.metrics.any(),
        )
        .all()
    )
    for campaign in orphans:
        db.delete(campaign)

    db.commit()
    logger.info(
        "[MOCK_DATA] Cleared tenant %s: %d metric rows, %d GA4 rows, %d campaigns",
        tenant_id, metrics_deleted, web_deleted, len(orphans),
    )
    return {"metrics": metrics_deleted, "web_analytics": web_deleted, "campaigns": len(orphans)}
