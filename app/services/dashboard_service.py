"""Dashboard Service.

WHAT:
    Summary cards, daily trend chart data and per-platform breakdown for the
    tenant dashboard. Reads only; mock data is seeded separately.

WHY:
    The dashboard needs a few shapes the generic MetricsService does not
    provide (campaign counts, mock-data flag, GA4 proxy row) while reusing its
    sum-then-derive totals and trend policy.

REFERENCES:
    - app/services/metrics_service.py (Totals, calculate_change)
    - app/routers/dashboard.py
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import asc, func
from sqlalchemy.orm import Session

from app.models import Campaign, CampaignStatusEnum, Metric, PlatformEnum, WebAnalyticsDaily
from app.services.adapters import normalize_platform
from app.services.metrics_service import MetricsService, calculate_change
from app.utils.date_range import as_date, get_date_range, get_previous_period_date_range

logger = logging.getLogger(__name__)

AD_PLATFORMS = (
    PlatformEnum.google_ads,
    PlatformEnum.facebook,
    PlatformEnum.tiktok,
    PlatformEnum.line_ads,
)


class DashboardService:
    """Tenant dashboard read models."""

    def __init__(self, db: Session):
        self.db = db
        self.metrics = MetricsService(db)

    def _campaign_filter(self, tenant_id: UUID, platform: Optional[PlatformEnum]):
        filters = [Campaign.tenant_id == tenant_id]
        if platform is not None:
            filters.append(Campaign.platform == platform)
        return filters

    def get_summary(self, tenant_id: UUID, days: int = 30, platform: str = "ALL") -> Dict[str, Any]:
        """Campaign counts, window totals, mock flag and trends vs the previous window.

        Raises:
            UnsupportedPlatformError: `platform` is neither "ALL" nor a known platform
        """
        platform_enum = None if str(platform).upper() == "ALL" else normalize_platform(platform)
        start, end = get_date_range(days)
        prev_start, prev_end = get_previous_period_date_range(start, days)
        campaign_filter = self._campaign_filter(tenant_id, platform_enum)

        total_campaigns = self.db.query(func.count(Campaign.id)).filter(*campaign_filter).scalar() or 0
        active_campaigns = (
            self.db.query(func.count(Campaign.id))
            .filter(*campaign_filter, Campaign.status == CampaignStatusEnum.active)
            .scalar()
            or 0
        )
        # Campaigns that already existed when the current window started
        previous_total_campaigns = (
            self.db.query(func.count(Campaign.id))
            .filter(*campaign_filter, Campaign.created_at <= start.replace(tzinfo=None))
            .scalar()
            or 0
        )

        current = self.metrics.get_aggregated_metrics(tenant_id, start, end, platform_enum)
        previous = self.metrics.get_aggregated_metrics(tenant_id, prev_start, prev_end, platform_enum)

        has_mock_data = (
            self.db.query(Metric.id)
            .join(Campaign, Campaign.id == Metric.campaign_id)
            .filter(
                *campaign_filter,
                Metric.is_mock_data.is_(True),
                Metric.date >= as_date(start),
                Metric.date <= as_date(end),
            )
            .first()
            is not None
        )

        return {
            "platform": platform_enum.value if platform_enum else "ALL",
            "total_campaigns": total_campaigns,
            "active_campaigns": active_campaigns,
            "total_spend": current.spend,
            "total_impressions": current.impressions,
            "total_clicks": current.clicks,
            "total_conversions": current.conversions,
            "is_mock_data": has_mock_data,
            "trends": {
                "campaigns": calculate_change(total_campaigns, previous_total_campaigns),
                "spend": calculate_change(current.spend, previous.spend),
                "impressions": calculate_change(current.impressions, previous.impressions),
                "clicks": calculate_change(current.clicks, previous.clicks),
                "conversions": calculate_change(current.conversions, previous.conversions),
            },
        }

    def get_trends(self, tenant_id: UUID, days: int = 30) -> List[Dict[str, Any]]:
        """Daily sums of the four headline counters, oldest first."""
        start, end = get_date_range(days)
        rows = (
            self.db.query(
                Metric.date,
                func.coalesce(func.sum(Metric.impressions), 0).label("impressions"),
                func.coalesce(func.sum(Metric.clicks), 0).label("clicks"),
                func.coalesce(func.sum(Metric.spend), 0).label("spend"),
                func.coalesce(func.sum(Metric.conversions), 0).label("conversions"),
            )
            .join(Campaign, Campaign.id == Metric.campaign_id)
            .filter(
                Campaign.tenant_id == tenant_id,
                Metric.date >= as_date(start),
                Metric.date <= as_date(end),
            )
            .group_by(Metric.date)
            .order_by(asc(Metric.date))
            .all()
        )
        return [
            {
                "date": row.date,
                "impressions": int(row.impressions),
                "clicks": int(row.clicks),
                "spend": float(row.spend),
                "conversions": float(row.conversions),
            }
            for row in rows
        ]

    def get_performance_by_platform(self, tenant_id: UUID, days: int = 30) -> List[Dict[str, Any]]:
        """One row per ad platform plus a GA4 row.

        GA4 has no spend; page views stand in for impressions and sessions
        for clicks.
        """
        start, end = get_date_range(days)
        rows = (
            self.db.query(
                Campaign.platform,
                func.coalesce(func.sum(Metric.spend), 0).label("spend"),
                func.coalesce(func.sum(Metric.impressions), 0).label("impressions"),
                func.coalesce(func.sum(Metric.clicks), 0).label("clicks"),
                func.coalesce(func.sum(Metric.conversions), 0).label("conversions"),
            )
            .join(Metric, Metric.campaign_id == Campaign.id)
            .filter(
                Campaign.tenant_id == tenant_id,
                Metric.date >= as_date(start),
                Metric.date <= as_date(end),
            )
            .group_by(Campaign.platform)
            .all()
        )
        by_platform = {row.platform: row for row in rows}

        result = []
        for platform in AD_PLATFORMS:
            row = by_platform.get(platform)
            result.append({
                "platform": platform.value,
                "spend": float(row.spend) if row else 0.0,
                "impressions": int(row.impressions) if row else 0,
                "clicks": int(row.clicks) if row else 0,
                "conversions": float(row.conversions) if row else 0.0,
            })

        ga4 = (
            self.db.query(
                func.coalesce(func.sum(WebAnalyticsDaily.page_views), 0).label("page_views"),
                func.coalesce(func.sum(WebAnalyticsDaily.sessions), 0).label("sessions"),
                func.coalesce(func.sum(WebAnalyticsDaily.conversions), 0).label("conversions"),
            )
            .filter(
                WebAnalyticsDaily.tenant_id == tenant_id,
                WebAnalyticsDaily.date >= as_date(start),
                WebAnalyticsDaily.date <= as_date(end),
            )
            .one()
        )
        result.append({
            "platform": PlatformEnum.google_analytics.value,
            "spend": 0.0,
            "impressions": int(ga4.page_views),
            "clicks": int(ga4.sessions),
            "conversions": float(ga4.conversions),
        })
        return result
