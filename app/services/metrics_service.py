"""
Metrics Service
===============

Read-side aggregation over persisted campaign metrics and web analytics.

WHAT: Window totals, period-over-period trends, daily series, top campaigns
      and per-campaign performance for one tenant.
WHY:  Every dashboard number comes from the same sum-then-derive path.

Design Principles:
- Sum raw counters first, derive ratios from the sums. Stored per-row
  ratios are never averaged (a 10-impression day must not weigh as much
  as a 1000-impression day).
- Tenant-scoped at SQL level via the campaigns join.
- Never raises or returns nulls for empty windows; zeros instead.

Usage:
    >>> service = MetricsService(db)
    >>> start, end = get_date_range(7)
    >>> totals = service.get_aggregated_metrics(tenant_id, start, end)
    >>> totals.ctr
    5.45

References:
- app/utils/date_range.py: UTC windows
- app/services/adapters/base.py: compute_derived_metrics (same formulas)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import asc, desc, func
from sqlalchemy.orm import Session

from app.models import Campaign, Metric, PlatformEnum, WebAnalyticsDaily
from app.services.adapters.base import compute_derived_metrics
from app.utils.date_range import (
    as_date,
    get_date_range,
    get_previous_period_date_range,
    parse_period_days,
)

logger = logging.getLogger(__name__)

TREND_FIELDS = ("impressions", "clicks", "spend", "conversions", "revenue", "sessions", "ctr", "cpc", "cpm", "roas")


@dataclass
class Totals:
    """Summed counters plus ratios derived from the sums."""
    impressions: int = 0
    clicks: int = 0
    spend: float = 0.0
    conversions: float = 0.0
    revenue: float = 0.0
    sessions: int = 0
    ctr: float = 0.0
    cpc: float = 0.0
    cpm: float = 0.0
    roas: float = 0.0

    @classmethod
    def from_sums(cls, impressions, clicks, spend, conversions, revenue, sessions=0) -> "Totals":
        impressions = int(impressions or 0)
        clicks = int(clicks or 0)
        spend = float(spend or 0)
        revenue = float(revenue or 0)
        return cls(
            impressions=impressions,
            clicks=clicks,
            spend=spend,
            conversions=float(conversions or 0),
            revenue=revenue,
            sessions=int(sessions or 0),
            **compute_derived_metrics(impressions, clicks, spend, revenue),
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_change(current: float, previous: float) -> float:
    """Percent change; when previous is 0: 100 if current > 0 else 0."""
    current = float(current or 0)
    previous = float(previous or 0)
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def calculate_trends(current: Totals, previous: Optional[Totals]) -> Optional[Dict[str, float]]:
    """Per-field percent change between two windows (None without a previous window)."""
    if previous is None:
        return None
    return {field: calculate_change(getattr(current, field), getattr(previous, field)) for field in TREND_FIELDS}


def _sum_columns():
    return (
        func.coalesce(func.sum(Metric.impressions), 0).label("impressions"),
        func.coalesce(func.sum(Metric.clicks), 0).label("clicks"),
        func.coalesce(func.sum(Metric.spend), 0).label("spend"),
        func.coalesce(func.sum(Metric.conversions), 0).label("conversions"),
        func.coalesce(func.sum(Metric.revenue), 0).label("revenue"),
    )


class MetricsService:
    """Tenant-scoped metric aggregation."""

    def __init__(self, db: Session):
        self.db = db

    def _metric_query(self, tenant_id: UUID, start, end, platform: Optional[PlatformEnum] = None):
        query = (
            self.db.query(*_sum_columns())
            .select_from(Metric)
            .join(Campaign, Campaign.id == Metric.campaign_id)
            .filter(
                Campaign.tenant_id == tenant_id,
                Metric.date >= as_date(start),
                Metric.date <= as_date(end),
            )
        )
        if platform is not None:
            query = query.filter(Campaign.platform == platform)
        return query

    def get_sessions(self, tenant_id: UUID, start, end) -> int:
        sessions = (
            self.db.query(func.coalesce(func.sum(WebAnalyticsDaily.sessions), 0))
            .filter(
                WebAnalyticsDaily.tenant_id == tenant_id,
                WebAnalyticsDaily.date >= as_date(start),
                WebAnalyticsDaily.date <= as_date(end),
            )
            .scalar()
        )
        return int(sessions or 0)

    def get_aggregated_metrics(
        self,
        tenant_id: UUID,
        start: datetime,
        end: datetime,
        platform: Optional[PlatformEnum] = None,
    ) -> Totals:
        """Sum counters over metric rows dated in [start, end] and derive ratios.

        GA sessions are included unless the query is narrowed to an ad
        platform.
        """
        row = self._metric_query(tenant_id, start, end, platform).one()
        include_sessions = platform is None or platform == PlatformEnum.google_analytics
        sessions = self.get_sessions(tenant_id, start, end) if include_sessions else 0
        return Totals.from_sums(row.impressions, row.clicks, row.spend, row.conversions, row.revenue, sessions)

    def get_metrics_trends(
        self,
        tenant_id: UUID,
        period: str,
        compare_with: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Current window totals, optionally compared with the previous window.

        `previous` and `trends` are None unless compare_with == "previous_period".
        """
        days = parse_period_days(period)
        start, end = get_date_range(days)
        current = self.get_aggregated_metrics(tenant_id, start, end)

        previous = None
        if compare_with == "previous_period":
            prev_start, prev_end = get_previous_period_date_range(start, days)
            previous = self.get_aggregated_metrics(tenant_id, prev_start, prev_end)

        return {
            "period": period,
            "start_date": start,
            "end_date": end,
            "current": current.as_dict(),
            "previous": previous.as_dict() if previous else None,
            "trends": calculate_trends(current, previous),
        }

    def get_top_campaigns(self, tenant_id: UUID, limit: int = 5, days: int = 30) -> List[Dict[str, Any]]:
        """Campaigns ranked by summed spend (ties broken by campaign id)."""
        start, end = get_date_range(days)
        spend_sum = func.coalesce(func.sum(Metric.spend), 0)

        rows = (
            self.db.query(
                Campaign.id,
                Campaign.name,
                Campaign.platform,
                Campaign.status,
                *_sum_columns(),
            )
            .join(Metric, Metric.campaign_id == Campaign.id)
            .filter(
                Campaign.tenant_id == tenant_id,
                Metric.date >= as_date(start),
                Metric.date <= as_date(end),
            )
            .group_by(Campaign.id, Campaign.name, Campaign.platform, Campaign.status)
            .order_by(desc(spend_sum), asc(Campaign.id))
            .limit(limit)
            .all()
        )

        results = []
        for row in rows:
            totals = Totals.from_sums(row.impressions, row.clicks, row.spend, row.conversions, row.revenue)
            results.append({
                "id": row.id,
                "name": row.name,
                "platform": row.platform.value,
                "status": row.status.value,
                "metrics": {
                    "impressions": totals.impressions,
                    "clicks": totals.clicks,
                    "spend": totals.spend,
                    "conversions": totals.conversions,
                    "revenue": totals.revenue,
                    "roas": totals.roas,
                    "ctr": totals.ctr,
                },
            })
        return results

    def get_daily_metrics(self, tenant_id: UUID, period: str) -> Dict[str, Any]:
        """Per-day sums with ratios derived from each day's sums, oldest first."""
        days = parse_period_days(period)
        start, end = get_date_range(days)

        rows = (
            self.db.query(Metric.date, *_sum_columns())
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

        data = []
        for row in rows:
            totals = Totals.from_sums(row.impressions, row.clicks, row.spend, row.conversions, row.revenue)
            data.append({
                "date": row.date,
                "impressions": totals.impressions,
                "clicks": totals.clicks,
                "spend": totals.spend,
                "conversions": totals.conversions,
                "revenue": totals.revenue,
                "ctr": totals.ctr,
                "cpc": totals.cpc,
                "roas": totals.roas,
            })

        return {"period": period, "start_date": start, "end_date": end, "data": data}

    def get_campaign_performance(self, campaign_id: UUID, start: datetime, end: datetime) -> Dict[str, Any]:
        """Totals (sum-then-derive) and the stored daily rows for one campaign."""
        metrics = (
            self.db.query(Metric)
            .filter(
                Metric.campaign_id == campaign_id,
                Metric.date >= as_date(start),
                Metric.date <= as_date(end),
            )
            .order_by(asc(Metric.date))
            .all()
        )

        totals = Totals.from_sums(
            sum(m.impressions or 0 for m in metrics),
            sum(m.clicks or 0 for m in metrics),
            sum(m.spend or 0 for m in metrics),
            sum(m.conversions or 0 for m in metrics),
            sum(m.revenue or 0 for m in metrics),
        ).as_dict()
        totals.pop("sessions")

        return {
            "campaign_id": campaign_id,
            "start_date": start,
            "end_date": end,
            "totals": totals,
            "daily": [
                {
                    "date": m.date,
                    "impressions": m.impressions or 0,
                    "clicks": m.clicks or 0,
                    "spend": m.spend or 0,
                    "conversions": m.conversions or 0,
                    "revenue": m.revenue or 0,
                    "ctr": m.ctr or 0,
                    "cpc": m.cpc or 0,
                    "cpm": m.cpm or 0,
                    "roas": m.roas or 0,
                }
                for m in metrics
            ],
        }
