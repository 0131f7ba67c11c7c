"""Metric aggregation endpoints (trends, daily series, campaign performance)."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant
from ..models import Campaign, Tenant
from ..services.metrics_service import MetricsService
from ..utils.date_range import get_date_range

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/metrics",
    tags=["Metrics"],
    responses={
        404: {"model": schemas.ErrorResponse, "description": "Not Found"},
    },
)


@router.get(
    "/trends",
    response_model=schemas.MetricsTrendsResponse,
    summary="Window totals with optional period-over-period trends",
)
def get_trends(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    period: str = Query("7d", description="Trailing window, e.g. 7d, 30d"),
    compare_with: Optional[str] = Query(None, description="'previous_period' to include previous/trends"),
):
    return MetricsService(db).get_metrics_trends(tenant.id, period, compare_with)


@router.get(
    "/daily",
    response_model=schemas.DailyMetricsResponse,
    summary="Per-day sums for the trailing window",
)
def get_daily(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    period: str = Query("30d"),
):
    return MetricsService(db).get_daily_metrics(tenant.id, period)


@router.get(
    "/campaigns/{campaign_id}/performance",
    response_model=schemas.CampaignPerformanceResponse,
    summary="Totals and daily rows for one campaign",
)
def get_campaign_performance(
    campaign_id: UUID,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    days: int = Query(30, ge=1, le=365),
):
    campaign = (
        db.query(Campaign)
        .filter(Campaign.id == campaign_id, Campaign.tenant_id == tenant.id)
        .first()
    )
    if not campaign:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not found")

    start, end = get_date_range(days)
    return MetricsService(db).get_campaign_performance(campaign.id, start, end)
