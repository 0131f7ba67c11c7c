"""
Dashboard Router
================

WHAT: Summary cards, top campaigns, trend chart, per-platform breakdown and
      mock-data management for the tenant dashboard.
WHY:  Gives the dashboard one place for its read models; all numbers come
      from the same sum-then-derive aggregation as /metrics.

REFERENCES:
- app/services/dashboard_service.py
- app/services/metrics_service.py
- app/services/mock_data.py
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..deps import get_tenant
from ..models import Tenant
from ..services.adapters import UnsupportedPlatformError
from ..services.dashboard_service import DashboardService
from ..services.metrics_service import MetricsService
from ..services.mock_data import MOCK_SEED_DAYS, clear_mock_data, seed_mock_data

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/summary", response_model=schemas.DashboardSummary)
def get_summary(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    days: int = Query(30, ge=1, le=365),
    platform: str = Query("ALL", description="ALL or a platform identifier"),
):
    try:
        return DashboardService(db).get_summary(tenant.id, days=days, platform=platform)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("/top-campaigns", response_model=List[schemas.TopCampaign])
def get_top_campaigns(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    limit: int = Query(5, ge=1, le=50),
    days: int = Query(30, ge=1, le=365),
):
    return MetricsService(db).get_top_campaigns(tenant.id, limit=limit, days=days)


@router.get("/trends", response_model=List[schemas.DashboardTrendPoint])
def get_trends(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    days: int = Query(30, ge=1, le=365),
):
    return DashboardService(db).get_trends(tenant.id, days=days)


@router.get("/performance-by-platform", response_model=List[schemas.PlatformPerformance])
def get_performance_by_platform(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    days: int = Query(30, ge=1, le=365),
):
    return DashboardService(db).get_performance_by_platform(tenant.id, days=days)


@router.post(
    "/mock-data/seed",
    response_model=schemas.MockDataSeedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Seed demo campaigns and metrics",
)
def seed_mock(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
    days: int = Query(MOCK_SEED_DAYS, ge=1, le=365),
):
    return seed_mock_data(db, tenant.id, days=days)


@router.delete(
    "/mock-data",
    summary="Delete mock-flagged rows",
)
def delete_mock(
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_tenant),
):
    return clear_mock_data(db, tenant.id)
