"""Pydantic schemas for request/response payloads."""

from datetime import datetime, date
from uuid import UUID
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, field_validator

from .models import (
    PlatformEnum,
    AccountStatusEnum,
    AlertRuleTypeEnum,
    AlertOperatorEnum,
    AlertSeverityEnum,
    AlertStatusEnum,
    SyncStatusEnum,
    SyncTriggerEnum,
)


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(
        description="Error message",
        examples=["Tenant not found"]
    )


class SuccessResponse(BaseModel):
    """Standard success response."""

    status: str = Field(default="ok", description="Status message")
    detail: Optional[str] = Field(
        default=None,
        description="Success message",
        examples=["Operation completed successfully"]
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(
        description="Service status",
        examples=["ok"]
    )


# ---------------------------------------------------------------------------
# Connected accounts
# ---------------------------------------------------------------------------

class AccountConnect(BaseModel):
    """Payload for connecting (or reconnecting) a platform account."""

    platform: str = Field(
        description="Platform identifier (case-insensitive, e.g. 'facebook', 'GOOGLE_ADS')",
        examples=["facebook"]
    )
    external_account_id: str = Field(
        description="Account id on the platform (customer id, ad account id, GA4 property id)",
        examples=["act_1234567890"]
    )
    name: str = Field(description="Display name", examples=["Main ad account"])
    access_token: str = Field(description="Platform access token (stored encrypted)")
    refresh_token: Optional[str] = Field(default=None, description="Refresh token, when the platform issues one")

    @field_validator("external_account_id", "name", "access_token")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class AccountOut(BaseModel):
    """Connected account without secrets."""

    id: UUID
    platform: PlatformEnum
    external_account_id: str
    name: str
    status: AccountStatusEnum
    last_sync_at: Optional[datetime] = None
    last_sync_error: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AccountListResponse(BaseModel):
    accounts: List[AccountOut]
    total: int


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------

class AccountSyncResponse(BaseModel):
    """Result of a manual single-account sync."""

    account_id: str
    sync_run_id: str
    campaigns_synced: int
    metrics_synced: int


class PlatformSyncResponse(BaseModel):
    """Per-platform batch counters."""

    platform: str
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[Dict[str, str]] = Field(default_factory=list)


class SyncAllResponse(BaseModel):
    results: Dict[str, PlatformSyncResponse]


class SyncRunOut(BaseModel):
    """One recorded sync_account execution."""

    id: UUID
    account_id: UUID
    platform: PlatformEnum
    trigger: SyncTriggerEnum
    status: SyncStatusEnum
    campaigns_synced: int
    metrics_synced: int
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class MetricTotals(BaseModel):
    """Summed counters with ratios derived from the sums."""

    impressions: int = 0
    clicks: int = 0
    spend: float = 0.0
    conversions: float = 0.0
    revenue: float = 0.0
    sessions: int = 0
    ctr: float = Field(default=0.0, description="Click-through rate in percent")
    cpc: float = 0.0
    cpm: float = 0.0
    roas: float = 0.0


class MetricsTrendsResponse(BaseModel):
    period: str = Field(examples=["7d"])
    start_date: datetime
    end_date: datetime
    current: MetricTotals
    previous: Optional[MetricTotals] = None
    trends: Optional[Dict[str, float]] = Field(
        default=None,
        description="Percent change per field vs the previous window"
    )


class DailyMetricPoint(BaseModel):
    date: date
    impressions: int
    clicks: int
    spend: float
    conversions: float
    revenue: float
    ctr: float
    cpc: float
    roas: float


class DailyMetricsResponse(BaseModel):
    period: str
    start_date: datetime
    end_date: datetime
    data: List[DailyMetricPoint]


class CampaignDailyPoint(BaseModel):
    date: date
    impressions: int
    clicks: int
    spend: float
    conversions: float
    revenue: float
    ctr: float
    cpc: float
    cpm: float
    roas: float


class CampaignPerformanceResponse(BaseModel):
    campaign_id: UUID
    start_date: datetime
    end_date: datetime
    totals: Dict[str, float]
    daily: List[CampaignDailyPoint]


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

class DashboardSummary(BaseModel):
    platform: str = Field(examples=["ALL"])
    total_campaigns: int
    active_campaigns: int
    total_spend: float
    total_impressions: int
    total_clicks: int
    total_conversions: float
    is_mock_data: bool
    trends: Dict[str, float]


class TopCampaignMetrics(BaseModel):
    impressions: int
    clicks: int
    spend: float
    conversions: float
    revenue: float
    roas: float
    ctr: float


class TopCampaign(BaseModel):
    id: UUID
    name: str
    platform: str
    status: str
    metrics: TopCampaignMetrics


class DashboardTrendPoint(BaseModel):
    date: date
    impressions: int
    clicks: int
    spend: float
    conversions: float


class PlatformPerformance(BaseModel):
    platform: str
    spend: float
    impressions: int
    clicks: int
    conversions: float


class MockDataSeedResponse(BaseModel):
    campaigns: int
    metrics: int
    web_analytics: int


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class AlertRuleCreate(BaseModel):
    """Payload for a custom alert rule."""

    name: str = Field(description="Rule name; also determines the alert type", examples=["High CPC"])
    metric: str = Field(
        description="Aggregated metric to compare (impressions, clicks, spend, conversions, revenue, ctr, cpc, cpm, roas)",
        examples=["cpc"]
    )
    operator: AlertOperatorEnum = Field(examples=["gt"])
    threshold: float = Field(examples=[2.5])
    severity: AlertSeverityEnum = AlertSeverityEnum.warning
    description: Optional[str] = None


class AlertRuleUpdate(BaseModel):
    """Partial update for an alert rule."""

    name: Optional[str] = None
    metric: Optional[str] = None
    operator: Optional[AlertOperatorEnum] = None
    threshold: Optional[float] = None
    severity: Optional[AlertSeverityEnum] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class AlertRuleOut(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    type: AlertRuleTypeEnum
    metric: str
    operator: AlertOperatorEnum
    threshold: float
    severity: AlertSeverityEnum
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AlertCampaignRef(BaseModel):
    id: UUID
    name: str
    platform: PlatformEnum

    model_config = {"from_attributes": True}


class AlertOut(BaseModel):
    id: UUID
    rule_id: Optional[UUID] = None
    campaign_id: Optional[UUID] = None
    campaign: Optional[AlertCampaignRef] = None
    type: str
    severity: AlertSeverityEnum
    status: AlertStatusEnum
    title: str
    message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="alert_metadata")
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True, "populate_by_name": True}


class AlertCountResponse(BaseModel):
    total: int
    critical: int
    warning: int
    info: int


class AlertCheckResponse(BaseModel):
    created: int
    alerts: List[AlertOut]


class ResolveAllResponse(BaseModel):
    resolved: int
