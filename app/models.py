"""SQLAlchemy ORM models and enums.

This module defines the unified marketing schema using UUID primary keys and
explicit relationships. Every row belongs to exactly one tenant. Platform data
(campaigns, daily metrics, web analytics) is normalized by the sync layer into
the same tables regardless of source platform.

Natural-identity unique constraints back the idempotent upserts performed by
`app/services/unified_sync_service.py`:
    - campaigns:            (tenant_id, platform, external_id)
    - metrics:              (campaign_id, date)
    - web_analytics_daily:  (tenant_id, property_id, date)
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    Index,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


# Enums ---------------------------------------------------------

class PlatformEnum(str, enum.Enum):
    """Closed set of supported source platforms."""
    google_ads = "GOOGLE_ADS"
    facebook = "FACEBOOK"
    google_analytics = "GOOGLE_ANALYTICS"
    tiktok = "TIKTOK"
    line_ads = "LINE_ADS"


class AccountStatusEnum(str, enum.Enum):
    # Google Ads accounts are "ENABLED" when live, every other platform uses "ACTIVE"
    enabled = "ENABLED"
    active = "ACTIVE"
    disabled = "DISABLED"


class CampaignStatusEnum(str, enum.Enum):
    draft = "DRAFT"
    active = "ACTIVE"
    paused = "PAUSED"
    ended = "ENDED"
    deleted = "DELETED"


class AlertRuleTypeEnum(str, enum.Enum):
    preset = "PRESET"
    custom = "CUSTOM"


class AlertOperatorEnum(str, enum.Enum):
    gt = "gt"
    lt = "lt"
    eq = "eq"
    gte = "gte"
    lte = "lte"


class AlertSeverityEnum(str, enum.Enum):
    info = "INFO"
    warning = "WARNING"
    critical = "CRITICAL"


class AlertStatusEnum(str, enum.Enum):
    open = "OPEN"
    acknowledged = "ACKNOWLEDGED"
    resolved = "RESOLVED"


class SyncStatusEnum(str, enum.Enum):
    """Per-account sync state machine.

    pending -> fetching_campaigns -> upserting_campaigns -> fetching_metrics
    -> upserting_metrics -> done, with failed reachable from any step.
    """
    pending = "PENDING"
    fetching_campaigns = "FETCHING_CAMPAIGNS"
    upserting_campaigns = "UPSERTING_CAMPAIGNS"
    fetching_metrics = "FETCHING_METRICS"
    upserting_metrics = "UPSERTING_METRICS"
    done = "DONE"
    failed = "FAILED"


class SyncTriggerEnum(str, enum.Enum):
    scheduled = "SCHEDULED"
    manual = "MANUAL"


def _enum(enum_cls, name: str):
    return Enum(enum_cls, name=name, values_callable=lambda obj: [e.value for e in obj])


# Core models ----------------------------------------------------

class Tenant(Base):
    """Tenant is the isolation boundary for all marketing data.

    Created at signup (outside this service). All accounts, campaigns,
    analytics rows, rules and alerts hang off a tenant.
    """
    __tablename__ = "tenants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    accounts = relationship("ConnectedAccount", back_populates="tenant", cascade="all, delete-orphan")
    campaigns = relationship("Campaign", back_populates="tenant", cascade="all, delete-orphan")
    alert_rules = relationship("AlertRule", back_populates="tenant", cascade="all, delete-orphan")
    alerts = relationship("Alert", back_populates="tenant", cascade="all, delete-orphan")

    def __str__(self):
        return self.name


class ConnectedAccount(Base):
    """A tenant's link to one account on one ad or analytics platform.

    WHAT:
        One polymorphic table for all platforms. `external_account_id` holds
        the platform-native identity: customer id (Google Ads), ad account id
        (Facebook), advertiser id (TikTok, LINE) or property id (GA4).
    WHY:
        Campaigns reference a single `account_id` FK regardless of platform,
        instead of one nullable FK column per platform family.

    Accounts are never hard-deleted; disconnecting sets status to DISABLED.
    """
    __tablename__ = "connected_accounts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "platform", "external_account_id", name="uq_account_tenant_platform_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    platform = Column(_enum(PlatformEnum, "platform_enum"), nullable=False)
    external_account_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    status = Column(_enum(AccountStatusEnum, "account_status_enum"), nullable=False)

    # Fernet ciphertext, see app/security.py
    access_token_enc = Column(Text, nullable=True)
    refresh_token_enc = Column(Text, nullable=True)

    last_sync_at = Column(DateTime, nullable=True)
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="accounts")
    campaigns = relationship("Campaign", back_populates="account")
    sync_runs = relationship("SyncRun", back_populates="account")

    def __str__(self):
        return f"{self.name} ({self.platform.value})"


class Campaign(Base):
    """Unified campaign regardless of source platform.

    Identity key for upserts is (tenant_id, platform, external_id). Rows are
    created and updated only by the sync orchestrator or mock-data seeding.
    """
    __tablename__ = "campaigns"
    __table_args__ = (
        UniqueConstraint("tenant_id", "platform", "external_id", name="uq_campaign_tenant_platform_external"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    account_id = Column(UUID(as_uuid=True), ForeignKey("connected_accounts.id"), nullable=True, index=True)
    platform = Column(_enum(PlatformEnum, "platform_enum"), nullable=False)
    external_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    status = Column(_enum(CampaignStatusEnum, "campaign_status_enum"), nullable=False, default=CampaignStatusEnum.paused)
    budget = Column(Numeric(18, 4, asdecimal=False), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="campaigns")
    account = relationship("ConnectedAccount", back_populates="campaigns")
    metrics = relationship("Metric", back_populates="campaign", cascade="all, delete-orphan")

    def __str__(self):
        return f"{self.name} ({self.platform.value})"


class Metric(Base):
    """Daily snapshot of campaign delivery.

    Raw counters plus derived ratios computed at write time:
        ctr  = clicks / impressions * 100
        cpc  = spend / clicks
        cpm  = spend / impressions * 1000
        roas = revenue / spend
    Aggregations never average these stored ratios; they sum counters first.
    """
    __tablename__ = "metrics"
    __table_args__ = (
        UniqueConstraint("campaign_id", "date", name="uq_metric_campaign_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    impressions = Column(Integer, nullable=False, default=0)
    clicks = Column(Integer, nullable=False, default=0)
    spend = Column(Numeric(18, 4, asdecimal=False), nullable=False, default=0)
    conversions = Column(Numeric(18, 4, asdecimal=False), nullable=False, default=0)
    revenue = Column(Numeric(18, 4, asdecimal=False), nullable=False, default=0)

    ctr = Column(Float, nullable=False, default=0)
    cpc = Column(Float, nullable=False, default=0)
    cpm = Column(Float, nullable=False, default=0)
    roas = Column(Float, nullable=False, default=0)

    is_mock_data = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    campaign = relationship("Campaign", back_populates="metrics")

    def __str__(self):
        return f"{self.date.isoformat()} - campaign {self.campaign_id} - {self.spend}"


class WebAnalyticsDaily(Base):
    """Daily property-level snapshot from analytics platforms (GA4)."""
    __tablename__ = "web_analytics_daily"
    __table_args__ = (
        UniqueConstraint("tenant_id", "property_id", "date", name="uq_web_analytics_tenant_property_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    property_id = Column(String, nullable=False)
    date = Column(Date, nullable=False, index=True)

    sessions = Column(Integer, nullable=False, default=0)
    active_users = Column(Integer, nullable=False, default=0)
    new_users = Column(Integer, nullable=False, default=0)
    page_views = Column(Integer, nullable=False, default=0)
    conversions = Column(Numeric(18, 4, asdecimal=False), nullable=False, default=0)
    revenue = Column(Numeric(18, 4, asdecimal=False), nullable=False, default=0)

    is_mock_data = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AlertRule(Base):
    """Threshold rule evaluated against a campaign's trailing-window metrics.

    PRESET rules are seeded once per tenant and can only be disabled.
    CUSTOM rules are owned by the tenant and deletable.

    NOTE: for the Overspend preset `threshold` is a budget multiplier
    (1.1 == 110% of budget), not an absolute spend value.
    """
    __tablename__ = "alert_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(_enum(AlertRuleTypeEnum, "alert_rule_type_enum"), nullable=False)
    metric = Column(String, nullable=False)
    operator = Column(_enum(AlertOperatorEnum, "alert_operator_enum"), nullable=False)
    threshold = Column(Float, nullable=False)
    severity = Column(_enum(AlertSeverityEnum, "alert_severity_enum"), nullable=False, default=AlertSeverityEnum.warning)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="alert_rules")
    alerts = relationship("Alert", back_populates="rule")

    def __str__(self):
        return f"{self.name} ({self.metric} {self.operator.value} {self.threshold})"


class Alert(Base):
    """A rule violation for one campaign.

    Lifecycle: OPEN -> ACKNOWLEDGED -> RESOLVED (OPEN -> RESOLVED allowed).
    RESOLVED is terminal. At most one non-resolved alert exists per
    (tenant_id, campaign_id, type); `type` is derived from the rule name.
    """
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_tenant_campaign_type", "tenant_id", "campaign_id", "type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    rule_id = Column(UUID(as_uuid=True), ForeignKey("alert_rules.id", ondelete="SET NULL"), nullable=True)
    campaign_id = Column(UUID(as_uuid=True), ForeignKey("campaigns.id", ondelete="SET NULL"), nullable=True, index=True)
    type = Column(String, nullable=False)
    severity = Column(_enum(AlertSeverityEnum, "alert_severity_enum"), nullable=False)
    status = Column(_enum(AlertStatusEnum, "alert_status_enum"), nullable=False, default=AlertStatusEnum.open)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    alert_metadata = Column("metadata", JSON, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", back_populates="alerts")
    rule = relationship("AlertRule", back_populates="alerts")
    campaign = relationship("Campaign")

    def __str__(self):
        return f"[{self.severity.value}] {self.title} ({self.status.value})"


class SyncRun(Base):
    """History row for one `sync_account` execution.

    WHAT: Persists the per-account state machine (status) and its outcome.
    WHY: Gives operators visibility into which accounts fail and at which step.
    """
    __tablename__ = "sync_runs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    account_id = Column(UUID(as_uuid=True), ForeignKey("connected_accounts.id"), nullable=False, index=True)
    platform = Column(_enum(PlatformEnum, "platform_enum"), nullable=False)
    trigger = Column(_enum(SyncTriggerEnum, "sync_trigger_enum"), nullable=False, default=SyncTriggerEnum.manual)
    status = Column(_enum(SyncStatusEnum, "sync_status_enum"), nullable=False, default=SyncStatusEnum.pending)
    campaigns_synced = Column(Integer, nullable=False, default=0)
    metrics_synced = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    finished_at = Column(DateTime, nullable=True)

    account = relationship("ConnectedAccount", back_populates="sync_runs")

    def __str__(self):
        return f"{self.platform.value} sync {self.status.value}"
