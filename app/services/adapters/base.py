"""Platform adapter contract and unified payload types.

WHAT:
    Abstract base class every platform adapter implements, the normalized
    payloads they return, the derived-metric formulas, and the adapter error
    hierarchy.

WHY:
    The sync orchestrator only ever talks to this contract. Platform quirks
    (budget units, status vocabularies, report shapes) stay inside the
    concrete adapters, and derived ratios are always recomputed here from raw
    counters so every platform reports CTR/CPC/CPM/ROAS identically.

REFERENCES:
    - app/services/adapters/__init__.py (registry)
    - app/services/unified_sync_service.py (consumer)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional

from app.models import CampaignStatusEnum, PlatformEnum
from app.utils.date_range import iter_days

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class AdapterError(Exception):
    """Base exception for adapter and registry errors."""
    pass


class UnsupportedPlatformError(AdapterError):
    """Raised when a platform identifier has no registered adapter."""

    def __init__(self, platform: object):
        super().__init__(f"Unsupported platform: {platform}")
        self.platform = platform


class CredentialInvalidError(AdapterError):
    """Raised when an account's credentials fail validation."""
    pass


class AdapterFetchError(AdapterError):
    """Raised when a platform API call fails (network, timeout, HTTP error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# PAYLOADS
# =============================================================================

@dataclass(frozen=True)
class PlatformCredentials:
    """Platform-agnostic credential shape handed to adapters.

    For analytics platforms `account_id` carries the property id.
    """
    access_token: Optional[str]
    refresh_token: Optional[str]
    account_id: str


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day range."""
    start: date
    end: date

    def days(self) -> List[date]:
        return list(iter_days(self.start, self.end))


@dataclass
class CampaignPayload:
    """Campaign as returned by an adapter, already in unified units."""
    external_id: str
    name: str
    status: CampaignStatusEnum
    budget: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass
class DailyMetric:
    """One day of delivery for a campaign (or property, for analytics)."""
    date: date
    impressions: int = 0
    clicks: int = 0
    spend: float = 0.0
    conversions: float = 0.0
    revenue: float = 0.0
    ctr: float = 0.0
    cpc: float = 0.0
    cpm: float = 0.0
    roas: float = 0.0
    # Web analytics counters (GA4); zero for ad platforms
    sessions: int = 0
    active_users: int = 0
    new_users: int = 0
    page_views: int = 0

    @classmethod
    def from_counters(
        cls,
        day: date,
        impressions: int = 0,
        clicks: int = 0,
        spend: float = 0.0,
        conversions: float = 0.0,
        revenue: float = 0.0,
        **analytics,
    ) -> "DailyMetric":
        """Build a metric with derived ratios recomputed from raw counters."""
        derived = compute_derived_metrics(impressions, clicks, spend, revenue)
        return cls(
            date=day,
            impressions=int(impressions or 0),
            clicks=int(clicks or 0),
            spend=float(spend or 0.0),
            conversions=float(conversions or 0.0),
            revenue=float(revenue or 0.0),
            **derived,
            **analytics,
        )


def compute_derived_metrics(impressions, clicks, spend, revenue) -> Dict[str, float]:
    """CTR (%), CPC, CPM and ROAS from raw counters; 0 when the denominator is 0."""
    impressions = float(impressions or 0)
    clicks = float(clicks or 0)
    spend = float(spend or 0)
    revenue = float(revenue or 0)
    return {
        "ctr": (clicks / impressions) * 100 if impressions > 0 else 0.0,
        "cpc": spend / clicks if clicks > 0 else 0.0,
        "cpm": (spend / impressions) * 1000 if impressions > 0 else 0.0,
        "roas": revenue / spend if spend > 0 else 0.0,
    }


def fill_missing_days(metrics: Iterable[DailyMetric], date_range: DateRange) -> List[DailyMetric]:
    """Return exactly one metric per day of `date_range`.

    Rows outside the range are dropped, duplicate days keep the last row, and
    days the platform did not report are zero-filled.
    """
    by_day: Dict[date, DailyMetric] = {}
    for metric in metrics:
        if date_range.start <= metric.date <= date_range.end:
            by_day[metric.date] = metric
    return [by_day.get(day) or DailyMetric(date=day) for day in date_range.days()]


# =============================================================================
# CONTRACT
# =============================================================================

class PlatformAdapter(ABC):
    """Contract implemented by every platform adapter.

    Adapters never persist anything and never swallow API failures: errors
    surface as `AdapterFetchError` so the orchestrator can count the account
    as failed.
    """

    platform: PlatformEnum
    # Analytics-style platforms have no campaigns; metrics are keyed by property
    has_campaigns: bool = True

    @abstractmethod
    def validate_credentials(self, credentials: PlatformCredentials) -> bool:
        """Cheap liveness check. Returns False for invalid tokens instead of raising."""

    @abstractmethod
    def fetch_campaigns(self, credentials: PlatformCredentials) -> List[CampaignPayload]:
        """Return the account's campaigns in unified status/budget units."""

    @abstractmethod
    def fetch_metrics(
        self,
        credentials: PlatformCredentials,
        campaign_or_account_id: str,
        date_range: DateRange,
    ) -> List[DailyMetric]:
        """Return one DailyMetric per day in `date_range` (inclusive)."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} platform={self.platform.value}>"
