"""Google Ads platform adapter.

WHAT:
    Fetches campaigns and daily campaign metrics through the Google Ads
    Python SDK (GAQL over GoogleAdsService.search) and maps them into the
    unified CampaignPayload / DailyMetric shape.

WHY:
    - Keeps SDK specifics (micros, proto-plus enums, customer id format)
      out of the sync orchestrator.
    - The SDK client is built per account from the account's refresh token;
      a `client_factory` can be injected for tests.

REFERENCES:
    - https://developers.google.com/google-ads/api/docs/query/overview
    - app/services/adapters/base.py (contract)
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from typing import Any, Callable, Dict, Iterable, List, Optional

from google.ads.googleads.client import GoogleAdsClient
from google.ads.googleads.errors import GoogleAdsException
from google.api_core.exceptions import GoogleAPICallError

from app.deps import get_settings
from app.models import CampaignStatusEnum, PlatformEnum
from app.services.adapters.base import (
    AdapterFetchError,
    CampaignPayload,
    DailyMetric,
    DateRange,
    PlatformAdapter,
    PlatformCredentials,
    fill_missing_days,
)

logger = logging.getLogger(__name__)

MICROS = 1_000_000.0

STATUS_MAP = {
    "ENABLED": CampaignStatusEnum.active,
    "PAUSED": CampaignStatusEnum.paused,
    "REMOVED": CampaignStatusEnum.deleted,
}

CAMPAIGNS_QUERY = (
    "SELECT campaign.id, campaign.name, campaign.status, "
    "campaign_budget.amount_micros "
    "FROM campaign ORDER BY campaign.name"
)


class GoogleAdsRateLimiter:
    """Simple token bucket rate limiter.

    WHAT:
        Guard outgoing requests to honor QPS/quota. Defaults are conservative.
    WHY:
        Avoid RESOURCE_EXHAUSTED errors and smooth out bursts when many
        campaigns are synced back to back. One instance is shared by the
        sync thread pool, so token accounting happens under a lock.
    """

    def __init__(self, capacity: int = 15, refill_per_sec: float = 5.0) -> None:
        self.capacity = capacity
        self.tokens = float(capacity)
        self.refill_per_sec = refill_per_sec
        self.last = time.monotonic()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            now = time.monotonic()
            elapsed = now - self.last
            self.last = now
            self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_sec)
            if self.tokens < 1:
                missing = 1 - self.tokens
                # Waiters queue on the lock; at most 1/refill_per_sec each
                time.sleep(max(0.0, missing / self.refill_per_sec))
                self.last = time.monotonic()
                self.tokens = 0
            self.tokens = max(0.0, self.tokens - 1)


def normalize_customer_id(customer_id: Optional[str]) -> str:
    """Strip dashes/spaces: "123-456-7890" -> "1234567890"."""
    return "".join(ch for ch in str(customer_id or "") if ch.isdigit())


def _enum_name(value: Any) -> str:
    # proto-plus enums expose `.name`; fakes and older SDKs hand back strings
    if value is None:
        return ""
    if hasattr(value, "name"):
        return str(value.name).upper()
    return str(value).upper()


def map_status(native_status: Any) -> CampaignStatusEnum:
    """ENABLED/PAUSED/REMOVED -> unified status; anything else -> PAUSED."""
    return STATUS_MAP.get(_enum_name(native_status), CampaignStatusEnum.paused)


def build_sdk_client(credentials: PlatformCredentials) -> Any:
    """Build a GoogleAdsClient from app settings plus the account refresh token."""
    settings = get_settings()
    if not credentials.refresh_token:
        raise ValueError("Google Ads account has no refresh token")

    missing = [
        name for name, value in (
            ("GOOGLE_DEVELOPER_TOKEN", settings.GOOGLE_DEVELOPER_TOKEN),
            ("GOOGLE_CLIENT_ID", settings.GOOGLE_CLIENT_ID),
            ("GOOGLE_CLIENT_SECRET", settings.GOOGLE_CLIENT_SECRET),
        ) if not value
    ]
    if missing:
        raise ValueError(f"Missing required Google Ads settings: {', '.join(missing)}")

    config: Dict[str, Any] = {
        "developer_token": settings.GOOGLE_DEVELOPER_TOKEN,
        "client_id": settings.GOOGLE_CLIENT_ID,
        "client_secret": settings.GOOGLE_CLIENT_SECRET,
        "refresh_token": credentials.refresh_token,
        "use_proto_plus": True,
    }
    login_customer_id = normalize_customer_id(settings.GOOGLE_LOGIN_CUSTOMER_ID)
    # Only use if valid 10-digit ID; otherwise omit to avoid client error
    if len(login_customer_id) == 10:
        config["login_customer_id"] = login_customer_id
    return GoogleAdsClient.load_from_dict(config)


class GoogleAdsAdapter(PlatformAdapter):
    """Google Ads implementation of the platform adapter contract."""

    platform = PlatformEnum.google_ads

    def __init__(
        self,
        client_factory: Optional[Callable[[PlatformCredentials], Any]] = None,
        rate_limiter: Optional[GoogleAdsRateLimiter] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._client_factory = client_factory or build_sdk_client
        self._rate = rate_limiter or GoogleAdsRateLimiter()
        self._timeout = timeout if timeout is not None else get_settings().ADAPTER_REQUEST_TIMEOUT_SECONDS

    # --- Low-level GAQL -------------------------------------------------
    def _search(self, credentials: PlatformCredentials, query: str) -> Iterable[Any]:
        customer_id = normalize_customer_id(credentials.account_id)
        if not customer_id:
            raise AdapterFetchError(f"Invalid Google Ads customer id: {credentials.account_id!r}")

        try:
            client = self._client_factory(credentials)
            service = client.get_service("GoogleAdsService")
            self._rate.acquire()
            # Materialize inside the try so paging errors are wrapped as well
            return list(service.search(customer_id=customer_id, query=query, timeout=self._timeout))
        except GoogleAdsException as exc:
            failure = getattr(exc, "failure", None)
            logger.error("[GOOGLE_ADS] API error for customer %s: %s", customer_id, failure or exc)
            raise AdapterFetchError(f"Google Ads API error for customer {customer_id}: {exc}") from exc
        except GoogleAPICallError as exc:
            # Includes DeadlineExceeded (request timeout)
            logger.error("[GOOGLE_ADS] Transport error for customer %s: %s", customer_id, exc)
            raise AdapterFetchError(f"Google Ads request failed for customer {customer_id}: {exc}") from exc
        except ValueError as exc:
            raise AdapterFetchError(f"Google Ads client not configured: {exc}") from exc

    # --- Contract -------------------------------------------------------
    def validate_credentials(self, credentials: PlatformCredentials) -> bool:
        try:
            self._search(credentials, "SELECT customer.id FROM customer LIMIT 1")
            return True
        except AdapterFetchError as exc:
            logger.warning("[GOOGLE_ADS] Credential validation failed for %s: %s", credentials.account_id, exc)
            return False

    def fetch_campaigns(self, credentials: PlatformCredentials) -> List[CampaignPayload]:
        logger.info("[GOOGLE_ADS] Fetching campaigns for customer %s", credentials.account_id)
        rows = self._search(credentials, CAMPAIGNS_QUERY)

        campaigns: List[CampaignPayload] = []
        for row in rows:
            c = row.campaign
            budget_micros = getattr(getattr(row, "campaign_budget", None), "amount_micros", None)
            campaigns.append(CampaignPayload(
                external_id=str(c.id),
                name=str(c.name),
                status=map_status(getattr(c, "status", None)),
                budget=(budget_micros / MICROS) if budget_micros else None,
            ))

        logger.info("[GOOGLE_ADS] Fetched %d campaigns for customer %s", len(campaigns), credentials.account_id)
        return campaigns

    def fetch_metrics(
        self,
        credentials: PlatformCredentials,
        campaign_or_account_id: str,
        date_range: DateRange,
    ) -> List[DailyMetric]:
        campaign_id = "".join(ch for ch in str(campaign_or_account_id) if ch.isdigit())
        if not campaign_id:
            raise AdapterFetchError(f"Invalid Google Ads campaign id: {campaign_or_account_id!r}")

        query = (
            "SELECT campaign.id, metrics.impressions, metrics.clicks, metrics.cost_micros, "
            "metrics.conversions, metrics.conversions_value, segments.date "
            "FROM campaign "
            f"WHERE campaign.id = {campaign_id} "
            f"AND segments.date BETWEEN '{date_range.start.isoformat()}' AND '{date_range.end.isoformat()}'"
        )
        rows = self._search(credentials, query)

        metrics: List[DailyMetric] = []
        for row in rows:
            m = row.metrics
            day = row.segments.date
            if isinstance(day, str):
                day = date.fromisoformat(day)
            metrics.append(DailyMetric.from_counters(
                day,
                impressions=int(m.impressions or 0),
                clicks=int(m.clicks or 0),
                spend=(m.cost_micros or 0) / MICROS,
                conversions=float(m.conversions or 0.0),
                revenue=float(m.conversions_value or 0.0),
            ))

        logger.info(
            "[GOOGLE_ADS] Fetched %d metric rows for campaign %s (%s..%s)",
            len(metrics), campaign_id, date_range.start, date_range.end,
        )
        return fill_missing_days(metrics, date_range)
