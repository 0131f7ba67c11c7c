"""Facebook (Meta) Ads platform adapter.

WHAT:
    Wraps the Facebook Business SDK: campaigns via `AdAccount.get_campaigns`,
    daily campaign insights via `Campaign.get_insights(time_increment=1)`.
    Rows are mapped into CampaignPayload / DailyMetric.

WHY:
    - Meta reports budgets in cents and revenue only indirectly
      (purchase_roas or purchase action_values); the mapping lives here.
    - Every SDK call gets its own `FacebookAdsApi` session bound to the
      account token, so parallel syncs never share a default API object.

RATE LIMITS:
    - ~200 calls/hour per ad account; enforced per account with @rate_limit,
      never waiting longer than the request timeout.

REFERENCES:
    - https://developers.facebook.com/docs/marketing-api/insights
    - app/services/adapters/base.py (contract)
"""

import logging
import threading
from collections import defaultdict, deque
from datetime import date
from functools import wraps
from time import sleep, time
from typing import Any, Dict, Iterable, List, Optional

from facebook_business.adobjects.adaccount import AdAccount
from facebook_business.adobjects.adsinsights import AdsInsights
from facebook_business.adobjects.campaign import Campaign
from facebook_business.adobjects.user import User
from facebook_business.api import FacebookAdsApi
from facebook_business.exceptions import FacebookRequestError
from requests.exceptions import RequestException

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

STATUS_MAP = {
    "ACTIVE": CampaignStatusEnum.active,
    "PAUSED": CampaignStatusEnum.paused,
    "DELETED": CampaignStatusEnum.deleted,
    "ARCHIVED": CampaignStatusEnum.deleted,
}

# Action types Meta uses for purchases, most specific first
PURCHASE_ACTION_TYPES = (
    "omni_purchase",
    "purchase",
    "offsite_conversion.fb_pixel_purchase",
)


class AccountRateLimiter:
    """Sliding-window call budget per ad account.

    WHAT:
        Tracks call timestamps per account in a deque and waits when that
        account's window is full. A wait longer than `max_wait` raises
        AdapterFetchError (status 429) instead of sleeping.
    WHY:
        Meta enforces its hourly budget per ad account, and parallel syncs
        share one adapter instance across threads.
    """

    def __init__(self, calls_per_hour: int, window_seconds: float = 3600.0, clock=time, sleeper=sleep) -> None:
        self.calls_per_hour = calls_per_hour
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleeper
        self._calls: Dict[str, deque] = defaultdict(deque)
        self._lock = threading.Lock()

    def acquire(self, key: str, max_wait: float) -> None:
        while True:
            with self._lock:
                now = self._clock()
                calls = self._calls[key]
                while calls and calls[0] <= now - self.window_seconds:
                    calls.popleft()

                if len(calls) < self.calls_per_hour:
                    calls.append(now)
                    return
                wait = self.window_seconds - (now - calls[0])

            if wait > max_wait:
                logger.warning(
                    "[FACEBOOK] Rate limit reached for %s (%d calls/hour); next slot in %.1fs",
                    key, self.calls_per_hour, wait,
                )
                raise AdapterFetchError(
                    f"Facebook rate limit reached for {key}; retry in {wait:.0f}s", status_code=429,
                )
            self._sleep(wait)


def rate_limit(limiter: AccountRateLimiter):
    """Charge each call to `limiter` under the credentials' ad account.

    The wrapped method takes `credentials` as its first argument; the wait is
    bounded by the adapter's request timeout.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(self, credentials, *args, **kwargs):
            limiter.acquire(normalize_ad_account_id(credentials.account_id), max_wait=self._timeout)
            return func(self, credentials, *args, **kwargs)
        return wrapper
    return decorator


def map_status(native_status: Optional[str]) -> CampaignStatusEnum:
    """ACTIVE/PAUSED/DELETED/ARCHIVED -> unified status; anything else -> PAUSED."""
    return STATUS_MAP.get(str(native_status or "").upper(), CampaignStatusEnum.paused)


def parse_budget(row: Dict[str, Any]) -> float:
    """Budget in currency units: daily_budget/100, else lifetime_budget/100, else 0."""
    for key in ("daily_budget", "lifetime_budget"):
        raw = row.get(key)
        if raw not in (None, "", "0", 0):
            return float(raw) / 100.0
    return 0.0


def _action_value(actions: Optional[Iterable[Dict[str, Any]]]) -> float:
    """First purchase-type value from an actions / action_values list."""
    by_type = {a.get("action_type"): a.get("value") for a in (actions or [])}
    for action_type in PURCHASE_ACTION_TYPES:
        if by_type.get(action_type) is not None:
            return float(by_type[action_type])
    return 0.0


def parse_insight(row: Dict[str, Any]) -> DailyMetric:
    """Map one daily insight row to a DailyMetric.

    revenue = spend x purchase_roas when Meta reports ROAS, otherwise the
    purchase entry of action_values.
    """
    spend = float(row.get("spend") or 0)
    roas = _action_value(row.get("purchase_roas"))
    revenue = spend * roas if roas else _action_value(row.get("action_values"))

    return DailyMetric.from_counters(
        date.fromisoformat(row["date_start"]),
        impressions=int(row.get("impressions") or 0),
        clicks=int(row.get("clicks") or 0),
        spend=spend,
        conversions=_action_value(row.get("actions")),
        revenue=revenue,
    )


def normalize_ad_account_id(account_id: str) -> str:
    """"123" -> "act_123"; already-prefixed ids pass through."""
    account_id = str(account_id).strip()
    return account_id if account_id.startswith("act_") else f"act_{account_id}"


# Shared by all adapter instances: the budget belongs to the ad account
CALL_LIMITER = AccountRateLimiter(calls_per_hour=200)


class FacebookAdsAdapter(PlatformAdapter):
    """Facebook implementation of the platform adapter contract."""

    platform = PlatformEnum.facebook

    def __init__(self, timeout: Optional[float] = None) -> None:
        settings = get_settings()
        self._timeout = timeout if timeout is not None else settings.ADAPTER_REQUEST_TIMEOUT_SECONDS
        self._api_version = settings.FACEBOOK_API_VERSION
        self._app_id = settings.FACEBOOK_APP_ID
        self._app_secret = settings.FACEBOOK_APP_SECRET

    def _api(self, credentials: PlatformCredentials) -> FacebookAdsApi:
        if not credentials.access_token:
            raise AdapterFetchError("Facebook account has no access token", status_code=401)
        return FacebookAdsApi.init(
            app_id=self._app_id,
            app_secret=self._app_secret,
            access_token=credentials.access_token,
            api_version=self._api_version,
            timeout=self._timeout,
            crash_log=False,
        )

    def _handle_api_error(self, error: FacebookRequestError, context: str) -> AdapterFetchError:
        """Translate a FacebookRequestError into AdapterFetchError with its HTTP status."""
        http_status = error.http_status()
        error_message = error.api_error_message()
        logger.error(
            "[FACEBOOK] API error while %s: HTTP %s, Code %s, Message: %s",
            context, http_status, error.api_error_code(), error_message,
        )

        if http_status == 401:
            message = f"Authentication failed while {context}. Token may be expired or invalid."
        elif http_status == 403:
            message = f"Permission denied while {context}. Check token permissions."
        elif http_status == 429:
            message = f"Rate limit exceeded while {context}."
        else:
            message = f"API error while {context}: HTTP {http_status}, {error_message}"
        return AdapterFetchError(message, status_code=http_status)

    # --- Raw SDK calls --------------------------------------------------
    @rate_limit(CALL_LIMITER)
    def _campaign_rows(self, credentials: PlatformCredentials) -> List[Dict[str, Any]]:
        api = self._api(credentials)
        account = AdAccount(normalize_ad_account_id(credentials.account_id), api=api)
        campaigns = account.get_campaigns(fields=[
            Campaign.Field.id,
            Campaign.Field.name,
            Campaign.Field.status,
            Campaign.Field.daily_budget,
            Campaign.Field.lifetime_budget,
            Campaign.Field.start_time,
            Campaign.Field.stop_time,
        ])
        # SDK cursor handles pagination
        return [dict(c) for c in campaigns]

    @rate_limit(CALL_LIMITER)
    def _insight_rows(
        self, credentials: PlatformCredentials, campaign_id: str, date_range: DateRange
    ) -> List[Dict[str, Any]]:
        api = self._api(credentials)
        insights = Campaign(campaign_id, api=api).get_insights(
            fields=[
                AdsInsights.Field.date_start,
                AdsInsights.Field.spend,
                AdsInsights.Field.impressions,
                AdsInsights.Field.clicks,
                AdsInsights.Field.actions,
                AdsInsights.Field.action_values,
                AdsInsights.Field.purchase_roas,
            ],
            params={
                "level": "campaign",
                "time_range": {"since": date_range.start.isoformat(), "until": date_range.end.isoformat()},
                "time_increment": 1,
            },
        )
        return [dict(i) for i in insights]

    # --- Contract -------------------------------------------------------
    def validate_credentials(self, credentials: PlatformCredentials) -> bool:
        try:
            api = self._api(credentials)
            User(fbid="me", api=api).api_get(fields=["id"])
            return True
        except FacebookRequestError as exc:
            logger.warning(
                "[FACEBOOK] Credential validation failed for %s: HTTP %s",
                credentials.account_id, exc.http_status(),
            )
            return False
        except (AdapterFetchError, RequestException):
            return False

    def fetch_campaigns(self, credentials: PlatformCredentials) -> List[CampaignPayload]:
        logger.info("[FACEBOOK] Fetching campaigns for account %s", credentials.account_id)
        try:
            rows = self._campaign_rows(credentials)
        except FacebookRequestError as exc:
            raise self._handle_api_error(exc, f"fetching campaigns for {credentials.account_id}") from exc
        except RequestException as exc:
            raise AdapterFetchError(f"Facebook request failed for {credentials.account_id}: {exc}") from exc

        campaigns = [
            CampaignPayload(
                external_id=str(row["id"]),
                name=row.get("name") or str(row["id"]),
                status=map_status(row.get("status")),
                budget=parse_budget(row),
                start_date=_date_prefix(row.get("start_time")),
                end_date=_date_prefix(row.get("stop_time")),
            )
            for row in rows
        ]
        logger.info("[FACEBOOK] Fetched %d campaigns for account %s", len(campaigns), credentials.account_id)
        return campaigns

    def fetch_metrics(
        self,
        credentials: PlatformCredentials,
        campaign_or_account_id: str,
        date_range: DateRange,
    ) -> List[DailyMetric]:
        try:
            rows = self._insight_rows(credentials, str(campaign_or_account_id), date_range)
        except FacebookRequestError as exc:
            raise self._handle_api_error(exc, f"fetching insights for {campaign_or_account_id}") from exc
        except RequestException as exc:
            raise AdapterFetchError(f"Facebook request failed for campaign {campaign_or_account_id}: {exc}") from exc

        metrics = [parse_insight(row) for row in rows]
        logger.info(
            "[FACEBOOK] Fetched %d insight rows for campaign %s (%s..%s)",
            len(metrics), campaign_or_account_id, date_range.start, date_range.end,
        )
        return fill_missing_days(metrics, date_range)


def _date_prefix(value: Optional[str]) -> Optional[date]:
    # Meta timestamps look like "2024-01-15T00:00:00-0800"
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])
