"""TikTok Ads platform adapter.

WHAT:
    Talks to the TikTok Business API v1.3 over httpx: `campaign/get/` for
    campaigns and `report/integrated/get/` (BASIC, daily by stat_time_day)
    for metrics.

WHY:
    TikTok answers HTTP 200 for most business errors and reports failure in
    the body (`code != 0`), so status checks alone are not enough; every
    response goes through `_unwrap`.

REFERENCES:
    - https://business-api.tiktok.com/portal/docs?id=1739315828649986 (campaign/get)
    - https://business-api.tiktok.com/portal/docs?id=1740302848100353 (reporting)
    - app/services/adapters/base.py (contract)
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

import httpx

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

PRODUCTION_BASE_URL = "https://business-api.tiktok.com/open_api/v1.3"
SANDBOX_BASE_URL = "https://sandbox-ads.tiktok.com/open_api/v1.3"

STATUS_MAP = {
    "ENABLE": CampaignStatusEnum.active,
    "DISABLE": CampaignStatusEnum.paused,
    "DELETE": CampaignStatusEnum.deleted,
}

REPORT_METRICS = ["spend", "impressions", "clicks", "conversion", "complete_payment_roas"]

# Daily reports are limited to 30 days per request
MAX_REPORT_DAYS = 30
PAGE_SIZE = 100


def map_status(native_status: Optional[str]) -> CampaignStatusEnum:
    """ENABLE/DISABLE/DELETE -> unified status; anything else -> PAUSED."""
    return STATUS_MAP.get(str(native_status or "").upper(), CampaignStatusEnum.paused)


def chunk_range(date_range: DateRange, max_days: int = MAX_REPORT_DAYS) -> Iterator[DateRange]:
    """Split an inclusive range into consecutive windows of at most `max_days` days."""
    start = date_range.start
    while start <= date_range.end:
        end = min(start + timedelta(days=max_days - 1), date_range.end)
        yield DateRange(start=start, end=end)
        start = end + timedelta(days=1)


def parse_report_row(row: Dict[str, Any]) -> DailyMetric:
    """Map one integrated-report row; revenue = spend x complete_payment_roas."""
    dims = row.get("dimensions") or {}
    values = row.get("metrics") or {}
    day = datetime.strptime(str(dims["stat_time_day"])[:10], "%Y-%m-%d").date()
    spend = float(values.get("spend") or 0)
    roas = float(values.get("complete_payment_roas") or 0)
    return DailyMetric.from_counters(
        day,
        impressions=int(float(values.get("impressions") or 0)),
        clicks=int(float(values.get("clicks") or 0)),
        spend=spend,
        conversions=float(values.get("conversion") or 0),
        revenue=spend * roas,
    )


class TikTokAdsAdapter(PlatformAdapter):
    """TikTok implementation of the platform adapter contract."""

    platform = PlatformEnum.tiktok

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        settings = get_settings()
        default_base = SANDBOX_BASE_URL if settings.TIKTOK_USE_SANDBOX else PRODUCTION_BASE_URL
        self.base_url = (base_url or default_base).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.ADAPTER_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def _get(self, credentials: PlatformCredentials, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET an endpoint and return its `data` object."""
        if not credentials.access_token:
            raise AdapterFetchError("TikTok account has no access token", status_code=401)

        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Access-Token": credentials.access_token},
            ) as client:
                response = client.get(path, params=params)
                response.raise_for_status()
                return self._unwrap(response.json(), path)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error("[TIKTOK] HTTP %s for %s", status_code, path)
            raise AdapterFetchError(f"TikTok API error: HTTP {status_code}", status_code=status_code) from e
        except httpx.TimeoutException as e:
            logger.error("[TIKTOK] Timeout for %s", path)
            raise AdapterFetchError(f"TikTok request timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            logger.error("[TIKTOK] Request error for %s: %s", path, e)
            raise AdapterFetchError(f"TikTok request failed: {e}") from e

    @staticmethod
    def _unwrap(body: Dict[str, Any], path: str) -> Dict[str, Any]:
        code = body.get("code", 0)
        if code != 0:
            message = body.get("message") or "unknown error"
            logger.error("[TIKTOK] API code %s for %s: %s", code, path, message)
            raise AdapterFetchError(f"TikTok API error {code}: {message}")
        return body.get("data") or {}

    def validate_credentials(self, credentials: PlatformCredentials) -> bool:
        try:
            self._get(credentials, "/advertiser/info/", {
                "advertiser_ids": json.dumps([credentials.account_id]),
            })
            return True
        except AdapterFetchError as exc:
            logger.warning("[TIKTOK] Credential validation failed for %s: %s", credentials.account_id, exc)
            return False

    def fetch_campaigns(self, credentials: PlatformCredentials) -> List[CampaignPayload]:
        logger.info("[TIKTOK] Fetching campaigns for advertiser %s", credentials.account_id)

        campaigns: List[CampaignPayload] = []
        page = 1
        while True:
            data = self._get(credentials, "/campaign/get/", {
                "advertiser_id": credentials.account_id,
                "page": page,
                "page_size": PAGE_SIZE,
            })
            for row in data.get("list") or []:
                budget = row.get("budget")
                campaigns.append(CampaignPayload(
                    external_id=str(row["campaign_id"]),
                    name=row.get("campaign_name") or str(row["campaign_id"]),
                    status=map_status(row.get("operation_status")),
                    budget=float(budget) if budget not in (None, "") else None,
                ))

            total_pages = int((data.get("page_info") or {}).get("total_page") or 1)
            if page >= total_pages:
                break
            page += 1

        logger.info("[TIKTOK] Fetched %d campaigns for advertiser %s", len(campaigns), credentials.account_id)
        return campaigns

    def fetch_metrics(
        self,
        credentials: PlatformCredentials,
        campaign_or_account_id: str,
        date_range: DateRange,
    ) -> List[DailyMetric]:
        campaign_id = str(campaign_or_account_id)
        metrics: List[DailyMetric] = []

        for window in chunk_range(date_range):
            data = self._get(credentials, "/report/integrated/get/", {
                "advertiser_id": credentials.account_id,
                "report_type": "BASIC",
                "data_level": "AUCTION_CAMPAIGN",
                "dimensions": json.dumps(["campaign_id", "stat_time_day"]),
                "metrics": json.dumps(REPORT_METRICS),
                "filtering": json.dumps([{
                    "field_name": "campaign_ids",
                    "filter_type": "IN",
                    "filter_value": json.dumps([campaign_id]),
                }]),
                "start_date": window.start.isoformat(),
                "end_date": window.end.isoformat(),
                "page_size": 1000,
            })
            metrics.extend(parse_report_row(row) for row in data.get("list") or [])

        logger.info(
            "[TIKTOK] Fetched %d daily rows for campaign %s (%s..%s)",
            len(metrics), campaign_id, date_range.start, date_range.end,
        )
        return fill_missing_days(metrics, date_range)
