"""Google Analytics (GA4) platform adapter.

WHAT:
    Pulls property-level daily web analytics from the GA4 Data API
    (`properties/{id}:runReport`) over httpx.

WHY:
    GA4 has no campaign concept here: `fetch_campaigns` always returns []
    and metrics are keyed by property id, which the sync layer passes in as
    the account id.

REFERENCES:
    - https://developers.google.com/analytics/devguides/reporting/data/v1/rest/v1beta/properties/runReport
    - app/services/adapters/base.py (contract)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from app.deps import get_settings
from app.models import PlatformEnum
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

# Order matters: metricValues come back positionally
REPORT_METRICS = (
    "activeUsers",
    "sessions",
    "newUsers",
    "screenPageViews",
    "conversions",
    "totalRevenue",
)


def parse_report(payload: Dict[str, Any]) -> List[DailyMetric]:
    """Map a runReport response body to DailyMetric rows (one per `date`)."""
    metrics: List[DailyMetric] = []
    for row in payload.get("rows") or []:
        day = datetime.strptime(row["dimensionValues"][0]["value"], "%Y%m%d").date()
        values = {
            name: float(cell.get("value") or 0)
            for name, cell in zip(REPORT_METRICS, row.get("metricValues") or [])
        }
        metrics.append(DailyMetric.from_counters(
            day,
            conversions=values.get("conversions", 0.0),
            revenue=values.get("totalRevenue", 0.0),
            sessions=int(values.get("sessions", 0)),
            active_users=int(values.get("activeUsers", 0)),
            new_users=int(values.get("newUsers", 0)),
            page_views=int(values.get("screenPageViews", 0)),
        ))
    return metrics


class GoogleAnalyticsAdapter(PlatformAdapter):
    """GA4 implementation of the platform adapter contract."""

    platform = PlatformEnum.google_analytics
    has_campaigns = False

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.GA4_API_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.ADAPTER_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self, credentials: PlatformCredentials) -> httpx.Client:
        if not credentials.access_token:
            raise AdapterFetchError("Google Analytics property has no access token", status_code=401)
        return httpx.Client(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {credentials.access_token}"},
        )

    def _request(self, credentials: PlatformCredentials, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            with self._client(credentials) as client:
                response = client.request(method, path, **kwargs)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error("[GA4] HTTP %s for %s %s", status_code, method, path)
            raise AdapterFetchError(f"GA4 API error: HTTP {status_code}", status_code=status_code) from e
        except httpx.TimeoutException as e:
            logger.error("[GA4] Timeout for %s %s", method, path)
            raise AdapterFetchError(f"GA4 request timed out after {self._timeout}s") from e
        except httpx.RequestError as e:
            logger.error("[GA4] Request error for %s %s: %s", method, path, e)
            raise AdapterFetchError(f"GA4 request failed: {e}") from e

    def validate_credentials(self, credentials: PlatformCredentials) -> bool:
        try:
            self._request(credentials, "GET", f"/properties/{credentials.account_id}/metadata")
            return True
        except AdapterFetchError as exc:
            logger.warning("[GA4] Credential validation failed for property %s: %s", credentials.account_id, exc)
            return False

    def fetch_campaigns(self, credentials: PlatformCredentials) -> List[CampaignPayload]:
        return []

    def fetch_metrics(
        self,
        credentials: PlatformCredentials,
        campaign_or_account_id: str,
        date_range: DateRange,
    ) -> List[DailyMetric]:
        property_id = str(campaign_or_account_id).replace("properties/", "")
        body = {
            "dateRanges": [{
                "startDate": date_range.start.isoformat(),
                "endDate": date_range.end.isoformat(),
            }],
            "dimensions": [{"name": "date"}],
            "metrics": [{"name": name} for name in REPORT_METRICS],
            "keepEmptyRows": True,
        }
        payload = self._request(credentials, "POST", f"/properties/{property_id}:runReport", json=body)
        metrics = parse_report(payload)

        logger.info(
            "[GA4] Fetched %d daily rows for property %s (%s..%s)",
            len(metrics), property_id, date_range.start, date_range.end,
        )
        return fill_missing_days(metrics, date_range)
