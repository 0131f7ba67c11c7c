"""LINE Ads platform adapter.

WHAT:
    Serves the LINE campaign catalog and generated daily metrics from
    app/services/mock_data.py while `LINE_ADS_USE_MOCK` is on (the default).

WHY:
    LINE Ads API access requires partner approval. Mock mode lets LINE
    accounts flow through the same sync, aggregation and alert paths as
    every other platform in the meantime.
"""

import logging
import random
from typing import List, Optional

from app.deps import get_settings
from app.models import PlatformEnum
from app.services.adapters.base import (
    CampaignPayload,
    DailyMetric,
    DateRange,
    PlatformAdapter,
    PlatformCredentials,
)
from app.services.mock_data import generate_metrics_for_range, get_mock_campaigns

logger = logging.getLogger(__name__)


class LineAdsAdapter(PlatformAdapter):
    """LINE implementation of the platform adapter contract (mock mode)."""

    platform = PlatformEnum.line_ads

    def __init__(self, use_mock: Optional[bool] = None, rng: Optional[random.Random] = None) -> None:
        self.use_mock = get_settings().LINE_ADS_USE_MOCK if use_mock is None else use_mock
        self._rng = rng
        logger.info("[LINE_ADS] Mock data mode: %s", self.use_mock)

    def validate_credentials(self, credentials: PlatformCredentials) -> bool:
        return bool(credentials.access_token)

    def fetch_campaigns(self, credentials: PlatformCredentials) -> List[CampaignPayload]:
        if not self.use_mock:
            # TODO: call the LINE Ads API once partner access is granted
            logger.warning("[LINE_ADS] Live API not available; returning no campaigns for %s", credentials.account_id)
            return []

        campaigns = get_mock_campaigns(PlatformEnum.line_ads)
        logger.info("[LINE_ADS] Fetched %d mock campaigns", len(campaigns))
        return campaigns

    def fetch_metrics(
        self,
        credentials: PlatformCredentials,
        campaign_or_account_id: str,
        date_range: DateRange,
    ) -> List[DailyMetric]:
        if not self.use_mock:
            logger.warning("[LINE_ADS] Live API not available; returning no metrics for %s", campaign_or_account_id)
            return []

        metrics = generate_metrics_for_range(date_range, "ads", self._rng)
        logger.info("[LINE_ADS] Generated %d days of mock metrics for %s", len(metrics), campaign_or_account_id)
        return metrics
