"""
Platform Adapters

Registry resolving a platform identifier to its adapter. Each adapter
implements the PlatformAdapter contract from `base.py`; adding a platform
means one PlatformEnum member plus one entry in `_default_adapters`.
"""

from typing import Dict, List, Mapping, Optional, Union

from app.models import AccountStatusEnum, PlatformEnum
from app.services.adapters.base import (
    AdapterError,
    AdapterFetchError,
    CampaignPayload,
    CredentialInvalidError,
    DailyMetric,
    DateRange,
    PlatformAdapter,
    PlatformCredentials,
    UnsupportedPlatformError,
)

PlatformLike = Union[PlatformEnum, str]


def normalize_platform(platform: PlatformLike) -> PlatformEnum:
    """Resolve "facebook", "Google_Ads", "line-ads", "LINE ADS" or the enum itself.

    Raises:
        UnsupportedPlatformError: If the identifier matches no platform
    """
    if isinstance(platform, PlatformEnum):
        return platform
    key = str(platform or "").strip().upper().replace("-", "_").replace(" ", "_")
    try:
        return PlatformEnum(key)
    except ValueError:
        raise UnsupportedPlatformError(platform) from None


def active_status(platform: PlatformLike) -> AccountStatusEnum:
    """Account status meaning "live": ENABLED for Google Ads, ACTIVE elsewhere."""
    if normalize_platform(platform) == PlatformEnum.google_ads:
        return AccountStatusEnum.enabled
    return AccountStatusEnum.active


def _default_adapters() -> Dict[PlatformEnum, PlatformAdapter]:
    # Imported here so SDK-heavy modules load only when a registry is built
    from app.services.adapters.facebook_ads import FacebookAdsAdapter
    from app.services.adapters.google_ads import GoogleAdsAdapter
    from app.services.adapters.google_analytics import GoogleAnalyticsAdapter
    from app.services.adapters.line_ads import LineAdsAdapter
    from app.services.adapters.tiktok_ads import TikTokAdsAdapter

    return {
        PlatformEnum.google_ads: GoogleAdsAdapter(),
        PlatformEnum.facebook: FacebookAdsAdapter(),
        PlatformEnum.google_analytics: GoogleAnalyticsAdapter(),
        PlatformEnum.tiktok: TikTokAdsAdapter(),
        PlatformEnum.line_ads: LineAdsAdapter(),
    }


class AdapterRegistry:
    """Platform -> adapter mapping.

    Usage:
        registry = AdapterRegistry()
        adapter = registry.get_adapter("facebook")
    """

    def __init__(self, adapters: Optional[Mapping[PlatformEnum, PlatformAdapter]] = None):
        self._adapters: Dict[PlatformEnum, PlatformAdapter] = dict(
            adapters if adapters is not None else _default_adapters()
        )

    def get_adapter(self, platform: PlatformLike) -> PlatformAdapter:
        """Return the adapter for a platform.

        Raises:
            UnsupportedPlatformError: If the platform is unknown or not registered
        """
        key = normalize_platform(platform)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise UnsupportedPlatformError(platform)
        return adapter

    def supported_platforms(self) -> List[PlatformEnum]:
        """Registered platforms in registry order."""
        return list(self._adapters.keys())

    def active_status(self, platform: PlatformLike) -> AccountStatusEnum:
        return active_status(platform)


_registry: Optional[AdapterRegistry] = None


def get_registry() -> AdapterRegistry:
    """Process-wide default registry, built on first use."""
    global _registry
    if _registry is None:
        _registry = AdapterRegistry()
    return _registry


def get_adapter(platform: PlatformLike) -> PlatformAdapter:
    """Shortcut for `get_registry().get_adapter(platform)`."""
    return get_registry().get_adapter(platform)


__all__ = [
    # Registry
    "AdapterRegistry",
    "get_registry",
    "get_adapter",
    "normalize_platform",
    "active_status",
    # Contract
    "PlatformAdapter",
    "PlatformCredentials",
    "CampaignPayload",
    "DailyMetric",
    "DateRange",
    # Errors
    "AdapterError",
    "AdapterFetchError",
    "CredentialInvalidError",
    "UnsupportedPlatformError",
]
