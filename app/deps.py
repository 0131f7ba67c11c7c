"""Dependency providers and settings management."""

from functools import lru_cache
from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.orm import Session

from .database import get_db
from .models import Tenant
from .telemetry import set_tenant_context


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    BACKEND_CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Sync orchestration
    SYNC_LOOKBACK_DAYS: int = 30
    SYNC_PARALLEL: bool = True
    MAX_PARALLEL_SYNCS: int = 5
    ADAPTER_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Alert evaluation trailing window
    ALERT_WINDOW_DAYS: int = 7

    # Facebook Marketing API
    FACEBOOK_API_VERSION: str = "v18.0"
    FACEBOOK_APP_ID: Optional[str] = None
    FACEBOOK_APP_SECRET: Optional[str] = None

    # Google Ads API (per-account refresh tokens live on connected_accounts)
    GOOGLE_DEVELOPER_TOKEN: Optional[str] = None
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None
    GOOGLE_LOGIN_CUSTOMER_ID: Optional[str] = None

    # Google Analytics Data API
    GA4_API_BASE_URL: str = "https://analyticsdata.googleapis.com/v1beta"

    # TikTok Business API
    TIKTOK_USE_SANDBOX: bool = False

    # LINE Ads (mock catalog until partner API access is available)
    LINE_ADS_USE_MOCK: bool = True

    # Redis (ARQ worker)
    REDIS_URL: str = "redis://localhost:6379/0"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_tenant(
    db: Session = Depends(get_db),
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID"),
) -> Tenant:
    """Resolve the calling tenant from the `X-Tenant-ID` header.

    Authentication happens upstream; this only scopes the request.
    """
    if not x_tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Tenant-ID header")

    try:
        tenant_uuid = UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid tenant id")

    tenant = db.query(Tenant).filter(Tenant.id == tenant_uuid).first()
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    set_tenant_context(str(tenant.id))
    return tenant
