"""
Sentry Error Tracking
=====================

Centralized error tracking for the API process and the ARQ worker.

Related files:
- app/main.py: Initializes Sentry on app startup
- app/workers/arq_worker.py: Initializes Sentry on worker startup
- app/services/unified_sync_service.py: Captures per-account sync failures
- app/services/alert_service.py: Captures per-tenant alert check failures

Setup:
1. Create project with "FastAPI" platform at sentry.io
2. Copy DSN to SENTRY_DSN environment variable

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: Environment name (production, staging, development)
"""

from __future__ import annotations

import logging
import os
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

logger = logging.getLogger(__name__)


def get_sentry_dsn() -> Optional[str]:
    """DSN from the environment, None when not configured."""
    return os.environ.get("SENTRY_DSN") or None


def init_sentry() -> bool:
    """
    Initialize Sentry SDK.

    Should be called once during process startup (API or worker).

    Returns:
        True if Sentry was initialized, False when no DSN is configured.
    """
    dsn = get_sentry_dsn()
    if not dsn:
        logger.info("[SENTRY] SENTRY_DSN not set - error tracking disabled")
        return False

    environment = os.environ.get("ENVIRONMENT", "development")

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.INFO,         # INFO+ as breadcrumbs
                event_level=logging.ERROR,  # ERROR+ as events
            ),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,
        release=os.environ.get("RELEASE_VERSION"),
    )

    logger.info("[SENTRY] Initialized for %s environment", environment)
    return True


def set_tenant_context(tenant_id: str) -> None:
    """Tag subsequent events in this scope with the tenant."""
    sentry_sdk.set_tag("tenant_id", tenant_id)


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Capture a handled exception.

    Use at failure boundaries where the error is caught and counted
    (one account's sync, one tenant's alert check) but should still be
    visible in monitoring. A no-op send when Sentry is not initialized.

    Example:
        try:
            sync_account(...)
        except AdapterFetchError as e:
            capture_exception(e, extra={"account_id": str(account.id)})
    """
    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in (extra or {}).items():
                scope.set_extra(key, value)
            sentry_sdk.capture_exception(exception)
    except Exception as e:  # noqa: BLE001 - telemetry must never break the caller
        logger.error("[SENTRY] Failed to capture exception: %s", e)

