"""
Telemetry Module
================

Error tracking for the API and background worker.

Environment Variables:
- SENTRY_DSN: Sentry project DSN
- ENVIRONMENT: deployment environment name

Usage:
    from app.telemetry import init_sentry, capture_exception

    init_sentry()  # once at process startup
"""

from app.telemetry.sentry import (
    init_sentry,
    set_tenant_context,
    capture_exception,
)

__all__ = [
    "init_sentry",
    "set_tenant_context",
    "capture_exception",
]
