"""FastAPI application entrypoint.

Configures CORS, includes routers, and exposes a healthcheck endpoint.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import get_settings
from .telemetry import init_sentry
from .routers import accounts as accounts_router
from .routers import alerts as alerts_router
from .routers import dashboard as dashboard_router
from .routers import metrics as metrics_router
from .routers import sync as sync_router
from . import schemas

# Import models so Alembic can discover metadata
from . import models  # noqa: F401


def create_app() -> FastAPI:
    # Sentry must be initialized before the FastAPI app is created
    init_sentry()

    app = FastAPI(
        title="Marketing Analytics API",
        description="""
        Multi-tenant marketing analytics backend.

        This API provides endpoints for:
        - Connecting ad and analytics accounts (Google Ads, Facebook, GA4, TikTok, LINE)
        - Triggering platform syncs and inspecting sync runs
        - Aggregated metrics, trends and dashboard read models
        - Alert rules and alerts

        ## Tenancy

        Every endpoint except `/health` is scoped by the `X-Tenant-ID` header.
        """,
        version="1.0.0",
    )

    settings = get_settings()

    # BACKEND_CORS_ORIGINS is a comma-separated list: "https://app.example.com,http://localhost:3000"
    allowed_origins = [origin.strip() for origin in settings.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]
    logger.info("[CORS] Allowed origins: %s", allowed_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(accounts_router.router)
    app.include_router(sync_router.router)
    app.include_router(metrics_router.router)
    app.include_router(dashboard_router.router)
    app.include_router(alerts_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="""
        Simple health check endpoint to verify the API is running.

        Does not require a tenant header and can be used for load balancer
        health checks.
        """
    )
    def health():
        return schemas.HealthResponse(status="ok")

    return app


app = create_app()
