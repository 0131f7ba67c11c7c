#!/usr/bin/env python3
"""
API Startup Script

Starts the FastAPI server (accounts, sync, metrics, dashboard and alerts).
Docs are served at /docs and /redoc.
"""

import os
import sys
from pathlib import Path

import uvicorn


def main():
    """Start the API server."""
    env_file = Path(".env")
    if not env_file.exists() and not os.getenv("DATABASE_URL"):
        print("WARNING: No .env file found and DATABASE_URL is not set.")
        print("   Required: DATABASE_URL, TOKEN_ENCRYPTION_KEY")
        print("   Optional: REDIS_URL, SENTRY_DSN, GOOGLE_DEVELOPER_TOKEN, FACEBOOK_APP_ID")
        print("")

    port = int(os.getenv("PORT", "8000"))
    print(f"Starting API server on http://localhost:{port} (docs: /docs)")

    try:
        uvicorn.run(
            "app.main:app",
            host="0.0.0.0",
            port=port,
            reload=os.getenv("ENVIRONMENT", "development") == "development",
            reload_dirs=["app"],
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\nShutting down API server...")


if __name__ == "__main__":
    main()
