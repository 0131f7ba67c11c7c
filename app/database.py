"""Database session and base configuration.

WHAT:
    Provides the SQLAlchemy engine, session factory and FastAPI dependency
    for database access.

WHY:
    - API routers get a request-scoped session via `get_db()`
    - Sync workers open one session per account via `SessionLocal()` so that
      parallel account syncs never share a connection
    - SQLite is supported for tests and local development

USAGE:
    from app.database import SessionLocal, get_db

    @app.get("/items")
    def get_items(db: Session = Depends(get_db)):
        return db.query(Model).all()

REFERENCES:
    - https://docs.sqlalchemy.org/en/20/orm/session_basics.html
    - app/services/unified_sync_service.py (per-thread sessions)
"""

import os
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


# =============================================================================
# ENVIRONMENT CONFIGURATION
# =============================================================================

def _get_database_url() -> str:
    """Get DATABASE_URL from environment, loading .env if needed.

    Returns:
        Database connection string

    Raises:
        RuntimeError: If DATABASE_URL is not configured
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        # Attempt to load from local .env for developer convenience
        from app.utils.env import load_env_file
        load_env_file()
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise RuntimeError(
            "DATABASE_URL is not set. "
            "Ensure .env is loaded or env var is exported."
        )

    return database_url


DATABASE_URL = _get_database_url()


# =============================================================================
# ENGINE
# =============================================================================

def _pool_options() -> dict:
    """Pool sizing for PostgreSQL.

    Parallel account syncs each hold one connection, so the pool must cover
    MAX_PARALLEL_SYNCS plus API traffic. SQLite (tests/dev) takes no pool args.
    """
    return {
        "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "20")),
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
else:
    engine = create_engine(DATABASE_URL, **_pool_options())

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


# Base is defined in app.models to ensure a single registry across the app
from .models import Base  # noqa: E402,F401


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """Yield a database session for FastAPI dependency injection.

    Yields:
        SQLAlchemy Session instance
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

