"""
Database connection and session management for the cache store.
"""
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from marketdata.core.config import get_settings
from marketdata.core.models import Base

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level engine and session factory, created on first use
# ---------------------------------------------------------------------------
_engine = None
_SessionLocal = None


def build_engine(database_url: str):
    """
    Create an engine for the given URL.

    SQLite gets a thread-agnostic connection; everything else uses a
    pre-pinged connection pool.
    """
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before using
        echo=False,  # Set to True for SQL debugging
    )


def get_engine():
    """
    Get the shared database engine (singleton).

    The engine is created once and reused for the lifetime of the process.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url)
    return _engine


def create_tables(engine=None):
    """
    Create the cache table if it doesn't exist.

    Idempotent - safe to call multiple times.
    """
    if engine is None:
        engine = get_engine()

    logger.info("Creating cache tables if they don't exist...")
    Base.metadata.create_all(bind=engine)
    logger.info("Cache tables ready")


def get_session_factory():
    """Get the shared session factory (singleton)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, bind=get_engine()
        )
    return _SessionLocal


def reset_engine() -> None:
    """Dispose of the shared engine. Used by tests and the CLI on exit."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
