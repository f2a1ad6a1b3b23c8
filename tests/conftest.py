"""
Pytest configuration and shared fixtures.
"""
import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketdata.core.config import Settings, reset_settings
from marketdata.core.models import Base


@pytest.fixture(scope="function")
def clean_env(monkeypatch):
    """
    Clean environment for testing.

    Removes all app-related env vars to ensure clean state.
    """
    env_vars = [
        "DATABASE_URL",
        "RAPIDAPI_KEY",
        "RAPIDAPI_HOST",
        "UPSTREAM_TIMEOUT_SECONDS",
        "UPSTREAM_MAX_RETRIES",
        "UPSTREAM_MIN_INTERVAL_SECONDS",
        "SEARCH_RESULT_LIMIT",
        "MARKET_CACHE_TTL_HOURS",
        "LISTING_CACHE_TTL_HOURS",
        "NOT_FOUND_CACHE_TTL_HOURS",
        "SYNTHETIC_CACHE_TTL_HOURS",
        "BULK_REQUEST_DELAY_SECONDS",
        "BULK_MAX_PROPERTIES",
        "LOG_LEVEL",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)

    # Reset settings singleton
    reset_settings()

    yield

    # Reset again after test
    reset_settings()


@pytest.fixture
def settings():
    """Settings for service tests: no .env, no bulk pause."""
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        rapidapi_key="test-key",
        bulk_request_delay_seconds=0.0,
    )


@pytest.fixture(scope="function")
def test_engine():
    """
    In-memory SQLite engine with the cache table created.

    StaticPool keeps one connection so every session sees the same database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeClock:
    """Settable clock for TTL tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()
