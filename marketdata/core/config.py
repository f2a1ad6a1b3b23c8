"""
Settings for the market data engine, read from the environment or .env.

- DATABASE_URL is required: the cache store is always persistent.
- RAPIDAPI_KEY is optional. Without it every lookup is answered with
  synthesized data and no upstream call is made.
- TTLs, upstream timeouts and bulk pacing all have working defaults.
"""
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from marketdata.core.api_errors import ConfigurationError


class MissingRapidAPIKeyError(ConfigurationError):
    """Raised when an upstream call is requested without an API key."""

    def __init__(self, message: str):
        super().__init__(message, missing_config="RAPIDAPI_KEY")


class Settings(BaseSettings):
    """Engine settings.

    Field names map to upper-case environment variables.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database (REQUIRED for the persistent cache)
    database_url: str = Field(
        ...,
        description="SQLAlchemy URL of the cache store (PostgreSQL or SQLite)"
    )

    # Upstream listing source (OPTIONAL - absent key means synthesized data)
    rapidapi_key: Optional[str] = Field(
        default=None,
        description="RapidAPI key for the realtor search source"
    )

    rapidapi_host: str = Field(
        default="realtor-search.p.rapidapi.com",
        description="RapidAPI host of the realtor search source"
    )

    # Upstream call behaviour
    upstream_timeout_seconds: float = Field(
        default=15.0,
        ge=1.0,
        le=60.0,
        description="Per-call timeout; a timed out call falls through to the next strategy"
    )

    upstream_max_retries: int = Field(
        default=1,
        ge=1,
        le=5,
        description="Attempts per upstream call for transient failures (1 = no retry)"
    )

    upstream_min_interval_seconds: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=10.0,
        description="Minimum pause between upstream requests (unset = no pacing)"
    )

    search_result_limit: int = Field(
        default=50,
        ge=1,
        le=200,
        description="Maximum number of properties requested per search"
    )

    # Cache TTLs
    market_cache_ttl_hours: float = Field(
        default=24.0,
        gt=0,
        description="TTL for genuine market snapshots"
    )

    listing_cache_ttl_hours: float = Field(
        default=24.0,
        gt=0,
        description="TTL for genuine listing lookups"
    )

    not_found_cache_ttl_hours: float = Field(
        default=12.0,
        gt=0,
        description="TTL for the explicit 'not found' marker"
    )

    synthetic_cache_ttl_hours: float = Field(
        default=6.0,
        gt=0,
        description="TTL for synthesized data so a real lookup is retried sooner"
    )

    # Bulk lookups
    bulk_request_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=10.0,
        description="Pause between successive lookups in one bulk batch"
    )

    bulk_max_properties: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum number of properties per bulk request"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept any case, store upper case."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    def require_rapidapi_key(self) -> str:
        """
        Get the RapidAPI key, raising clear error if missing.

        Raises:
            MissingRapidAPIKeyError: If the key is not configured

        Returns:
            str: The API key
        """
        if not self.rapidapi_key:
            raise MissingRapidAPIKeyError(
                "RAPIDAPI_KEY is required for upstream listing searches. "
                "Set it in the environment or in .env. "
                "Without it, market and listing data are synthesized."
            )
        return self.rapidapi_key

    def has_upstream_credentials(self) -> bool:
        """Whether an upstream API key is configured."""
        return bool(self.rapidapi_key)


# Process-wide instance, built on first access
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the shared Settings, loading it on first call."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the shared Settings so the next get_settings() reloads the environment."""
    global _settings
    _settings = None
