"""
Base strategy class for upstream query strategies.

All strategies must inherit from BaseQueryStrategy and implement:
- query(): Issue one upstream request and return the raw payload
- is_applicable() may be overridden to add strategy-specific checks
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from marketdata.core.api_errors import APIError, UpstreamUnavailable
from marketdata.core.http_client import BaseAPIClient

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueryParams:
    """What a caller is asking an upstream source about."""

    postal_code: str
    address: Optional[str] = None
    limit: int = 50

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "postal_code": self.postal_code,
            "address": self.address,
            "limit": self.limit,
        }


@dataclass
class StrategyResult:
    """Result from executing one query strategy."""

    strategy_name: str
    success: bool

    # Property records pulled out of the payload (may be empty on success)
    records: List[Dict[str, Any]] = field(default_factory=list)

    # Classified failure, if the attempt failed
    error: Optional[APIError] = None

    # Resource usage
    requests_made: int = 0

    # Errors and reasoning
    error_message: Optional[str] = None
    reasoning: str = ""

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def is_empty(self) -> bool:
        return self.success and not self.records


class BaseQueryStrategy(ABC):
    """
    Abstract base class for upstream query strategies.

    Each strategy is one way of asking one upstream source for property
    records. Strategies must:
    1. Check applicability for given query parameters
    2. Issue exactly one upstream query per execution
    3. Return standardized results, never raise
    """

    # Strategy metadata (override in subclasses)
    name: str = "base_query_strategy"
    display_name: str = "Base Query Strategy"
    source_type: str = "unknown"
    requires_api_key: bool = True

    # Per-call timeout; a call exceeding it is a transient failure
    timeout_seconds: float = 15.0

    def __init__(self, client: BaseAPIClient, timeout_seconds: Optional[float] = None):
        """
        Initialize strategy.

        Args:
            client: Upstream API client used for the query
            timeout_seconds: Override of the per-call timeout
        """
        self.client = client
        if timeout_seconds is not None:
            self.timeout_seconds = timeout_seconds

        logger.debug(f"Initialized {self.name}: timeout={self.timeout_seconds}s")

    def is_applicable(self, params: QueryParams) -> Tuple[bool, str]:
        """
        Check if this strategy can be used for the given parameters.

        Returns:
            Tuple of (is_applicable, reasoning)
        """
        if self.requires_api_key and not self.client.has_credentials:
            return False, f"{self.display_name} requires an API key"
        if not params.postal_code:
            return False, "No postal code given"
        return True, f"{self.display_name} available"

    @abstractmethod
    async def query(self, params: QueryParams) -> Any:
        """
        Issue one upstream query.

        Returns:
            Raw (parsed JSON) payload

        Raises:
            APIError: Classified upstream failure
        """
        pass

    async def execute(self, params: QueryParams, extractor) -> StrategyResult:
        """
        Run the query under the per-call timeout and extract its records.

        Args:
            params: Query parameters
            extractor: ResponseExtractor applied to the raw payload

        Returns:
            StrategyResult; failures are captured in result.error
        """
        started_at = _now()

        try:
            raw = await asyncio.wait_for(self.query(params), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            error = UpstreamUnavailable(
                message=f"No response within {self.timeout_seconds}s",
                source=self.source_type,
            )
            return self._failure(error, started_at)
        except APIError as e:
            return self._failure(e, started_at)
        except Exception as e:
            logger.error(f"{self.name} raised unexpectedly: {e}", exc_info=True)
            error = UpstreamUnavailable(
                message=f"Unexpected error: {e}",
                source=self.source_type,
            )
            return self._failure(error, started_at)

        records = extractor.extract(raw)
        return StrategyResult(
            strategy_name=self.name,
            success=True,
            records=records,
            requests_made=1,
            reasoning=f"{len(records)} records from {self.display_name}",
            started_at=started_at,
            completed_at=_now(),
        )

    def _failure(self, error: APIError, started_at: datetime) -> StrategyResult:
        """Helper to create a failed StrategyResult."""
        return StrategyResult(
            strategy_name=self.name,
            success=False,
            error=error,
            requests_made=1,
            error_message=str(error),
            reasoning=f"{self.display_name} failed: {error.__class__.__name__}",
            started_at=started_at,
            completed_at=_now(),
        )
