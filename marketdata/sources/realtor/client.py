"""
Realtor search API client (RapidAPI) for listing and market data.

The search endpoint answers a postal-code or free-text location query with a
semi-structured JSON payload whose shape varies from call to call. This
client only transports and classifies; shape handling lives in the
extractor.

Rate Limits:
- Monthly quota per RapidAPI key; exhaustion is signalled with HTTP 429
- Quota errors are never retried here
"""
import logging
from typing import Any, Dict, Optional

from marketdata.core.api_errors import APIError, UpstreamQuotaExceeded
from marketdata.core.config import MissingRapidAPIKeyError, Settings
from marketdata.core.http_client import BaseAPIClient

logger = logging.getLogger(__name__)


class RealtorSearchClient(BaseAPIClient):
    """
    HTTP client for the RapidAPI realtor search source.

    API Documentation:
    https://rapidapi.com/ (realtor-search)
    """

    SOURCE_NAME = "realtor_search"
    DEFAULT_HOST = "realtor-search.p.rapidapi.com"
    SEARCH_PATH = "/properties/search"

    # Quota exhaustion is sometimes reported in a 2xx body
    QUOTA_MARKERS = ("quota", "rate limit", "too many requests")

    def __init__(
        self,
        api_key: Optional[str] = None,
        host: str = DEFAULT_HOST,
        **kwargs
    ):
        """
        Initialize the realtor search client.

        Args:
            api_key: RapidAPI key (required for live calls)
            host: RapidAPI host name of the source
            **kwargs: Passed through to BaseAPIClient (timeout, max_retries,
                      max_concurrency, rate_limit_interval)
        """
        self.host = host
        self.BASE_URL = f"https://{host}"
        super().__init__(api_key=api_key, **kwargs)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RealtorSearchClient":
        return cls(
            api_key=settings.rapidapi_key,
            host=settings.rapidapi_host,
            timeout=settings.upstream_timeout_seconds,
            max_retries=settings.upstream_max_retries,
            rate_limit_interval=settings.upstream_min_interval_seconds,
        )

    def _build_headers(self) -> Dict[str, str]:
        headers = super()._build_headers()
        if self.api_key:
            headers["X-RapidAPI-Key"] = self.api_key
            headers["X-RapidAPI-Host"] = self.host
        return headers

    def _check_api_error(self, data: Any, resource_id: str) -> Optional[APIError]:
        if isinstance(data, dict):
            message = data.get("message")
            if isinstance(message, str) and any(
                marker in message.lower() for marker in self.QUOTA_MARKERS
            ):
                return UpstreamQuotaExceeded(
                    message=message,
                    source=self.SOURCE_NAME,
                    response_data=data
                )
        return super()._check_api_error(data, resource_id)

    async def search_properties(self, params: Dict[str, Any]) -> Any:
        """
        Run one property search.

        Args:
            params: Query parameters, e.g. {"postal_code": "90210", "limit": 50}
                    or {"location": "123 Main St, 90210", "limit": 50}.
                    None values are dropped.

        Returns:
            Parsed JSON payload (shape not guaranteed)

        Raises:
            MissingRapidAPIKeyError: No API key is configured; nothing is sent
            APIError: Classified upstream failure
        """
        if not self.has_credentials:
            raise MissingRapidAPIKeyError(f"RAPIDAPI_KEY is required for {self.SOURCE_NAME} searches")

        query = {k: v for k, v in params.items() if v is not None}
        resource_id = ",".join(f"{k}={v}" for k, v in query.items() if k != "limit")
        return await self.get(self.SEARCH_PATH, params=query, resource_id=resource_id or "search")
