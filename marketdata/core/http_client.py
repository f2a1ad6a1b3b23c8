"""
Async HTTP transport shared by the upstream listing clients.

Every failure leaves this module as an APIError subclass, so strategies
never see httpx exceptions:

- 429                     -> UpstreamQuotaExceeded, raised on the first attempt
- 401/403, other 4xx      -> UpstreamRejected family, not retried
- 5xx, timeouts, network  -> UpstreamUnavailable, retried up to max_retries
- 2xx with a non-JSON body -> MalformedUpstreamPayload
"""
import asyncio
import logging
import random
from abc import ABC
from typing import Any, Dict, Optional

import httpx

from marketdata.core.api_errors import (
    APIError,
    MalformedUpstreamPayload,
    UpstreamQuotaExceeded,
    UpstreamRejected,
    UpstreamUnavailable,
    classify_http_error,
)

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After", "")
    return int(value) if value.isdigit() else None


class BaseAPIClient(ABC):
    """
    Base class for upstream API clients.

    Subclasses set SOURCE_NAME and BASE_URL, add auth in _build_headers()
    and may recognise in-body errors in _check_api_error().
    """

    SOURCE_NAME: str = "unknown"
    BASE_URL: str = ""

    DEFAULT_TIMEOUT: float = 15.0
    DEFAULT_MAX_RETRIES: int = 1
    DEFAULT_MAX_CONCURRENCY: int = 2
    CONNECT_TIMEOUT: float = 5.0
    BACKOFF_BASE_SECONDS: float = 1.0
    MAX_BACKOFF_SECONDS: float = 30.0
    JITTER_FACTOR: float = 0.25

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        rate_limit_interval: Optional[float] = None,
    ):
        """
        Args:
            api_key: Source API key; without one the client cannot be used live
            timeout: Per-request timeout in seconds
            max_retries: Attempts for transient failures (1 = no retry)
            max_concurrency: Maximum requests in flight (semaphore size)
            rate_limit_interval: Minimum seconds between requests (None = no limit)
        """
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.max_concurrency = max(1, max_concurrency)
        self.rate_limit_interval = rate_limit_interval

        self.semaphore = asyncio.Semaphore(self.max_concurrency)

        # Rate limiting state
        self._last_request_time: float = 0
        self._rate_limit_lock = asyncio.Lock()

        self._client: Optional[httpx.AsyncClient] = None

        logger.info(
            f"Initialized {self.SOURCE_NAME} client: "
            f"api_key_present={self.has_credentials}, "
            f"timeout={timeout}s, max_retries={self.max_retries}, "
            f"max_concurrency={self.max_concurrency}"
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.timeout, connect=min(self.CONNECT_TIMEOUT, self.timeout)
                ),
                follow_redirects=True,
                limits=httpx.Limits(
                    max_connections=self.max_concurrency * 2,
                    max_keepalive_connections=self.max_concurrency,
                ),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug(f"{self.SOURCE_NAME} client closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _enforce_rate_limit(self) -> None:
        """Wait until rate_limit_interval has passed since the previous request."""
        if self.rate_limit_interval is None:
            return

        async with self._rate_limit_lock:
            now = asyncio.get_running_loop().time()
            elapsed = now - self._last_request_time
            if elapsed < self.rate_limit_interval:
                wait_time = self.rate_limit_interval - elapsed
                logger.debug(f"[{self.SOURCE_NAME}] Rate limiting: waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
            self._last_request_time = asyncio.get_running_loop().time()

    async def _backoff(self, attempt: int) -> None:
        """Sleep 1s, 2s, 4s ... (capped) with +/-25% jitter before a retry."""
        delay = min(self.BACKOFF_BASE_SECONDS * 2 ** attempt, self.MAX_BACKOFF_SECONDS)
        delay += delay * self.JITTER_FACTOR * random.uniform(-1, 1)
        delay = max(0.1, delay)
        logger.debug(f"[{self.SOURCE_NAME}] Backing off {delay:.2f}s before attempt {attempt + 2}")
        await asyncio.sleep(delay)

    def _check_api_error(self, data: Any, resource_id: str) -> Optional[APIError]:
        """
        Detect an error reported inside a 2xx body.

        The default recognises a top-level "error" field. Override for
        source-specific formats.
        """
        if not isinstance(data, dict) or not data.get("error"):
            return None

        message = data["error"]
        if isinstance(message, dict):
            message = message.get("message", str(message))
        return UpstreamRejected(
            message=f"{resource_id}: {message}",
            source=self.SOURCE_NAME,
            response_data=data,
        )

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": f"market-data-engine/{self.SOURCE_NAME}",
        }

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        resource_id: str,
    ) -> Any:
        """One attempt. Raises an APIError for every kind of failure."""
        try:
            response = await client.request(
                method, url, params=params, headers=self._build_headers()
            )
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(
                message=f"Timed out after {self.timeout}s: {e}", source=self.SOURCE_NAME
            ) from e
        except httpx.RequestError as e:
            raise UpstreamUnavailable(
                message=f"Request failed: {e}", source=self.SOURCE_NAME
            ) from e

        if response.status_code >= 400:
            error = classify_http_error(
                response.status_code, response.text[:500], self.SOURCE_NAME
            )
            if isinstance(error, UpstreamQuotaExceeded):
                error.retry_after = _retry_after(response)
            raise error

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedUpstreamPayload(
                message=f"Non-JSON body for {resource_id}",
                source=self.SOURCE_NAME,
                status_code=response.status_code,
            ) from e

        api_error = self._check_api_error(data, resource_id)
        if api_error:
            raise api_error
        return data

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        resource_id: str = "unknown",
    ) -> Any:
        """
        Send a request, retrying transient failures.

        Args:
            method: HTTP method
            path: Path under BASE_URL, or a full URL
            params: Query parameters
            resource_id: Short description of the request for logs

        Returns:
            Parsed JSON body

        Raises:
            APIError: Classified failure of the last attempt
        """
        url = path if path.startswith("http") else f"{self.BASE_URL.rstrip('/')}/{path.lstrip('/')}"
        client = await self._get_client()

        for attempt in range(self.max_retries):
            logger.debug(
                f"[{self.SOURCE_NAME}] {method} {resource_id} "
                f"(attempt {attempt + 1}/{self.max_retries})"
            )
            try:
                async with self.semaphore:
                    await self._enforce_rate_limit()
                    return await self._send(client, method, url, params, resource_id)
            except UpstreamQuotaExceeded:
                logger.warning(f"[{self.SOURCE_NAME}] Quota exceeded for {resource_id}")
                raise
            except APIError as error:
                if not error.retryable or attempt == self.max_retries - 1:
                    raise
                logger.warning(f"[{self.SOURCE_NAME}] {error}; retrying")
                await self._backoff(attempt)

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        resource_id: str = "unknown",
    ) -> Any:
        return await self._request("GET", path, params=params, resource_id=resource_id)
