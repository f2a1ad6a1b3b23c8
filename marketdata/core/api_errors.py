"""
Error types for upstream listing sources and the cache store.

The type of an upstream failure decides what the aggregator does next:

- UpstreamUnavailable      -> try the next strategy, then synthesize
- UpstreamQuotaExceeded    -> synthesize immediately, short cache TTL
- UpstreamRejected         -> stop trying strategies, synthesize
- MalformedUpstreamPayload -> treated as an empty result
- ConfigurationError       -> no upstream call is possible, synthesize
- AddressNotFound          -> "not listed", a valid result rather than a failure
- CacheUnavailable         -> bypass the cache for this call

None of these ever reach the caller of the market data service.
"""

from typing import Any, Dict, Optional


class APIError(Exception):
    """
    Base exception for upstream failures.

    Attributes:
        message: Human-readable description
        source: Upstream source name (e.g. 'realtor_search')
        status_code: HTTP status code, if there was a response
        response_data: Parsed body, kept for debugging
        retryable: Whether another attempt of the same call may succeed
    """

    retryable = False

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.source = source
        self.status_code = status_code
        self.response_data = response_data

    def __str__(self) -> str:
        text = f"[{self.source}] {self.message}" if self.source else self.message
        if self.status_code:
            text = f"{text} (HTTP {self.status_code})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for logs and job records."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "source": self.source,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "response_data": self.response_data,
        }


class UpstreamUnavailable(APIError):
    """5xx, timeout or network failure. Retried, then the next strategy runs."""

    retryable = True


class UpstreamQuotaExceeded(APIError):
    """
    Quota exhausted: HTTP 429, or a quota message inside a 2xx body.

    Never retried. Waiting out a monthly quota is pointless, so the caller
    gets synthesized data cached with a short TTL instead.
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        retry_after: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, source=source, status_code=429, response_data=response_data)
        self.retry_after = retry_after


class UpstreamRejected(APIError):
    """Non-429 4xx, or an error field in the body: the query itself was refused."""


class AuthenticationError(UpstreamRejected):
    """HTTP 401/403: the API key is invalid or lacks access."""


class NotFoundError(UpstreamRejected):
    """HTTP 404 from the search endpoint."""


class ValidationError(UpstreamRejected):
    """HTTP 400: the source rejected the query parameters."""


class ConfigurationError(UpstreamRejected):
    """A live call was attempted without the configuration it needs."""

    def __init__(self, message: str, missing_config: Optional[str] = None, source: Optional[str] = None):
        super().__init__(message, source=source)
        self.missing_config = missing_config


class MalformedUpstreamPayload(APIError):
    """A 2xx response whose body could not be parsed as JSON."""


class AddressNotFound(Exception):
    """
    The upstream answered but no listing matched the address.

    A valid terminal result, not a failure: the service reports it as
    "not listed" and caches the marker. Never raised out of the service.
    """

    def __init__(self, address: str, zip_code: Optional[str] = None, source: Optional[str] = None):
        message = f"No listing for '{address}'" + (f" in {zip_code}" if zip_code else "")
        super().__init__(message)
        self.message = message
        self.address = address
        self.zip_code = zip_code
        self.source = source


class CacheUnavailable(Exception):
    """Cache store read or write failed."""

    def __init__(self, message: str, operation: Optional[str] = None, key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.key = key

    def __str__(self) -> str:
        if self.operation and self.key:
            return f"Cache {self.operation} failed for {self.key}: {self.message}"
        return self.message


_STATUS_ERRORS = {
    400: (ValidationError, "Bad request"),
    401: (AuthenticationError, "Authentication failed"),
    403: (AuthenticationError, "Authentication failed"),
    404: (NotFoundError, "Not found"),
}


def classify_http_error(
    status_code: int, response_text: str = "", source: Optional[str] = None
) -> APIError:
    """
    Map an HTTP error status onto an APIError subclass.

    Args:
        status_code: HTTP status code (>= 400)
        response_text: Response body, truncated into the message
        source: Upstream source name

    Returns:
        The error to raise
    """
    body = response_text[:200]

    if status_code == 429:
        return UpstreamQuotaExceeded(f"Quota exceeded: {body}", source=source)
    if status_code in _STATUS_ERRORS:
        error_class, label = _STATUS_ERRORS[status_code]
        return error_class(f"{label}: {body}", source=source, status_code=status_code)
    if 400 <= status_code < 500:
        return UpstreamRejected(f"Client error: {body}", source=source, status_code=status_code)
    if status_code >= 500:
        return UpstreamUnavailable(f"Server error: {body}", source=source, status_code=status_code)
    return APIError(f"HTTP error {status_code}: {body}", source=source, status_code=status_code)
