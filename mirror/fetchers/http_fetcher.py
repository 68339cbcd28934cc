"""
HTTP byte fetcher with error classification and a circuit breaker.

A single ``get`` is one attempt: transient failures surface as
retryable errors and the caller decides how often to retry. The circuit
breaker is shared by all callers of one fetcher, so a dead upstream is
not hammered by every download worker.
"""

import httpx
from typing import Dict, Optional
from datetime import datetime, timedelta
from core.exceptions import (
    TransportError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    RemoteNotFoundError,
)
import logging

logger = logging.getLogger(__name__)


class HttpFetcher:
    """
    Fetch archive bytes over HTTP.

    Attributes:
        timeout: Per-request timeout in seconds (default: 60.0)
        circuit_breaker_threshold: Consecutive failures before the circuit opens (default: 5)
        circuit_breaker_timeout: Seconds before the circuit resets (default: 60)
    """

    def __init__(
        self,
        timeout: float = 60.0,
        user_agent: str = "registry-mirror/1.0",
        token: Optional[str] = None,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.timeout = timeout
        headers: Dict[str, str] = {"User-Agent": user_agent}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport
        )

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = circuit_breaker_threshold
        self._circuit_breaker_open_until: Optional[datetime] = None
        self._circuit_breaker_timeout = circuit_breaker_timeout

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if datetime.utcnow() >= self._circuit_breaker_open_until:
            logger.info("Circuit breaker reset")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = datetime.utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened after {self._circuit_breaker_failures} failures. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    async def get(self, url: str) -> bytes:
        """
        Fetch ``url`` and return the body.

        Raises:
            NetworkError: Timeout, connection failure, 5xx, open circuit
            RateLimitError: HTTP 429
            AuthenticationError: HTTP 401/403
            RemoteNotFoundError: HTTP 404
            TransportError: Any other non-success status
        """
        if self._is_circuit_open():
            raise NetworkError(
                "Circuit breaker is open",
                context={
                    "url": url,
                    "open_until": self._circuit_breaker_open_until.isoformat()
                }
            )

        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            self._record_failure()
            raise NetworkError(
                "Request timeout",
                context={"url": url, "timeout": self.timeout},
                original_exception=e
            )
        except httpx.TransportError as e:
            self._record_failure()
            raise NetworkError(
                "Network error",
                context={"url": url},
                original_exception=e
            )

        status = response.status_code

        if status in (401, 403):
            raise AuthenticationError(
                f"Authentication failed for {url}",
                context={"status_code": status, "url": url}
            )

        if status == 404:
            raise RemoteNotFoundError(
                f"Resource not found: {url}",
                context={"status_code": 404, "url": url}
            )

        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimitError(
                f"Rate limit exceeded for {url}",
                context={"status_code": 429, "url": url},
                retry_after=retry_after
            )

        if status >= 500:
            self._record_failure()
            raise NetworkError(
                f"Server error {status}",
                context={
                    "status_code": status,
                    "url": url,
                    "response_body": response.text[:500]  # Truncate
                }
            )

        if status >= 400:
            raise TransportError(
                f"Unexpected status {status}",
                context={"status_code": status, "url": url}
            )

        self._record_success()
        return response.content


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
