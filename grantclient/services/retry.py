"""
RetryingTransport - httpx calls with bounded exponential backoff.

Retry rules:
- 5xx responses and 429 (rate limit) are transient: retried
- Network errors and timeouts are transient: retried
- Any other 4xx is returned to the caller untouched, never retried
- Cancellation (asyncio.CancelledError) propagates immediately, no further attempts

Backoff between attempts: min(base_delay * 2**attempt, max_delay).
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from grantclient.services.errors import (
    RateLimitError,
    RequestTimeoutError,
    ServiceError,
    ServiceUnavailableError,
)

RATE_LIMIT_STATUS = 429


@dataclass
class RetryPolicy:
    """Configuration for retry behaviour."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    retry_statuses: frozenset[int] = field(
        default_factory=lambda: frozenset({RATE_LIMIT_STATUS})
    )

    def should_retry_status(self, status_code: int) -> bool:
        return status_code >= 500 or status_code in self.retry_statuses

    def compute_delay(self, attempt: int) -> float:
        """Delay after the zero-based ``attempt`` failed."""
        return min(self.base_delay * (2**attempt), self.max_delay)


class RetryingTransport:
    """
    Executes HTTP requests with retries for transient failures.

    Usage:
        transport = RetryingTransport(http_client, RetryPolicy(max_attempts=3))
        response = await transport.execute("GET", url, params={"page": 1})
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        policy: RetryPolicy | None = None,
        service_id: str = "grants-api",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._http_client = http_client
        self.policy = policy or RetryPolicy()
        self.service_id = service_id
        self._sleep = sleep

    async def execute(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_data: Any = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Returns:
            The final httpx.Response (2xx, 3xx or non-retryable 4xx)

        Raises:
            RateLimitError: 429 persisted through every attempt
            ServiceUnavailableError: 5xx persisted through every attempt
            RequestTimeoutError: last attempt timed out
            ServiceError: last attempt failed at the network level
        """
        attempts = max(1, self.policy.max_attempts)
        last_response: httpx.Response | None = None
        last_error: httpx.TransportError | None = None

        for attempt in range(attempts):
            request_kwargs: dict[str, Any] = {
                "method": method,
                "url": url,
                "params": params,
                "headers": headers,
                "json": json_data,
            }
            if timeout is not None:
                request_kwargs["timeout"] = timeout

            try:
                response = await self._http_client.request(**request_kwargs)
            except httpx.TransportError as e:
                last_error, last_response = e, None
                logger.warning(
                    f"{method} {url} failed on attempt {attempt + 1}/{attempts}: {e!r}"
                )
            else:
                if not self.policy.should_retry_status(response.status_code):
                    if attempt > 0:
                        logger.info(f"{method} {url} succeeded after {attempt + 1} attempts")
                    return response
                last_error, last_response = None, response
                logger.warning(
                    f"{method} {url} returned {response.status_code} "
                    f"on attempt {attempt + 1}/{attempts}"
                )

            if attempt < attempts - 1:
                delay = self.policy.compute_delay(attempt)
                logger.debug(f"Retrying {method} {url} in {delay:.2f}s")
                await self._sleep(delay)

        raise self._exhausted_error(last_response, last_error, attempts, timeout)

    def _exhausted_error(
        self,
        response: httpx.Response | None,
        error: httpx.TransportError | None,
        attempts: int,
        timeout: float | None,
    ) -> ServiceError:
        if response is not None:
            if response.status_code == RATE_LIMIT_STATUS:
                return RateLimitError(self.service_id, _retry_after(response))
            return ServiceUnavailableError(self.service_id, response.status_code, attempts)

        if isinstance(error, httpx.TimeoutException):
            return RequestTimeoutError(self.service_id, timeout or 0)

        return ServiceError(
            f"Network error: unable to reach service '{self.service_id}' ({error})",
            service_id=self.service_id,
        )


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
