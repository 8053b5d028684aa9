"""
ServiceClient - Unified async HTTP client for the grants service.

Combines:
- CacheManager for response caching (reads only)
- RequestDeduplicator for concurrent identical reads
- RetryingTransport for transient failures
- CancellationRegistry so writes supersede older requests and teardown can cancel everything
- CsrfTokenCache for the anti-forgery header on state-changing verbs
"""

import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

import httpx
from loguru import logger

from grantclient.services.cache import CacheManager
from grantclient.services.cancellation import CancellationRegistry, CancellationToken
from grantclient.services.csrf import CsrfTokenCache
from grantclient.services.deduplicator import RequestDeduplicator
from grantclient.services.errors import (
    ClientRequestError,
    RequestCancelledError,
    ServiceError,
)
from grantclient.services.retry import RetryingTransport, RetryPolicy
from grantclient.settings import Settings, global_settings

T = TypeVar("T")

SERVICE_ID = "grants-api"
STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
CSRF_HEADER = "X-CSRF-Token"
NEW_CSRF_HEADER = "X-New-CSRF-Token"


@dataclass
class RequestResult(Generic[T]):
    """Result from a service request."""

    data: T
    from_cache: bool = False
    request_id: str | None = None


class ServiceClient:
    """
    HTTP client with caching, deduplication, retries and cancellation.

    Usage:
        client = ServiceClient.from_settings()

        # Cached, deduplicated read
        result = await client.request("/grants", params={"page": 1, "limit": 6})

        # Write: cancels older requests to the same resource, sends CSRF header
        await client.request(
            "/users/interactions",
            method="POST",
            json_data={...},
            access_token=session.access_token,
        )

        # Navigation / teardown
        client.cancel_all_requests()
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        api_key: str = "",
        timeout: float = 30.0,
        default_cache_ttl: timedelta = timedelta(minutes=5),
        cache_max_size: int = 100,
        retry_policy: RetryPolicy | None = None,
        csrf_refresh_margin: timedelta = timedelta(minutes=10),
        use_cache: bool = True,
        use_dedup: bool = True,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._use_cache = use_cache
        self._use_dedup = use_dedup
        self._debug = debug

        # Initialize components
        self._cache = CacheManager(
            max_size=cache_max_size,
            default_ttl=default_cache_ttl,
            clock=clock,
            debug=debug,
        )
        self._deduplicator = RequestDeduplicator(debug=debug)
        self._cancellations = CancellationRegistry(debug=debug)
        self._csrf = CsrfTokenCache(
            fetch_token=self.fetch_csrf_token,
            refresh_margin=csrf_refresh_margin,
            clock=clock,
        )
        self._retry_policy = retry_policy or RetryPolicy()
        self._request_counter = itertools.count(1)

        # HTTP client (lazy initialization unless injected)
        self._http_client = http_client
        self._transport: RetryingTransport | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> "ServiceClient":
        """Build a client from environment settings."""
        settings = settings or global_settings
        kwargs: dict[str, Any] = {
            "base_url": settings.api_base_url,
            "api_key": settings.public_api_key,
            "timeout": settings.request_timeout,
            "default_cache_ttl": timedelta(seconds=settings.cache_default_ttl_seconds),
            "cache_max_size": settings.cache_max_size,
            "retry_policy": RetryPolicy(
                max_attempts=settings.max_retries,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
            ),
            "csrf_refresh_margin": timedelta(seconds=settings.csrf_refresh_margin_seconds),
            "use_cache": settings.enable_response_cache,
            "use_dedup": settings.enable_request_dedup,
            "debug": settings.debug,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def cache(self) -> CacheManager:
        return self._cache

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    @property
    def cancellations(self) -> CancellationRegistry:
        return self._cancellations

    @property
    def csrf(self) -> CsrfTokenCache:
        return self._csrf

    def _get_transport(self) -> RetryingTransport:
        """Get or create the retrying transport."""
        if self._transport is None:
            if self._http_client is None:
                self._http_client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout),
                    follow_redirects=True,
                )
            self._transport = RetryingTransport(
                self._http_client,
                policy=self._retry_policy,
                service_id=SERVICE_ID,
            )
        return self._transport

    def _url(self, endpoint: str) -> str:
        return f"{self._base_url}/api{endpoint}"

    async def request(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        method: str = "GET",
        json_data: Any = None,
        access_token: str | None = None,
        cache_ttl: timedelta | None = None,
        force_refresh: bool = False,
        use_cache: bool | None = None,
        resource: str | None = None,
    ) -> RequestResult[Any]:
        """
        Make a request to the grants service.

        Args:
            endpoint: Path below /api, e.g. "/grants"
            params: Query parameters
            method: HTTP method (GET, POST, etc.)
            json_data: JSON body for write requests
            access_token: Bearer credential of the signed-in user
            cache_ttl: Override cache TTL for this read
            force_refresh: Skip the cache lookup (result is still stored)
            use_cache: Override cache usage for this read
            resource: Identity used for superseding writes (defaults to endpoint)

        Returns:
            RequestResult with decoded JSON

        Raises:
            RequestCancelledError: Request was cancelled on purpose
            ClientRequestError: Non-retryable 4xx
            ServiceError: Transient failure that outlived the retries
        """
        method = method.upper()
        is_read = method == "GET"
        should_cache = is_read and (use_cache if use_cache is not None else self._use_cache)
        cache_key = self._cache.generate_key(endpoint, params, access_token)

        if should_cache and not force_refresh:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                return RequestResult(data=cached, from_cache=True)

        resource = resource or endpoint

        if not is_read:
            superseded = self._cancellations.cancel_matching_prefix(
                f"{resource}#", reason=f"superseded by {method} {endpoint}"
            )
            if superseded:
                logger.debug(f"{method} {endpoint} superseded {superseded} outstanding requests")

        async def do_request() -> Any:
            generation = self._cache.generation
            data = await self._execute_request(method, endpoint, params, json_data, access_token)
            if should_cache:
                await self._cache.set(cache_key, data, cache_ttl, generation=generation)
            return data

        if is_read and self._use_dedup:
            operation = self._deduplicator.dedupe(cache_key, do_request)
        else:
            operation = do_request()

        request_id = f"{resource}#{next(self._request_counter)}"
        token = CancellationToken(request_id)
        task = asyncio.ensure_future(operation)
        token.bind(task)
        self._cancellations.register(request_id, token)

        try:
            data = await task
        except asyncio.CancelledError:
            if token.cancelled and not _caller_is_cancelling():
                raise RequestCancelledError(request_id, token.reason) from None
            raise
        finally:
            self._cancellations.unregister(request_id)

        return RequestResult(data=data, request_id=request_id)

    async def _execute_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None,
        json_data: Any,
        access_token: str | None,
    ) -> Any:
        """Execute the actual HTTP request."""
        headers = await self._build_headers(method, endpoint, access_token)
        response = await self._get_transport().execute(
            method,
            self._url(endpoint),
            params=encode_params(params),
            headers=headers,
            json_data=json_data,
            timeout=self._timeout,
        )

        rotated = response.headers.get(NEW_CSRF_HEADER)
        if rotated:
            self._csrf.accept(rotated, access_token=access_token)

        return decode_response(response)

    async def _build_headers(
        self,
        method: str,
        endpoint: str,
        access_token: str | None,
    ) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key

        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
            if method in STATE_CHANGING_METHODS:
                token = await self._csrf.get_token(access_token)
                if token:
                    headers[CSRF_HEADER] = token
                else:
                    logger.warning(f"No CSRF token available for {method} {endpoint}")

        # Grant listings change with user interactions; bypass HTTP caches
        if method == "GET" and endpoint.startswith("/grants"):
            headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            headers["Pragma"] = "no-cache"

        return headers

    async def fetch_csrf_token(self, access_token: str) -> dict[str, Any]:
        """Fetch a fresh anti-forgery token payload."""
        headers = {"Authorization": f"Bearer {access_token}"}
        if self._api_key:
            headers["apikey"] = self._api_key
        response = await self._get_transport().execute(
            "GET", self._url("/csrf-token"), headers=headers, timeout=self._timeout
        )
        data = decode_response(response)
        if not isinstance(data, dict):
            raise ServiceError("Invalid response format", service_id=SERVICE_ID)
        return data

    async def invalidate(self, *patterns: str) -> int:
        """Drop cached reads whose keys contain any of the patterns."""
        removed = 0
        for pattern in patterns:
            removed += await self._cache.invalidate(pattern)
        return removed

    def cancel_all_requests(self) -> int:
        """Cancel every outstanding request (navigation / teardown)."""
        cancelled = self._cancellations.cancel_all(reason="cancelled due to navigation")
        self._deduplicator.cancel_all()
        return cancelled

    async def close(self) -> None:
        """Close the HTTP client and cleanup resources."""
        self.cancel_all_requests()
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
            self._transport = None
        logger.debug("ServiceClient closed")

    async def __aenter__(self) -> "ServiceClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


def encode_params(params: dict[str, Any] | None) -> dict[str, str] | None:
    """Flatten query params: drop None, join sequences with commas, lowercase bools."""
    if not params:
        return None

    encoded: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif isinstance(value, (set, frozenset)):
            encoded[key] = ",".join(sorted(str(v) for v in value))
        elif isinstance(value, (list, tuple)):
            encoded[key] = ",".join(str(v) for v in value)
        else:
            encoded[key] = str(value)
    return encoded


def decode_response(response: httpx.Response) -> Any:
    """Decode a JSON body, mapping error statuses to ClientRequestError."""
    try:
        data = response.json() if response.content else None
    except ValueError:
        data = None
        if not response.is_error:
            raise ServiceError("Invalid response format", service_id=SERVICE_ID)

    if response.is_error:
        message = data.get("message") if isinstance(data, dict) else None
        raise ClientRequestError(
            response.status_code,
            message or f"HTTP {response.status_code}: {response.text[:200]}",
            service_id=SERVICE_ID,
        )

    return data


def _caller_is_cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


# Global client instance
_global_client: ServiceClient | None = None


def get_service_client() -> ServiceClient:
    """Get the global service client instance."""
    global _global_client
    if _global_client is None:
        _global_client = ServiceClient.from_settings()
    return _global_client


async def close_service_client() -> None:
    """Close the global service client."""
    global _global_client
    if _global_client:
        await _global_client.close()
        _global_client = None
