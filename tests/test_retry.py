"""Tests for the retrying transport."""

import asyncio

import httpx
import pytest

from grantclient.services.errors import (
    RateLimitError,
    RequestTimeoutError,
    ServiceError,
    ServiceUnavailableError,
)
from grantclient.services.retry import RetryingTransport, RetryPolicy

URL = "http://grants.test/api/grants"


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def scripted(*outcomes):
    """Handler replaying status codes / exceptions in order; records call count."""
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        outcome = outcomes[min(calls["count"], len(outcomes) - 1)]
        calls["count"] += 1
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, tuple):
            status, headers = outcome
            return httpx.Response(status, headers=headers, json={})
        return httpx.Response(outcome, json={"ok": outcome < 400})

    return handler, calls


def make_transport(handler, sleep, **policy):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RetryingTransport(client, RetryPolicy(**policy), sleep=sleep)


class TestRetryPolicy:
    def test_backoff_doubles_and_caps(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=10.0)
        assert [policy.compute_delay(i) for i in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_retryable_statuses(self):
        policy = RetryPolicy()
        assert policy.should_retry_status(500)
        assert policy.should_retry_status(503)
        assert policy.should_retry_status(429)
        assert not policy.should_retry_status(404)
        assert not policy.should_retry_status(400)
        assert not policy.should_retry_status(200)


class TestRetryingTransport:
    """Test retry behaviour against a scripted service."""

    @pytest.fixture
    def sleep(self):
        return RecordingSleep()

    @pytest.mark.asyncio
    async def test_server_error_then_success(self, sleep):
        handler, calls = scripted(500, 200)
        transport = make_transport(handler, sleep)

        response = await transport.execute("GET", URL)

        assert response.status_code == 200
        assert calls["count"] == 2
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, sleep):
        handler, calls = scripted(404)
        transport = make_transport(handler, sleep)

        response = await transport.execute("GET", URL)

        assert response.status_code == 404
        assert calls["count"] == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self, sleep):
        handler, calls = scripted((429, {"Retry-After": "30"}))
        transport = make_transport(handler, sleep)

        with pytest.raises(RateLimitError) as exc_info:
            await transport.execute("GET", URL)

        assert exc_info.value.retry_after == 30.0
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_server_errors_exhausted_without_trailing_sleep(self, sleep):
        handler, calls = scripted(503)
        transport = make_transport(handler, sleep, base_delay=1.0, max_delay=10.0)

        with pytest.raises(ServiceUnavailableError) as exc_info:
            await transport.execute("GET", URL)

        assert exc_info.value.status_code == 503
        assert exc_info.value.attempts == 3
        assert calls["count"] == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self, sleep):
        request = httpx.Request("GET", URL)
        handler, calls = scripted(httpx.ConnectError("refused", request=request), 200)
        transport = make_transport(handler, sleep)

        response = await transport.execute("GET", URL)

        assert response.status_code == 200
        assert calls["count"] == 2

    @pytest.mark.asyncio
    async def test_timeouts_exhausted(self, sleep):
        request = httpx.Request("GET", URL)
        handler, _ = scripted(httpx.ReadTimeout("slow", request=request))
        transport = make_transport(handler, sleep)

        with pytest.raises(RequestTimeoutError):
            await transport.execute("GET", URL, timeout=5.0)

    @pytest.mark.asyncio
    async def test_connection_failures_exhausted(self, sleep):
        request = httpx.Request("GET", URL)
        handler, _ = scripted(httpx.ConnectError("refused", request=request))
        transport = make_transport(handler, sleep)

        with pytest.raises(ServiceError, match="Network error"):
            await transport.execute("GET", URL)

    @pytest.mark.asyncio
    async def test_cancellation_during_backoff_stops_retrying(self):
        handler, calls = scripted(500, 200)
        backing_off = asyncio.Event()

        async def blocking_sleep(delay: float) -> None:
            backing_off.set()
            await asyncio.Event().wait()

        transport = make_transport(handler, blocking_sleep)
        task = asyncio.create_task(transport.execute("GET", URL))
        await backing_off.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert calls["count"] == 1
