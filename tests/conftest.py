"""Pytest configuration and fixtures for grantclient tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx
import pytest

from grantclient.auth import AuthSession, StaticSessionProvider
from grantclient.services.client import ServiceClient
from grantclient.services.retry import RetryPolicy


class FakeClock:
    """Manually advanced clock for TTL and expiry tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    """Signed-in user."""
    return AuthSession(
        user_id="user-1",
        access_token="token-abcdefghijklmnop",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )


@pytest.fixture
def session_provider(session):
    return StaticSessionProvider(session)


@pytest.fixture
def anonymous_provider():
    return StaticSessionProvider()


@pytest.fixture
def make_client(clock):
    """Factory for a ServiceClient whose HTTP calls are served by ``handler``."""

    def factory(handler: Callable[[httpx.Request], Any], **overrides: Any) -> ServiceClient:
        kwargs: dict[str, Any] = {
            "base_url": "http://grants.test",
            "api_key": "public-key",
            "retry_policy": RetryPolicy(max_attempts=3, base_delay=0, max_delay=0),
            "http_client": httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            "clock": clock,
        }
        kwargs.update(overrides)
        return ServiceClient(**kwargs)

    return factory
