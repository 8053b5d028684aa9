"""Tests for the anti-forgery token cache."""

import asyncio
from datetime import timedelta

import pytest

from grantclient.services.csrf import CredentialToken, CsrfTokenCache


class TokenEndpoint:
    """Stand-in for the token endpoint that counts fetches."""

    def __init__(self, payload=None, delay: float = 0):
        self.payload = payload or {"token": "csrf-1", "expiresInSeconds": 3600}
        self.delay = delay
        self.calls = 0

    async def __call__(self, access_token: str):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class TestCredentialToken:
    def test_never_valid_at_or_after_expiry(self, clock):
        token = CredentialToken("t", expires_at=clock.now + timedelta(minutes=1))
        assert token.is_valid(clock.now)
        assert not token.is_valid(clock.now + timedelta(minutes=1))
        assert not token.is_valid(clock.now, margin=timedelta(minutes=1))


class TestCsrfTokenCache:
    """Test refresh, single-flight and rotation."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_fetch(self, clock):
        endpoint = TokenEndpoint(delay=0.01)
        cache = CsrfTokenCache(endpoint, clock=clock)

        tokens = await asyncio.gather(*(cache.get_token("bearer") for _ in range(5)))

        assert tokens == ["csrf-1"] * 5
        assert endpoint.calls == 1

    @pytest.mark.asyncio
    async def test_cached_until_refresh_margin(self, clock):
        endpoint = TokenEndpoint()
        cache = CsrfTokenCache(endpoint, refresh_margin=timedelta(minutes=10), clock=clock)

        await cache.get_token("bearer")
        clock.advance(minutes=49)
        await cache.get_token("bearer")
        assert endpoint.calls == 1

        # Inside the last ten minutes of the hour
        clock.advance(minutes=2)
        await cache.get_token("bearer")
        assert endpoint.calls == 2

    @pytest.mark.asyncio
    async def test_accepts_csrf_token_alias(self, clock):
        endpoint = TokenEndpoint({"csrfToken": "alias", "expiresInSeconds": 3600})
        cache = CsrfTokenCache(endpoint, clock=clock)

        assert await cache.get_token("bearer") == "alias"

    @pytest.mark.asyncio
    async def test_fetch_failure_yields_none(self, clock):
        endpoint = TokenEndpoint(RuntimeError("unreachable"))
        cache = CsrfTokenCache(endpoint, clock=clock)

        assert await cache.get_token("bearer") is None
        # Next call retries instead of reusing the failed refresh
        assert await cache.get_token("bearer") is None
        assert endpoint.calls == 2

    @pytest.mark.asyncio
    async def test_rotated_token_replaces_cached_one(self, clock):
        endpoint = TokenEndpoint()
        cache = CsrfTokenCache(endpoint, clock=clock)
        await cache.get_token("bearer")

        cache.accept("rotated")

        assert await cache.get_token("bearer") == "rotated"
        assert endpoint.calls == 1

    @pytest.mark.asyncio
    async def test_clear_forces_refetch(self, clock):
        endpoint = TokenEndpoint()
        cache = CsrfTokenCache(endpoint, clock=clock)
        await cache.get_token("bearer")

        cache.clear()
        await cache.get_token("bearer")

        assert endpoint.calls == 2

    @pytest.mark.asyncio
    async def test_token_is_not_reused_for_another_credential(self, clock):
        endpoint = TokenEndpoint()
        cache = CsrfTokenCache(endpoint, clock=clock)
        await cache.get_token("bearer-alice")

        endpoint.payload = {"token": "csrf-bob", "expiresInSeconds": 3600}

        assert await cache.get_token("bearer-bob") == "csrf-bob"
        assert cache.token.access_token == "bearer-bob"
        assert endpoint.calls == 2

    @pytest.mark.asyncio
    async def test_rotated_token_belongs_to_the_sending_credential(self, clock):
        endpoint = TokenEndpoint()
        cache = CsrfTokenCache(endpoint, clock=clock)

        cache.accept("rotated", access_token="bearer-alice")

        assert await cache.get_token("bearer-alice") == "rotated"
        assert await cache.get_token("bearer-bob") == "csrf-1"
        assert endpoint.calls == 1
