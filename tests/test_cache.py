"""Tests for the response cache."""

from datetime import timedelta

import pytest

from grantclient.services.cache import ANONYMOUS, CacheManager


class TestCacheKeys:
    """Test cache key derivation."""

    def test_param_order_does_not_matter(self):
        cache = CacheManager()
        a = cache.generate_key("/grants", {"page": 1, "search": "cancer"}, "token-1234567890xyz")
        b = cache.generate_key("/grants", {"search": "cancer", "page": 1}, "token-1234567890xyz")
        assert a == b

    def test_none_params_are_ignored(self):
        cache = CacheManager()
        assert cache.generate_key("/grants", {"page": 1, "search": None}) == cache.generate_key(
            "/grants", {"page": 1}
        )

    def test_identity_marker(self):
        assert CacheManager.identity_marker(None) == ANONYMOUS
        assert CacheManager.identity_marker("abcdefghijKLMNOP") == "abcdefghij..."

    def test_identities_do_not_share_keys(self):
        cache = CacheManager()
        anonymous = cache.generate_key("/grants", {"page": 1})
        signed_in = cache.generate_key("/grants", {"page": 1}, "token-1234567890")
        assert anonymous != signed_in
        assert anonymous.endswith(ANONYMOUS)

    def test_long_keys_are_hashed_but_keep_endpoint(self):
        cache = CacheManager()
        key = cache.generate_key("/grants", {"search": "x" * 300})
        assert len(key) < 200
        assert key.startswith("/grants-")


class TestCacheManager:
    """Test cache storage, expiry and invalidation."""

    @pytest.fixture
    def cache(self, clock):
        return CacheManager(max_size=3, default_ttl=timedelta(minutes=5), clock=clock)

    @pytest.mark.asyncio
    async def test_round_trip(self, cache):
        await cache.set("k", {"items": [1, 2]}, timedelta(minutes=1))
        assert await cache.get("k") == {"items": [1, 2]}

    @pytest.mark.asyncio
    async def test_missing_key(self, cache):
        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_valid_up_to_ttl_then_expires(self, cache, clock):
        await cache.set("k", "v", timedelta(seconds=60))

        clock.advance(seconds=60)
        assert await cache.get("k") == "v"

        clock.advance(seconds=1)
        assert await cache.get("k") is None
        # Lazily removed on access
        assert cache.get_stats().size == 0

    @pytest.mark.asyncio
    async def test_restore_replaces_entry(self, cache, clock):
        await cache.set("k", "old", timedelta(seconds=10))
        clock.advance(seconds=8)
        await cache.set("k", "new", timedelta(seconds=10))
        clock.advance(seconds=8)
        assert await cache.get("k") == "new"

    @pytest.mark.asyncio
    async def test_invalidate_by_substring(self, cache):
        await cache.set("/users/interactions-{}-anonymous", 1)
        await cache.set("/grants/abc-{}-anonymous", 2)
        await cache.set("/grants-{}-anonymous", 3)

        removed = await cache.invalidate("/grants/abc")

        assert removed == 1
        assert await cache.get("/grants/abc-{}-anonymous") is None
        assert await cache.get("/grants-{}-anonymous") == 3

    @pytest.mark.asyncio
    async def test_evicts_oldest_at_capacity(self, cache, clock):
        for key in ("a", "b", "c"):
            await cache.set(key, key)
            clock.advance(seconds=1)

        await cache.set("d", "d")

        assert await cache.get("a") is None
        assert await cache.get("d") == "d"
        assert cache.get_stats().evictions == 1

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, cache, clock):
        await cache.set("short", 1, timedelta(seconds=1))
        await cache.set("long", 2, timedelta(hours=1))
        clock.advance(seconds=5)

        assert await cache.cleanup_expired() == 1
        assert await cache.get("long") == 2

    @pytest.mark.asyncio
    async def test_clear_and_delete(self, cache):
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False

        await cache.clear()
        assert await cache.get("b") is None

    @pytest.mark.asyncio
    async def test_stats(self, cache):
        await cache.set("a", 1)
        await cache.get("a")
        await cache.get("missing")

        stats = cache.get_stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.to_dict()["hit_rate"] == "50.00%"

    @pytest.mark.asyncio
    async def test_data_fetched_before_invalidation_is_not_stored(self, cache):
        generation = cache.generation

        await cache.invalidate("/users/interactions")

        assert await cache.set("/users/interactions-{}-anonymous", [], generation=generation) is False
        assert await cache.get("/users/interactions-{}-anonymous") is None
        assert await cache.set("/users/interactions-{}-anonymous", [], generation=cache.generation) is True
