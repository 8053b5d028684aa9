"""
CacheManager - In-memory response cache with TTL and lazy expiry.

Features:
- Keys derived from endpoint, canonical (sorted) params and caller identity
- TTL (Time To Live) per entry, expired entries dropped on access
- Substring invalidation for write-after-read consistency
- Oldest-entry eviction once max_size is reached

All access happens on the event loop thread, so no locking is needed.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")

ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A single cache entry. Replaced wholesale, never mutated."""

    data: T
    stored_at: datetime
    ttl: timedelta

    def is_valid(self, now: datetime) -> bool:
        """Check if entry is still within its TTL."""
        return now - self.stored_at <= self.ttl


class CacheManager:
    """
    Response cache keyed by request identity.

    Usage:
        cache = CacheManager(max_size=100)
        key = cache.generate_key("/grants", {"page": 1}, access_token)

        data = await cache.get(key)
        if data is None:
            data = await fetch_data()
            await cache.set(key, data, ttl=timedelta(minutes=5))
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = datetime.now,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()
        # Bumped on every invalidation; reads started before it must not re-populate
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    @staticmethod
    def identity_marker(access_token: str | None) -> str:
        """Short credential fingerprint so users never share entries."""
        if not access_token:
            return ANONYMOUS
        return f"{access_token[:10]}..."

    def generate_key(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        access_token: str | None = None,
    ) -> str:
        """Generate a cache key from endpoint, params and identity."""
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        serialized = json.dumps(clean, sort_keys=True, default=str)
        identity = self.identity_marker(access_token)
        full_key = f"{endpoint}-{serialized}-{identity}"

        # Hash long keys but keep the endpoint so invalidate() still matches
        if len(full_key) > 200:
            hash_val = hashlib.md5(full_key.encode()).hexdigest()[:16]
            return f"{endpoint}-{hash_val}"

        return full_key

    async def get(self, key: str) -> Any | None:
        """
        Get value from cache.

        Returns the payload if present and fresh, None otherwise.
        """
        entry = self._memory.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}...")
            return None

        if not entry.is_valid(self._clock()):
            del self._memory[key]
            self._stats.misses += 1
            self._log(f"EXPIRED: {key[:50]}...")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}...")
        return entry.data

    async def set(
        self,
        key: str,
        data: Any,
        ttl: timedelta | None = None,
        generation: int | None = None,
    ) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            data: Data to cache
            ttl: Time to live (uses default if not specified)
            generation: Cache generation the data was fetched under; if an
                invalidation happened since, the data is not stored

        Returns:
            True if the entry was stored
        """
        if generation is not None and generation != self._generation:
            self._log(f"SKIP STALE: {key[:50]}... (fetched before invalidation)")
            return False

        ttl = ttl or self._default_ttl

        if len(self._memory) >= self._max_size and key not in self._memory:
            self._evict_oldest()

        self._memory[key] = CacheEntry(data=data, stored_at=self._clock(), ttl=ttl)
        self._log(f"SET: {key[:50]}... (TTL: {ttl.total_seconds()}s)")
        return True

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if key in self._memory:
            del self._memory[key]
            self._log(f"DELETE: {key[:50]}...")
            return True
        return False

    async def invalidate(self, pattern: str) -> int:
        """
        Invalidate all keys matching a pattern.

        Args:
            pattern: Substring to match in keys

        Returns:
            Number of entries invalidated
        """
        self._generation += 1
        keys_to_delete = [k for k in self._memory if pattern in k]
        for key in keys_to_delete:
            del self._memory[key]

        if keys_to_delete:
            self._log(f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'")

        return len(keys_to_delete)

    async def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._memory)
        self._memory.clear()
        self._generation += 1
        self._log(f"CLEAR: {count} entries removed")

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired_keys = [k for k, v in self._memory.items() if not v.is_valid(now)]
        for key in expired_keys:
            del self._memory[key]

        if expired_keys:
            self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

        return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Evict the oldest entry."""
        if not self._memory:
            return

        oldest_key = min(
            self._memory.keys(),
            key=lambda k: self._memory[k].stored_at,
        )
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}...")

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheManager] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
