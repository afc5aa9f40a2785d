"""
History Cache.

Key-value cache with per-entry TTL and prefix invalidation that fronts
message-history and chat projection queries.

The cache is an optimization only: every backend error degrades to a
miss (get) or a no-op (set/invalidate) and is logged, never raised.
"""

from __future__ import annotations

import json
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as redis

from shared.config.logging import get_logger

logger = get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def _encode(payload: Any) -> str:
    return json.dumps(payload, default=str, separators=(",", ":"))


class HistoryCache(ABC):
    """Interface shared by the cache backends."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached payload, or None on miss, expiry or backend error."""

    @abstractmethod
    async def set(self, key: str, payload: Any, ttl_seconds: int) -> None:
        """Store a JSON-serializable payload for ttl_seconds."""

    @abstractmethod
    async def invalidate_by_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix. Returns entries removed."""

    async def invalidate_prefixes(self, prefixes: list[str]) -> int:
        """Invalidate several prefixes, ignoring duplicates."""
        removed = 0
        for prefix in dict.fromkeys(prefixes):
            removed += await self.invalidate_by_prefix(prefix)
        return removed

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""


# =============================================================================
# Redis backend
# =============================================================================


class RedisHistoryCache(HistoryCache):
    """
    History cache stored in Redis as JSON strings with SETEX.

    Prefix invalidation walks matching keys with SCAN (never KEYS) and
    deletes them in batches.

    Usage:
        cache = RedisHistoryCache(get_redis_pool)
        await cache.set("chat:p1:u1:history:all:1:50", messages, 300)
        await cache.invalidate_by_prefix("chat:p1:u1:")
    """

    SCAN_COUNT = 200
    DELETE_BATCH_SIZE = 500

    def __init__(self, client_factory: Callable[[], Awaitable[redis.Redis]]) -> None:
        """
        Args:
            client_factory: Coroutine returning the shared async Redis client.
        """
        self._client_factory = client_factory
        self._hits = 0
        self._misses = 0
        self._errors = 0

    async def get(self, key: str) -> Any | None:
        try:
            client = await self._client_factory()
            raw = await client.get(key)
        except (redis.RedisError, OSError) as e:
            self._errors += 1
            self._misses += 1
            logger.warning("History cache get failed", key=key, error=str(e))
            return None

        if raw is None:
            self._misses += 1
            return None

        try:
            payload = json.loads(raw)
        except ValueError as e:
            self._errors += 1
            self._misses += 1
            logger.warning("History cache entry is not valid JSON", key=key, error=str(e))
            return None

        self._hits += 1
        return payload

    async def set(self, key: str, payload: Any, ttl_seconds: int) -> None:
        try:
            client = await self._client_factory()
            await client.setex(key, ttl_seconds, _encode(payload))
        except (redis.RedisError, OSError, TypeError, ValueError) as e:
            self._errors += 1
            logger.warning("History cache set failed", key=key, error=str(e))

    async def invalidate_by_prefix(self, prefix: str) -> int:
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        removed = 0
        try:
            client = await self._client_factory()
            batch: list[str] = []
            async for key in client.scan_iter(match=pattern, count=self.SCAN_COUNT):
                batch.append(key)
                if len(batch) >= self.DELETE_BATCH_SIZE:
                    removed += await client.delete(*batch)
                    batch = []
            if batch:
                removed += await client.delete(*batch)
        except (redis.RedisError, OSError) as e:
            self._errors += 1
            logger.warning("History cache invalidation failed", prefix=prefix, error=str(e))
            return removed

        if removed:
            logger.debug("History cache invalidated", prefix=prefix, removed=removed)
        return removed

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "backend": "redis",
            "hits": self._hits,
            "misses": self._misses,
            "errors": self._errors,
            "hit_ratio": round(self._hits / total, 3) if total > 0 else 0.0,
        }


# =============================================================================
# In-memory backend
# =============================================================================


@dataclass
class CacheEntry:
    """Single cache entry with serialized value and expiration time."""

    value: str
    expires_at: float
    created_at: float = field(default_factory=time.monotonic)

    def is_expired(self) -> bool:
        """Check if this entry has expired."""
        return time.monotonic() > self.expires_at


class InMemoryHistoryCache(HistoryCache):
    """
    Process-local history cache.

    Features:
    - Per-entry TTL expiration
    - Automatic cleanup of expired entries
    - Size limit with oldest-entry eviction

    Values are stored serialized so callers never share mutable state
    with the cache, matching what the Redis backend hands back.
    """

    def __init__(
        self,
        max_size: int = 5000,
        cleanup_threshold: float = 0.8,
    ) -> None:
        """
        Args:
            max_size: Maximum number of entries before eviction.
            cleanup_threshold: Trigger expired-entry cleanup at this share of max_size.
        """
        self._max_size = max_size
        self._cleanup_threshold = cleanup_threshold
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    @property
    def size(self) -> int:
        """Current number of entries in cache."""
        return len(self._entries)

    @property
    def hit_ratio(self) -> float:
        """Cache hit ratio (0.0 to 1.0)."""
        total = self._hits + self._misses
        return self._hits / total if total > 0 else 0.0

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired():
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return json.loads(entry.value)

    async def set(self, key: str, payload: Any, ttl_seconds: int) -> None:
        try:
            value = _encode(payload)
        except (TypeError, ValueError) as e:
            logger.warning("History cache set failed", key=key, error=str(e))
            return

        if len(self._entries) >= self._max_size * self._cleanup_threshold:
            self._cleanup_expired()

        # If still at capacity after cleanup, evict oldest
        if key not in self._entries and len(self._entries) >= self._max_size:
            self._evict_oldest()

        self._entries[key] = CacheEntry(
            value=value,
            expires_at=time.monotonic() + ttl_seconds,
        )

    async def invalidate_by_prefix(self, prefix: str) -> int:
        keys_to_remove = [k for k in self._entries if k.startswith(prefix)]
        for key in keys_to_remove:
            del self._entries[key]
        return len(keys_to_remove)

    def clear(self) -> int:
        """Clear all entries. Returns number of entries cleared."""
        count = len(self._entries)
        self._entries.clear()
        return count

    async def close(self) -> None:
        self.clear()

    def _cleanup_expired(self) -> int:
        now = time.monotonic()
        keys_to_remove = [k for k, v in self._entries.items() if v.expires_at < now]
        for key in keys_to_remove:
            del self._entries[key]
        return len(keys_to_remove)

    def _evict_oldest(self) -> None:
        if not self._entries:
            return

        oldest_key = min(
            self._entries.keys(),
            key=lambda k: self._entries[k].created_at,
        )
        del self._entries[oldest_key]

    def get_stats(self) -> dict[str, Any]:
        return {
            "backend": "memory",
            "size": len(self._entries),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_ratio": round(self.hit_ratio, 3),
        }


def build_history_cache(backend: str, max_size: int = 5000) -> HistoryCache:
    """
    Create the configured cache backend.

    Args:
        backend: "redis" or "memory".
        max_size: Entry limit for the in-memory backend.
    """
    if backend == "memory":
        return InMemoryHistoryCache(max_size=max_size)
    if backend == "redis":
        from shared.infrastructure.redis.pool import get_redis_pool

        return RedisHistoryCache(get_redis_pool)
    raise ValueError(f"Unknown chat cache backend: {backend}")
