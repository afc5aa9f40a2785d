"""
Tests for the history cache backends and key naming.

Tests verify:
- TTL expiry and prefix invalidation (in-memory backend)
- Redis backend stores JSON and treats every backend error as a miss/no-op
- Key layout keeps all namespaces of one (scope, user) under one prefix
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import redis.asyncio as redis

from shared.infrastructure.cache import (
    InMemoryHistoryCache,
    RedisHistoryCache,
    build_history_cache,
)
from shared.infrastructure.redis.constants import (
    get_chat_history_cache_key,
    get_chat_scope_prefix,
    get_project_users_cache_key,
    get_user_projects_cache_key,
)


class TestCacheKeys:
    """Tests for cache key naming."""

    def test_history_key_falls_under_scope_prefix(self):
        key = get_chat_history_cache_key("p1", "u1", "u2", 1, 50)
        assert key == "chat:p1:u1:history:u2:1:50"
        assert key.startswith(get_chat_scope_prefix("p1", "u1"))

    def test_global_scope_used_without_project(self):
        assert get_chat_scope_prefix(None, "u1") == "chat:global:u1:"
        assert get_chat_history_cache_key(None, "u1", None, 2, 20) == "chat:global:u1:history:all:2:20"

    def test_project_users_key_falls_under_scope_prefix(self):
        assert get_project_users_cache_key("p1", "u1").startswith(get_chat_scope_prefix("p1", "u1"))

    def test_user_projects_key_falls_under_global_prefix(self):
        assert get_user_projects_cache_key("u1").startswith(get_chat_scope_prefix(None, "u1"))

    def test_prefix_of_one_user_does_not_cover_another(self):
        """Prefix ends with a separator so u1 never matches u10."""
        key = get_chat_history_cache_key("p1", "u10", None, 1, 50)
        assert not key.startswith(get_chat_scope_prefix("p1", "u1"))


class TestInMemoryHistoryCache:
    """Tests for the process-local backend."""

    @pytest.mark.asyncio
    async def test_set_and_get_roundtrip(self):
        cache = InMemoryHistoryCache()
        await cache.set("chat:p1:u1:history", [{"id": "m1"}], 60)

        assert await cache.get("chat:p1:u1:history") == [{"id": "m1"}]

    @pytest.mark.asyncio
    async def test_get_returns_copy(self):
        """Mutating a returned payload must not change the cached value."""
        cache = InMemoryHistoryCache()
        await cache.set("k", [{"id": "m1"}], 60)

        first = await cache.get("k")
        first.append({"id": "m2"})

        assert await cache.get("k") == [{"id": "m1"}]

    @pytest.mark.asyncio
    async def test_miss_returns_none(self):
        cache = InMemoryHistoryCache()
        assert await cache.get("absent") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self):
        cache = InMemoryHistoryCache()
        await cache.set("k", {"v": 1}, 10)
        cache._entries["k"].expires_at = 0.0

        assert await cache.get("k") is None
        assert cache.size == 0

    @pytest.mark.asyncio
    async def test_invalidate_by_prefix(self):
        cache = InMemoryHistoryCache()
        await cache.set("chat:p1:u1:history:all:1:50", [], 60)
        await cache.set("chat:p1:u1:project_users", [], 60)
        await cache.set("chat:p1:u2:history:all:1:50", [], 60)

        removed = await cache.invalidate_by_prefix("chat:p1:u1:")

        assert removed == 2
        assert await cache.get("chat:p1:u2:history:all:1:50") == []

    @pytest.mark.asyncio
    async def test_invalidate_prefixes_ignores_duplicates(self):
        cache = InMemoryHistoryCache()
        await cache.set("chat:p1:u1:a", 1, 60)
        await cache.set("chat:p1:u2:a", 2, 60)

        removed = await cache.invalidate_prefixes(["chat:p1:u1:", "chat:p1:u1:", "chat:p1:u2:"])

        assert removed == 2
        assert cache.size == 0

    @pytest.mark.asyncio
    async def test_oldest_entry_evicted_at_capacity(self):
        cache = InMemoryHistoryCache(max_size=2)
        await cache.set("a", 1, 60)
        await cache.set("b", 2, 60)
        await cache.set("c", 3, 60)

        assert cache.size == 2
        assert await cache.get("a") is None
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_unserializable_payload_is_not_stored(self):
        cache = InMemoryHistoryCache()
        circular: list = []
        circular.append(circular)

        await cache.set("k", circular, 60)

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_close_clears_entries(self):
        cache = InMemoryHistoryCache()
        await cache.set("k", 1, 60)

        await cache.close()

        assert cache.size == 0

    def test_stats(self):
        stats = InMemoryHistoryCache(max_size=10).get_stats()
        assert stats["backend"] == "memory"
        assert stats["max_size"] == 10


def _fake_redis(keys: list[str] | None = None) -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.setex = AsyncMock()
    client.delete = AsyncMock(side_effect=lambda *batch: len(batch))

    async def scan_iter(match=None, count=None):
        for key in keys or []:
            yield key

    client.scan_iter = MagicMock(side_effect=scan_iter)
    return client


class TestRedisHistoryCache:
    """Tests for the Redis backend with a mocked client."""

    @pytest.mark.asyncio
    async def test_set_stores_json_with_ttl(self):
        client = _fake_redis()
        cache = RedisHistoryCache(AsyncMock(return_value=client))

        await cache.set("chat:p1:u1:history", [{"id": "m1"}], 300)

        client.setex.assert_awaited_once_with(
            "chat:p1:u1:history", 300, json.dumps([{"id": "m1"}], separators=(",", ":"))
        )

    @pytest.mark.asyncio
    async def test_get_decodes_json(self):
        client = _fake_redis()
        client.get = AsyncMock(return_value='[{"id":"m1"}]')
        cache = RedisHistoryCache(AsyncMock(return_value=client))

        assert await cache.get("k") == [{"id": "m1"}]
        assert cache.get_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_get_error_is_a_miss(self):
        client = _fake_redis()
        client.get = AsyncMock(side_effect=redis.ConnectionError("down"))
        cache = RedisHistoryCache(AsyncMock(return_value=client))

        assert await cache.get("k") is None
        assert cache.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_miss(self):
        client = _fake_redis()
        client.get = AsyncMock(return_value="{not json")
        cache = RedisHistoryCache(AsyncMock(return_value=client))

        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_set_error_is_swallowed(self):
        client = _fake_redis()
        client.setex = AsyncMock(side_effect=redis.TimeoutError("slow"))
        cache = RedisHistoryCache(AsyncMock(return_value=client))

        await cache.set("k", {"v": 1}, 60)

        assert cache.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_unreachable_server_is_swallowed(self):
        factory = AsyncMock(side_effect=OSError("connection refused"))
        cache = RedisHistoryCache(factory)

        assert await cache.get("k") is None
        await cache.set("k", 1, 60)
        assert await cache.invalidate_by_prefix("chat:p1:u1:") == 0

    @pytest.mark.asyncio
    async def test_invalidate_scans_and_deletes_matches(self):
        client = _fake_redis(["chat:p1:u1:history:all:1:50", "chat:p1:u1:project_users"])
        cache = RedisHistoryCache(AsyncMock(return_value=client))

        removed = await cache.invalidate_by_prefix("chat:p1:u1:")

        assert removed == 2
        client.scan_iter.assert_called_once_with(match="chat:p1:u1:*", count=RedisHistoryCache.SCAN_COUNT)
        client.delete.assert_awaited_once_with(
            "chat:p1:u1:history:all:1:50", "chat:p1:u1:project_users"
        )

    @pytest.mark.asyncio
    async def test_invalidate_escapes_glob_characters(self):
        client = _fake_redis()
        cache = RedisHistoryCache(AsyncMock(return_value=client))

        await cache.invalidate_by_prefix("chat:p[1]:u*:")

        client.scan_iter.assert_called_once_with(
            match="chat:p\\[1\\]:u\\*:*", count=RedisHistoryCache.SCAN_COUNT
        )

    @pytest.mark.asyncio
    async def test_invalidate_deletes_in_batches(self):
        keys = [f"chat:p1:u1:k{i}" for i in range(RedisHistoryCache.DELETE_BATCH_SIZE + 1)]
        client = _fake_redis(keys)
        cache = RedisHistoryCache(AsyncMock(return_value=client))

        removed = await cache.invalidate_by_prefix("chat:p1:u1:")

        assert removed == len(keys)
        assert client.delete.await_count == 2


class TestBuildHistoryCache:
    """Tests for backend selection."""

    def test_memory_backend(self):
        assert isinstance(build_history_cache("memory", max_size=10), InMemoryHistoryCache)

    def test_redis_backend(self):
        assert isinstance(build_history_cache("redis"), RedisHistoryCache)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_history_cache("memcached")
