"""
Cache package initialization.

History cache backends for chat queries.
"""

from shared.infrastructure.cache.history_cache import (
    HistoryCache,
    RedisHistoryCache,
    InMemoryHistoryCache,
    build_history_cache,
)

__all__ = [
    "HistoryCache",
    "RedisHistoryCache",
    "InMemoryHistoryCache",
    "build_history_cache",
]
