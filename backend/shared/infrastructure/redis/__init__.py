"""
Redis connection pool and key naming for the chat cache.
"""

from shared.infrastructure.redis.pool import get_redis_pool, close_redis_pool

__all__ = [
    "get_redis_pool",
    "close_redis_pool",
]
