"""
Infrastructure module: Database, Redis, caching and background work.

Provides:
- Database sessions and transactions (db.py)
- Redis connection pool and key naming (redis/)
- History cache backends (cache/)
- Fire-and-forget task queue (background.py)
"""

from shared.infrastructure.db import (
    engine,
    SessionLocal,
    build_engine,
    build_session_factory,
    get_db_context,
    safe_commit,
)
from shared.infrastructure.redis import get_redis_pool, close_redis_pool
from shared.infrastructure.background import BackgroundTaskQueue

__all__ = [
    # db
    "engine",
    "SessionLocal",
    "build_engine",
    "build_session_factory",
    "get_db_context",
    "safe_commit",
    # redis
    "get_redis_pool",
    "close_redis_pool",
    # background
    "BackgroundTaskQueue",
]
