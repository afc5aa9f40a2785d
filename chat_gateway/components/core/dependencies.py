"""
Service container for the chat gateway.

All process-wide state lives in one ChatServices instance built at startup
and stored on app.state, so tests can build their own against SQLite and
the in-memory cache.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import WebSocket
from sqlalchemy.orm import Session, sessionmaker

from shared.config.logging import get_logger
from shared.config.settings import Settings, settings as default_settings
from shared.infrastructure.background import BackgroundTaskQueue
from shared.infrastructure.cache import HistoryCache, build_history_cache
from marketplace.repositories import ChatGateway
from marketplace.services.domain import ChatService, IdempotencyMap
from chat_gateway.components.connection.heartbeat import HeartbeatController
from chat_gateway.components.connection.registry import ConnectionRegistry

logger = get_logger(__name__)


@dataclass
class ChatServices:
    """
    Container for the chat gateway's long-lived components.

    Usage:
        services = build_services(settings)
        await services.start()
        ...
        await services.stop()
    """

    settings: Settings
    registry: ConnectionRegistry
    cache: HistoryCache
    tasks: BackgroundTaskQueue
    gateway: ChatGateway
    chat: ChatService
    heartbeat: HeartbeatController

    async def start(self) -> None:
        """Start background workers, then the heartbeat loop."""
        await self.tasks.start()
        self.heartbeat.start()

    async def stop(self) -> None:
        """Stop in reverse start order and release the cache."""
        await self.heartbeat.stop()
        await self.tasks.stop(timeout=self.settings.background_drain_timeout)
        await self.cache.close()

    def get_stats(self) -> dict[str, dict]:
        return {
            "connections": self.registry.get_stats(),
            "heartbeat": self.heartbeat.get_stats(),
            "cache": self.cache.get_stats(),
            "background": self.tasks.get_stats(),
        }


def build_services(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    cache: HistoryCache | None = None,
) -> ChatServices:
    """
    Wire the gateway components from settings.

    Args:
        settings: Settings to read; defaults to the process settings.
        session_factory: Session factory for the persistence gateway;
            defaults to the application SessionLocal.
        cache: Pre-built history cache; defaults to the configured backend.
    """
    settings = settings or default_settings

    registry = ConnectionRegistry()
    cache = cache or build_history_cache(
        settings.chat_cache_backend, max_size=settings.chat_cache_max_entries
    )
    tasks = BackgroundTaskQueue(
        worker_count=settings.background_worker_count,
        queue_max_size=settings.background_queue_size,
    )
    gateway = ChatGateway(session_factory, timeout=settings.chat_db_timeout)
    chat = ChatService(
        gateway,
        cache,
        tasks,
        idempotency=IdempotencyMap(
            ttl_seconds=settings.chat_idempotency_ttl,
            sweep_interval=settings.chat_idempotency_sweep_interval,
        ),
        is_online=registry.is_online,
        history_ttl=settings.chat_cache_default_ttl,
        project_users_ttl=settings.chat_project_users_ttl,
        user_projects_ttl=settings.chat_user_projects_ttl,
        max_history_limit=settings.chat_history_max_limit,
    )
    heartbeat = HeartbeatController(registry, interval=settings.ws_heartbeat_interval)

    logger.debug("Chat services built", cache_backend=type(cache).__name__)
    return ChatServices(
        settings=settings,
        registry=registry,
        cache=cache,
        tasks=tasks,
        gateway=gateway,
        chat=chat,
        heartbeat=heartbeat,
    )


def get_services(websocket: WebSocket) -> ChatServices:
    """FastAPI dependency returning the container stored on app.state."""
    return websocket.app.state.chat_services
