"""
Chat Gateway main application.

Real-time chat for the freelance marketplace: one websocket route carries
the chat protocol, plus a health endpoint with component statistics.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from shared.config.settings import settings
from shared.config.logging import setup_logging, chat_gateway_logger as logger
from shared.infrastructure.db import engine
from shared.infrastructure.redis import close_redis_pool
from marketplace.models import Base
from chat_gateway.components.core.constants import DEFAULT_ALLOWED_ORIGINS
from chat_gateway.components.core.dependencies import (
    ChatServices,
    build_services,
    get_services,
)
from chat_gateway.components.endpoints.chat import ChatSessionEndpoint


def create_app(services: ChatServices | None = None) -> FastAPI:
    """
    Build the gateway application.

    Args:
        services: Pre-built service container. When omitted, one is built
            from settings at startup and the database tables are created.
    """
    owns_services = services is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan handler.

        Starts:
        - Background write workers
        - Heartbeat sweep over live connections
        """
        setup_logging()
        logger.info(
            "Starting Chat Gateway",
            port=settings.ws_gateway_port,
            env=settings.environment,
        )

        for error in settings.validate_production_settings():
            logger.warning("Configuration problem", error=error)

        container = services
        if container is None:
            Base.metadata.create_all(bind=engine)
            container = build_services(settings)

        app.state.chat_services = container
        await container.start()

        yield

        logger.info("Shutting down Chat Gateway")
        await container.stop()

        if owns_services:
            await close_redis_pool()
            logger.info("Redis connection pool closed")

    app = FastAPI(
        title="Marketplace Chat Gateway",
        description="Real-time chat between clients and freelancers",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Add HTTPS variants of the development origins
    default_origins = list(DEFAULT_ALLOWED_ORIGINS) + [
        origin.replace("http://", "https://") for origin in DEFAULT_ALLOWED_ORIGINS
    ]
    allowed_origins = (
        [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
        if settings.allowed_origins
        else default_origins
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/ws/health")
    def health_check():
        """Basic health check with component statistics."""
        container: ChatServices | None = getattr(app.state, "chat_services", None)
        stats = container.get_stats() if container is not None else {}
        return {
            "status": "healthy",
            "service": "chat-gateway",
            "version": app.version,
            "environment": settings.environment,
            **stats,
        }

    @app.websocket("/ws/chat")
    async def chat_websocket(
        websocket: WebSocket,
        container: ChatServices = Depends(get_services),
    ):
        """Chat protocol endpoint; authentication happens in-band via AUTH."""
        endpoint = ChatSessionEndpoint(websocket, container)
        await endpoint.run()

    return app


app = create_app()


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "chat_gateway.main:app",
        host="0.0.0.0",
        port=settings.ws_gateway_port,
        reload=True,
    )
