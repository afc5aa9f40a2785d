"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with defaults for development."""

    # Database
    database_url: str = "sqlite:///./chat.db"

    # Redis (history cache backend)
    redis_url: str = "redis://localhost:6379"
    redis_pool_max_connections: int = 50
    redis_socket_timeout: int = 5  # Socket timeout in seconds (connect and read/write)

    # CORS - comma-separated list of allowed origins (empty uses default localhost list)
    allowed_origins: str = ""

    # Server
    ws_gateway_port: int = 8001

    # Environment
    environment: str = "development"
    debug: bool = True

    # WebSocket
    ws_heartbeat_interval: float = 30.0  # Seconds between liveness probes
    ws_max_message_size: int = 64 * 1024  # 64 KB

    # Chat history cache
    chat_cache_backend: str = "redis"  # "redis" or "memory"
    chat_cache_default_ttl: int = 300
    chat_project_users_ttl: int = 60
    chat_user_projects_ttl: int = 300
    chat_cache_max_entries: int = 5000  # Only used by the in-memory backend

    # Message delivery
    chat_idempotency_ttl: int = 6 * 60 * 60  # clientMsgId mappings live 6 hours
    chat_idempotency_sweep_interval: int = 60
    chat_history_max_limit: int = 100
    chat_db_timeout: float = 5.0  # Timeout in seconds for a single gateway call

    # Fire-and-forget write queue
    background_worker_count: int = 4
    background_queue_size: int = 1000
    background_drain_timeout: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    def validate_production_settings(self) -> list[str]:
        """
        Validate that the deployment is configured sanely for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        if self.environment == "production":
            if self.debug:
                errors.append("DEBUG must be False in production")

            if self.database_url.startswith("sqlite"):
                errors.append("DATABASE_URL must point to a server database in production")

            if self.chat_cache_backend == "memory":
                errors.append(
                    "CHAT_CACHE_BACKEND=memory keeps history per process; use redis in production"
                )

            if not self.allowed_origins:
                errors.append(
                    "ALLOWED_ORIGINS must be set in production (comma-separated list of allowed domains)"
                )

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience exports
settings = get_settings()

# Direct access to commonly used settings
DATABASE_URL = settings.database_url
REDIS_URL = settings.redis_url
