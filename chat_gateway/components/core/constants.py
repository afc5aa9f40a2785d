"""
Chat Gateway Constants.

Centralized constants with the rationale for each value.
"""

from enum import IntEnum
from typing import Final

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "MSG_PING_PLAIN",
    "MSG_PONG_PLAIN",
    "MSG_PONG_JSON",
    "DEFAULT_ALLOWED_ORIGINS",
]


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the gateway.

    Standard codes (1000-1999) from RFC 6455.
    Custom codes (4000-4999) for application-specific errors.
    """

    # Standard codes (RFC 6455)
    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Superseded by a newer connection, heartbeat eviction, or shutdown
    POLICY_VIOLATION = 1008  # Generic policy violation
    MESSAGE_TOO_BIG = 1009  # Message too large to process
    SERVER_ERROR = 1011  # Unexpected server error

    # Custom application codes (4000-4999)
    AUTH_FAILED = 4001  # AUTH event named an unknown user


class WSConstants:
    """
    Chat gateway operational constants.

    These are defaults; settings take precedence at runtime where a
    matching setting exists.
    """

    # HEARTBEAT_INTERVAL: 30 seconds (settings.ws_heartbeat_interval)
    # A connection that misses one full interval is evicted on the next
    # tick, so dead sockets are cleared within 30-60 seconds.
    HEARTBEAT_INTERVAL: Final[float] = 30.0

    # SEND_TIMEOUT: 5 seconds
    # Upper bound for a single outbound frame. A stalled client must not
    # hold up a broadcast to everyone else.
    SEND_TIMEOUT: Final[float] = 5.0

    # CLOSE_TIMEOUT: 2 seconds
    # Closing a superseded or dead socket is best-effort.
    CLOSE_TIMEOUT: Final[float] = 2.0

    # MAX_MESSAGE_SIZE: 64 KB (settings.ws_max_message_size)
    # Text messages plus attachment descriptors fit comfortably; files
    # travel through object storage, never through the socket.
    MAX_MESSAGE_SIZE: Final[int] = 64 * 1024


# Liveness frames (plain text, outside the typed event protocol)
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PONG_PLAIN: Final[str] = "pong"
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'


# Default development origins
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000", "http://localhost:5173",
    "http://127.0.0.1:3000", "http://127.0.0.1:5173",
)
