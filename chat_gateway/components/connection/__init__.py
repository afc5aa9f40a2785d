"""
Connection management components.

Tracks live connections per user and evicts unresponsive ones.
"""

from chat_gateway.components.connection.registry import (
    ConnectionRegistry,
    ConnectionRecord,
    close_quietly,
    is_ws_connected,
)
from chat_gateway.components.connection.heartbeat import (
    HeartbeatController,
    handle_heartbeat,
)

__all__ = [
    "ConnectionRegistry",
    "ConnectionRecord",
    "close_quietly",
    "is_ws_connected",
    "HeartbeatController",
    "handle_heartbeat",
]
