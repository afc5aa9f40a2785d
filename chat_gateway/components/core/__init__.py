"""
Core chat gateway components.

Foundational components: constants, connection context, service container.
"""

from chat_gateway.components.core.constants import (
    WSCloseCode,
    WSConstants,
    MSG_PING_PLAIN,
    MSG_PONG_PLAIN,
    MSG_PONG_JSON,
    DEFAULT_ALLOWED_ORIGINS,
)
from chat_gateway.components.core.context import ChatConnectionContext, sanitize_log_data

__all__ = [
    # Constants
    "WSCloseCode",
    "WSConstants",
    "MSG_PING_PLAIN",
    "MSG_PONG_PLAIN",
    "MSG_PONG_JSON",
    "DEFAULT_ALLOWED_ORIGINS",
    # Context
    "ChatConnectionContext",
    "sanitize_log_data",
]
