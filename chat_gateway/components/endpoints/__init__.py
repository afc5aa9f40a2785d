"""
WebSocket endpoint components.

Connection lifecycle base class and the chat protocol handler.
"""

from chat_gateway.components.endpoints.base import ChatEndpointBase
from chat_gateway.components.endpoints.chat import ChatSessionEndpoint

__all__ = [
    "ChatEndpointBase",
    "ChatSessionEndpoint",
]
