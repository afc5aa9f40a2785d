"""
Repository layer for chat data access.

- chat: synchronous ChatRepository over a Session
- gateway: ChatGateway, the async facade used by the chat services
"""

from marketplace.repositories.chat import ChatRepository, HistoryFilters, StatusChange
from marketplace.repositories.gateway import ChatGateway

__all__ = [
    "ChatRepository",
    "HistoryFilters",
    "StatusChange",
    "ChatGateway",
]
