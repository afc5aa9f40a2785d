"""
Domain Services.

Usage:
    from marketplace.services.domain import ChatService

    service = ChatService(gateway, cache, tasks)
    payload = await service.send_message(sender_id, receiver_id, project_id, "hi")
"""

from .idempotency import IdempotencyMap, IdempotencyEntry
from .chat_service import (
    ChatService,
    ChatServiceError,
    MessageValidationError,
    group_by_sender,
)

__all__ = [
    "IdempotencyMap",
    "IdempotencyEntry",
    "ChatService",
    "ChatServiceError",
    "MessageValidationError",
    "group_by_sender",
]
