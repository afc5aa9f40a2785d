"""
Async Persistence Gateway.

Runs ChatRepository calls in worker threads so database I/O never blocks
the event loop. Each call gets its own session and is bounded by a timeout;
database errors and timeouts propagate to the caller.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, Sequence

from sqlalchemy.orm import Session, sessionmaker

from shared.config.logging import get_logger
from shared.infrastructure.db import get_db_context
from marketplace.models import Message, Project, User
from marketplace.repositories.chat import ChatRepository, HistoryFilters, StatusChange

logger = get_logger(__name__)


class ChatGateway:
    """
    Coroutine facade over ChatRepository.

    Usage:
        gateway = ChatGateway(SessionLocal, timeout=5.0)
        user = await gateway.get_user(user_id)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        timeout: float = 5.0,
    ):
        """
        Args:
            session_factory: Factory for sessions; defaults to the application SessionLocal.
            timeout: Timeout in seconds for a single repository call.
        """
        self._session_factory = session_factory
        self._timeout = timeout

    async def _run(self, operation: Callable[[ChatRepository], Any]) -> Any:
        def call() -> Any:
            with get_db_context(self._session_factory) as db:
                return operation(ChatRepository(db))

        return await asyncio.wait_for(asyncio.to_thread(call), timeout=self._timeout)

    # Users

    async def get_user(self, user_id: str) -> User | None:
        return await self._run(lambda repo: repo.get_user(user_id))

    async def set_user_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> bool:
        return await self._run(lambda repo: repo.set_user_presence(user_id, is_online, last_seen))

    # Messages

    async def create_message(
        self,
        sender_id: str,
        receiver_id: str,
        project_id: str | None,
        content: str,
    ) -> Message:
        return await self._run(
            lambda repo: repo.create_message(sender_id, receiver_id, project_id, content)
        )

    async def get_message(self, message_id: str) -> Message | None:
        return await self._run(lambda repo: repo.get_message(message_id))

    async def update_message_content(self, message_id: str, content: str) -> bool:
        return await self._run(lambda repo: repo.update_message_content(message_id, content))

    async def upgrade_message_status(self, message_id: str, target: str) -> bool:
        return await self._run(lambda repo: repo.upgrade_message_status(message_id, target))

    async def query_history(self, filters: HistoryFilters) -> tuple[Sequence[Message], int]:
        return await self._run(lambda repo: repo.query_history(filters))

    async def mark_read(self, message_ids: list[str], receiver_id: str) -> list[StatusChange]:
        return await self._run(lambda repo: repo.mark_read(message_ids, receiver_id))

    async def mark_delivered(self, receiver_id: str) -> list[StatusChange]:
        return await self._run(lambda repo: repo.mark_delivered(receiver_id))

    async def unread_counts_by_sender(
        self,
        receiver_id: str,
        project_id: str | None,
        sender_ids: list[str],
    ) -> dict[str, int]:
        return await self._run(
            lambda repo: repo.unread_counts_by_sender(receiver_id, project_id, sender_ids)
        )

    # Attachments

    async def find_attachment_public_ids(self, message_id: str, public_ids: list[str]) -> set[str]:
        return await self._run(lambda repo: repo.find_attachment_public_ids(message_id, public_ids))

    async def bulk_insert_attachments(self, message_id: str, rows: list[dict]) -> int:
        return await self._run(lambda repo: repo.bulk_insert_attachments(message_id, rows))

    # Projects and bids

    async def get_project(self, project_id: str) -> Project | None:
        return await self._run(lambda repo: repo.get_project(project_id))

    async def list_bidders(self, project_id: str, exclude_user_id: str) -> Sequence[User]:
        return await self._run(lambda repo: repo.list_bidders(project_id, exclude_user_id))

    async def list_conversation_partners(self, user_id: str) -> Sequence[User]:
        return await self._run(lambda repo: repo.list_conversation_partners(user_id))

    async def list_client_projects(self, user_id: str) -> Sequence[Project]:
        return await self._run(lambda repo: repo.list_client_projects(user_id))

    async def list_bid_projects(self, user_id: str) -> Sequence[Project]:
        return await self._run(lambda repo: repo.list_bid_projects(user_id))
