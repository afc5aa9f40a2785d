"""
Chat Domain Service.

Message delivery engine: accepts send requests, collapses retried
submissions, persists messages and attachments, tracks delivery and read
status, and fronts history and projection queries with the history cache.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Iterable

from pydantic import ValidationError

from shared.config.constants import Limits, MessageStatus, Roles
from shared.config.logging import get_logger
from shared.infrastructure.background import BackgroundTaskQueue
from shared.infrastructure.cache import HistoryCache
from shared.infrastructure.redis.constants import (
    CHAT_HISTORY_CACHE_TTL,
    CHAT_PROJECT_USERS_CACHE_TTL,
    CHAT_USER_PROJECTS_CACHE_TTL,
    get_chat_history_cache_key,
    get_chat_scope_prefix,
    get_project_users_cache_key,
    get_user_projects_cache_key,
)
from shared.utils.schemas import (
    AttachmentInput,
    AttachmentOutput,
    ChatCounterpart,
    HistoryPage,
    MessagePayload,
    ProjectSummary,
)
from shared.utils.validators import filter_valid_ids, is_valid_uuid
from marketplace.models import Message, User
from marketplace.repositories import ChatGateway, HistoryFilters, StatusChange
from marketplace.services.domain.idempotency import IdempotencyMap

logger = get_logger(__name__)


class ChatServiceError(Exception):
    """Base class for chat domain errors."""
    pass


class MessageValidationError(ChatServiceError):
    """Send request rejected before anything was stored."""
    pass


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def group_by_sender(changes: Iterable[StatusChange]) -> dict[str, list[str]]:
    """Group changed message ids by their original sender."""
    grouped: dict[str, list[str]] = defaultdict(list)
    for change in changes:
        grouped[change.sender_id].append(change.message_id)
    return dict(grouped)


class ChatService:
    """
    Domain service for chat messages.

    One instance per process; it owns the client message id map and shares
    the history cache and background queue with the rest of the gateway.
    """

    def __init__(
        self,
        gateway: ChatGateway,
        cache: HistoryCache,
        tasks: BackgroundTaskQueue,
        idempotency: IdempotencyMap | None = None,
        is_online: Callable[[str], bool] | None = None,
        history_ttl: int = CHAT_HISTORY_CACHE_TTL,
        project_users_ttl: int = CHAT_PROJECT_USERS_CACHE_TTL,
        user_projects_ttl: int = CHAT_USER_PROJECTS_CACHE_TTL,
        max_history_limit: int = 100,
    ):
        """
        Args:
            gateway: Async persistence gateway.
            cache: History cache backend.
            tasks: Queue for fire-and-forget writes.
            idempotency: clientMsgId map (a fresh one is created if omitted).
            is_online: Live presence lookup, overlaid on cached projections.
        """
        self._gateway = gateway
        self._cache = cache
        self._tasks = tasks
        self._idempotency = idempotency or IdempotencyMap()
        self._is_online = is_online
        self._history_ttl = history_ttl
        self._project_users_ttl = project_users_ttl
        self._user_projects_ttl = user_projects_ttl
        self._max_history_limit = max_history_limit

    @property
    def idempotency(self) -> IdempotencyMap:
        return self._idempotency

    # =========================================================================
    # Identity and presence
    # =========================================================================

    async def identify(self, user_id: object) -> User | None:
        """Resolve a user id to its record; malformed ids resolve to None."""
        if not is_valid_uuid(user_id):
            return None
        return await self._gateway.get_user(user_id)

    async def set_presence(self, user_id: str, is_online: bool) -> datetime:
        """Persist the online flag and return the recorded last-seen time."""
        last_seen = datetime.now(timezone.utc)
        await self._gateway.set_user_presence(user_id, is_online, last_seen)
        return last_seen

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        project_id: str | None,
        content: str,
        attachments: list[AttachmentInput] | None = None,
        client_msg_id: str | None = None,
        is_receiver_online: bool = False,
        sender_display_name: str | None = None,
    ) -> MessagePayload:
        """
        Store a message (or resolve a retried one) and build its outbound payload.

        Raises:
            MessageValidationError: Nothing to send, or malformed ids.
            SQLAlchemyError / TimeoutError: Message or attachment persistence failed.
        """
        attachments = attachments or []
        content = content or ""
        self._validate_send(receiver_id, project_id, content, attachments)

        swept = self._idempotency.sweep_if_due()
        if swept:
            logger.debug("Expired client message ids swept", count=swept)

        message = await self._resolve_retry(client_msg_id, sender_id)

        if message is None:
            message = await self._gateway.create_message(
                sender_id, receiver_id, project_id, content
            )
            if client_msg_id:
                self._idempotency.record(client_msg_id, message.id)
            logger.info(
                "Message created",
                message_id=message.id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                project_id=project_id,
            )
        elif content != message.content:
            self._tasks.submit(
                self._apply_content_edit, message, content,
                name="update_message_content",
            )
            logger.debug("Retried message content updated", message_id=message.id)

        outbound_attachments = await self._reconcile_attachments(message.id, attachments)

        sender_name = sender_display_name
        if sender_name is None:
            sender_name = await self._lookup_display_name(sender_id)

        status = message.status
        if is_receiver_online and status == MessageStatus.SENT:
            self._tasks.submit(self._apply_delivered, message, name="mark_delivered")
            status = MessageStatus.DELIVERED

        await self._invalidate_participants(message)

        return MessagePayload(
            id=message.id,
            client_msg_id=client_msg_id,
            content=content,
            sender_id=message.sender_id,
            sender_name=sender_name,
            receiver_id=message.receiver_id,
            project_id=message.project_id,
            status=status,
            created_at=_as_utc(message.created_at),
            attachments=outbound_attachments,
        )

    def _validate_send(
        self,
        receiver_id: str,
        project_id: str | None,
        content: str,
        attachments: list[AttachmentInput],
    ) -> None:
        if not content.strip() and not attachments:
            raise MessageValidationError("Message content or attachments required")
        if not is_valid_uuid(receiver_id):
            raise MessageValidationError("Invalid receiver")
        if project_id is not None and not is_valid_uuid(project_id):
            raise MessageValidationError("Invalid project")
        if len(content) > Limits.MAX_CONTENT_LENGTH:
            raise MessageValidationError("Message content too long")
        if len(attachments) > Limits.MAX_ATTACHMENTS_PER_MESSAGE:
            raise MessageValidationError("Too many attachments")

    async def _resolve_retry(self, client_msg_id: str | None, sender_id: str) -> Message | None:
        if not client_msg_id:
            return None

        message_id = self._idempotency.lookup(client_msg_id)
        if message_id is None:
            return None

        message = await self._gateway.get_message(message_id)
        if message is None:
            self._idempotency.forget(client_msg_id)
            logger.warning(
                "Client message id points at a missing message",
                client_msg_id=client_msg_id,
                message_id=message_id,
            )
            return None

        if message.sender_id != sender_id:
            # Another user reused the id; never hand them someone else's message
            logger.warning(
                "Client message id reused by a different sender",
                client_msg_id=client_msg_id,
                sender_id=sender_id,
            )
            return None

        return message

    async def _reconcile_attachments(
        self,
        message_id: str,
        attachments: list[AttachmentInput],
    ) -> list[AttachmentOutput]:
        finalized = [a for a in attachments if a.is_finalized]

        if finalized:
            public_ids = list(dict.fromkeys(a.public_id for a in finalized))
            existing = await self._gateway.find_attachment_public_ids(message_id, public_ids)

            rows = []
            for attachment in finalized:
                if attachment.public_id in existing:
                    continue
                existing.add(attachment.public_id)
                rows.append({
                    "file_name": attachment.file_name,
                    "file_size": attachment.file_size,
                    "mime_type": attachment.mime_type,
                    "storage_key": attachment.id or attachment.storage_key or attachment.public_id,
                    "public_id": attachment.public_id,
                    "url": attachment.url,
                    "checksum": attachment.checksum or "",
                })
            if rows:
                await self._gateway.bulk_insert_attachments(message_id, rows)

        outbound = []
        for attachment in attachments:
            if attachment.is_uploading:
                attachment_id = attachment.id or attachment.storage_key or "uploading"
            elif attachment.is_finalized:
                attachment_id = attachment.public_id
            else:
                continue
            outbound.append(AttachmentOutput(
                id=attachment_id,
                file_name=attachment.file_name,
                file_size=attachment.file_size,
                mime_type=attachment.mime_type,
                url=attachment.url,
                public_id=attachment.public_id,
            ))
        return outbound

    async def _lookup_display_name(self, user_id: str) -> str | None:
        try:
            user = await self._gateway.get_user(user_id)
        except Exception as e:
            logger.warning("Sender name lookup failed", sender_id=user_id, error=str(e))
            return None
        return user.name if user else None

    async def _apply_content_edit(self, message: Message, content: str) -> None:
        # Invalidate after the write lands; pages read in between hold the old row
        await self._gateway.update_message_content(message.id, content)
        await self._invalidate_participants(message)

    async def _apply_delivered(self, message: Message) -> None:
        if await self._gateway.upgrade_message_status(message.id, MessageStatus.DELIVERED):
            await self._invalidate_participants(message)

    # =========================================================================
    # History
    # =========================================================================

    async def get_message_history(
        self,
        user_id: str,
        project_id: str | None,
        other_user_id: str | None = None,
        page: int = 1,
        limit: int = Limits.DEFAULT_HISTORY_PAGE_SIZE,
    ) -> HistoryPage:
        """
        One page of a conversation in chronological order.

        Cached pages come back with total equal to their own length and
        totalPages 1; they are not re-paginated.
        """
        filters = HistoryFilters(
            user_id=user_id,
            project_id=project_id,
            other_user_id=other_user_id,
            page=page,
            limit=limit,
            max_limit=self._max_history_limit,
        )
        cache_key = get_chat_history_cache_key(
            project_id, user_id, other_user_id, filters.page, filters.limit
        )

        cached = await self._cache.get(cache_key)
        messages = self._load_cached(cache_key, cached, MessagePayload)
        if messages is not None:
            return HistoryPage(
                messages=messages,
                total=len(messages),
                page=filters.page,
                total_pages=1,
            )

        rows, total = await self._gateway.query_history(filters)
        messages = [self._to_payload(row) for row in reversed(rows)]
        await self._cache.set(cache_key, [m.to_wire() for m in messages], self._history_ttl)

        return HistoryPage(
            messages=messages,
            total=total,
            page=filters.page,
            total_pages=math.ceil(total / filters.limit),
        )

    @staticmethod
    def _to_payload(message: Message) -> MessagePayload:
        return MessagePayload(
            id=message.id,
            content=message.content,
            sender_id=message.sender_id,
            sender_name=message.sender.name if message.sender else None,
            receiver_id=message.receiver_id,
            project_id=message.project_id,
            status=message.status,
            created_at=_as_utc(message.created_at),
            attachments=[
                AttachmentOutput(
                    id=a.public_id or a.id,
                    file_name=a.file_name,
                    file_size=a.file_size,
                    mime_type=a.mime_type,
                    url=a.url,
                    public_id=a.public_id,
                )
                for a in message.attachments
            ],
        )

    @staticmethod
    def _load_cached(key: str, cached: object, model: type) -> list | None:
        if not isinstance(cached, list):
            return None
        try:
            return [model.model_validate(item) for item in cached]
        except ValidationError:
            logger.warning("Discarding malformed cache entry", key=key)
            return None

    # =========================================================================
    # Projections
    # =========================================================================

    async def get_project_users(
        self,
        project_id: str | None,
        current_user_id: str,
    ) -> list[ChatCounterpart]:
        """
        Users the viewer may chat with in a project.

        The project's client sees every bidder; anyone else sees the client.
        Without a project, the viewer's global-channel partners are listed.
        """
        cache_key = get_project_users_cache_key(project_id, current_user_id)
        cached = await self._cache.get(cache_key)
        users = self._load_cached(cache_key, cached, ChatCounterpart)
        if users is not None:
            return self._overlay_presence(users)

        counterparts = await self._find_counterparts(project_id, current_user_id)
        unread = await self._gateway.unread_counts_by_sender(
            current_user_id, project_id, [u.id for u in counterparts]
        )
        users = [
            ChatCounterpart(
                id=u.id,
                name=u.name,
                role=u.role,
                is_online=u.is_online,
                last_seen=_as_utc(u.last_seen),
                unread_count=unread.get(u.id, 0),
            )
            for u in counterparts
        ]
        await self._cache.set(cache_key, [u.to_wire() for u in users], self._project_users_ttl)
        return self._overlay_presence(users)

    async def _find_counterparts(self, project_id: str | None, current_user_id: str) -> list[User]:
        if project_id is None:
            return list(await self._gateway.list_conversation_partners(current_user_id))
        if not is_valid_uuid(project_id):
            return []

        project = await self._gateway.get_project(project_id)
        if project is None:
            return []
        if project.client_id == current_user_id:
            return list(await self._gateway.list_bidders(project_id, current_user_id))
        return [project.client]

    def _overlay_presence(self, users: list[ChatCounterpart]) -> list[ChatCounterpart]:
        if self._is_online is None:
            return users
        for user in users:
            user.is_online = self._is_online(user.id)
        return users

    async def get_user_projects(self, user_id: str) -> list[ProjectSummary]:
        """Projects the user owns (CLIENT/BOTH) or has bid on (FREELANCER/BOTH)."""
        cache_key = get_user_projects_cache_key(user_id)
        cached = await self._cache.get(cache_key)
        projects = self._load_cached(cache_key, cached, ProjectSummary)
        if projects is not None:
            return projects

        user = await self.identify(user_id)
        if user is None:
            return []

        found = []
        if user.role in Roles.PROJECT_OWNERS:
            found.extend(await self._gateway.list_client_projects(user_id))
        if user.role in (Roles.FREELANCER, Roles.BOTH):
            found.extend(await self._gateway.list_bid_projects(user_id))

        unique = {p.id: p for p in found}
        projects = [
            ProjectSummary(id=p.id, title=p.title, status=p.status) for p in unique.values()
        ]
        await self._cache.set(
            cache_key, [p.to_wire() for p in projects], self._user_projects_ttl
        )
        return projects

    # =========================================================================
    # Status transitions
    # =========================================================================

    async def mark_messages_as_read(
        self,
        message_ids: list[object],
        user_id: str,
    ) -> dict[str, list[str]]:
        """
        Mark messages addressed to user_id as READ.

        Malformed ids are dropped silently. Returns changed ids grouped by
        original sender.
        """
        valid_ids = filter_valid_ids(message_ids)[:Limits.MAX_MARK_READ_IDS]
        if not valid_ids:
            return {}

        changes = await self._gateway.mark_read(valid_ids, user_id)
        if not changes:
            return {}

        await self._invalidate_changes(changes, user_id)
        grouped = group_by_sender(changes)
        logger.info(
            "Messages marked read",
            user_id=user_id,
            count=len(changes),
            senders=len(grouped),
        )
        return grouped

    async def mark_messages_as_delivered(self, user_id: str) -> dict[str, list[str]]:
        """Mark every SENT message addressed to user_id as DELIVERED."""
        if not is_valid_uuid(user_id):
            return {}

        changes = await self._gateway.mark_delivered(user_id)
        if not changes:
            return {}

        await self._invalidate_changes(changes, user_id)
        grouped = group_by_sender(changes)
        logger.info(
            "Pending messages delivered",
            user_id=user_id,
            count=len(changes),
            senders=len(grouped),
        )
        return grouped

    # =========================================================================
    # Cache invalidation
    # =========================================================================

    async def _invalidate_changes(self, changes: list[StatusChange], receiver_id: str) -> None:
        scopes = []
        for change in changes:
            scopes.append((change.project_id, change.sender_id))
            scopes.append((change.project_id, receiver_id))
        await self._invalidate_scopes(*scopes)

    async def _invalidate_participants(self, message: Message) -> None:
        await self._invalidate_scopes(
            (message.project_id, message.sender_id),
            (message.project_id, message.receiver_id),
        )

    async def _invalidate_scopes(self, *scopes: tuple[str | None, str]) -> None:
        """
        Drop every cached page and projection for each (scope, user) pair.

        User-project lists are keyed under the global scope only, so they
        are cleared by key for every user involved.
        """
        prefixes = [get_chat_scope_prefix(project_id, user_id) for project_id, user_id in scopes]
        prefixes.extend(get_user_projects_cache_key(user_id) for _, user_id in scopes)
        await self._cache.invalidate_prefixes(list(dict.fromkeys(prefixes)))
