"""
Chat Repository.

Synchronous data access for the chat subsystem over a SQLAlchemy Session.
Every mutating method commits through safe_commit, so a failure rolls the
session back and re-raises to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import NamedTuple, Sequence

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from shared.config.constants import Limits, MessageStatus
from shared.infrastructure.db import safe_commit
from marketplace.models import Attachment, Bid, Message, Project, User


class StatusChange(NamedTuple):
    """A message whose status was advanced by a batch update."""

    message_id: str
    sender_id: str
    project_id: str | None


@dataclass
class HistoryFilters:
    """Filters for a page of conversation history."""

    user_id: str
    project_id: str | None = None
    other_user_id: str | None = None
    page: int = 1
    limit: int = Limits.DEFAULT_HISTORY_PAGE_SIZE
    max_limit: int = 100

    def __post_init__(self):
        """Validate and normalize pagination."""
        self.page = max(1, self.page)
        self.limit = min(max(1, self.limit), self.max_limit)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class ChatRepository:
    """
    Data access for users, projects, bids, messages and attachments.

    Usage:
        with get_db_context() as db:
            repo = ChatRepository(db)
            message = repo.create_message(sender_id, receiver_id, None, "hi")
    """

    def __init__(self, db: Session):
        self._db = db

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: str) -> User | None:
        return self._db.get(User, user_id)

    def set_user_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> bool:
        """Update presence columns. Returns False if the user does not exist."""
        result = self._db.execute(
            update(User)
            .where(User.id == user_id)
            .values(is_online=is_online, last_seen=last_seen)
        )
        safe_commit(self._db)
        return result.rowcount > 0

    # =========================================================================
    # Messages
    # =========================================================================

    def create_message(
        self,
        sender_id: str,
        receiver_id: str,
        project_id: str | None,
        content: str,
    ) -> Message:
        message = Message(
            sender_id=sender_id,
            receiver_id=receiver_id,
            project_id=project_id,
            content=content,
            status=MessageStatus.SENT,
        )
        self._db.add(message)
        safe_commit(self._db)
        return message

    def get_message(self, message_id: str) -> Message | None:
        return self._db.get(Message, message_id)

    def update_message_content(self, message_id: str, content: str) -> bool:
        result = self._db.execute(
            update(Message).where(Message.id == message_id).values(content=content)
        )
        safe_commit(self._db)
        return result.rowcount > 0

    def upgrade_message_status(self, message_id: str, target: str) -> bool:
        """
        Move a single message forward to target.

        Only statuses ranked below target are matched, so the status never
        regresses. Returns True if a row changed.
        """
        lower = [s for s in MessageStatus.ALL if MessageStatus.is_upgrade(s, target)]
        result = self._db.execute(
            update(Message)
            .where(Message.id == message_id, Message.status.in_(lower))
            .values(status=target)
        )
        safe_commit(self._db)
        return result.rowcount > 0

    def query_history(self, filters: HistoryFilters) -> tuple[Sequence[Message], int]:
        """
        Fetch one page of history, newest first, plus the total match count.

        A NULL project_id filters the global channel only. Without
        other_user_id the page covers every conversation the user is part of.
        """
        query = self._history_filter(select(Message), filters)
        count_query = self._history_filter(select(func.count()).select_from(Message), filters)

        rows = self._db.execute(
            query.options(selectinload(Message.attachments), joinedload(Message.sender))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        ).scalars().unique().all()
        total = self._db.scalar(count_query) or 0
        return rows, total

    def _history_filter(self, query: Select, filters: HistoryFilters) -> Select:
        if filters.project_id is None:
            query = query.where(Message.project_id.is_(None))
        else:
            query = query.where(Message.project_id == filters.project_id)

        if filters.other_user_id:
            query = query.where(
                or_(
                    and_(
                        Message.sender_id == filters.user_id,
                        Message.receiver_id == filters.other_user_id,
                    ),
                    and_(
                        Message.sender_id == filters.other_user_id,
                        Message.receiver_id == filters.user_id,
                    ),
                )
            )
        else:
            query = query.where(
                or_(Message.sender_id == filters.user_id, Message.receiver_id == filters.user_id)
            )
        return query

    def mark_read(self, message_ids: list[str], receiver_id: str) -> list[StatusChange]:
        """Advance the given messages addressed to receiver_id to READ."""
        if not message_ids:
            return []
        return self._advance_status(
            MessageStatus.READ,
            Message.id.in_(message_ids),
            Message.receiver_id == receiver_id,
            Message.status != MessageStatus.READ,
        )

    def mark_delivered(self, receiver_id: str) -> list[StatusChange]:
        """Advance every SENT message addressed to receiver_id to DELIVERED."""
        return self._advance_status(
            MessageStatus.DELIVERED,
            Message.receiver_id == receiver_id,
            Message.status == MessageStatus.SENT,
        )

    def _advance_status(self, target: str, *criteria) -> list[StatusChange]:
        """
        Apply target to matching rows of lower rank.

        Only rows this statement changed are returned, so concurrent callers
        never both report the same transition.
        """
        lower = [s for s in MessageStatus.ALL if MessageStatus.is_upgrade(s, target)]
        rows = self._db.execute(
            update(Message)
            .where(*criteria, Message.status.in_(lower))
            .values(status=target)
            .returning(Message.id, Message.sender_id, Message.project_id)
            .execution_options(synchronize_session=False)
        ).all()
        safe_commit(self._db)
        return [StatusChange(row.id, row.sender_id, row.project_id) for row in rows]

    def unread_counts_by_sender(
        self,
        receiver_id: str,
        project_id: str | None,
        sender_ids: list[str],
    ) -> dict[str, int]:
        """Count non-READ messages from each sender to receiver_id in one scope."""
        if not sender_ids:
            return {}
        query = (
            select(Message.sender_id, func.count())
            .where(
                Message.receiver_id == receiver_id,
                Message.sender_id.in_(sender_ids),
                Message.status != MessageStatus.READ,
            )
            .group_by(Message.sender_id)
        )
        if project_id is None:
            query = query.where(Message.project_id.is_(None))
        else:
            query = query.where(Message.project_id == project_id)
        return {sender_id: count for sender_id, count in self._db.execute(query).all()}

    # =========================================================================
    # Attachments
    # =========================================================================

    def find_attachment_public_ids(self, message_id: str, public_ids: list[str]) -> set[str]:
        if not public_ids:
            return set()
        existing = self._db.execute(
            select(Attachment.public_id).where(
                Attachment.message_id == message_id,
                Attachment.public_id.in_(public_ids),
            )
        ).scalars().all()
        return set(existing)

    def bulk_insert_attachments(self, message_id: str, rows: list[dict]) -> int:
        """Insert attachment rows for a message in one transaction."""
        if not rows:
            return 0
        self._db.add_all(Attachment(message_id=message_id, **row) for row in rows)
        safe_commit(self._db)
        return len(rows)

    # =========================================================================
    # Projects and bids
    # =========================================================================

    def get_project(self, project_id: str) -> Project | None:
        return self._db.scalar(
            select(Project).options(joinedload(Project.client)).where(Project.id == project_id)
        )

    def list_bidders(self, project_id: str, exclude_user_id: str) -> Sequence[User]:
        return self._db.execute(
            select(User)
            .join(Bid, Bid.user_id == User.id)
            .where(Bid.project_id == project_id, User.id != exclude_user_id)
            .distinct()
            .order_by(User.name)
        ).scalars().all()

    def list_conversation_partners(self, user_id: str) -> Sequence[User]:
        """Users who exchanged global-channel messages with user_id."""
        sent_to = select(Message.receiver_id).where(
            Message.sender_id == user_id, Message.project_id.is_(None)
        )
        received_from = select(Message.sender_id).where(
            Message.receiver_id == user_id, Message.project_id.is_(None)
        )
        return self._db.execute(
            select(User)
            .where(
                User.id != user_id,
                or_(User.id.in_(sent_to), User.id.in_(received_from)),
            )
            .order_by(User.name)
        ).scalars().all()

    def list_client_projects(self, user_id: str) -> Sequence[Project]:
        return self._db.execute(
            select(Project)
            .where(Project.client_id == user_id)
            .order_by(Project.created_at.desc())
        ).scalars().all()

    def list_bid_projects(self, user_id: str) -> Sequence[Project]:
        return self._db.execute(
            select(Project)
            .join(Bid, Bid.project_id == Project.id)
            .where(Bid.user_id == user_id)
            .distinct()
            .order_by(Project.created_at.desc())
        ).scalars().all()
