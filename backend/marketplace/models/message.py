"""
Chat Message and Attachment Models.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shared.config.constants import MessageStatus
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from .user import User


class Message(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """
    A chat message between two users, optionally inside a project.

    project_id NULL is the global channel. Status only moves forward:
    SENT -> DELIVERED -> READ.
    """

    __tablename__ = "messages"

    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    project_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("projects.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=MessageStatus.SENT)

    __table_args__ = (
        Index("ix_message_project_created", "project_id", "created_at"),
        Index("ix_message_receiver_status", "receiver_id", "status"),
        Index("ix_message_sender_receiver", "sender_id", "receiver_id"),
    )

    sender: Mapped["User"] = relationship(foreign_keys=[sender_id])
    attachments: Mapped[list["Attachment"]] = relationship(
        back_populates="message", order_by="Attachment.created_at"
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, sender_id={self.sender_id}, status={self.status})>"


class Attachment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A file attached to a message. Created once, never updated."""

    __tablename__ = "attachments"

    message_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    public_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    checksum: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("message_id", "public_id", name="uq_attachment_message_public_id"),
    )

    message: Mapped["Message"] = relationship(back_populates="attachments")

    def __repr__(self) -> str:
        return f"<Attachment(id={self.id}, message_id={self.message_id}, file='{self.file_name}')>"
