"""
Shared Pydantic schemas for chat payloads.

Wire names follow the chat client's conventions (camelCase for most
fields, snake_case for sender/receiver and attachment fields), so every
model is dumped with by_alias=True.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from shared.config.constants import UPLOADING_SENTINEL


# =============================================================================
# Common Types
# =============================================================================

Role = Literal["CLIENT", "FREELANCER", "BOTH"]
MessageStatusValue = Literal["SENT", "DELIVERED", "READ"]
ProjectStatusValue = Literal["OPEN", "IN_PROGRESS", "COMPLETED", "CANCELLED"]


class WireModel(BaseModel):
    """Base for outbound payloads."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Attachments
# =============================================================================


class AttachmentInput(BaseModel):
    """Attachment descriptor supplied by the sender."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = Field(default=None, max_length=255)
    file_name: str = Field(min_length=1, max_length=255)
    file_size: int = Field(ge=0)
    mime_type: str = Field(min_length=1, max_length=255)
    url: str = Field(min_length=1, max_length=2048)
    public_id: str | None = Field(default=None, max_length=255)
    storage_key: str | None = Field(default=None, max_length=255)
    checksum: str | None = Field(default=None, max_length=255)

    @property
    def is_uploading(self) -> bool:
        """Upload still in progress; the url is a placeholder."""
        return self.url == UPLOADING_SENTINEL

    @property
    def is_finalized(self) -> bool:
        """Upload finished and the file is addressable by public id."""
        return not self.is_uploading and bool(self.public_id) and bool(self.url)


class AttachmentOutput(WireModel):
    """Attachment as shown to chat participants."""

    id: str
    file_name: str
    file_size: int
    mime_type: str
    url: str
    public_id: str | None = None


# =============================================================================
# Messages
# =============================================================================


class MessagePayload(WireModel):
    """A chat message as delivered to sender and receiver."""

    id: str
    client_msg_id: str | None = Field(default=None, alias="clientMsgId")
    content: str
    sender_id: str
    sender_name: str | None = Field(default=None, alias="senderName")
    receiver_id: str
    project_id: str | None = Field(default=None, alias="projectId")
    status: MessageStatusValue
    created_at: datetime = Field(alias="createdAt")
    attachments: list[AttachmentOutput] = Field(default_factory=list)

    @property
    def has_uploading_attachments(self) -> bool:
        return any(a.url == UPLOADING_SENTINEL for a in self.attachments)


class HistoryPage(WireModel):
    """One page of conversation history in chronological order."""

    messages: list[MessagePayload]
    total: int
    page: int
    total_pages: int = Field(alias="totalPages")


# =============================================================================
# Chat projections
# =============================================================================


class ChatCounterpart(WireModel):
    """A user the viewer may chat with inside a project."""

    id: str
    name: str
    role: Role
    is_online: bool = Field(alias="isOnline")
    last_seen: datetime | None = Field(default=None, alias="lastSeen")
    unread_count: int = Field(default=0, alias="unreadCount")


class ProjectSummary(WireModel):
    """A project the viewer takes part in."""

    id: str
    title: str
    status: ProjectStatusValue
