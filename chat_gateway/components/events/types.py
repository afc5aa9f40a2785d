"""
Chat protocol event types.

Inbound frames are JSON envelopes `{type, payload}` parsed into a pydantic
discriminated union; outbound events are plain dicts built by server_event()
with `{type, payload, timestamp}`.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
)

from shared.config.constants import Limits
from shared.utils.schemas import AttachmentInput


class InboundEventType(str, Enum):
    """Event types a client may send."""

    AUTH = "auth"
    MESSAGE_SEND = "message_send"
    MESSAGE_HISTORY = "message_history"
    GET_PROJECT_USERS = "get_project_users"
    GET_USER_PROJECTS = "get_user_projects"
    MARK_AS_READ = "mark_as_read"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    HEARTBEAT = "heartbeat"


class OutboundEventType(str, Enum):
    """Event types the gateway sends."""

    AUTH_SUCCESS = "auth_success"
    AUTH_FAILED = "auth_failed"
    ONLINE_USERS = "online_users"
    USER_ONLINE = "user_online"
    USER_OFFLINE = "user_offline"
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_HISTORY = "message_history"
    MESSAGE_DELIVERED = "message_delivered"
    MESSAGE_READ = "message_read"
    PROJECT_USERS = "project_users"
    USER_PROJECTS = "user_projects"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    HEARTBEAT = "heartbeat"
    ERROR = "error"


VALID_INBOUND_TYPES: frozenset[str] = frozenset(e.value for e in InboundEventType)

# Pre-auth events answered with "Not authenticated" instead of being dropped
REQUIRES_AUTH_REPLY: frozenset[str] = frozenset({
    InboundEventType.MESSAGE_SEND.value,
    InboundEventType.MARK_AS_READ.value,
})


# =============================================================================
# Errors
# =============================================================================


class ProtocolError(Exception):
    """An inbound frame could not be turned into an event."""

    def __init__(self, message: str, event_type: str | None = None):
        super().__init__(message)
        self.event_type = event_type


class MalformedFrameError(ProtocolError):
    """Frame is not a JSON object with a string type."""
    pass


class UnknownEventError(ProtocolError):
    """Frame names an event type the gateway does not handle."""
    pass


class InvalidPayloadError(ProtocolError):
    """Frame has a known type but its payload failed validation."""
    pass


# =============================================================================
# Payloads
# =============================================================================


class InboundPayload(BaseModel):
    """Base for inbound payloads; unknown keys are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Blank strings mean "not given" (the global channel for project ids)
OptionalId = Annotated[str | None, BeforeValidator(_blank_to_none)]


class AuthPayload(InboundPayload):
    # Left untyped: a malformed id must fail identity, not validation
    user_id: Any = Field(default=None, alias="userId")


class MessageSendPayload(InboundPayload):
    receiver_id: str = Field(validation_alias=AliasChoices("receiver_id", "receiverId"))
    project_id: OptionalId = Field(default=None, alias="projectId")
    content: str | None = ""
    attachments: list[AttachmentInput] = Field(default_factory=list)
    client_msg_id: OptionalId = Field(default=None, alias="clientMsgId", max_length=128)


class MessageHistoryPayload(InboundPayload):
    project_id: OptionalId = Field(default=None, alias="projectId")
    other_user_id: OptionalId = Field(
        default=None,
        validation_alias=AliasChoices("otherUserId", "receiverId", "other_user_id"),
    )
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=Limits.DEFAULT_HISTORY_PAGE_SIZE, ge=1)


class ProjectUsersPayload(InboundPayload):
    project_id: OptionalId = Field(default=None, alias="projectId")



class MarkAsReadPayload(InboundPayload):
    # Items are filtered by the delivery engine; malformed ids are dropped there
    message_ids: list[Any] = Field(default_factory=list, alias="messageIds")


class TypingPayload(InboundPayload):
    project_id: OptionalId = Field(default=None, alias="projectId")


class EmptyPayload(InboundPayload):
    pass


# =============================================================================
# Inbound events
# =============================================================================


class AuthEvent(BaseModel):
    type: Literal["auth"]
    payload: AuthPayload = Field(default_factory=AuthPayload)


class MessageSendEvent(BaseModel):
    type: Literal["message_send"]
    payload: MessageSendPayload


class MessageHistoryEvent(BaseModel):
    type: Literal["message_history"]
    payload: MessageHistoryPayload = Field(default_factory=MessageHistoryPayload)


class GetProjectUsersEvent(BaseModel):
    type: Literal["get_project_users"]
    payload: ProjectUsersPayload = Field(default_factory=ProjectUsersPayload)


class GetUserProjectsEvent(BaseModel):
    type: Literal["get_user_projects"]
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class MarkAsReadEvent(BaseModel):
    type: Literal["mark_as_read"]
    payload: MarkAsReadPayload = Field(default_factory=MarkAsReadPayload)


class TypingStartEvent(BaseModel):
    type: Literal["typing_start"]
    payload: TypingPayload = Field(default_factory=TypingPayload)


class TypingStopEvent(BaseModel):
    type: Literal["typing_stop"]
    payload: TypingPayload = Field(default_factory=TypingPayload)


class HeartbeatEvent(BaseModel):
    type: Literal["heartbeat"]
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


InboundEvent = Annotated[
    Union[
        AuthEvent,
        MessageSendEvent,
        MessageHistoryEvent,
        GetProjectUsersEvent,
        GetUserProjectsEvent,
        MarkAsReadEvent,
        TypingStartEvent,
        TypingStopEvent,
        HeartbeatEvent,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


# =============================================================================
# Parsing
# =============================================================================


def decode_frame(raw: str) -> dict[str, Any]:
    """
    Decode a text frame into an envelope dict.

    Raises:
        MalformedFrameError: Not JSON, not an object, or no string type.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedFrameError("Invalid message format") from e

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise MalformedFrameError("Invalid message format")

    if data.get("payload") is None:
        data.pop("payload", None)
    return data


def parse_inbound(raw: str) -> InboundEvent:
    """
    Parse a text frame into a typed inbound event.

    Raises:
        MalformedFrameError: Frame is not a JSON envelope.
        UnknownEventError: Type is not a known inbound event.
        InvalidPayloadError: Payload failed validation.
    """
    data = decode_frame(raw)
    event_type = data["type"]

    if event_type not in VALID_INBOUND_TYPES:
        raise UnknownEventError("Unknown event type", event_type)

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidPayloadError("Invalid event payload", event_type) from e


# =============================================================================
# Outbound
# =============================================================================


def server_event(event_type: OutboundEventType | str, payload: dict[str, Any]) -> dict[str, Any]:
    """Build an outbound envelope stamped with the current UTC time."""
    if isinstance(event_type, Enum):
        event_type = event_type.value
    return {
        "type": event_type,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def error_event(message: str) -> dict[str, Any]:
    return server_event(OutboundEventType.ERROR, {"error": message})
