"""
Chat protocol events.

Inbound parsing into typed events and outbound envelope builders.
"""

from chat_gateway.components.events.types import (
    InboundEventType,
    OutboundEventType,
    VALID_INBOUND_TYPES,
    REQUIRES_AUTH_REPLY,
    ProtocolError,
    MalformedFrameError,
    UnknownEventError,
    InvalidPayloadError,
    AuthEvent,
    MessageSendEvent,
    MessageHistoryEvent,
    GetProjectUsersEvent,
    GetUserProjectsEvent,
    MarkAsReadEvent,
    TypingStartEvent,
    TypingStopEvent,
    HeartbeatEvent,
    InboundEvent,
    decode_frame,
    parse_inbound,
    server_event,
    error_event,
)

__all__ = [
    # Event types
    "InboundEventType",
    "OutboundEventType",
    "VALID_INBOUND_TYPES",
    "REQUIRES_AUTH_REPLY",
    # Errors
    "ProtocolError",
    "MalformedFrameError",
    "UnknownEventError",
    "InvalidPayloadError",
    # Inbound events
    "AuthEvent",
    "MessageSendEvent",
    "MessageHistoryEvent",
    "GetProjectUsersEvent",
    "GetUserProjectsEvent",
    "MarkAsReadEvent",
    "TypingStartEvent",
    "TypingStopEvent",
    "HeartbeatEvent",
    "InboundEvent",
    # Parsing and building
    "decode_frame",
    "parse_inbound",
    "server_event",
    "error_event",
]
