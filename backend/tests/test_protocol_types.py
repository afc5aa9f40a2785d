"""
Tests for inbound event parsing and outbound envelopes.
"""

import json
from datetime import datetime

import pytest

from chat_gateway.components.events import (
    AuthEvent,
    GetUserProjectsEvent,
    HeartbeatEvent,
    InvalidPayloadError,
    MalformedFrameError,
    MarkAsReadEvent,
    MessageHistoryEvent,
    MessageSendEvent,
    OutboundEventType,
    TypingStartEvent,
    UnknownEventError,
    error_event,
    parse_inbound,
    server_event,
)


def frame(event_type, payload=None, **extra) -> str:
    data = {"type": event_type, **extra}
    if payload is not None:
        data["payload"] = payload
    return json.dumps(data)


class TestParseInbound:
    """Tests for typed parsing of each inbound event."""

    def test_auth(self):
        event = parse_inbound(frame("auth", {"userId": "u-1"}))

        assert isinstance(event, AuthEvent)
        assert event.payload.user_id == "u-1"

    def test_auth_with_malformed_id_still_parses(self):
        """Identity is resolved later; a numeric id must not fail validation."""
        event = parse_inbound(frame("auth", {"userId": 42}))
        assert event.payload.user_id == 42

    def test_message_send_accepts_both_receiver_spellings(self):
        camel = parse_inbound(frame("message_send", {"receiverId": "r", "content": "hi"}))
        snake = parse_inbound(frame("message_send", {"receiver_id": "r", "content": "hi"}))

        assert isinstance(camel, MessageSendEvent)
        assert camel.payload.receiver_id == snake.payload.receiver_id == "r"

    def test_message_send_fields(self):
        event = parse_inbound(frame("message_send", {
            "receiverId": "r",
            "projectId": "p",
            "content": "hello",
            "clientMsgId": "c-1",
            "attachments": [{
                "file_name": "a.pdf",
                "file_size": 10,
                "mime_type": "application/pdf",
                "url": "https://cdn.test/a.pdf",
                "public_id": "a",
            }],
        }))

        payload = event.payload
        assert payload.project_id == "p"
        assert payload.client_msg_id == "c-1"
        assert payload.attachments[0].is_finalized

    def test_blank_project_means_global_channel(self):
        event = parse_inbound(frame("message_send", {"receiverId": "r", "projectId": "  "}))
        assert event.payload.project_id is None

    def test_null_content_allowed(self):
        event = parse_inbound(frame("message_send", {"receiverId": "r", "content": None}))
        assert event.payload.content is None

    def test_history_defaults(self):
        event = parse_inbound(frame("message_history"))

        assert isinstance(event, MessageHistoryEvent)
        assert event.payload.page == 1
        assert event.payload.limit == 50
        assert event.payload.project_id is None

    def test_history_counterpart_aliases(self):
        for key in ("otherUserId", "receiverId", "other_user_id"):
            event = parse_inbound(frame("message_history", {key: "u-2"}))
            assert event.payload.other_user_id == "u-2"

    def test_null_payload_uses_defaults(self):
        event = parse_inbound(json.dumps({"type": "get_user_projects", "payload": None}))
        assert isinstance(event, GetUserProjectsEvent)

    def test_mark_as_read_keeps_raw_ids(self):
        event = parse_inbound(frame("mark_as_read", {"messageIds": ["a", 1, None]}))

        assert isinstance(event, MarkAsReadEvent)
        assert event.payload.message_ids == ["a", 1, None]

    def test_typing_and_heartbeat(self):
        assert isinstance(parse_inbound(frame("typing_start", {"projectId": "p"})), TypingStartEvent)
        assert isinstance(parse_inbound(frame("heartbeat")), HeartbeatEvent)

    def test_unknown_payload_keys_ignored(self):
        event = parse_inbound(frame("typing_stop", {"projectId": "p", "extra": True}))
        assert event.payload.project_id == "p"


class TestParseErrors:
    """Tests for the protocol error taxonomy."""

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"auth"', '{"payload": {}}', '{"type": 5}'])
    def test_malformed_frames(self, raw):
        with pytest.raises(MalformedFrameError, match="Invalid message format"):
            parse_inbound(raw)

    def test_unknown_type(self):
        with pytest.raises(UnknownEventError, match="Unknown event type") as exc_info:
            parse_inbound(frame("launch_rocket"))
        assert exc_info.value.event_type == "launch_rocket"

    def test_send_without_receiver(self):
        with pytest.raises(InvalidPayloadError, match="Invalid event payload") as exc_info:
            parse_inbound(frame("message_send", {"content": "hi"}))
        assert exc_info.value.event_type == "message_send"

    def test_send_without_payload(self):
        with pytest.raises(InvalidPayloadError):
            parse_inbound(frame("message_send"))

    def test_history_page_must_be_positive(self):
        with pytest.raises(InvalidPayloadError):
            parse_inbound(frame("message_history", {"page": 0}))

    def test_payload_must_be_object(self):
        with pytest.raises(InvalidPayloadError):
            parse_inbound(frame("auth", "u-1"))

    def test_client_msg_id_length_bounded(self):
        with pytest.raises(InvalidPayloadError):
            parse_inbound(frame("message_send", {"receiverId": "r", "clientMsgId": "x" * 129}))


class TestServerEvents:
    """Tests for outbound envelopes."""

    def test_envelope_shape(self):
        event = server_event(OutboundEventType.AUTH_SUCCESS, {"userId": "u-1"})

        assert event["type"] == "auth_success"
        assert event["payload"] == {"userId": "u-1"}
        assert datetime.fromisoformat(event["timestamp"]).tzinfo is not None

    def test_plain_string_type(self):
        assert server_event("typing_start", {})["type"] == "typing_start"

    def test_error_event(self):
        event = error_event("Not authenticated")

        assert event["type"] == "error"
        assert event["payload"] == {"error": "Not authenticated"}

    def test_envelope_is_json_serializable(self):
        json.dumps(server_event(OutboundEventType.ONLINE_USERS, {"users": ["a", "b"]}))
