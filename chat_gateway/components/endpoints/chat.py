"""
Chat Session Protocol Handler.

One ChatSessionEndpoint runs per websocket connection. It starts
unauthenticated, accepts only AUTH until a user is bound, then dispatches
typed chat events to the delivery engine and pushes the resulting
notifications to the affected users.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.exc import SQLAlchemyError

from shared.config.logging import get_logger
from marketplace.services.domain import MessageValidationError
from chat_gateway.components.connection.registry import close_quietly
from chat_gateway.components.core.constants import WSCloseCode
from chat_gateway.components.core.context import sanitize_log_data
from chat_gateway.components.endpoints.base import ChatEndpointBase
from chat_gateway.components.events.types import (
    REQUIRES_AUTH_REPLY,
    AuthEvent,
    GetProjectUsersEvent,
    GetUserProjectsEvent,
    HeartbeatEvent,
    InboundEventType,
    InvalidPayloadError,
    MalformedFrameError,
    MarkAsReadEvent,
    MessageHistoryEvent,
    MessageSendEvent,
    OutboundEventType,
    ProtocolError,
    TypingStartEvent,
    TypingStopEvent,
    UnknownEventError,
    error_event,
    parse_inbound,
    server_event,
)

if TYPE_CHECKING:
    from chat_gateway.components.core.dependencies import ChatServices

logger = get_logger(__name__)

ERR_NOT_AUTHENTICATED = "Not authenticated"
ERR_ALREADY_AUTHENTICATED = "Already authenticated"
ERR_INTERNAL = "Internal server error"
ERR_USER_NOT_FOUND = "User not found"


class ChatSessionEndpoint(ChatEndpointBase):
    """
    Protocol state machine for one chat connection.

    States: unauthenticated, authenticated, closed. A failed AUTH closes
    the connection; every other error is answered with an error event and
    the connection stays open.
    """

    def __init__(self, websocket: WebSocket, services: "ChatServices"):
        super().__init__(
            websocket,
            endpoint_name="/ws/chat",
            max_message_size=services.settings.ws_max_message_size,
        )
        self.services = services
        self.registry = services.registry
        self.chat = services.chat
        self.user_id: str | None = None
        self.user_name: str | None = None

        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            InboundEventType.MESSAGE_SEND.value: self._on_message_send,
            InboundEventType.MESSAGE_HISTORY.value: self._on_message_history,
            InboundEventType.GET_PROJECT_USERS.value: self._on_get_project_users,
            InboundEventType.GET_USER_PROJECTS.value: self._on_get_user_projects,
            InboundEventType.MARK_AS_READ.value: self._on_mark_as_read,
            InboundEventType.TYPING_START.value: self._on_typing,
            InboundEventType.TYPING_STOP.value: self._on_typing,
            InboundEventType.HEARTBEAT.value: self._on_heartbeat,
        }

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    # =========================================================================
    # Frame handling
    # =========================================================================

    async def handle_message(self, data: str) -> None:
        try:
            event = parse_inbound(data)
        except ProtocolError as e:
            await self._on_protocol_error(e, data)
            return

        try:
            await self._dispatch(event)
        except WebSocketDisconnect:
            raise
        except MessageValidationError as e:
            logger.debug(
                "Send rejected",
                identifier=self.context.identifier,
                reason=str(e),
            )
            await self.send_event(error_event(str(e)))
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            logger.error(
                "Persistence failure while handling event",
                identifier=self.context.identifier,
                event_type=event.type,
                error=str(e),
                exc_info=True,
            )
            await self.send_event(error_event(ERR_INTERNAL))
        except Exception as e:
            logger.error(
                "Unexpected error while handling event",
                identifier=self.context.identifier,
                event_type=event.type,
                error=str(e),
                exc_info=True,
            )
            await self.send_event(error_event(ERR_INTERNAL))

    async def _on_protocol_error(self, error: ProtocolError, data: str) -> None:
        logger.debug(
            "Protocol error",
            identifier=self.context.identifier,
            error=str(error),
            frame=sanitize_log_data(data),
        )

        if isinstance(error, MalformedFrameError):
            await self.send_event(error_event(str(error)))
            return

        if not self.is_authenticated:
            if error.event_type in REQUIRES_AUTH_REPLY:
                await self.send_event(error_event(ERR_NOT_AUTHENTICATED))
            elif (
                isinstance(error, InvalidPayloadError)
                and error.event_type == InboundEventType.AUTH.value
            ):
                await self.send_event(error_event(str(error)))
            return

        if error.event_type == InboundEventType.AUTH.value:
            await self.send_event(error_event(ERR_ALREADY_AUTHENTICATED))
            return

        if isinstance(error, (UnknownEventError, InvalidPayloadError)):
            await self.send_event(error_event(str(error)))

    async def _dispatch(self, event: Any) -> None:
        if isinstance(event, AuthEvent):
            if self.is_authenticated:
                await self.send_event(error_event(ERR_ALREADY_AUTHENTICATED))
                return
            await self._on_auth(event)
            return

        if not self.is_authenticated:
            if event.type in REQUIRES_AUTH_REPLY:
                await self.send_event(error_event(ERR_NOT_AUTHENTICATED))
            else:
                logger.debug(
                    "Ignoring event before authentication",
                    identifier=self.context.identifier,
                    event_type=event.type,
                )
            return

        await self._handlers[event.type](event)

    # =========================================================================
    # Authentication
    # =========================================================================

    async def _on_auth(self, event: AuthEvent) -> None:
        user = await self.chat.identify(event.payload.user_id)
        if user is None:
            logger.warning("Chat authentication failed", identifier=self.context.identifier)
            self.context.audit("AUTH_FAILED", reason="unknown_user")
            await self.send_event(
                server_event(OutboundEventType.AUTH_FAILED, {"error": ERR_USER_NOT_FOUND})
            )
            self.stop()
            await close_quietly(self.websocket, WSCloseCode.AUTH_FAILED, "Authentication failed")
            return

        # Persist presence first; a failed write leaves the socket unbound so AUTH can be retried
        await self.chat.set_presence(user.id, True)

        self.user_id = user.id
        self.user_name = user.name
        self.context.user_id = user.id
        self.context.display_name = user.name

        previous = self.registry.add_connection(user.id, self.websocket, user.name)
        if previous is not None:
            await close_quietly(
                previous.websocket, WSCloseCode.GOING_AWAY, "Replaced by a new connection"
            )

        self.context.audit("AUTHENTICATED")
        logger.info("Chat user authenticated", identifier=self.context.identifier)

        await self.send_event(server_event(
            OutboundEventType.AUTH_SUCCESS,
            {"userId": user.id, "userName": user.name},
        ))
        await self.registry.broadcast(
            server_event(OutboundEventType.USER_ONLINE, {"userId": user.id, "userName": user.name}),
            exclude_user_id=user.id,
        )
        await self.send_event(server_event(
            OutboundEventType.ONLINE_USERS,
            {"users": sorted(self.registry.list_online_user_ids())},
        ))

        delivered = await self.chat.mark_messages_as_delivered(user.id)
        for sender_id, message_ids in delivered.items():
            await self.registry.send_to_user(sender_id, server_event(
                OutboundEventType.MESSAGE_DELIVERED,
                {"messageIds": message_ids, "receiverId": user.id},
            ))

    # =========================================================================
    # Authenticated events
    # =========================================================================

    async def _on_message_send(self, event: MessageSendEvent) -> None:
        payload = event.payload
        receiver_online = self.registry.is_online(payload.receiver_id)

        message = await self.chat.send_message(
            sender_id=self.user_id,
            receiver_id=payload.receiver_id,
            project_id=payload.project_id,
            content=payload.content,
            attachments=payload.attachments,
            client_msg_id=payload.client_msg_id,
            is_receiver_online=receiver_online,
            sender_display_name=self.user_name,
        )

        outbound = server_event(OutboundEventType.MESSAGE_RECEIVED, message.to_wire())
        await self.send_event(outbound)

        if (
            receiver_online
            and message.receiver_id != self.user_id
            and not message.has_uploading_attachments
        ):
            await self.registry.send_to_user(message.receiver_id, outbound)

    async def _on_message_history(self, event: MessageHistoryEvent) -> None:
        payload = event.payload
        page = await self.chat.get_message_history(
            user_id=self.user_id,
            project_id=payload.project_id,
            other_user_id=payload.other_user_id,
            page=payload.page,
            limit=payload.limit,
        )
        await self.send_event(server_event(OutboundEventType.MESSAGE_HISTORY, page.to_wire()))

    async def _on_get_project_users(self, event: GetProjectUsersEvent) -> None:
        project_id = event.payload.project_id
        users = await self.chat.get_project_users(project_id, self.user_id)
        await self.send_event(server_event(
            OutboundEventType.PROJECT_USERS,
            {"users": [u.to_wire() for u in users], "projectId": project_id},
        ))

    async def _on_get_user_projects(self, event: GetUserProjectsEvent) -> None:
        projects = await self.chat.get_user_projects(self.user_id)
        await self.send_event(server_event(
            OutboundEventType.USER_PROJECTS,
            {"projects": [p.to_wire() for p in projects]},
        ))

    async def _on_mark_as_read(self, event: MarkAsReadEvent) -> None:
        read = await self.chat.mark_messages_as_read(event.payload.message_ids, self.user_id)
        for sender_id, message_ids in read.items():
            await self.registry.send_to_user(sender_id, server_event(
                OutboundEventType.MESSAGE_READ,
                {"messageIds": message_ids, "readBy": self.user_id},
            ))

    async def _on_typing(self, event: TypingStartEvent | TypingStopEvent) -> None:
        await self.registry.broadcast(
            server_event(event.type, {"userId": self.user_id, "projectId": event.payload.project_id}),
            exclude_user_id=self.user_id,
        )

    async def _on_heartbeat(self, event: HeartbeatEvent) -> None:
        await self.send_event(server_event(OutboundEventType.HEARTBEAT, {}))

    # =========================================================================
    # Liveness and close
    # =========================================================================

    def on_pong(self) -> None:
        if self.user_id is not None:
            self.registry.handle_pong(self.user_id, self.websocket)

    async def on_close(self) -> None:
        """
        Unregister and announce the user offline.

        Skipped when a newer connection for the same user has taken over the
        registry slot; that connection keeps the user online.
        """
        if self.user_id is None:
            return

        current = self.registry.get(self.user_id)
        if current is not None and current.websocket is not self.websocket:
            logger.debug("Superseded connection closed", identifier=self.context.identifier)
            return

        self.registry.remove_connection(self.user_id, self.websocket)

        try:
            last_seen = await self.chat.set_presence(self.user_id, False)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            # Peers still learn the user left; the stored flag catches up on next login
            logger.error(
                "Failed to persist offline presence",
                identifier=self.context.identifier,
                error=str(e),
            )
            last_seen = datetime.now(timezone.utc)

        await self.registry.broadcast(
            server_event(
                OutboundEventType.USER_OFFLINE,
                {"userId": self.user_id, "lastSeen": last_seen.isoformat()},
            ),
            exclude_user_id=self.user_id,
        )
