"""
WebSocket Endpoint Base Class.

Owns the connection lifecycle shared by chat endpoints: accept, the receive
loop with size checks and liveness frames, and the close path that always
runs when the loop ends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from shared.config.logging import get_logger
from chat_gateway.components.connection.heartbeat import handle_heartbeat
from chat_gateway.components.core.constants import MSG_PONG_PLAIN, WSConstants
from chat_gateway.components.core.context import ChatConnectionContext, sanitize_log_data
from chat_gateway.components.events.types import error_event
from chat_gateway.components.connection.registry import is_ws_connected

logger = get_logger(__name__)


class ChatEndpointBase(ABC):
    """
    Base class for chat websocket endpoints.

    Encapsulates common patterns:
    - Connection lifecycle (accept, message loop, close path)
    - Message size validation
    - Liveness frames ("pong" acknowledgments and client "ping")

    Subclasses implement:
    - handle_message(): Process one typed protocol frame
    - on_pong(): Record a probe acknowledgment
    - on_close(): Clean up after the loop ends

    Usage:
        endpoint = ChatSessionEndpoint(websocket, services)
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        endpoint_name: str,
        max_message_size: int = WSConstants.MAX_MESSAGE_SIZE,
    ):
        """
        Args:
            websocket: The WebSocket connection.
            endpoint_name: Name for logging (e.g., "/ws/chat").
            max_message_size: Largest accepted text frame in UTF-8 bytes.
        """
        self.websocket = websocket
        self.endpoint_name = endpoint_name
        self.max_message_size = max_message_size
        self.context = ChatConnectionContext.from_websocket(websocket, endpoint_name)
        self._is_running = False

    @abstractmethod
    async def handle_message(self, data: str) -> None:
        """Handle one non-liveness text frame."""
        pass

    @abstractmethod
    def on_pong(self) -> None:
        """Handle a probe acknowledgment."""
        pass

    @abstractmethod
    async def on_close(self) -> None:
        """Run once when the connection ends, however it ended."""
        pass

    def stop(self) -> None:
        """Stop the message loop after the current frame."""
        self._is_running = False

    async def send_event(self, event: dict[str, Any]) -> bool:
        """
        Send an event to this connection.

        Returns:
            False if the socket was already closed or the send failed.
        """
        if not is_ws_connected(self.websocket):
            return False
        try:
            await self.websocket.send_json(event)
            return True
        except (WebSocketDisconnect, ConnectionError, RuntimeError, OSError) as e:
            logger.debug(
                "Send to own connection failed",
                identifier=self.context.identifier,
                event_type=event.get("type"),
                error=str(e),
            )
            return False

    async def run(self) -> None:
        """
        Main entry point - run the WebSocket endpoint.

        Handles the complete lifecycle:
        1. Accept
        2. Message loop
        3. Close path
        """
        await self.websocket.accept()
        self.context.audit("CONNECT")
        logger.info("Chat connection opened", identifier=self.context.identifier)

        self._is_running = True
        reason = "server_closed"
        try:
            await self._message_loop()
        except WebSocketDisconnect as e:
            reason = "client_disconnect"
            logger.debug(
                "Client disconnected",
                identifier=self.context.identifier,
                code=e.code,
            )
        finally:
            self._is_running = False
            try:
                await self.on_close()
            finally:
                self.context.audit("DISCONNECT", reason=reason, duration=self.context.duration)
                logger.info(
                    "Chat connection closed",
                    identifier=self.context.identifier,
                    reason=reason,
                    duration=self.context.duration,
                )

    async def _message_loop(self) -> None:
        """
        Main message processing loop.

        Handles:
        - Message size validation
        - Probe acknowledgments
        - Client pings
        - Protocol frames
        """
        while self._is_running:
            data = await self._receive()

            size = len(data.encode("utf-8"))
            if size > self.max_message_size:
                logger.warning(
                    "Message size exceeded limit",
                    identifier=self.context.identifier,
                    size=size,
                    max_size=self.max_message_size,
                )
                await self.send_event(error_event("Message too large"))
                continue

            if data == MSG_PONG_PLAIN:
                self.on_pong()
                continue

            if await handle_heartbeat(self.websocket, data):
                continue

            await self.handle_message(data)

    async def _receive(self) -> str:
        """
        Receive the next text frame.

        Binary frames are decoded as UTF-8.

        Raises:
            WebSocketDisconnect: The peer closed, or the socket was closed locally.
        """
        try:
            message = await self.websocket.receive()
        except RuntimeError as e:
            # Receiving after a disconnect message or a local close
            raise WebSocketDisconnect(code=1006) from e

        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(code=message.get("code", 1000))

        text = message.get("text")
        if text is not None:
            return text
        raw = message.get("bytes") or b""
        logger.debug(
            "Binary frame received",
            identifier=self.context.identifier,
            preview=sanitize_log_data(raw[:100].decode("utf-8", errors="replace")),
        )
        return raw.decode("utf-8", errors="replace")
