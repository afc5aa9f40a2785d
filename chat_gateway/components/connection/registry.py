"""
Connection Registry for the chat gateway.

Tracks the single live connection of each authenticated user, its liveness
flag, and delivers outbound events to one user or to everyone.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from starlette.websockets import WebSocketDisconnect, WebSocketState

from shared.config.logging import get_logger
from chat_gateway.components.core.constants import WSCloseCode, WSConstants

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)


def is_ws_connected(ws: "WebSocket") -> bool:
    """
    Check if WebSocket is in connected state before sending.

    Starlette does not expose transitional states, so a socket may still
    look connected briefly after the peer started closing.
    """
    return (
        ws.client_state == WebSocketState.CONNECTED
        and ws.application_state == WebSocketState.CONNECTED
    )


async def close_quietly(
    ws: "WebSocket",
    code: int = WSCloseCode.NORMAL,
    reason: str = "",
    timeout: float = WSConstants.CLOSE_TIMEOUT,
) -> None:
    """Close a socket if it is still open, ignoring transport errors."""
    if ws.application_state == WebSocketState.DISCONNECTED:
        return
    try:
        await asyncio.wait_for(ws.close(code=code, reason=reason), timeout=timeout)
    except (asyncio.TimeoutError, WebSocketDisconnect, ConnectionError, RuntimeError, OSError) as e:
        logger.debug("Close failed", code=code, error=str(e))


@dataclass
class ConnectionRecord:
    """The live connection of one user."""

    user_id: str
    websocket: "WebSocket"
    display_name: str | None = None
    is_alive: bool = True
    connected_at: float = field(default_factory=time.monotonic)


class ConnectionRegistry:
    """
    One live connection per user id.

    All state is owned by the event loop thread; no locks are taken.
    Registering a second connection for a user replaces the first and
    hands the superseded record back so the caller can close it.

    Usage:
        registry = ConnectionRegistry()
        previous = registry.add_connection(user_id, websocket, "Ana")
        await registry.send_to_user(user_id, event)
        await registry.broadcast(event, exclude_user_id=user_id)
    """

    def __init__(self, send_timeout: float = WSConstants.SEND_TIMEOUT) -> None:
        self._connections: dict[str, ConnectionRecord] = {}
        self._send_timeout = send_timeout
        self._total_registered = 0
        self._total_superseded = 0
        self._failed_sends = 0

    def __len__(self) -> int:
        return len(self._connections)

    def add_connection(
        self,
        user_id: str,
        websocket: "WebSocket",
        display_name: str | None = None,
    ) -> ConnectionRecord | None:
        """
        Register or replace the live connection for user_id, marked alive.

        Returns:
            The superseded record if a different connection was registered.
        """
        previous = self._connections.get(user_id)
        self._connections[user_id] = ConnectionRecord(
            user_id=user_id,
            websocket=websocket,
            display_name=display_name,
        )
        self._total_registered += 1

        if previous is not None and previous.websocket is not websocket:
            self._total_superseded += 1
            logger.info("Connection superseded", user_id=user_id)
            return previous
        return None

    def remove_connection(self, user_id: str, websocket: "WebSocket | None" = None) -> bool:
        """
        Unregister user_id. No-op if absent.

        When websocket is given, the record is only removed if it still
        belongs to that socket, so a replaced connection cannot unregister
        its successor.
        """
        record = self._connections.get(user_id)
        if record is None:
            return False
        if websocket is not None and record.websocket is not websocket:
            return False
        del self._connections[user_id]
        return True

    def get(self, user_id: str) -> ConnectionRecord | None:
        return self._connections.get(user_id)

    def records(self) -> list[ConnectionRecord]:
        """Snapshot of current records, safe to iterate across awaits."""
        return list(self._connections.values())

    def is_online(self, user_id: str) -> bool:
        return user_id in self._connections

    def list_online_user_ids(self) -> set[str]:
        return set(self._connections)

    def handle_pong(self, user_id: str, websocket: "WebSocket | None" = None) -> bool:
        """Mark the connection alive after a probe acknowledgment."""
        record = self._connections.get(user_id)
        if record is None:
            return False
        if websocket is not None and record.websocket is not websocket:
            return False
        record.is_alive = True
        return True

    async def send_to_user(self, user_id: str, event: dict[str, Any]) -> bool:
        """
        Send an event to the user's live connection.

        Returns:
            True if an open connection existed and the send was attempted.
        """
        record = self._connections.get(user_id)
        if record is None or not is_ws_connected(record.websocket):
            return False
        await self._safe_send(record.websocket, event)
        return True

    async def broadcast(self, event: dict[str, Any], exclude_user_id: str | None = None) -> int:
        """
        Send an event to every open connection except exclude_user_id.

        Sends are independent and best-effort; one slow or broken socket
        does not affect the others.

        Returns:
            Number of connections the event was written to.
        """
        targets = [
            record.websocket
            for user_id, record in self._connections.items()
            if user_id != exclude_user_id and is_ws_connected(record.websocket)
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._safe_send(ws, event) for ws in targets),
            return_exceptions=True,
        )
        return sum(1 for r in results if r is True)

    async def _safe_send(self, ws: "WebSocket", event: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(ws.send_json(event), timeout=self._send_timeout)
            return True
        except asyncio.TimeoutError:
            self._failed_sends += 1
            logger.warning("Send timed out", event_type=event.get("type"))
            return False
        except (WebSocketDisconnect, ConnectionError, RuntimeError, OSError) as e:
            self._failed_sends += 1
            logger.debug("Send failed", event_type=event.get("type"), error=str(e))
            return False

    def get_stats(self) -> dict[str, int]:
        return {
            "online_users": len(self._connections),
            "unacknowledged": sum(1 for r in self._connections.values() if not r.is_alive),
            "total_registered": self._total_registered,
            "total_superseded": self._total_superseded,
            "failed_sends": self._failed_sends,
        }
