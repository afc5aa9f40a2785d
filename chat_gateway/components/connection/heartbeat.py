"""
Heartbeat Controller for the chat gateway.

Probes every registered connection once per interval and evicts the ones
that did not acknowledge the previous probe. A dead connection is therefore
cleared within one to two intervals.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from chat_gateway.components.connection.registry import (
    ConnectionRegistry,
    ConnectionRecord,
    close_quietly,
    is_ws_connected,
)
from chat_gateway.components.core.constants import (
    MSG_PING_PLAIN,
    MSG_PONG_JSON,
    WSCloseCode,
    WSConstants,
)

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = get_logger(__name__)


class HeartbeatController:
    """
    Periodic liveness sweep over the connection registry.

    Each tick, a connection still flagged alive is flagged not-alive and
    sent a "ping" probe; a connection already flagged not-alive (it never
    answered the last probe) is removed and its socket closed. Eviction only
    removes the registry record; the session handler that owned the socket
    announces the user offline when its receive loop ends.

    Usage:
        heartbeat = HeartbeatController(registry, interval=30.0)
        heartbeat.start()
        ...
        await heartbeat.stop()
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        interval: float = WSConstants.HEARTBEAT_INTERVAL,
        probe_timeout: float = WSConstants.SEND_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._interval = interval
        self._probe_timeout = probe_timeout
        self._task: asyncio.Task | None = None
        self._ticks = 0
        self._evicted_total = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> list[str]:
        """
        Run one probe/evict pass.

        Returns:
            User ids evicted during this pass.
        """
        self._ticks += 1
        evicted: list[str] = []
        probes = []

        for record in self._registry.records():
            if not record.is_alive:
                if self._registry.remove_connection(record.user_id, record.websocket):
                    evicted.append(record.user_id)
                    probes.append(close_quietly(
                        record.websocket, WSCloseCode.GOING_AWAY, "Heartbeat timeout"
                    ))
                continue
            record.is_alive = False
            probes.append(self._probe(record))

        if probes:
            await asyncio.gather(*probes, return_exceptions=True)

        if evicted:
            self._evicted_total += len(evicted)
            logger.info("Evicted unresponsive connections", count=len(evicted))
        return evicted

    async def _probe(self, record: ConnectionRecord) -> None:
        if not is_ws_connected(record.websocket):
            return
        try:
            await asyncio.wait_for(
                record.websocket.send_text(MSG_PING_PLAIN), timeout=self._probe_timeout
            )
        except (asyncio.TimeoutError, ConnectionError, RuntimeError, OSError) as e:
            # Left not-alive; the next tick evicts it
            logger.debug("Heartbeat probe failed", user_id=record.user_id, error=str(e))

    async def run(self) -> None:
        """Tick forever at the configured interval until cancelled."""
        while True:
            try:
                await asyncio.sleep(self._interval)
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in heartbeat sweep", error=str(e))

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self.run(), name="chat_heartbeat")
        logger.info("Heartbeat started", interval=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Heartbeat stopped")

    def get_stats(self) -> dict[str, float | int | bool]:
        return {
            "interval_seconds": self._interval,
            "ticks": self._ticks,
            "evicted_total": self._evicted_total,
            "running": self.is_running,
        }


async def handle_heartbeat(ws: WebSocket, data: str) -> bool:
    """
    Answer a client-initiated plain "ping" with a JSON pong.

    This does not count as a probe acknowledgment; only a "pong" frame does.

    Returns:
        True if the frame was a ping and was handled, False otherwise.
    """
    if data != MSG_PING_PLAIN:
        return False
    try:
        await ws.send_text(MSG_PONG_JSON)
    except (ConnectionError, RuntimeError, OSError):
        # Connection may have closed; the receive loop handles cleanup
        pass
    return True
