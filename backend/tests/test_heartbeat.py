"""
Tests for the heartbeat controller.

A connection that never acknowledges is evicted on the second tick after
it stopped answering; a connection that answers every probe is never
evicted.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from starlette.websockets import WebSocketState

from chat_gateway.components.connection.heartbeat import HeartbeatController, handle_heartbeat
from chat_gateway.components.core.constants import MSG_PING_PLAIN, MSG_PONG_JSON, WSCloseCode


class TestHeartbeatTick:
    """Tests for the probe/evict pass."""

    @pytest.mark.asyncio
    async def test_first_tick_probes_and_clears_alive_flag(self, registry, make_ws):
        ws = make_ws()
        registry.add_connection("user-a", ws)
        heartbeat = HeartbeatController(registry, interval=30)

        evicted = await heartbeat.tick()

        assert evicted == []
        assert registry.get("user-a").is_alive is False
        ws.send_text.assert_awaited_once_with(MSG_PING_PLAIN)

    @pytest.mark.asyncio
    async def test_unresponsive_connection_evicted_on_second_tick(self, registry, make_ws):
        ws = make_ws()
        registry.add_connection("user-a", ws)
        heartbeat = HeartbeatController(registry, interval=30)

        await heartbeat.tick()
        evicted = await heartbeat.tick()

        assert evicted == ["user-a"]
        assert not registry.is_online("user-a")
        ws.close.assert_awaited_once_with(code=WSCloseCode.GOING_AWAY, reason="Heartbeat timeout")
        assert heartbeat.get_stats()["evicted_total"] == 1

    @pytest.mark.asyncio
    async def test_acknowledging_connection_is_never_evicted(self, registry, make_ws):
        ws = make_ws()
        registry.add_connection("user-a", ws)
        heartbeat = HeartbeatController(registry, interval=30)

        for _ in range(5):
            await heartbeat.tick()
            registry.handle_pong("user-a", ws)

        assert registry.is_online("user-a")
        ws.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_probe_leads_to_eviction(self, registry, make_ws):
        ws = make_ws()
        ws.send_text = AsyncMock(side_effect=ConnectionError("broken pipe"))
        registry.add_connection("user-a", ws)
        heartbeat = HeartbeatController(registry, interval=30)

        assert await heartbeat.tick() == []
        assert await heartbeat.tick() == ["user-a"]

    @pytest.mark.asyncio
    async def test_only_silent_connections_are_evicted(self, registry, make_ws):
        quiet, chatty = make_ws(), make_ws()
        registry.add_connection("quiet", quiet)
        registry.add_connection("chatty", chatty)
        heartbeat = HeartbeatController(registry, interval=30)

        await heartbeat.tick()
        registry.handle_pong("chatty", chatty)
        evicted = await heartbeat.tick()

        assert evicted == ["quiet"]
        assert registry.list_online_user_ids() == {"chatty"}


class TestHeartbeatLifecycle:
    """Tests for the background loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, registry):
        heartbeat = HeartbeatController(registry, interval=3600)

        heartbeat.start()
        assert heartbeat.is_running

        await heartbeat.stop()
        assert not heartbeat.is_running

    @pytest.mark.asyncio
    async def test_run_loop_ticks(self, registry, make_ws):
        registry.add_connection("user-a", make_ws())
        heartbeat = HeartbeatController(registry, interval=0.01)

        heartbeat.start()
        await asyncio.sleep(0.1)
        await heartbeat.stop()

        assert heartbeat.get_stats()["ticks"] >= 2
        assert not registry.is_online("user-a")


class TestClientPing:
    """Tests for client-initiated plain pings."""

    @pytest.mark.asyncio
    async def test_ping_answered_with_json_pong(self, make_ws):
        ws = make_ws()

        assert await handle_heartbeat(ws, MSG_PING_PLAIN) is True
        ws.send_text.assert_awaited_once_with(MSG_PONG_JSON)

    @pytest.mark.asyncio
    async def test_other_frames_not_handled(self, make_ws):
        ws = make_ws()

        assert await handle_heartbeat(ws, '{"type":"heartbeat"}') is False
        ws.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ping_on_closed_socket_does_not_raise(self, make_ws):
        ws = make_ws()
        ws.application_state = WebSocketState.DISCONNECTED
        ws.send_text = AsyncMock(side_effect=RuntimeError("closed"))

        assert await handle_heartbeat(ws, MSG_PING_PLAIN) is True
