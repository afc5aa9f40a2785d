"""
Tests for the connection registry.

Tests verify:
- One live connection per user, with replacement handing back the old record
- Removal guarded by socket identity
- Liveness acknowledgments
- Best-effort unicast and broadcast
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from starlette.websockets import WebSocketState

from chat_gateway.components.connection.registry import ConnectionRegistry, close_quietly
from chat_gateway.components.core.constants import WSCloseCode

from conftest import sent_events


class TestRegistration:
    """Tests for add/remove semantics."""

    def test_add_connection_marks_user_online_and_alive(self, registry, make_ws):
        ws = make_ws()

        previous = registry.add_connection("user-a", ws, "Ana")

        assert previous is None
        assert registry.is_online("user-a")
        record = registry.get("user-a")
        assert record.websocket is ws
        assert record.display_name == "Ana"
        assert record.is_alive is True

    def test_second_connection_replaces_first(self, registry, make_ws):
        """Only the newest connection is reachable; the old record is returned."""
        first, second = make_ws(), make_ws()
        registry.add_connection("user-a", first)

        previous = registry.add_connection("user-a", second)

        assert previous is not None
        assert previous.websocket is first
        assert registry.get("user-a").websocket is second
        assert len(registry) == 1
        assert registry.get_stats()["total_superseded"] == 1

    def test_re_adding_same_socket_is_not_a_replacement(self, registry, make_ws):
        ws = make_ws()
        registry.add_connection("user-a", ws)

        assert registry.add_connection("user-a", ws) is None

    def test_remove_connection(self, registry, make_ws):
        registry.add_connection("user-a", make_ws())

        assert registry.remove_connection("user-a") is True
        assert not registry.is_online("user-a")

    def test_remove_absent_user_is_noop(self, registry):
        assert registry.remove_connection("nobody") is False

    def test_replaced_socket_cannot_remove_its_successor(self, registry, make_ws):
        first, second = make_ws(), make_ws()
        registry.add_connection("user-a", first)
        registry.add_connection("user-a", second)

        assert registry.remove_connection("user-a", first) is False
        assert registry.get("user-a").websocket is second

    def test_list_online_user_ids(self, registry, make_ws):
        registry.add_connection("user-a", make_ws())
        registry.add_connection("user-b", make_ws())

        assert registry.list_online_user_ids() == {"user-a", "user-b"}


class TestLiveness:
    """Tests for probe acknowledgments."""

    def test_handle_pong_restores_alive_flag(self, registry, make_ws):
        ws = make_ws()
        registry.add_connection("user-a", ws)
        registry.get("user-a").is_alive = False

        assert registry.handle_pong("user-a", ws) is True
        assert registry.get("user-a").is_alive is True

    def test_handle_pong_for_unknown_user(self, registry):
        assert registry.handle_pong("nobody") is False

    def test_handle_pong_from_replaced_socket_is_ignored(self, registry, make_ws):
        first, second = make_ws(), make_ws()
        registry.add_connection("user-a", first)
        registry.add_connection("user-a", second)
        registry.get("user-a").is_alive = False

        assert registry.handle_pong("user-a", first) is False
        assert registry.get("user-a").is_alive is False


class TestDelivery:
    """Tests for send_to_user and broadcast."""

    @pytest.mark.asyncio
    async def test_send_to_user(self, registry, make_ws):
        ws = make_ws()
        registry.add_connection("user-a", ws)
        event = {"type": "message_received", "payload": {}}

        assert await registry.send_to_user("user-a", event) is True
        assert sent_events(ws) == [event]

    @pytest.mark.asyncio
    async def test_send_to_offline_user_returns_false(self, registry):
        assert await registry.send_to_user("nobody", {"type": "x"}) is False

    @pytest.mark.asyncio
    async def test_send_to_closed_socket_is_skipped(self, registry, make_ws):
        ws = make_ws()
        ws.client_state = WebSocketState.DISCONNECTED
        registry.add_connection("user-a", ws)

        assert await registry.send_to_user("user-a", {"type": "x"}) is False
        ws.send_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_broadcast_excludes_originator(self, registry, make_ws):
        a, b, c = make_ws(), make_ws(), make_ws()
        registry.add_connection("user-a", a)
        registry.add_connection("user-b", b)
        registry.add_connection("user-c", c)

        sent = await registry.broadcast({"type": "user_online"}, exclude_user_id="user-a")

        assert sent == 2
        a.send_json.assert_not_awaited()
        b.send_json.assert_awaited_once()
        c.send_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_broadcast_survives_failing_socket(self, registry, make_ws):
        """One broken connection must not stop delivery to the others."""
        broken, healthy = make_ws(), make_ws()
        broken.send_json = AsyncMock(side_effect=ConnectionError("reset"))
        registry.add_connection("user-a", broken)
        registry.add_connection("user-b", healthy)

        sent = await registry.broadcast({"type": "typing_start"})

        assert sent == 1
        healthy.send_json.assert_awaited_once()
        assert registry.get_stats()["failed_sends"] == 1

    @pytest.mark.asyncio
    async def test_slow_socket_times_out(self, make_ws):
        registry = ConnectionRegistry(send_timeout=0.05)
        slow = make_ws()

        async def never_finishes(event):
            await asyncio.sleep(10)

        slow.send_json = AsyncMock(side_effect=never_finishes)
        registry.add_connection("user-a", slow)

        assert await registry.broadcast({"type": "x"}) == 0
        assert registry.get_stats()["failed_sends"] == 1


class TestCloseQuietly:
    """Tests for the close helper."""

    @pytest.mark.asyncio
    async def test_close_quietly_closes_open_socket(self, make_ws):
        ws = make_ws()

        await close_quietly(ws, WSCloseCode.GOING_AWAY, "Replaced")

        ws.close.assert_awaited_once_with(code=WSCloseCode.GOING_AWAY, reason="Replaced")

    @pytest.mark.asyncio
    async def test_close_quietly_skips_closed_socket(self, make_ws):
        ws = make_ws()
        ws.application_state = WebSocketState.DISCONNECTED

        await close_quietly(ws)

        ws.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_quietly_swallows_transport_errors(self, make_ws):
        ws = make_ws()
        ws.close = AsyncMock(side_effect=RuntimeError("already closed"))

        await close_quietly(ws)
