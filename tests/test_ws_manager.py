"""Tests for ws_manager.py -- WebSocket ConnectionManager.

Uses a fake WebSocket to test connect, disconnect, send_to_interface and
connection limits without a real ASGI server.
"""

import pytest

from ws_manager import ConnectionManager, MAX_CONNECTIONS_PER_INTERFACE


class FakeWebSocket:
    """Minimal WebSocket mock with accept/close/send_json."""

    def __init__(self, fail_send=False):
        self.accepted = False
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self.sent: list[dict] = []
        self._fail_send = fail_send

    async def accept(self):
        self.accepted = True

    async def close(self, code=1000, reason=""):
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    async def send_json(self, data: dict):
        if self._fail_send:
            raise ConnectionError("send failed")
        self.sent.append(data)


# ── Fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def mgr():
    return ConnectionManager()


@pytest.fixture
def ws():
    return FakeWebSocket()


# ── Connect / Disconnect ────────────────────────────────────────────

class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_accepts_websocket(self, mgr, ws):
        assert await mgr.connect("sidepanel", ws) is True
        assert ws.accepted is True
        assert mgr.get_connection_count("sidepanel") == 1

    @pytest.mark.asyncio
    async def test_connection_limit(self, mgr):
        for _ in range(MAX_CONNECTIONS_PER_INTERFACE):
            assert await mgr.connect("popup", FakeWebSocket()) is True
        extra = FakeWebSocket()
        assert await mgr.connect("popup", extra) is False
        assert extra.closed is True
        assert extra.close_code == 4008
        assert extra.accepted is False

    @pytest.mark.asyncio
    async def test_limit_is_per_interface(self, mgr):
        for _ in range(MAX_CONNECTIONS_PER_INTERFACE):
            await mgr.connect("popup", FakeWebSocket())
        assert await mgr.connect("sidepanel", FakeWebSocket()) is True

    @pytest.mark.asyncio
    async def test_disconnect(self, mgr, ws):
        await mgr.connect("sidepanel", ws)
        await mgr.disconnect("sidepanel", ws)
        assert mgr.get_connection_count() == 0

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, mgr, ws):
        await mgr.disconnect("sidepanel", ws)
        assert mgr.get_connection_count() == 0


# ── Sending ─────────────────────────────────────────────────────────

class TestSend:
    @pytest.mark.asyncio
    async def test_send_reaches_only_that_interface(self, mgr):
        side_a, side_b, pop = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
        await mgr.connect("sidepanel", side_a)
        await mgr.connect("sidepanel", side_b)
        await mgr.connect("popup", pop)

        await mgr.send_to_interface("sidepanel", {"type": "state_committed"})
        assert side_a.sent == [{"type": "state_committed"}]
        assert side_b.sent == [{"type": "state_committed"}]
        assert pop.sent == []

    @pytest.mark.asyncio
    async def test_dead_connection_removed(self, mgr):
        alive, dead = FakeWebSocket(), FakeWebSocket(fail_send=True)
        await mgr.connect("sidepanel", alive)
        await mgr.connect("sidepanel", dead)

        await mgr.send_to_interface("sidepanel", {"type": "ping"})
        assert mgr.get_connection_count("sidepanel") == 1
        assert alive.sent == [{"type": "ping"}]

    @pytest.mark.asyncio
    async def test_send_without_subscribers(self, mgr):
        await mgr.send_to_interface("popup", {"type": "state_committed"})
        assert mgr.get_connection_count() == 0
