"""
Unit tests for client/ws.py -- channel transport with backoff and keepalive.
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

import pytest

from client.ws import ChannelState, ChannelTransport, derive_ws_url


class FakeSocket:
    """Yields scripted messages, then optionally stays open until closed."""

    def __init__(self, messages=(), hold=False):
        self.messages = list(messages)
        self.hold = hold
        self.sent: list[str] = []
        self._closed = asyncio.Event()

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for msg in self.messages:
            yield msg
        if self.hold:
            await self._closed.wait()

    async def send(self, msg):
        self.sent.append(msg)

    async def close(self):
        self._closed.set()


def _connector(*sockets, error=None):
    """Connector that hands out the given sockets in order, or raises error."""
    calls = []
    queue = list(sockets)

    @asynccontextmanager
    async def connect(url, **kwargs):
        calls.append((url, kwargs))
        if error is not None:
            raise error
        yield queue.pop(0)

    connect.calls = calls
    return connect


async def _wait_for(predicate, timeout=1.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestDeriveWsUrl:
    def test_https(self):
        assert derive_ws_url("https://api.example.com") == "wss://api.example.com/ws"

    def test_http_trailing_slash(self):
        assert derive_ws_url("http://localhost:3000/") == "ws://localhost:3000/ws"

    def test_ws_suffix_not_doubled(self):
        assert derive_ws_url("https://api.example.com/ws") == "wss://api.example.com/ws"


class TestBackoff:
    def test_exponential(self):
        transport = ChannelTransport("wss://fake", base_delay=1.0)
        assert [transport._backoff(a) for a in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]


class TestSend:
    def test_send_when_not_open_is_dropped(self):
        transport = ChannelTransport("wss://fake")
        assert transport.send({"type": "subscribe", "channel": "t"}) is False
        assert transport.state == ChannelState.IDLE


class TestHealth:
    def test_unhealthy_when_not_open(self):
        transport = ChannelTransport("wss://fake")
        assert transport.is_healthy() is False

    def test_healthy_after_recent_frame(self):
        transport = ChannelTransport("wss://fake")
        transport._state = ChannelState.OPEN
        transport._last_message_time = time.time() - 5
        assert transport.is_healthy() is True
        assert transport.is_healthy(max_silence_sec=3.0) is False

    def test_grace_period_after_open(self):
        transport = ChannelTransport("wss://fake")
        transport._state = ChannelState.OPEN
        transport._connect_time = time.time()
        assert transport.is_healthy() is True


class TestHandleMessage:
    def test_dispatches_object_frames(self):
        transport = ChannelTransport("wss://fake")
        handler = MagicMock()
        transport.on_frame(handler)
        transport._handle_message(json.dumps({"type": "update", "channel": "t", "data": {}}))
        handler.assert_called_once_with({"type": "update", "channel": "t", "data": {}})

    def test_malformed_frames_dropped(self):
        transport = ChannelTransport("wss://fake")
        handler = MagicMock()
        transport.on_frame(handler)
        transport._handle_message("{not json")
        transport._handle_message("[1, 2]")
        handler.assert_not_called()
        assert transport.stats["frames_dropped"] == 2
        assert transport.stats["frames_received"] == 2

    def test_pong_ignored(self):
        transport = ChannelTransport("wss://fake")
        handler = MagicMock()
        transport.on_frame(handler)
        transport._handle_message('{"type": "pong"}')
        handler.assert_not_called()

    def test_failing_handler_isolated(self):
        transport = ChannelTransport("wss://fake")
        good = MagicMock()
        transport.on_frame(MagicMock(side_effect=KeyError("x")))
        transport.on_frame(good)
        transport._handle_message('{"type": "update"}')
        good.assert_called_once()

    def test_removed_handler(self):
        transport = ChannelTransport("wss://fake")
        handler = MagicMock()
        remove = transport.on_frame(handler)
        remove()
        transport._handle_message('{"type": "update"}')
        handler.assert_not_called()


class TestConnectionLoop:
    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        connector = _connector(error=OSError("refused"))
        transport = ChannelTransport("wss://fake", max_attempts=2, base_delay=0.001, connector=connector)
        transport.connect()
        await asyncio.wait_for(transport._task, timeout=1.0)

        assert len(connector.calls) == 3  # initial + 2 retries
        assert transport.state == ChannelState.CLOSED
        assert transport.stats["failed_connections"] == 3

    @pytest.mark.asyncio
    async def test_library_pings_disabled(self):
        connector = _connector(error=OSError("refused"))
        transport = ChannelTransport("wss://fake", max_attempts=0, connector=connector)
        transport.connect()
        await asyncio.wait_for(transport._task, timeout=1.0)
        assert connector.calls[0] == ("wss://fake", {"ping_interval": None})

    @pytest.mark.asyncio
    async def test_frames_delivered_and_open_fired(self):
        sock = FakeSocket([
            json.dumps({"type": "update", "channel": "t", "data": {"a": 1}}),
            "garbage",
            json.dumps({"type": "pong"}),
        ])
        transport = ChannelTransport("wss://fake", max_attempts=0, connector=_connector(sock))
        on_open, on_frame = MagicMock(), MagicMock()
        transport.on_open(on_open)
        transport.on_frame(on_frame)

        transport.connect()
        await asyncio.wait_for(transport._task, timeout=1.0)

        on_open.assert_called_once()
        on_frame.assert_called_once_with({"type": "update", "channel": "t", "data": {"a": 1}})

    @pytest.mark.asyncio
    async def test_reconnect_fires_open_again(self):
        first, second = FakeSocket(), FakeSocket(hold=True)
        transport = ChannelTransport(
            "wss://fake", max_attempts=3, base_delay=0.001, connector=_connector(first, second),
        )
        on_open = MagicMock()
        transport.on_open(on_open)

        transport.connect()
        await _wait_for(lambda: on_open.call_count == 2)
        assert transport.is_open
        # Successful open resets the attempt counter
        assert transport.stats["reconnect_attempt"] == 0
        await transport.close()
        assert transport.state == ChannelState.CLOSED

    @pytest.mark.asyncio
    async def test_open_handler_can_send(self):
        sock = FakeSocket(hold=True)
        transport = ChannelTransport("wss://fake", connector=_connector(sock))
        transport.on_open(lambda: transport.send({"type": "subscribe", "channel": "t"}))

        transport.connect()
        await _wait_for(lambda: sock.sent)
        assert json.loads(sock.sent[0]) == {"type": "subscribe", "channel": "t"}
        await transport.close()

    @pytest.mark.asyncio
    async def test_keepalive_ping(self):
        sock = FakeSocket(hold=True)
        transport = ChannelTransport("wss://fake", keepalive_sec=0.01, connector=_connector(sock))
        transport.connect()
        await _wait_for(lambda: sock.sent)
        assert json.loads(sock.sent[0]) == {"type": "ping"}
        await transport.close()

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self):
        sock = FakeSocket(hold=True)
        connector = _connector(sock)
        transport = ChannelTransport("wss://fake", connector=connector)
        transport.connect()
        transport.connect()
        await _wait_for(lambda: transport.is_open)
        assert len(connector.calls) == 1
        await transport.close()
