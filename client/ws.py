"""
Real-time channel transport. Owns exactly one websocket connection, reconnects
with exponential backoff and sends a periodic keepalive ping.

Subscriptions are scoped to one transport session: the server keeps no state
across disconnects, so open handlers (the topic registry) replay them on
every transition into OPEN.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Callable

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from tracker.errors import TransportError

logger = logging.getLogger(__name__)

MAX_RECONNECT_ATTEMPTS = 5
BACKOFF_BASE = 1.0  # seconds
KEEPALIVE_SEC = 30.0
PING_FRAME = {"type": "ping"}

FrameHandler = Callable[[dict], None]
OpenHandler = Callable[[], None]


class ChannelState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def derive_ws_url(base_url: str) -> str:
    """http(s)://host -> ws(s)://host/ws, appending /ws at most once."""
    url = base_url.rstrip("/")
    if url.startswith("https://"):
        url = "wss://" + url[len("https://"):]
    elif url.startswith("http://"):
        url = "ws://" + url[len("http://"):]
    if not url.endswith("/ws"):
        url = f"{url}/ws"
    return url


class ChannelTransport:
    """
    One physical connection, many logical topics. Inbound frames are parsed
    and handed to every frame handler; malformed frames are logged and
    dropped so one bad frame cannot stall delivery to other topics.
    """

    def __init__(
        self,
        url: str,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        base_delay: float = BACKOFF_BASE,
        keepalive_sec: float = KEEPALIVE_SEC,
        connector: Callable[..., Any] = connect,
    ):
        self.url = url
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.keepalive_sec = keepalive_sec
        self._connector = connector

        self._state = ChannelState.IDLE
        self._running = False
        self._task: asyncio.Task | None = None
        self._ws: Any = None
        self._outbox: asyncio.Queue | None = None
        self._attempt = 0
        self._frame_handlers: list[FrameHandler] = []
        self._open_handlers: list[OpenHandler] = []
        # Health tracking
        self._last_message_time: float = 0.0
        self._connect_time: float = 0.0
        self._failed_connections = 0
        self._frames_received = 0
        self._frames_dropped = 0

    # -- public API ---------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ChannelState.OPEN

    def connect(self) -> None:
        """
        Start the connection loop if it is not already running. Idempotent.
        Must be called from inside a running event loop.
        """
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._attempt = 0
        self._state = ChannelState.CONNECTING
        self._task = asyncio.get_running_loop().create_task(self._run_loop())

    async def close(self) -> None:
        """Stop reconnecting and close the socket."""
        self._running = False
        if self._state != ChannelState.IDLE:
            self._state = ChannelState.CLOSING
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except (WebSocketException, OSError) as e:
                logger.debug("Error closing channel: %s", e)
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._ws = None
        self._state = ChannelState.CLOSED
        logger.info("Channel closed (%d frames received)", self._frames_received)

    def send(self, frame: dict) -> bool:
        """
        Queue a frame for the current session. Returns False (frame dropped)
        when the channel is not OPEN.
        """
        if self._state != ChannelState.OPEN or self._outbox is None:
            logger.debug("Channel not open, dropping %s frame", frame.get("type"))
            return False
        self._outbox.put_nowait(json.dumps(frame))
        return True

    def on_frame(self, handler: FrameHandler) -> Callable[[], None]:
        self._frame_handlers.append(handler)
        return lambda: self._remove(self._frame_handlers, handler)

    def on_open(self, handler: OpenHandler) -> Callable[[], None]:
        self._open_handlers.append(handler)
        return lambda: self._remove(self._open_handlers, handler)

    def is_healthy(self, max_silence_sec: float = 2 * KEEPALIVE_SEC) -> bool:
        """
        True when OPEN and a frame arrived recently. A freshly opened channel
        gets max_silence_sec of grace before silence counts against it.
        """
        if self._state != ChannelState.OPEN:
            return False
        now = time.time()
        if self._last_message_time == 0.0:
            return now - self._connect_time <= max_silence_sec
        return now - self._last_message_time <= max_silence_sec

    @property
    def stats(self) -> dict:
        return {
            "state": self._state.value,
            "frames_received": self._frames_received,
            "frames_dropped": self._frames_dropped,
            "failed_connections": self._failed_connections,
            "reconnect_attempt": self._attempt,
        }

    # -- connection loop ----------------------------------------------------

    @staticmethod
    def _remove(handlers: list, handler) -> None:
        if handler in handlers:
            handlers.remove(handler)

    def _backoff(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    async def _run_loop(self) -> None:
        """Connect and listen; reconnect with exponential backoff until attempts run out."""
        while self._running:
            self._state = ChannelState.CONNECTING
            try:
                # Library-level pings would close the socket on a missing pong
                async with self._connector(self.url, ping_interval=None) as ws:
                    await self._serve(ws)
                error: Exception = TransportError("closed by server")
            except (WebSocketException, ConnectionError, OSError, TimeoutError) as e:
                error = e
            finally:
                self._ws = None
                self._outbox = None

            if not self._running:
                break
            self._state = ChannelState.CLOSED
            self._failed_connections += 1

            if self._attempt >= self.max_attempts:
                logger.error(
                    "Channel reconnect attempts exhausted (%d). Last error: %s",
                    self.max_attempts, error,
                )
                self._running = False
                break

            delay = self._backoff(self._attempt)
            self._attempt += 1
            logger.warning(
                "Channel disconnected (retry %d/%d), backoff %.1fs: %s",
                self._attempt, self.max_attempts, delay, error,
            )
            await asyncio.sleep(delay)

        self._state = ChannelState.CLOSED

    async def _serve(self, ws) -> None:
        self._ws = ws
        self._outbox = asyncio.Queue()
        self._state = ChannelState.OPEN
        self._attempt = 0
        self._connect_time = time.time()
        self._last_message_time = 0.0
        logger.info("Channel connected to %s", self.url)

        for handler in list(self._open_handlers):
            try:
                handler()
            except Exception as e:
                logger.error("Channel open handler failed: %s", e)

        writer = asyncio.create_task(self._writer(ws))
        keepalive = asyncio.create_task(self._keepalive())
        try:
            async for raw in ws:
                if not self._running:
                    break
                self._handle_message(raw)
            if writer.done() and writer.exception() is not None:
                raise writer.exception()
        finally:
            writer.cancel()
            keepalive.cancel()
            await asyncio.gather(writer, keepalive, return_exceptions=True)

    async def _writer(self, ws) -> None:
        outbox = self._outbox
        while True:
            msg = await outbox.get()
            await ws.send(msg)

    async def _keepalive(self) -> None:
        """Fire-and-forget ping. No pong is expected."""
        while True:
            await asyncio.sleep(self.keepalive_sec)
            self.send(PING_FRAME)

    def _handle_message(self, raw: str | bytes) -> None:
        self._last_message_time = time.time()
        self._frames_received += 1
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._frames_dropped += 1
            logger.warning("Unparseable channel frame: %s", str(raw)[:200])
            return
        if not isinstance(frame, dict):
            self._frames_dropped += 1
            logger.warning("Non-object channel frame: %s", str(raw)[:200])
            return
        if frame.get("type") == "pong":
            return

        for handler in list(self._frame_handlers):
            try:
                handler(frame)
            except Exception as e:
                logger.error("Channel frame handler failed: %s", e)
