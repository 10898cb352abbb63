"""
Topic multiplexing over one ChannelTransport. Reference-counts local handlers
per topic so the server sees one subscribe per topic regardless of how many
local subscribers exist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

TopicHandler = Callable[[Any], None]


class Transport(Protocol):
    """The slice of ChannelTransport the registry depends on."""

    @property
    def is_open(self) -> bool: ...

    def connect(self) -> None: ...

    def send(self, frame: dict) -> bool: ...

    def on_frame(self, handler: Callable[[dict], None]) -> Callable[[], None]: ...

    def on_open(self, handler: Callable[[], None]) -> Callable[[], None]: ...


# -- topic names ------------------------------------------------------------


def user_slips(address: str) -> str:
    return f"slips:user:{address}"


def slip_placed(address: str) -> str:
    return f"slip:placed:user:{address}"


def slip_evaluated(address: str) -> str:
    return f"slip:evaluated:user:{address}"


def slip_prize_claimed(address: str) -> str:
    return f"slip:prize_claimed:user:{address}"


def cycle(cycle_id: int) -> str:
    return f"oddyssey:cycle:{cycle_id}"


def slip_evaluation(slip_id: int) -> str:
    return f"oddyssey:slip:{slip_id}:evaluation"


def fixture(fixture_id: int | str) -> str:
    return f"fixture:{fixture_id}"


@dataclass(eq=False)
class Registration:
    """One subscribe() call. Compared by identity, so the same handler can hold
    several independent registrations on a topic."""
    handler: TopicHandler
    active: bool = True


@dataclass
class Subscription:
    topic: str
    handlers: list[Registration] = field(default_factory=list)


class TopicRegistry:
    """
    subscribe(topic, handler) -> unsubscribe. The transport-level subscribe
    frame goes out on the 0->1 handler transition, unsubscribe on 1->0, and
    every active topic is re-subscribed whenever the transport (re)opens.
    """

    def __init__(self, transport: Transport):
        self._transport = transport
        self._subs: dict[str, Subscription] = {}
        transport.on_frame(self._on_frame)
        transport.on_open(self._resubscribe_all)

    def subscribe(self, topic: str, handler: TopicHandler) -> Callable[[], None]:
        sub = self._subs.get(topic)
        if sub is None:
            sub = Subscription(topic=topic)
            self._subs[topic] = sub
            self._send("subscribe", topic)
            logger.debug("Subscribed to %s", topic)
        reg = Registration(handler)
        sub.handlers.append(reg)

        # First subscriber lazily brings the connection up
        self._transport.connect()

        def unsubscribe() -> None:
            self._unsubscribe(topic, reg)

        return unsubscribe

    def _unsubscribe(self, topic: str, reg: Registration) -> None:
        if not reg.active:
            return
        reg.active = False
        sub = self._subs.get(topic)
        if sub is None or reg not in sub.handlers:
            return
        sub.handlers.remove(reg)
        if not sub.handlers:
            del self._subs[topic]
            self._send("unsubscribe", topic)
            logger.debug("Unsubscribed from %s", topic)

    def _send(self, action: str, topic: str) -> None:
        # While not OPEN the frame is dropped; _resubscribe_all replays state
        if self._transport.is_open:
            self._transport.send({"type": action, "channel": topic})

    def _resubscribe_all(self) -> None:
        for topic in list(self._subs):
            self._transport.send({"type": "subscribe", "channel": topic})
        if self._subs:
            logger.info("Resubscribed %d topics", len(self._subs))

    def _on_frame(self, frame: dict) -> None:
        if frame.get("type") not in (None, "update"):
            return
        topic = frame.get("channel")
        if not isinstance(topic, str):
            logger.warning("Channel frame without topic: %s", str(frame)[:200])
            return
        sub = self._subs.get(topic)
        if sub is None:
            return
        data = frame.get("data")
        if data is None:
            logger.warning("Null data on %s", topic)
            return

        for reg in list(sub.handlers):
            # Unsubscribed mid-dispatch: stop delivering to it immediately
            if not reg.active:
                continue
            try:
                reg.handler(data)
            except Exception as e:
                logger.error("Handler for %s failed: %s", topic, e)

    def topics(self) -> list[str]:
        return list(self._subs)

    def handler_count(self, topic: str) -> int:
        sub = self._subs.get(topic)
        return len(sub.handlers) if sub else 0

    @property
    def stats(self) -> dict:
        return {
            "connected": self._transport.is_open,
            "total_subscriptions": sum(len(s.handlers) for s in self._subs.values()),
            "channels": self.topics(),
        }
