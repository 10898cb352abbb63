"""
SlipTracker: wires the channel, decoder, merger and poller for one user.

    transport = ChannelTransport(url)
    registry = TopicRegistry(transport)
    tracker = SlipTracker(registry, EnrichmentClient(api_host))
    tracker.add_listener(print)
    await tracker.track_user("0xabc...")

Transport and registry are built by the caller and injected; nothing here is
a module-level singleton.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from client import topics
from client.api import EnrichmentClient
from client.chain import ChainReader
from client.topics import TopicRegistry
from tracker.decoder import decode_event
from tracker.errors import PollError
from tracker.merger import EnrichmentMerger, SlipListener
from tracker.models import CycleRolloverRecord, SlipView
from tracker.poller import POLL_INTERVAL_SEC, PollingSupplement
from tracker.rollover import ROLLOVER_FEE_BPS, RolloverCalculator
from tracker.status import WIN_THRESHOLD

logger = logging.getLogger(__name__)


class SlipTracker:
    def __init__(
        self,
        registry: TopicRegistry,
        api: EnrichmentClient,
        chain: ChainReader | None = None,
        merger: EnrichmentMerger | None = None,
        poll_interval_sec: float = POLL_INTERVAL_SEC,
        refresh_enrichment: bool = True,
        follow_fixtures: bool = False,
        win_threshold: int = WIN_THRESHOLD,
        rollover_fee_bps: int = ROLLOVER_FEE_BPS,
    ):
        self._registry = registry
        self._api = api
        self._chain = chain
        self._merger = merger or EnrichmentMerger(win_threshold=win_threshold)
        self._poll_interval = poll_interval_sec
        self._refresh_enrichment = refresh_enrichment
        self._follow_fixtures = follow_fixtures
        self._rollover = (
            RolloverCalculator(chain, fee_bps=rollover_fee_bps, win_threshold=win_threshold)
            if chain is not None else None
        )

        self._user: str | None = None
        self._poller: PollingSupplement | None = None
        self._user_unsubs: list[Callable[[], None]] = []
        self._slip_unsubs: dict[int, Callable[[], None]] = {}
        self._cycle_unsubs: dict[int, Callable[[], None]] = {}
        self._fixture_unsubs: dict[int, Callable[[], None]] = {}
        self._merger.add_listener(self._follow)

    @property
    def merger(self) -> EnrichmentMerger:
        return self._merger

    @property
    def poller(self) -> PollingSupplement | None:
        return self._poller

    def add_listener(self, listener: SlipListener) -> Callable[[], None]:
        return self._merger.add_listener(listener)

    def slips(self) -> list[SlipView]:
        return self._merger.views()

    async def track_user(self, address: str, start_polling: bool = True) -> list[SlipView]:
        """
        Subscribe the user's slip topics, load the enrichment snapshot and start
        polling. Tracking a second address first releases the previous one.
        """
        if self._user == address and self._user_unsubs:
            logger.debug("Already tracking %s", address)
            return self.slips()
        if self._user is not None:
            await self.stop()

        self._user = address
        logger.info("Tracking slips for %s", address)
        self._user_unsubs.append(
            self._registry.subscribe(topics.user_slips(address), self._handler(topics.user_slips(address)))
        )

        try:
            for snap in await self._api.get_user_slips(address):
                self._merger.merge(snap.slip_id, snap)
        except PollError as e:
            logger.warning("Initial enrichment load failed: %s", e)

        self._poller = PollingSupplement(
            self._api,
            self._merger,
            address,
            interval_sec=self._poll_interval,
            refresh_enrichment=self._refresh_enrichment,
            chain=self._chain,
        )
        if start_polling:
            self._poller.start()
        return self.slips()

    async def stop(self) -> None:
        for unsub in self._user_unsubs:
            unsub()
        for table in (self._slip_unsubs, self._cycle_unsubs, self._fixture_unsubs):
            for unsub in table.values():
                unsub()
            table.clear()
        self._user_unsubs.clear()
        if self._poller is not None:
            await self._poller.stop()
            self._poller = None
        logger.info("Stopped tracking %s", self._user)
        self._user = None

    async def rollover(self, cycle_id: int) -> CycleRolloverRecord | None:
        if self._rollover is None:
            return None
        return await self._rollover.for_cycle(cycle_id)

    # -- channel wiring -----------------------------------------------------

    def _handler(self, channel: str) -> Callable[[Any], None]:
        def handle(data: Any) -> None:
            signal = decode_event(channel, data)
            if signal is not None:
                self._merger.apply(signal)

        return handle

    def _subscribe(self, table: dict, key: int, topic: str) -> None:
        if key in table:
            return
        table[key] = self._registry.subscribe(topic, self._handler(topic))

    def _release(self, table: dict, key: int) -> None:
        unsub = table.pop(key, None)
        if unsub is not None:
            unsub()

    def _follow(self, view: SlipView) -> None:
        """Keep per-slip, per-cycle and per-fixture topics in step with the views."""
        if self._user is None:
            return
        settled = view.cycle_resolved and view.is_evaluated_on_chain
        if settled:
            self._release(self._slip_unsubs, view.slip_id)
        else:
            self._subscribe(self._slip_unsubs, view.slip_id, topics.slip_evaluation(view.slip_id))

        if view.cycle_id:
            if view.cycle_resolved:
                self._release(self._cycle_unsubs, view.cycle_id)
            else:
                self._subscribe(self._cycle_unsubs, view.cycle_id, topics.cycle(view.cycle_id))

        if self._follow_fixtures and not view.cycle_resolved:
            for pred in view.predictions:
                self._subscribe(self._fixture_unsubs, pred.match_id, topics.fixture(pred.match_id))

    @property
    def stats(self) -> dict:
        return {
            "user": self._user,
            "merger": self._merger.stats,
            "channel": self._registry.stats,
            "poller": self._poller.stats if self._poller else None,
            "api": self._api.stats,
        }
