"""
Polling supplement. Re-fetches live evaluation for slips in unresolved cycles
on a fixed interval and feeds the results through the same merger as push
events. Optionally refreshes the enrichment snapshot and on-chain flags.
"""

from __future__ import annotations

import asyncio
import logging

from client.api import EnrichmentClient
from client.chain import ChainReader
from tracker.errors import PollError
from tracker.merger import EnrichmentMerger
from tracker.models import CycleResolved

logger = logging.getLogger(__name__)

POLL_INTERVAL_SEC = 30.0


class PollingSupplement:
    def __init__(
        self,
        api: EnrichmentClient,
        merger: EnrichmentMerger,
        user: str,
        interval_sec: float = POLL_INTERVAL_SEC,
        refresh_enrichment: bool = True,
        chain: ChainReader | None = None,
    ):
        self._api = api
        self._merger = merger
        self._user = user
        self._interval = interval_sec
        self._refresh_enrichment = refresh_enrichment
        self._chain = chain
        self._task: asyncio.Task | None = None
        self._polls = 0
        self._errors = 0

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.poll_once()

    async def poll_once(self) -> int:
        """
        One polling pass. Returns the number of signals merged. Failures are
        logged and leave the previous data in place.
        """
        self._polls += 1
        merged = 0

        if self._refresh_enrichment:
            try:
                for snap in await self._api.get_user_slips(self._user):
                    self._merger.merge(snap.slip_id, snap)
                    merged += 1
            except PollError as e:
                self._errors += 1
                logger.warning("Enrichment refresh failed, keeping stale data: %s", e)

        for slip in self._merger.views():
            if slip.cycle_resolved:
                continue
            try:
                live = await self._api.get_live_evaluation(slip.slip_id)
            except PollError as e:
                self._errors += 1
                logger.warning("Live evaluation poll failed for slip %d: %s", slip.slip_id, e)
                continue
            if live is not None:
                self._merger.merge(slip.slip_id, live)
                merged += 1

        if self._chain is not None:
            merged += await self._poll_chain()

        logger.debug("Poll #%d merged %d signals", self._polls, merged)
        return merged

    async def _poll_chain(self) -> int:
        merged = 0
        cycles = {v.cycle_id for v in self._merger.unsettled_slips() if v.cycle_id}
        for cycle_id in sorted(cycles):
            try:
                status = await self._chain.get_cycle_status(cycle_id)
                if status.is_resolved:
                    self._merger.merge_cycle(CycleResolved(cycle_id=cycle_id))
                    merged += 1
                for slip in await self._chain.get_user_slips_with_data(self._user, cycle_id):
                    self._merger.merge(slip.slip_id, slip.to_placed())
                    self._merger.merge(slip.slip_id, slip.to_flag())
                    merged += 2
            except Exception as e:
                self._errors += 1
                logger.warning("Chain poll failed for cycle %d: %s", cycle_id, e)
        return merged

    @property
    def stats(self) -> dict:
        return {"polls": self._polls, "errors": self._errors, "running": self.running}
