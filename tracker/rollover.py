"""
Prize-pool rollover. When a cycle ends without a winner its pool, minus the
rollover fee, carries into the next cycle.

All arithmetic is integer wei with basis-point fees so the result matches
the contract's own fee computation exactly.
"""

from __future__ import annotations

import logging

from client.chain import ChainReader
from tracker.models import CycleRolloverRecord, LeaderboardEntry
from tracker.status import WIN_THRESHOLD

logger = logging.getLogger(__name__)

ROLLOVER_FEE_BPS = 500  # 5%
BPS_DENOMINATOR = 10_000
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def had_winner(top: LeaderboardEntry | None, win_threshold: int = WIN_THRESHOLD) -> bool:
    """A cycle has a winner iff its top leaderboard entry reached the threshold."""
    if top is None:
        return False
    if not top.player or top.player.lower() == ZERO_ADDRESS:
        return False
    return top.correct_count >= win_threshold


def rollover_fee(pool_wei: int, fee_bps: int = ROLLOVER_FEE_BPS) -> int:
    return pool_wei * fee_bps // BPS_DENOMINATOR


def compute_rollover(
    cycle_id: int,
    previous_pool_wei: int,
    previous_leaderboard_top: LeaderboardEntry | bool | None,
    fee_bps: int = ROLLOVER_FEE_BPS,
    win_threshold: int = WIN_THRESHOLD,
) -> int:
    """
    Rollover carried into cycle_id from cycle_id - 1.

    previous_leaderboard_top is the previous cycle's top entry, or a bool
    when the caller already knows whether that cycle had a winner.
    """
    if cycle_id <= 1:
        return 0
    if isinstance(previous_leaderboard_top, bool):
        winner = previous_leaderboard_top
    else:
        winner = had_winner(previous_leaderboard_top, win_threshold)
    if winner:
        return 0
    return previous_pool_wei - rollover_fee(previous_pool_wei, fee_bps)


def rollover_record(
    cycle_id: int,
    previous_pool_wei: int,
    previous_leaderboard_top: LeaderboardEntry | None,
    fee_bps: int = ROLLOVER_FEE_BPS,
    win_threshold: int = WIN_THRESHOLD,
) -> CycleRolloverRecord:
    winner = cycle_id > 1 and had_winner(previous_leaderboard_top, win_threshold)
    return CycleRolloverRecord(
        cycle_id=cycle_id,
        previous_prize_pool=previous_pool_wei if cycle_id > 1 else 0,
        had_winner=winner,
        fee_bps=fee_bps,
        rollover_amount=compute_rollover(
            cycle_id, previous_pool_wei, previous_leaderboard_top, fee_bps, win_threshold,
        ),
    )


class RolloverCalculator:
    """Reads the previous cycle from the chain and derives its rollover."""

    def __init__(
        self,
        reader: ChainReader,
        fee_bps: int = ROLLOVER_FEE_BPS,
        win_threshold: int = WIN_THRESHOLD,
    ):
        self._reader = reader
        self._fee_bps = fee_bps
        self._win_threshold = win_threshold

    async def for_cycle(self, cycle_id: int) -> CycleRolloverRecord:
        """Zero rollover on read failure; the display falls back to no rollover."""
        if cycle_id <= 1:
            return rollover_record(cycle_id, 0, None, self._fee_bps, self._win_threshold)

        previous = cycle_id - 1
        try:
            leaderboard = await self._reader.get_daily_leaderboard(previous)
            pool = await self._reader.daily_prize_pools(previous)
        except Exception as e:
            logger.warning("Rollover read failed for cycle %d: %s", cycle_id, e)
            return CycleRolloverRecord(
                cycle_id=cycle_id,
                previous_prize_pool=0,
                had_winner=False,
                fee_bps=self._fee_bps,
                rollover_amount=0,
            )

        top = leaderboard[0] if leaderboard else None
        record = rollover_record(cycle_id, int(pool), top, self._fee_bps, self._win_threshold)
        logger.debug(
            "Cycle %d rollover: pool=%d winner=%s -> %d",
            cycle_id, record.previous_prize_pool, record.had_winner, record.rollover_amount,
        )
        return record
