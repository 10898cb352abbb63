"""
Unit tests for tracker/rollover.py -- integer prize-pool rollover.
"""

from unittest.mock import AsyncMock

import pytest

from tracker.models import LeaderboardEntry
from tracker.rollover import (
    ZERO_ADDRESS,
    RolloverCalculator,
    compute_rollover,
    had_winner,
    rollover_fee,
    rollover_record,
)

ETH = 10**18


def _entry(correct_count, player="0xwinner"):
    return LeaderboardEntry(player=player, slip_id=1, final_score=100, correct_count=correct_count)


class TestComputeRollover:
    def test_no_winner_keeps_95_percent(self):
        assert compute_rollover(5, 1000, _entry(6)) == 950

    def test_winner_means_zero(self):
        assert compute_rollover(5, 1000, _entry(7)) == 0

    def test_first_cycle_has_no_rollover(self):
        assert compute_rollover(1, 1000, None) == 0
        assert compute_rollover(0, 1000, None) == 0

    def test_bool_winner_flag(self):
        assert compute_rollover(5, 1000, True) == 0
        assert compute_rollover(5, 1000, False) == 950

    def test_empty_leaderboard_rolls_over(self):
        assert compute_rollover(5, 1000, None) == 950

    def test_integer_wei_exact(self):
        """No float rounding: 5% of 1.000000000000000001 ETH floors in wei."""
        pool = ETH + 1
        assert rollover_fee(pool) == (ETH + 1) * 500 // 10_000
        assert compute_rollover(3, pool, None) == pool - (ETH + 1) * 500 // 10_000

    def test_custom_fee(self):
        assert compute_rollover(3, 10_000, None, fee_bps=250) == 9_750


class TestHadWinner:
    def test_zero_address_is_no_winner(self):
        assert had_winner(_entry(10, player=ZERO_ADDRESS)) is False

    def test_empty_player_is_no_winner(self):
        assert had_winner(_entry(10, player="")) is False

    def test_threshold(self):
        assert had_winner(_entry(7)) is True
        assert had_winner(_entry(6)) is False
        assert had_winner(_entry(6), win_threshold=6) is True


class TestRolloverRecord:
    def test_record_fields(self):
        record = rollover_record(4, 2000, _entry(3))
        assert record.cycle_id == 4
        assert record.previous_prize_pool == 2000
        assert record.had_winner is False
        assert record.fee_bps == 500
        assert record.rollover_amount == 1900

    def test_first_cycle_record(self):
        record = rollover_record(1, 2000, _entry(9))
        assert record.previous_prize_pool == 0
        assert record.had_winner is False
        assert record.rollover_amount == 0


class TestRolloverCalculator:
    @pytest.mark.asyncio
    async def test_reads_previous_cycle(self):
        reader = AsyncMock()
        reader.get_daily_leaderboard.return_value = [_entry(5), _entry(4)]
        reader.daily_prize_pools.return_value = 3 * ETH

        record = await RolloverCalculator(reader).for_cycle(9)

        reader.get_daily_leaderboard.assert_awaited_once_with(8)
        reader.daily_prize_pools.assert_awaited_once_with(8)
        assert record.rollover_amount == 3 * ETH * 95 // 100
        assert record.had_winner is False

    @pytest.mark.asyncio
    async def test_winner_in_previous_cycle(self):
        reader = AsyncMock()
        reader.get_daily_leaderboard.return_value = [_entry(8)]
        reader.daily_prize_pools.return_value = ETH

        record = await RolloverCalculator(reader).for_cycle(9)
        assert record.had_winner is True
        assert record.rollover_amount == 0

    @pytest.mark.asyncio
    async def test_read_failure_returns_zero(self):
        reader = AsyncMock()
        reader.get_daily_leaderboard.side_effect = ConnectionError("rpc down")

        record = await RolloverCalculator(reader).for_cycle(9)
        assert record.rollover_amount == 0
        assert record.previous_prize_pool == 0

    @pytest.mark.asyncio
    async def test_first_cycle_skips_reads(self):
        reader = AsyncMock()
        record = await RolloverCalculator(reader).for_cycle(1)
        assert record.rollover_amount == 0
        reader.get_daily_leaderboard.assert_not_awaited()
