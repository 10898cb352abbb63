"""
On-chain read protocol. The contract read layer is an external collaborator;
anything that returns these typed call results can plug into the tracker.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from tracker.decoder import decode
from tracker.models import LeaderboardEntry, OnChainFlag, RawPredictionTuple, SlipPlaced


@dataclass(frozen=True)
class CycleStatus:
    """getCycleStatus(cycleId) result."""
    cycle_id: int
    exists: bool
    state: int  # 0=NotStarted 1=Active 2=Ended 3=Resolved
    end_time: int
    slip_count: int
    has_winner: bool

    @property
    def is_resolved(self) -> bool:
        return self.exists and self.state == 3


@dataclass(frozen=True)
class OnChainSlip:
    """One entry of getUserSlipsWithData(user, cycleId)."""
    slip_id: int
    cycle_id: int
    player: str
    placed_at: int
    predictions: tuple[RawPredictionTuple, ...]
    final_score: int
    correct_count: int
    is_evaluated: bool

    def to_placed(self) -> SlipPlaced:
        """Placement details, so a slip first seen on-chain still gets its predictions."""
        return SlipPlaced(
            slip_id=self.slip_id,
            cycle_id=self.cycle_id,
            user_address=self.player,
            placed_at=self.placed_at,
            predictions=tuple(decode(raw) for raw in self.predictions),
        )

    def to_flag(self) -> OnChainFlag:
        return OnChainFlag(
            slip_id=self.slip_id,
            is_evaluated=self.is_evaluated,
            correct_count=self.correct_count,
            final_score=self.final_score,
            cycle_id=self.cycle_id,
        )


@runtime_checkable
class ChainReader(Protocol):
    """Read-only view of the Oddyssey contract."""

    async def get_user_slips_with_data(self, user: str, cycle_id: int) -> list[OnChainSlip]:
        ...

    async def get_cycle_status(self, cycle_id: int) -> CycleStatus:
        ...

    async def get_daily_leaderboard(self, cycle_id: int) -> list[LeaderboardEntry]:
        """Ranked best first; empty when nobody qualified."""
        ...

    async def daily_prize_pools(self, cycle_id: int) -> int:
        """Prize pool in wei, rollover included."""
        ...
