"""
Data models for the slip tracker. Plain data; merge and status logic lives
in tracker/merger.py and tracker/status.py.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import ClassVar, Union


class BetType(IntEnum):
    MONEYLINE = 0
    OVER_UNDER = 1
    BTTS = 2
    HALF_TIME = 3
    DOUBLE_CHANCE = 4
    CORRECT_SCORE = 5
    FIRST_GOAL = 6
    HT_FT = 7


BET_TYPE_LABELS: dict[int, str] = {
    BetType.MONEYLINE: "1X2",
    BetType.OVER_UNDER: "Over/Under",
    BetType.BTTS: "BTTS",
    BetType.HALF_TIME: "Half Time",
    BetType.DOUBLE_CHANCE: "Double Chance",
    BetType.CORRECT_SCORE: "Correct Score",
    BetType.FIRST_GOAL: "First Goal",
    BetType.HT_FT: "Half Time/Full Time",
}


def bet_type_label(bet_type: int | None) -> str:
    if bet_type is None:
        return "Unknown"
    return BET_TYPE_LABELS.get(bet_type, "Unknown")


class SlipStatus(Enum):
    PENDING = "pending"
    LIVE = "live"
    WON = "won"
    LOST = "lost"


class PredictionOutcome(Enum):
    PENDING = "pending"
    CORRECT = "correct"
    INCORRECT = "incorrect"


class CorrectnessSource(IntEnum):
    """Who set DecodedPrediction.is_correct. Higher value wins."""
    NONE = 0
    LIVE = 1
    ENRICHMENT = 2
    ONCHAIN = 3


@dataclass(frozen=True)
class RawPredictionTuple:
    """Wire tuple [matchId, betType, selectionHash, scaledOdds]."""
    match_id: int
    bet_type: int
    selection_hash: str  # bytes4 as "0x" hex
    scaled_odds: int  # decimal odds * 1000


@dataclass
class DecodedPrediction:
    match_id: int
    bet_type: int | None
    selection: str
    decimal_odds: float
    bet_type_label: str = "Unknown"
    # Filled by the merger only
    home_team: str | None = None
    away_team: str | None = None
    league_name: str | None = None
    actual_result: str | None = None
    current_score: str | None = None
    match_status: str | None = None
    # None = not confirmed by any source. Never defaulted to False.
    is_correct: bool | None = None
    correctness_source: CorrectnessSource = CorrectnessSource.NONE


@dataclass
class SlipView:
    """Merged user-facing view of one slip. Mutated in place by the merger."""
    slip_id: int
    cycle_id: int = 0
    user_address: str = ""
    placed_at: int = 0
    predictions: list[DecodedPrediction] = field(default_factory=list)
    correct_count: int = 0
    final_score: int = 0
    is_evaluated_on_chain: bool = False
    cycle_resolved: bool = False
    status: SlipStatus = SlipStatus.PENDING
    prize_claimed: bool = False
    prize_rank: int | None = None
    prize_amount: int | None = None
    updated_at: float = field(default_factory=time.time)

    def prediction_for(self, match_id: int) -> DecodedPrediction | None:
        for pred in self.predictions:
            if pred.match_id == match_id:
                return pred
        return None

    @property
    def total_odds(self) -> float:
        """Accumulator odds: product of every prediction's decimal odds."""
        if not self.predictions:
            return 0.0
        return math.prod(p.decimal_odds for p in self.predictions)


@dataclass(frozen=True)
class LeaderboardEntry:
    player: str
    slip_id: int
    final_score: int
    correct_count: int


@dataclass(frozen=True)
class CycleRolloverRecord:
    cycle_id: int
    previous_prize_pool: int  # wei
    had_winner: bool
    fee_bps: int
    rollover_amount: int  # wei


# ---------------------------------------------------------------------------
# Signals. Every source is normalised into one of these before merging.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PredictionUpdate:
    """Live per-match evaluation, from push or poll."""
    match_id: int
    current_score: str | None = None
    actual_result: str | None = None
    is_correct: bool | None = None
    status: str | None = None


@dataclass(frozen=True)
class PredictionSnapshot:
    """Per-prediction record from the enrichment API."""
    match_id: int
    selection: str | None = None
    decimal_odds: float | None = None
    bet_type: int | None = None
    home_team: str | None = None
    away_team: str | None = None
    league_name: str | None = None
    is_correct: bool | None = None
    actual_result: str | None = None
    status: str | None = None
    result: dict | None = None


@dataclass(frozen=True)
class SlipPlaced:
    kind: ClassVar[str] = "slip:placed"
    slip_id: int
    cycle_id: int
    user_address: str = ""
    placed_at: int = 0
    predictions: tuple[DecodedPrediction, ...] = ()


@dataclass(frozen=True)
class SlipEvaluated:
    """On-chain evaluation reported over the push channel."""
    kind: ClassVar[str] = "slip:evaluated"
    slip_id: int
    cycle_id: int
    correct_count: int
    final_score: int
    user_address: str = ""


@dataclass(frozen=True)
class OnChainFlag:
    """Evaluation state read from the contract."""
    kind: ClassVar[str] = "onchain"
    slip_id: int
    is_evaluated: bool
    correct_count: int = 0
    final_score: int = 0
    cycle_id: int | None = None


@dataclass(frozen=True)
class PrizeClaimed:
    kind: ClassVar[str] = "slip:prize_claimed"
    slip_id: int
    cycle_id: int
    rank: int
    prize_amount: int  # wei


@dataclass(frozen=True)
class LiveEvaluation:
    kind: ClassVar[str] = "live_evaluation"
    slip_id: int
    cycle_resolved: bool | None = None
    predictions: tuple[PredictionUpdate, ...] = ()


@dataclass(frozen=True)
class EnrichmentSnapshot:
    kind: ClassVar[str] = "enrichment"
    slip_id: int
    cycle_id: int | None = None
    predictions: tuple[PredictionSnapshot, ...] = ()
    is_evaluated: bool | None = None
    cycle_resolved: bool | None = None
    correct_count: int | None = None
    final_score: int | None = None
    placed_at: int | None = None
    user_address: str | None = None


@dataclass(frozen=True)
class CycleResolved:
    kind: ClassVar[str] = "cycle:resolved"
    cycle_id: int


@dataclass(frozen=True)
class FixtureUpdate:
    kind: ClassVar[str] = "fixture"
    match_id: int
    current_score: str | None = None
    status: str | None = None


SlipSignal = Union[
    SlipPlaced,
    SlipEvaluated,
    OnChainFlag,
    PrizeClaimed,
    LiveEvaluation,
    EnrichmentSnapshot,
]

Signal = Union[SlipSignal, CycleResolved, FixtureUpdate]
