"""
Console output for the slip tracker.

Pure formatting functions plus thin log wrappers. All data arrives via
arguments.
"""

from __future__ import annotations

import logging

from config import Config
from tracker.models import DecodedPrediction, PredictionOutcome, SlipStatus, SlipView
from tracker.status import prediction_outcome

logger = logging.getLogger(__name__)

_MID = "│"  # │
_DASH = "─"  # ─

_OUTCOME_MARKS = {
    PredictionOutcome.CORRECT: "✓",  # ✓
    PredictionOutcome.INCORRECT: "✗",  # ✗
    PredictionOutcome.PENDING: "·",  # ·
}

_STATUS_LABELS = {
    SlipStatus.PENDING: "PENDING",
    SlipStatus.LIVE: "LIVE",
    SlipStatus.WON: "WON",
    SlipStatus.LOST: "LOST",
}

_MAX_TEAM_LEN = 18


def _truncate(text: str, length: int = _MAX_TEAM_LEN) -> str:
    if len(text) <= length:
        return text
    return text[: length - 1] + "…"


def outcome_counts(view: SlipView) -> dict[PredictionOutcome, int]:
    counts = {outcome: 0 for outcome in PredictionOutcome}
    for pred in view.predictions:
        counts[prediction_outcome(pred)] += 1
    return counts


def format_slip(view: SlipView) -> str:
    """e.g. 'Slip #42  cycle 9  LIVE     6/10 correct  odds 57.31x  [✓6 ✗1 ·3]'."""
    counts = outcome_counts(view)
    marks = " ".join(f"{_OUTCOME_MARKS[o]}{n}" for o, n in counts.items())
    if view.is_evaluated_on_chain:
        score = f"{view.correct_count}/{len(view.predictions)} correct"
    else:
        score = f"{len(view.predictions)} picks"
    line = (
        f"Slip #{view.slip_id}  cycle {view.cycle_id}  "
        f"{_STATUS_LABELS[view.status]:<7}  {score}  "
        f"odds {view.total_odds:.2f}x  [{marks}]"
    )
    if view.prize_claimed:
        line += f"  prize claimed (rank {view.prize_rank})"
    return line


def format_prediction(pred: DecodedPrediction) -> str:
    mark = _OUTCOME_MARKS[prediction_outcome(pred)]
    if pred.home_team and pred.away_team:
        fixture = f"{_truncate(pred.home_team)} v {_truncate(pred.away_team)}"
    else:
        fixture = f"match {pred.match_id}"
    line = f"{mark} {fixture}  {pred.bet_type_label}: {pred.selection} @ {pred.decimal_odds:.2f}"
    if pred.current_score:
        line += f"  ({pred.current_score})"
    return line


def log_slip(view: SlipView, detailed: bool = False) -> None:
    logger.info(
        format_slip(view),
        extra={"slip_id": view.slip_id, "slip_status": view.status.value},
    )
    if detailed:
        for pred in view.predictions:
            logger.info("  %s %s", _MID, format_prediction(pred))


def print_startup(cfg: Config, user: str, ws_url: str) -> None:
    logger.info(_DASH * 60)
    logger.info("%s user     %s", _MID, user)
    logger.info("%s channel  %s", _MID, ws_url)
    logger.info("%s api      %s", _MID, cfg.api_host)
    logger.info(
        "%s poll %.0fs  win >= %d  rollover fee %d bps",
        _MID, cfg.poll_interval_sec, cfg.win_threshold, cfg.rollover_fee_bps,
    )
    logger.info(_DASH * 60)
