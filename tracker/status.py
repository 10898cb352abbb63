"""
Slip status derivation. Evaluated fresh on every merge; no stored history.

Only the on-chain evaluation may claim a final win or loss. Live data can
at most refine PENDING into LIVE for display.
"""

from __future__ import annotations

from tracker.models import (
    CorrectnessSource,
    DecodedPrediction,
    PredictionOutcome,
    SlipStatus,
    SlipView,
)

WIN_THRESHOLD = 7  # of 10 predictions


def settlement_status(
    cycle_resolved: bool,
    is_evaluated_on_chain: bool,
    correct_count: int,
    win_threshold: int = WIN_THRESHOLD,
) -> SlipStatus:
    """PENDING until the cycle is resolved and the slip is evaluated on-chain."""
    if not cycle_resolved:
        return SlipStatus.PENDING
    if not is_evaluated_on_chain:
        return SlipStatus.PENDING
    if correct_count >= win_threshold:
        return SlipStatus.WON
    return SlipStatus.LOST


def has_provisional_signal(predictions: list[DecodedPrediction]) -> bool:
    return any(
        p.is_correct is not None and p.correctness_source == CorrectnessSource.LIVE
        for p in predictions
    )


def derive_status(view: SlipView, win_threshold: int = WIN_THRESHOLD) -> SlipStatus:
    status = settlement_status(
        view.cycle_resolved,
        view.is_evaluated_on_chain,
        view.correct_count,
        win_threshold,
    )
    if status == SlipStatus.PENDING and has_provisional_signal(view.predictions):
        return SlipStatus.LIVE
    return status


def prediction_outcome(pred: DecodedPrediction) -> PredictionOutcome:
    if pred.is_correct is None:
        return PredictionOutcome.PENDING
    return PredictionOutcome.CORRECT if pred.is_correct else PredictionOutcome.INCORRECT
