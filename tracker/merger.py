"""
Reconciles push events, enrichment-API snapshots, live polls and on-chain
flags into one SlipView per slip.

Priority, highest first:
  1. on-chain evaluation (SlipEvaluated, OnChainFlag): sticky once true
  2. enrichment snapshot: descriptive fields, correctness of finished matches
  3. live evaluation (push or poll): provisional correctness, current score

Merging is additive. A signal only writes the fields it carries, and a lower
priority signal never overwrites a field a higher priority source already
set. Arrival order across sources is not trusted.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Callable

from tracker.errors import MergeConflict
from tracker.models import (
    CorrectnessSource,
    CycleResolved,
    DecodedPrediction,
    EnrichmentSnapshot,
    FixtureUpdate,
    LiveEvaluation,
    OnChainFlag,
    PredictionSnapshot,
    PrizeClaimed,
    Signal,
    SlipEvaluated,
    SlipPlaced,
    SlipSignal,
    SlipView,
    bet_type_label,
)
from tracker.outcomes import infer_bet_type, is_finished, is_selection_correct
from tracker.status import WIN_THRESHOLD, derive_status

logger = logging.getLogger(__name__)

SlipListener = Callable[[SlipView], None]

_DESCRIPTIVE_FIELDS = ("home_team", "away_team", "league_name", "actual_result")


class EnrichmentMerger:
    """
    Owns every SlipView for the session. Views are created on first signal,
    mutated in place, and never removed.
    """

    def __init__(self, win_threshold: int = WIN_THRESHOLD):
        self._win_threshold = win_threshold
        self._views: dict[int, SlipView] = {}
        # Priority of whatever set correct_count/final_score
        self._count_source: dict[int, CorrectnessSource] = {}
        self._resolved_cycles: set[int] = set()
        self._listeners: list[SlipListener] = []
        self._conflicts = 0

    # -- queries ------------------------------------------------------------

    def get(self, slip_id: int) -> SlipView | None:
        return self._views.get(slip_id)

    def views(self) -> list[SlipView]:
        return sorted(self._views.values(), key=lambda v: v.slip_id)

    def slips_in_cycle(self, cycle_id: int) -> list[SlipView]:
        return [v for v in self.views() if v.cycle_id == cycle_id]

    def unresolved_cycles(self) -> set[int]:
        return {v.cycle_id for v in self._views.values() if v.cycle_id and not v.cycle_resolved}

    def unsettled_slips(self) -> list[SlipView]:
        """Slips whose cycle is open or whose on-chain evaluation is missing."""
        return [
            v for v in self.views()
            if not v.cycle_resolved or not v.is_evaluated_on_chain
        ]

    @property
    def stats(self) -> dict:
        return {
            "slips": len(self._views),
            "resolved_cycles": len(self._resolved_cycles),
            "conflicts": self._conflicts,
        }

    def add_listener(self, listener: SlipListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -- entry points -------------------------------------------------------

    def apply(self, signal: Signal) -> list[SlipView]:
        """Route any signal. Returns every view it touched."""
        if isinstance(signal, CycleResolved):
            return self.merge_cycle(signal)
        if isinstance(signal, FixtureUpdate):
            return self.merge_fixture(signal)
        return [self.merge(signal.slip_id, signal)]

    def merge(self, slip_id: int, signal: SlipSignal) -> SlipView:
        view = self._view(slip_id)

        if isinstance(signal, SlipPlaced):
            self._apply_placed(view, signal)
        elif isinstance(signal, SlipEvaluated):
            self._set_cycle(view, signal.cycle_id)
            self._apply_evaluation(view, signal.correct_count, signal.final_score, CorrectnessSource.ONCHAIN)
        elif isinstance(signal, OnChainFlag):
            if signal.cycle_id is not None:
                self._set_cycle(view, signal.cycle_id)
            # A False flag is stale chain data, never a revert
            if signal.is_evaluated:
                self._apply_evaluation(view, signal.correct_count, signal.final_score, CorrectnessSource.ONCHAIN)
        elif isinstance(signal, PrizeClaimed):
            self._set_cycle(view, signal.cycle_id)
            view.prize_claimed = True
            view.prize_rank = signal.rank
            view.prize_amount = signal.prize_amount
        elif isinstance(signal, EnrichmentSnapshot):
            self._apply_snapshot(view, signal)
        elif isinstance(signal, LiveEvaluation):
            self._apply_live(view, signal)
        else:
            raise TypeError(f"Unhandled signal type {type(signal).__name__}")

        self._refresh(view)
        return view

    def merge_cycle(self, signal: CycleResolved) -> list[SlipView]:
        """Cycle resolution applies to every slip in the cycle, including future ones."""
        self._resolved_cycles.add(signal.cycle_id)
        touched = []
        for view in self._views.values():
            if view.cycle_id == signal.cycle_id and not view.cycle_resolved:
                view.cycle_resolved = True
                self._refresh(view)
                touched.append(view)
        logger.info("Cycle %d resolved (%d slips updated)", signal.cycle_id, len(touched))
        return touched

    def merge_fixture(self, signal: FixtureUpdate) -> list[SlipView]:
        touched = []
        for view in self._views.values():
            pred = view.prediction_for(signal.match_id)
            if pred is None:
                continue
            if signal.current_score is not None:
                pred.current_score = signal.current_score
            self._set_match_status(pred, signal.status)
            self._refresh(view)
            touched.append(view)
        return touched

    # -- signal handlers ----------------------------------------------------

    def _view(self, slip_id: int) -> SlipView:
        view = self._views.get(slip_id)
        if view is None:
            view = SlipView(slip_id=slip_id)
            self._views[slip_id] = view
            self._count_source[slip_id] = CorrectnessSource.NONE
            logger.debug("Tracking new slip %d", slip_id)
        return view

    def _set_cycle(self, view: SlipView, cycle_id: int | None) -> None:
        if not cycle_id:
            return
        if view.cycle_id == 0:
            view.cycle_id = cycle_id
        elif view.cycle_id != cycle_id:
            self._conflict(MergeConflict(view.slip_id, "cycle_id", view.cycle_id, cycle_id))
        if view.cycle_id in self._resolved_cycles:
            view.cycle_resolved = True

    def _resolve_cycle(self, view: SlipView) -> None:
        view.cycle_resolved = True
        if view.cycle_id:
            self._resolved_cycles.add(view.cycle_id)

    def _apply_evaluation(
        self,
        view: SlipView,
        correct_count: int,
        final_score: int,
        source: CorrectnessSource,
    ) -> None:
        current = self._count_source[view.slip_id]
        if source < current:
            if correct_count != view.correct_count:
                self._conflict(MergeConflict(view.slip_id, "correct_count", view.correct_count, correct_count))
            return
        view.is_evaluated_on_chain = True
        view.correct_count = correct_count
        view.final_score = final_score
        self._count_source[view.slip_id] = source

    def _apply_placed(self, view: SlipView, signal: SlipPlaced) -> None:
        self._set_cycle(view, signal.cycle_id)
        if signal.user_address and not view.user_address:
            view.user_address = signal.user_address
        if signal.placed_at and not view.placed_at:
            view.placed_at = signal.placed_at

        for decoded in signal.predictions:
            pred = view.prediction_for(decoded.match_id)
            if pred is None:
                view.predictions.append(dataclasses.replace(decoded))
                continue
            # Enrichment may have arrived first; only fill what it left blank
            if pred.bet_type is None:
                pred.bet_type = decoded.bet_type
                pred.bet_type_label = decoded.bet_type_label
            if pred.selection == "unknown" and decoded.selection != "unknown":
                pred.selection = decoded.selection
            if not pred.decimal_odds:
                pred.decimal_odds = decoded.decimal_odds

    def _apply_snapshot(self, view: SlipView, snap: EnrichmentSnapshot) -> None:
        self._set_cycle(view, snap.cycle_id)
        if snap.user_address and not view.user_address:
            view.user_address = snap.user_address
        if snap.placed_at and not view.placed_at:
            view.placed_at = snap.placed_at
        if snap.cycle_resolved:
            self._resolve_cycle(view)
        if snap.is_evaluated:
            self._apply_evaluation(
                view,
                snap.correct_count if snap.correct_count is not None else view.correct_count,
                snap.final_score if snap.final_score is not None else view.final_score,
                CorrectnessSource.ENRICHMENT,
            )

        for item in snap.predictions:
            pred = self._prediction(view, item.match_id, item.selection, item.bet_type, item.decimal_odds)
            for name in _DESCRIPTIVE_FIELDS:
                value = getattr(item, name)
                if value is not None:
                    setattr(pred, name, value)
            self._set_match_status(pred, item.status)

            if not self._snapshot_finished(item):
                continue
            correct = item.is_correct
            if correct is None:
                correct = is_selection_correct(pred.bet_type, pred.selection, item.result)
            self._set_correct(view, pred, correct, CorrectnessSource.ENRICHMENT)

    def _apply_live(self, view: SlipView, live: LiveEvaluation) -> None:
        if live.cycle_resolved:
            self._resolve_cycle(view)
        for update in live.predictions:
            pred = self._prediction(view, update.match_id)
            if update.current_score is not None:
                pred.current_score = update.current_score
            if update.actual_result is not None and pred.actual_result is None:
                pred.actual_result = update.actual_result
            self._set_match_status(pred, update.status)
            self._set_correct(view, pred, update.is_correct, CorrectnessSource.LIVE)

    # -- field helpers ------------------------------------------------------

    @staticmethod
    def _snapshot_finished(item: PredictionSnapshot) -> bool:
        # The API omits status on older records; a result implies a finished match
        if item.status is not None:
            return is_finished(item.status)
        return item.actual_result is not None or item.result is not None

    def _prediction(
        self,
        view: SlipView,
        match_id: int,
        selection: str | None = None,
        bet_type: int | None = None,
        decimal_odds: float | None = None,
    ) -> DecodedPrediction:
        pred = view.prediction_for(match_id)
        if pred is None:
            if bet_type is None:
                bet_type = infer_bet_type(selection)
            pred = DecodedPrediction(
                match_id=match_id,
                bet_type=bet_type,
                selection=selection or "unknown",
                decimal_odds=decimal_odds or 0.0,
                bet_type_label=bet_type_label(bet_type),
            )
            view.predictions.append(pred)
            return pred
        if pred.selection == "unknown" and selection:
            pred.selection = selection
        if pred.bet_type is None:
            pred.bet_type = bet_type if bet_type is not None else infer_bet_type(pred.selection)
            pred.bet_type_label = bet_type_label(pred.bet_type)
        if not pred.decimal_odds and decimal_odds:
            pred.decimal_odds = decimal_odds
        return pred

    @staticmethod
    def _set_match_status(pred: DecodedPrediction, status: str | None) -> None:
        if status is None:
            return
        # Finished is terminal; a late live frame cannot reopen the match
        if is_finished(pred.match_status) and not is_finished(status):
            return
        pred.match_status = status

    def _set_correct(
        self,
        view: SlipView,
        pred: DecodedPrediction,
        value: bool | None,
        source: CorrectnessSource,
    ) -> None:
        if value is None:
            return
        if source < pred.correctness_source:
            if value != pred.is_correct:
                self._conflict(MergeConflict(
                    view.slip_id, f"is_correct[{pred.match_id}]", pred.is_correct, value,
                ))
            return
        pred.is_correct = value
        pred.correctness_source = source

    def _conflict(self, conflict: MergeConflict) -> None:
        self._conflicts += 1
        logger.debug("Merge conflict resolved by priority: %s", conflict)

    def _refresh(self, view: SlipView) -> None:
        previous = view.status
        view.status = derive_status(view, self._win_threshold)
        view.updated_at = time.time()
        if view.status != previous:
            logger.info(
                "Slip %d (cycle %d): %s -> %s",
                view.slip_id, view.cycle_id, previous.value, view.status.value,
            )
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception as e:
                logger.error("Slip listener failed for slip %d: %s", view.slip_id, e)
