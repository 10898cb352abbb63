"""
Per-prediction correctness from a finished match result.

Used when the enrichment API returns a result for a finished match but no
explicit is_correct flag. Returns None whenever the result cannot decide,
so an unconfirmed prediction never reads as wrong.
"""

from __future__ import annotations

from tracker.models import BetType

FINISHED_STATUSES = frozenset({"finished", "ft", "aet", "pen", "ended", "completed", "resolved"})

_1X2_ALIASES = {"1": "home", "x": "draw", "2": "away"}
_MONEYLINE_CODES = {1: "home", 2: "draw", 3: "away"}
_OVER_UNDER_CODES = {1: "over", 2: "under"}


def is_finished(status: str | None) -> bool:
    if not status:
        return False
    return status.strip().lower() in FINISHED_STATUSES


def infer_bet_type(selection: str | None) -> int | None:
    """Best-effort bet type for API predictions that omit it."""
    if not selection:
        return None
    s = selection.strip().lower()
    if s in _1X2_ALIASES or s in _MONEYLINE_CODES.values():
        return BetType.MONEYLINE
    if s in _OVER_UNDER_CODES.values():
        return BetType.OVER_UNDER
    return None


def _normalise_1x2(selection: str) -> str:
    s = selection.strip().lower()
    return _1X2_ALIASES.get(s, s)


def is_selection_correct(bet_type: int | None, selection: str | None, result: dict | None) -> bool | None:
    """
    Decide a 1X2 or Over/Under selection against a match result.

    Result keys understood: outcome_1x2 ("Home"/"Draw"/"Away"), moneyline
    (1/2/3), outcome_ou25 ("Over"/"Under"), over_under or overUnder (1/2).
    """
    if not result or not selection or selection == "unknown":
        return None

    if bet_type == BetType.MONEYLINE:
        picked = _normalise_1x2(selection)
        outcome = result.get("outcome_1x2")
        if outcome:
            return picked == str(outcome).strip().lower()
        code = result.get("moneyline")
        if isinstance(code, int) and code in _MONEYLINE_CODES:
            return picked == _MONEYLINE_CODES[code]
        return None

    if bet_type == BetType.OVER_UNDER:
        picked = selection.strip().lower()
        outcome = result.get("outcome_ou25")
        if outcome:
            return picked == str(outcome).strip().lower()
        code = result.get("over_under", result.get("overUnder"))
        if isinstance(code, int) and code in _OVER_UNDER_CODES:
            return picked == _OVER_UNDER_CODES[code]
        return None

    return None
