"""
Push-event decoding. Converts compact wire tuples into DecodedPrediction and
loose channel payloads into typed signals. Pure functions, no I/O.

Wire odds are always pre-multiplied by 1000 (1570 -> 1.57). That scaling is
a fixed contract of the channel, not a heuristic.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

from tracker.errors import DecodeError
from tracker.models import (
    BetType,
    CycleResolved,
    DecodedPrediction,
    FixtureUpdate,
    LiveEvaluation,
    PredictionUpdate,
    PrizeClaimed,
    RawPredictionTuple,
    Signal,
    SlipEvaluated,
    SlipPlaced,
    bet_type_label,
)

logger = logging.getLogger(__name__)

ODDS_SCALE = 1000
UNKNOWN_SELECTION = "unknown"

# keccak prefixes of the selection strings, keyed by (hash, bet type)
SELECTION_HASHES: dict[tuple[str, int], str] = {
    ("0x09492a13", BetType.MONEYLINE): "home",
    ("0xc89efdaa", BetType.MONEYLINE): "draw",
    ("0xad7c5bef", BetType.MONEYLINE): "away",
    ("0xe5f3458d", BetType.OVER_UNDER): "under",
    ("0x12345678", BetType.BTTS): "yes",
    ("0x87654321", BetType.BTTS): "no",
}

# Cycle state enum on the contract: 0=NotStarted 1=Active 2=Ended 3=Resolved
CYCLE_STATE_RESOLVED = 3

_SLIP_EVAL_CHANNEL = re.compile(r"^oddyssey:slip:(\d+):evaluation$")
_CYCLE_CHANNEL = re.compile(r"^oddyssey:cycle:(\d+)$")
_FIXTURE_CHANNEL = re.compile(r"^fixture:(.+)$")


def decode_selection(selection_hash: str, bet_type: int) -> str:
    """Static lookup with an 'unknown' fallback. Never raises."""
    return SELECTION_HASHES.get((str(selection_hash).lower(), bet_type), UNKNOWN_SELECTION)


def decode(raw: RawPredictionTuple) -> DecodedPrediction:
    """
    Decode one prediction tuple. Total: unknown hashes decode to 'unknown'
    and unknown bet types to the 'Unknown' label; odds stay valid either way.
    """
    selection = decode_selection(raw.selection_hash, raw.bet_type)
    if selection == UNKNOWN_SELECTION:
        logger.debug(
            "Unknown selection hash %s for bet type %d (match %d)",
            raw.selection_hash, raw.bet_type, raw.match_id,
        )
    return DecodedPrediction(
        match_id=raw.match_id,
        bet_type=raw.bet_type,
        selection=selection,
        decimal_odds=raw.scaled_odds / ODDS_SCALE,
        bet_type_label=bet_type_label(raw.bet_type),
    )


def decode_tuple(wire: Any) -> RawPredictionTuple:
    """
    Build a RawPredictionTuple from the wire list or a dict with the same keys.
    Raises DecodeError if the tuple is structurally malformed.
    """
    try:
        if isinstance(wire, dict):
            match_id = wire.get("matchId", wire.get("match_id"))
            bet_type = wire.get("betType", wire.get("bet_type"))
            selection_hash = wire.get("selectionHash", wire.get("selection_hash", wire.get("selection")))
            odds = wire.get("odds", wire.get("scaledOdds", wire.get("scaled_odds")))
        else:
            match_id, bet_type, selection_hash, odds = wire
        return RawPredictionTuple(
            match_id=int(match_id),
            bet_type=int(bet_type),
            selection_hash=str(selection_hash),
            scaled_odds=int(odds),
        )
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Malformed prediction tuple {wire!r}: {e}") from e


def decode_predictions(wire_list: Any) -> tuple[DecodedPrediction, ...]:
    """Decode a list of wire tuples, dropping (and logging) malformed ones."""
    if not isinstance(wire_list, (list, tuple)):
        return ()
    decoded: list[DecodedPrediction] = []
    for wire in wire_list:
        try:
            decoded.append(decode(decode_tuple(wire)))
        except DecodeError as e:
            logger.warning("Dropping prediction: %s", e)
    return tuple(decoded)


# ---------------------------------------------------------------------------
# Channel payloads -> signals
# ---------------------------------------------------------------------------


def _pick(data: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _opt_bool(value: Any) -> bool | None:
    if value is None:
        return None
    return bool(value)


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _int(data: dict, *keys: str) -> int:
    value = _pick(data, *keys)
    if value is None:
        raise DecodeError(f"Missing {keys[0]} in {sorted(data)}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Bad {keys[0]}={value!r}") from e


def _int_or_zero(data: dict, *keys: str) -> int:
    if _pick(data, *keys) is None:
        return 0
    return _int(data, *keys)


def _slip_placed(channel: str, data: dict) -> Signal:
    return SlipPlaced(
        slip_id=_int(data, "slipId", "slip_id"),
        cycle_id=_int(data, "cycleId", "cycle_id"),
        user_address=str(_pick(data, "userAddress", "user_address", default="")),
        placed_at=_int_or_zero(data, "timestamp"),
        predictions=decode_predictions(data.get("predictions")),
    )


def _slip_evaluated(channel: str, data: dict) -> Signal:
    return SlipEvaluated(
        slip_id=_int(data, "slipId", "slip_id"),
        cycle_id=_int(data, "cycleId", "cycle_id"),
        correct_count=_int(data, "correctCount", "correct_count"),
        final_score=_int_or_zero(data, "finalScore", "final_score"),
        user_address=str(_pick(data, "userAddress", "user_address", default="")),
    )


def _prize_claimed(channel: str, data: dict) -> Signal:
    return PrizeClaimed(
        slip_id=_int(data, "slipId", "slip_id"),
        cycle_id=_int(data, "cycleId", "cycle_id"),
        rank=_int_or_zero(data, "rank"),
        prize_amount=_int_or_zero(data, "prizeAmount", "prize_amount"),
    )


def parse_prediction_update(item: dict) -> PredictionUpdate:
    return PredictionUpdate(
        match_id=_int(item, "matchId", "match_id"),
        current_score=_opt_str(_pick(item, "currentScore", "current_score")),
        actual_result=_opt_str(_pick(item, "actualResult", "actual_result")),
        is_correct=_opt_bool(_pick(item, "isCorrect", "is_correct")),
        status=_opt_str(item.get("status")),
    )


def parse_live_evaluation(slip_id: int, data: dict) -> LiveEvaluation:
    """Live evaluation payload, shared by the push channel and the poller."""
    updates: list[PredictionUpdate] = []
    for item in data.get("predictions") or []:
        if not isinstance(item, dict):
            continue
        try:
            updates.append(parse_prediction_update(item))
        except DecodeError as e:
            logger.warning("Dropping live prediction for slip %d: %s", slip_id, e)
    return LiveEvaluation(
        slip_id=slip_id,
        cycle_resolved=_opt_bool(_pick(data, "cycleResolved", "cycle_resolved")),
        predictions=tuple(updates),
    )


def _live_evaluation(channel: str, data: dict) -> Signal:
    m = _SLIP_EVAL_CHANNEL.match(channel)
    slip_id = int(m.group(1)) if m else _int(data, "slipId", "slip_id")
    return parse_live_evaluation(slip_id, data)


def _cycle_event(channel: str, data: dict) -> Signal | None:
    m = _CYCLE_CHANNEL.match(channel)
    cycle_id = int(m.group(1)) if m else _int(data, "cycleId", "cycle_id")
    resolved = (
        data.get("type") == "cycle:resolved"
        or bool(_pick(data, "resolved", "isResolved", "cycleResolved", default=False))
        or _pick(data, "state") == CYCLE_STATE_RESOLVED
    )
    if not resolved:
        logger.debug("Cycle %d event ignored: %s", cycle_id, data.get("type"))
        return None
    return CycleResolved(cycle_id=cycle_id)


def _fixture_event(channel: str, data: dict) -> Signal | None:
    m = _FIXTURE_CHANNEL.match(channel)
    raw_id = m.group(1) if m else _pick(data, "fixtureId", "fixture_id", "matchId")
    try:
        match_id = int(raw_id)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"Bad fixture id {raw_id!r}") from e
    score = data.get("score")
    current = score.get("current") if isinstance(score, dict) else score
    if current is None and data.get("status") is None:
        return None
    return FixtureUpdate(
        match_id=match_id,
        current_score=_opt_str(current),
        status=_opt_str(data.get("status")),
    )


_BY_TYPE: dict[str, Callable[[str, dict], Signal | None]] = {
    "slip:placed": _slip_placed,
    "slip:evaluated": _slip_evaluated,
    "slip:prize_claimed": _prize_claimed,
    "slip:live_evaluation": _live_evaluation,
    "cycle:resolved": _cycle_event,
    "match:score_updated": _fixture_event,
    "match:status_changed": _fixture_event,
}


def decode_event(channel: str, data: Any) -> Signal | None:
    """
    Normalise one channel payload into a signal. Dispatches on the payload's
    `type` discriminant first, then on the channel shape. Returns None for
    payloads that carry nothing the tracker uses; malformed payloads are
    logged and also return None.
    """
    if not isinstance(data, dict):
        logger.warning("Non-object payload on %s: %r", channel, data)
        return None

    event_type = data.get("type")
    parser = _BY_TYPE.get(event_type) if event_type else None
    if parser is None:
        if _SLIP_EVAL_CHANNEL.match(channel):
            parser = _live_evaluation
        elif _CYCLE_CHANNEL.match(channel):
            parser = _cycle_event
        elif _FIXTURE_CHANNEL.match(channel):
            parser = _fixture_event

    if parser is None:
        logger.debug("Unhandled event type %r on %s", event_type, channel)
        return None

    try:
        return parser(channel, data)
    except DecodeError as e:
        logger.warning("Dropping %s event on %s: %s", event_type or "untyped", channel, e)
        return None
