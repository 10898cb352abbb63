"""
Enrichment API client. Resolves on-chain slip ids into human-readable match
data and serves live slip evaluation. Pure REST over httpx.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime

import httpx

from tracker.decoder import parse_live_evaluation
from tracker.errors import PollError
from tracker.models import EnrichmentSnapshot, LiveEvaluation, PredictionSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
MAX_PAGES = 20

# Live data must never come from an intermediate cache
_NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _opt_int(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _opt_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_str(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _opt_bool(value) -> bool | None:
    if value is None:
        return None
    return bool(value)


def _placed_at(raw: dict) -> int | None:
    """placed_at as unix seconds; accepts epoch seconds, epoch ms or ISO 8601."""
    value = raw.get("placed_at", raw.get("placedAt", raw.get("created_at")))
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        # Millisecond timestamps are > 1e12
        return int(value / 1000) if value > 1_000_000_000_000 else int(value)
    try:
        return int(datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp())
    except ValueError:
        return None


def parse_prediction(raw: dict) -> PredictionSnapshot | None:
    match_id = _opt_int(raw.get("match_id", raw.get("matchId")))
    if match_id is None:
        return None
    result = raw.get("result")
    return PredictionSnapshot(
        match_id=match_id,
        selection=_opt_str(raw.get("selection", raw.get("prediction"))),
        decimal_odds=_opt_float(raw.get("selected_odd", raw.get("selectedOdd", raw.get("odds")))),
        bet_type=_opt_int(raw.get("bet_type", raw.get("betType"))),
        home_team=_opt_str(raw.get("home_team", raw.get("homeTeam"))),
        away_team=_opt_str(raw.get("away_team", raw.get("awayTeam"))),
        league_name=_opt_str(raw.get("league_name", raw.get("leagueName"))),
        is_correct=_opt_bool(raw.get("is_correct", raw.get("isCorrect"))),
        actual_result=_opt_str(raw.get("actual_result", raw.get("actualResult"))),
        status=_opt_str(raw.get("status", raw.get("match_status"))),
        result=result if isinstance(result, dict) else None,
    )


def parse_user_slip(raw: dict, user: str | None = None) -> EnrichmentSnapshot | None:
    """One /user-slips record -> EnrichmentSnapshot. None if it has no slip id."""
    slip_id = _opt_int(raw.get("slip_id", raw.get("slipId", raw.get("id"))))
    if slip_id is None:
        return None
    predictions = []
    for item in raw.get("predictions") or []:
        if not isinstance(item, dict):
            continue
        pred = parse_prediction(item)
        if pred is not None:
            predictions.append(pred)
    return EnrichmentSnapshot(
        slip_id=slip_id,
        cycle_id=_opt_int(raw.get("cycle_id", raw.get("cycleId"))),
        predictions=tuple(predictions),
        is_evaluated=_opt_bool(raw.get("is_evaluated", raw.get("isEvaluated"))),
        cycle_resolved=_opt_bool(raw.get("cycle_resolved", raw.get("cycleResolved"))),
        correct_count=_opt_int(raw.get("correct_count", raw.get("correctCount"))),
        final_score=_opt_int(raw.get("final_score", raw.get("finalScore"))),
        placed_at=_placed_at(raw),
        user_address=_opt_str(raw.get("player_address", raw.get("playerAddress"))) or user,
    )


class EnrichmentClient:
    """
    Async client for the enrichment API. Every failure surfaces as PollError
    so the poller can keep its stale data and retry next interval.
    """

    def __init__(
        self,
        api_host: str,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = 50,
        http: httpx.AsyncClient | None = None,
    ):
        self._host = api_host.rstrip("/")
        self._page_size = page_size
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._requests = 0
        self._failures = 0

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _get(self, path: str, params: dict | None = None):
        url = f"{self._host}{path}"
        self._requests += 1
        try:
            resp = await self._http.get(url, params=params, headers=_NO_CACHE_HEADERS)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            self._failures += 1
            raise PollError(f"GET {path} failed: {e}") from e

    async def get_user_slips(self, user: str) -> list[EnrichmentSnapshot]:
        """
        All slips for a user, newest page first. Paginates until a short page,
        a page with no new slip ids (backends that ignore offset) or MAX_PAGES.
        """
        snapshots: list[EnrichmentSnapshot] = []
        seen: set[int] = set()
        offset = 0
        for _ in range(MAX_PAGES):
            body = await self._get(
                f"/api/oddyssey/user-slips/{user}",
                {"limit": self._page_size, "offset": offset, "t": int(time.time() * 1000)},
            )
            page = body.get("data", []) if isinstance(body, dict) else body
            if not isinstance(page, list):
                raise PollError(f"Unexpected user-slips payload: {type(page).__name__}")
            added = 0
            for raw in page:
                if not isinstance(raw, dict):
                    continue
                snap = parse_user_slip(raw, user)
                if snap is None or snap.slip_id in seen:
                    continue
                seen.add(snap.slip_id)
                snapshots.append(snap)
                added += 1
            if len(page) < self._page_size or added == 0:
                break
            offset += self._page_size
        else:
            logger.warning("User slips for %s truncated at %d pages", user, MAX_PAGES)
        logger.debug("Fetched %d slips for %s", len(snapshots), user)
        return snapshots

    async def get_live_evaluation(self, slip_id: int) -> LiveEvaluation | None:
        """Live evaluation for one slip; None when the backend has none yet."""
        body = await self._get(f"/api/live-slip-evaluation/{slip_id}")
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            return None
        return parse_live_evaluation(slip_id, data)

    @property
    def stats(self) -> dict:
        return {"requests": self._requests, "failures": self._failures}
