"""
Integration tests for client/api.py -- enrichment API with mocked HTTP.
"""

import httpx
import pytest
import respx

from client.api import MAX_PAGES, EnrichmentClient, parse_prediction, parse_user_slip
from tracker.errors import PollError


API_HOST = "https://api.example.com"
USER = "0xabc"


def _slip_json(slip_id, cycle_id=9, **overrides):
    raw = {
        "slip_id": slip_id,
        "cycle_id": cycle_id,
        "player_address": USER,
        "placed_at": "2025-01-02T10:00:00Z",
        "is_evaluated": False,
        "cycle_resolved": False,
        "predictions": [
            {
                "match_id": 1001,
                "selection": "1",
                "selected_odd": "1.57",
                "home_team": "Arsenal",
                "away_team": "Chelsea",
                "league_name": "Premier League",
                "status": "NS",
            },
        ],
    }
    raw.update(overrides)
    return raw


class TestParsing:
    def test_parse_user_slip(self):
        snap = parse_user_slip(_slip_json(42))
        assert snap.slip_id == 42
        assert snap.cycle_id == 9
        assert snap.user_address == USER
        assert snap.placed_at == 1735812000
        assert snap.is_evaluated is False
        pred = snap.predictions[0]
        assert pred.match_id == 1001
        assert pred.decimal_odds == pytest.approx(1.57)
        assert pred.home_team == "Arsenal"
        assert pred.is_correct is None

    def test_camel_case_and_epoch_ms(self):
        snap = parse_user_slip({"slipId": "7", "cycleId": 3, "placedAt": 1700000000000, "isEvaluated": True,
                                "correctCount": 8, "finalScore": 420})
        assert snap.slip_id == 7
        assert snap.placed_at == 1700000000
        assert snap.correct_count == 8
        assert snap.final_score == 420

    def test_missing_slip_id(self):
        assert parse_user_slip({"cycle_id": 3}) is None

    def test_missing_fields_stay_none(self):
        """Absent fields must stay None so the merge never erases known data."""
        pred = parse_prediction({"match_id": 5})
        assert pred.home_team is None
        assert pred.is_correct is None
        assert pred.result is None

    def test_user_fallback(self):
        snap = parse_user_slip({"slip_id": 1}, user="0xdef")
        assert snap.user_address == "0xdef"


class TestGetUserSlips:
    @pytest.mark.asyncio
    @respx.mock
    async def test_single_page(self):
        respx.get(f"{API_HOST}/api/oddyssey/user-slips/{USER}").mock(
            return_value=httpx.Response(200, json={"success": True, "data": [_slip_json(42), _slip_json(43)]})
        )
        client = EnrichmentClient(API_HOST)
        try:
            slips = await client.get_user_slips(USER)
        finally:
            await client.aclose()
        assert [s.slip_id for s in slips] == [42, 43]

    @pytest.mark.asyncio
    @respx.mock
    async def test_paginates_until_short_page(self):
        route = respx.get(f"{API_HOST}/api/oddyssey/user-slips/{USER}").mock(side_effect=[
            httpx.Response(200, json={"data": [_slip_json(1), _slip_json(2)]}),
            httpx.Response(200, json={"data": [_slip_json(3)]}),
        ])
        client = EnrichmentClient(API_HOST, page_size=2)
        try:
            slips = await client.get_user_slips(USER)
        finally:
            await client.aclose()

        assert [s.slip_id for s in slips] == [1, 2, 3]
        assert route.call_count == 2
        assert route.calls[1].request.url.params["offset"] == "2"
        assert route.calls[0].request.headers["cache-control"].startswith("no-cache")

    @pytest.mark.asyncio
    @respx.mock
    async def test_stops_when_offset_ignored(self):
        """A backend that ignores offset returns the same full page every time."""
        full_page = [_slip_json(i) for i in range(50)]
        route = respx.get(f"{API_HOST}/api/oddyssey/user-slips/{USER}").mock(
            return_value=httpx.Response(200, json={"data": full_page})
        )
        client = EnrichmentClient(API_HOST, page_size=50)
        try:
            slips = await client.get_user_slips(USER)
        finally:
            await client.aclose()

        assert route.call_count == 2
        assert len(slips) == 50
        assert len({s.slip_id for s in slips}) == 50

    @pytest.mark.asyncio
    @respx.mock
    async def test_page_cap(self):
        counter = iter(range(10_000))

        def next_page(request):
            return httpx.Response(200, json={"data": [_slip_json(next(counter)), _slip_json(next(counter))]})

        route = respx.get(f"{API_HOST}/api/oddyssey/user-slips/{USER}").mock(side_effect=next_page)
        client = EnrichmentClient(API_HOST, page_size=2)
        try:
            slips = await client.get_user_slips(USER)
        finally:
            await client.aclose()

        assert route.call_count == MAX_PAGES
        assert len(slips) == 2 * MAX_PAGES

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_raises_poll_error(self):
        respx.get(f"{API_HOST}/api/oddyssey/user-slips/{USER}").mock(
            return_value=httpx.Response(502)
        )
        client = EnrichmentClient(API_HOST)
        with pytest.raises(PollError):
            await client.get_user_slips(USER)
        assert client.stats == {"requests": 1, "failures": 1}
        await client.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_raises_poll_error(self):
        respx.get(f"{API_HOST}/api/oddyssey/user-slips/{USER}").mock(
            side_effect=httpx.ConnectError("down")
        )
        client = EnrichmentClient(API_HOST)
        with pytest.raises(PollError):
            await client.get_user_slips(USER)
        await client.aclose()


class TestGetLiveEvaluation:
    @pytest.mark.asyncio
    @respx.mock
    async def test_parses_live_evaluation(self):
        respx.get(f"{API_HOST}/api/live-slip-evaluation/42").mock(
            return_value=httpx.Response(200, json={
                "success": True,
                "data": {
                    "cycleResolved": False,
                    "predictions": [
                        {"matchId": 1001, "isCorrect": True, "currentScore": "1-0", "status": "live"},
                    ],
                },
            })
        )
        client = EnrichmentClient(API_HOST)
        try:
            live = await client.get_live_evaluation(42)
        finally:
            await client.aclose()
        assert live.slip_id == 42
        assert live.cycle_resolved is False
        assert live.predictions[0].is_correct is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_data_returns_none(self):
        respx.get(f"{API_HOST}/api/live-slip-evaluation/42").mock(
            return_value=httpx.Response(200, json={"success": False, "data": None})
        )
        client = EnrichmentClient(API_HOST)
        try:
            assert await client.get_live_evaluation(42) is None
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json_raises_poll_error(self):
        respx.get(f"{API_HOST}/api/live-slip-evaluation/42").mock(
            return_value=httpx.Response(200, text="<html>oops</html>")
        )
        client = EnrichmentClient(API_HOST)
        with pytest.raises(PollError):
            await client.get_live_evaluation(42)
        await client.aclose()
