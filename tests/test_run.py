"""
Unit tests for run.py helper behavior.
"""

from argparse import Namespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config import Config
from tracker.models import SlipStatus, SlipView
import run


def _args(**overrides):
    defaults = dict(user="0xabc", once=True, details=False, fixtures=False, json_log=None)
    defaults.update(overrides)
    return Namespace(**defaults)


class TestParseArgs:
    def test_user_required(self):
        with pytest.raises(SystemExit):
            run.parse_args([])

    def test_flags(self):
        args = run.parse_args(["--user", "0xabc", "--once", "--json-log", "out.jsonl"])
        assert args.user == "0xabc"
        assert args.once is True
        assert args.details is False
        assert args.json_log == "out.jsonl"


class TestBuildTracker:
    @pytest.mark.asyncio
    async def test_ws_url_derived_from_api_host(self):
        cfg = Config(_env_file=None, api_host="https://api.example.com", ws_url="")
        tracker, transport, api = run.build_tracker(cfg, _args())
        try:
            assert transport.url == "wss://api.example.com/ws"
            assert transport.max_attempts == cfg.ws_reconnect_max
        finally:
            await api.aclose()

    @pytest.mark.asyncio
    async def test_explicit_ws_url_wins(self):
        cfg = Config(_env_file=None, ws_url="ws://localhost:9000/ws")
        _, transport, api = run.build_tracker(cfg, _args())
        try:
            assert transport.url == "ws://localhost:9000/ws"
        finally:
            await api.aclose()


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_one_snapshot_one_poll(self):
        view = SlipView(slip_id=42, cycle_id=9, status=SlipStatus.PENDING)
        tracker = MagicMock()
        tracker.track_user = AsyncMock(return_value=[view])
        tracker.poller.poll_once = AsyncMock(return_value=1)
        tracker.slips.return_value = [view]

        with patch.object(run, "log_slip") as log_slip:
            views = await run.run_once(tracker, "0xabc", details=True)

        tracker.track_user.assert_awaited_once_with("0xabc", start_polling=False)
        tracker.poller.poll_once.assert_awaited_once()
        log_slip.assert_called_once_with(view, detailed=True)
        assert views == [view]
