#!/usr/bin/env python3
"""
Oddyssey slip tracker -- live status for one user's prediction slips.

Pipeline:
  1. Load the user's slips from the enrichment API
  2. Subscribe the real-time channel (user, per-slip and per-cycle topics)
  3. Poll live evaluation for slips in open cycles
  4. Log every slip whose merged view changes

Usage:
  uv run python run.py --user 0xabc...             # follow until Ctrl-C
  uv run python run.py --user 0xabc... --once      # one snapshot + poll, then exit
  uv run python run.py --user 0xabc... --details   # include per-prediction lines
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from config import load_config, Config
from client.api import EnrichmentClient
from client.topics import TopicRegistry
from client.ws import ChannelTransport, derive_ws_url
from monitor.display import log_slip, print_startup
from monitor.logger import setup_logging
from tracker.models import SlipView
from tracker.service import SlipTracker

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Oddyssey slip tracker")
    parser.add_argument("--user", required=True, help="Wallet address whose slips to track")
    parser.add_argument("--once", action="store_true", help="Load, poll once, print and exit")
    parser.add_argument("--details", action="store_true", help="Log every prediction of a changed slip")
    parser.add_argument("--fixtures", action="store_true", help="Also follow fixture:<id> score topics")
    parser.add_argument("--json-log", type=str, default=None, help="Path to JSON log file for machine-readable output")
    return parser.parse_args(argv)


def build_tracker(cfg: Config, args: argparse.Namespace) -> tuple[SlipTracker, ChannelTransport, EnrichmentClient]:
    transport = ChannelTransport(
        cfg.ws_url or derive_ws_url(cfg.api_host),
        max_attempts=cfg.ws_reconnect_max,
        base_delay=cfg.ws_reconnect_base_sec,
        keepalive_sec=cfg.ws_keepalive_sec,
    )
    api = EnrichmentClient(
        cfg.api_host,
        timeout=cfg.http_timeout_sec,
        page_size=cfg.user_slips_page_size,
    )
    tracker = SlipTracker(
        TopicRegistry(transport),
        api,
        poll_interval_sec=cfg.poll_interval_sec,
        refresh_enrichment=cfg.poll_enrichment,
        follow_fixtures=args.fixtures,
        win_threshold=cfg.win_threshold,
        rollover_fee_bps=cfg.rollover_fee_bps,
    )
    return tracker, transport, api


async def run_once(tracker: SlipTracker, user: str, details: bool) -> list[SlipView]:
    await tracker.track_user(user, start_polling=False)
    await tracker.poller.poll_once()
    views = tracker.slips()
    for view in views:
        log_slip(view, detailed=details)
    logger.info("%d slips", len(views))
    return views


async def run_forever(tracker: SlipTracker, user: str, details: bool) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    tracker.add_listener(lambda view: log_slip(view, detailed=details))
    for view in await tracker.track_user(user):
        log_slip(view, detailed=details)
    await stop.wait()
    logger.info("Shutting down")


async def _main(cfg: Config, args: argparse.Namespace) -> None:
    tracker, transport, api = build_tracker(cfg, args)
    print_startup(cfg, args.user, transport.url)
    try:
        if args.once:
            await run_once(tracker, args.user, args.details)
        else:
            await run_forever(tracker, args.user, args.details)
    finally:
        await tracker.stop()
        await transport.close()
        await api.aclose()
        logger.info("Final stats: %s", tracker.stats)


def main() -> None:
    args = parse_args()
    cfg = load_config()
    log_path = setup_logging(cfg.log_level, json_log_file=args.json_log)
    logger.debug("Verbose log: %s", log_path)
    asyncio.run(_main(cfg, args))


if __name__ == "__main__":
    main()
