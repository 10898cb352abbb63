"""
Logging for the slip tracker, with three outputs:
  - stderr: colour-coded console lines; slip status changes highlighted
  - file (always): verbose debug log at logs/track_YYYYMMDD_HHMMSS.log
  - file (optional): single-line JSON (ndjson) for machine consumption

Slip-scoped records may carry `slip_id` and `slip_status` extras
(logger.info(..., extra={"slip_id": 7, "slip_status": "won"})); both
formatters pick them up.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone


_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_RED = "\033[31m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_CYAN = "\033[36m"
_WHITE = "\033[37m"

_LEVEL_STYLES = {
    "DEBUG": (_DIM, "DBG"),
    "INFO": (_CYAN, "INF"),
    "WARNING": (_YELLOW, "WRN"),
    "ERROR": (_RED, "ERR"),
    "CRITICAL": (_RED + _BOLD, "CRT"),
}

_STATUS_COLORS = {
    "won": _GREEN + _BOLD,
    "lost": _RED,
    "live": _YELLOW,
    "pending": _WHITE,
}

_NOISY_LOGGERS = ("httpx", "httpcore", "websockets")


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines: time, level tag, message."""

    def __init__(self, use_color: bool = True):
        super().__init__()
        self._use_color = use_color and _supports_color()

    def format(self, record: logging.LogRecord) -> str:
        ts = time.strftime("%H:%M:%S", time.localtime(record.created))
        color, tag = _LEVEL_STYLES.get(record.levelname, (_WHITE, "???"))
        msg = record.getMessage()
        status = getattr(record, "slip_status", None)

        if self._use_color:
            if status in _STATUS_COLORS:
                msg = f"{_STATUS_COLORS[status]}{msg}{_RESET}"
            line = f"{_DIM}{ts}{_RESET} {color}{tag}{_RESET} {msg}"
        else:
            line = f"{ts} {tag} {msg}"

        if record.exc_info and record.exc_info[1]:
            if self._use_color:
                line += f"\n{_RED}     {record.exc_info[1]}{_RESET}"
            else:
                line += f"\n     {record.exc_info[1]}"
        return line


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in ("slip_id", "slip_status"):
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, separators=(",", ":"))


def setup_logging(
    level: str = "INFO",
    json_log_file: str | None = None,
    log_dir: str | None = None,
) -> str:
    """
    Configure the root logger and return the verbose log file path.
    Root is DEBUG so the file captures everything; the console respects level.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(ConsoleFormatter())
    root.addHandler(console)

    if log_dir is None:
        log_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), "logs")
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_path = os.path.join(log_dir, f"track_{timestamp}.log")

    verbose_handler = logging.FileHandler(log_path, mode="a")
    verbose_handler.setLevel(logging.DEBUG)
    verbose_handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(verbose_handler)

    if json_log_file:
        fh = logging.FileHandler(json_log_file, mode="a")
        fh.setFormatter(JSONFormatter())
        root.addHandler(fh)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_path


def _supports_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
