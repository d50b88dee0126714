"""
Category logging for the signal engine.

Every module logs through ``get_logger(__name__)``; the module path picks
one of five category loggers, and each category is written to its own
JSON-lines file per run:

    logs/2024-01-15/signalpro_dev_eng_2024-01-15_3.log

Categories:
- system: startup, shutdown, config, HTTP surface
- engine: formula compilation, EMA updates, rule evaluation
- delivery: websocket server/client, broadcasts, notifications
- data: signal store, database, feeds
- perf: metrics

Each line carries the active ingest cycle id (see trace_context), so one
grep on the id follows a sample from ingest to broadcast.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import re
import sys
from datetime import datetime
from pathlib import Path
from queue import Queue
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from .trace_context import get_cycle_id, get_cycle_pair

LOGGER_PREFIX = "signalpro"

# Category -> file name suffix
CATEGORIES: Dict[str, str] = {
    "system": "sys",
    "engine": "eng",
    "delivery": "dlv",
    "data": "dat",
    "perf": "prf",
}

# First matching prefix wins
MODULE_ROUTING: Tuple[Tuple[str, str], ...] = (
    ("src.domain.signals", "engine"),
    ("src.infrastructure.delivery", "delivery"),
    ("src.infrastructure.notifications", "delivery"),
    ("src.infrastructure.persistence", "data"),
    ("src.infrastructure.feeds", "data"),
    ("migrations", "data"),
    ("src.infrastructure.observability", "perf"),
)

_log_timezone: Optional[ZoneInfo] = None
_listeners: List[logging.handlers.QueueListener] = []
_run_number: Optional[int] = None

# Attributes every LogRecord has; the rest arrived via extra={...}
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


def category_for(module_name: str) -> str:
    """Log category for a module path ("system" when nothing matches)."""
    for prefix, category in MODULE_ROUTING:
        if module_name.startswith(prefix):
            return category
    return "system"


def set_log_timezone(tz: Optional[str]) -> None:
    """Timezone for log timestamps; None or "local" means system local time."""
    global _log_timezone
    _log_timezone = ZoneInfo(tz) if tz and tz.lower() != "local" else None


def log_timestamp() -> str:
    return datetime.now(_log_timezone).isoformat()


class JSONFormatter(logging.Formatter):
    """One JSON object per line: ts, level, cat, cycle, pair, msg, data, exception."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": log_timestamp(),
            "level": record.levelname,
            "cat": record.name.rpartition(".")[2] if record.name.startswith(LOGGER_PREFIX) else "system",
            "cycle": get_cycle_id(),
            "msg": record.getMessage(),
        }
        pair = get_cycle_pair()
        if pair:
            entry["pair"] = pair
        data = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS and not k.startswith("_")}
        if data:
            entry["data"] = data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """``[LEVEL  ] [cycle] message``, coloured by level."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        level = f"[{record.levelname:7}]"
        if self.use_colors:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{level} [{get_cycle_id()}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def get_logger(module_name: str) -> logging.Logger:
    """
    Category logger for a module.

    Example:
        logger = get_logger(__name__)
        logger.info("Strategy registered", extra={"strategy": strategy.id})
    """
    return logging.getLogger(f"{LOGGER_PREFIX}.{category_for(module_name)}")


def _next_run_number(day_dir: Path, env: str, date_str: str) -> int:
    """1 + the highest run number already on disk for this env and day."""
    if not day_dir.exists():
        return 1
    pattern = re.compile(
        rf"^{LOGGER_PREFIX}_{re.escape(env)}_(?:{'|'.join(CATEGORIES.values())})_{re.escape(date_str)}_(\d+)\.log$"
    )
    runs = [int(m.group(1)) for m in (pattern.match(p.name) for p in day_dir.iterdir()) if m]
    return max(runs, default=0) + 1


def setup_category_logging(
    env: str,
    log_dir: str = "./logs",
    level: str = "INFO",
    console: bool = False,
    verbose: bool = False,
    timezone: Optional[str] = None,
) -> Dict[str, Path]:
    """
    Attach file (and optionally console) handlers to every category logger.

    File writes go through a QueueHandler/QueueListener pair so the event
    loop never blocks on disk. Calling it again replaces the previous
    handlers; the run number is fixed for the life of the process.

    Args:
        env: Environment name, part of the file name.
        log_dir: Base directory; files go to ``{log_dir}/{date}/``.
        level: Level for all categories unless ``verbose``.
        console: Also log to stderr.
        verbose: Force DEBUG everywhere.
        timezone: Timestamp timezone name (None/"local" for system time).

    Returns:
        Category name -> log file path.
    """
    global _run_number

    shutdown_logging()
    set_log_timezone(timezone)

    effective = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    date_str = datetime.now().strftime("%Y-%m-%d")
    day_dir = Path(log_dir) / date_str
    day_dir.mkdir(parents=True, exist_ok=True)
    if _run_number is None:
        _run_number = _next_run_number(day_dir, env, date_str)

    files: Dict[str, Path] = {}
    for category, suffix in CATEGORIES.items():
        logger = logging.getLogger(f"{LOGGER_PREFIX}.{category}")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
        logger.setLevel(effective)
        logger.propagate = False

        path = day_dir / f"{LOGGER_PREFIX}_{env}_{suffix}_{date_str}_{_run_number}.log"
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())

        queue: Queue = Queue(-1)
        logger.addHandler(logging.handlers.QueueHandler(queue))
        listener = logging.handlers.QueueListener(queue, file_handler, respect_handler_level=True)
        listener.start()
        _listeners.append(listener)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(ConsoleFormatter(use_colors=sys.stderr.isatty()))
            logger.addHandler(console_handler)

        files[category] = path
    return files


def flush_all_loggers() -> None:
    """Flush every category handler, including the queued file handlers."""
    for category in CATEGORIES:
        for handler in logging.getLogger(f"{LOGGER_PREFIX}.{category}").handlers:
            handler.flush()
    for listener in _listeners:
        for handler in listener.handlers:
            handler.flush()


def shutdown_logging() -> None:
    """Stop the queue listeners; pending records are written first."""
    for listener in _listeners:
        listener.stop()
        for handler in listener.handlers:
            handler.close()
    _listeners.clear()
