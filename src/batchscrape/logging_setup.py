# src/batchscrape/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "batchscrape.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Console thresholds by logger name prefix; the longest matching prefix wins.
_CONSOLE_THRESHOLDS: dict[str, int] = {
    "batchscrape": logging.DEBUG,
    # One line per admitted/retried URL: too chatty while typing commands.
    "batchscrape.jobs.job_runner": logging.WARNING,
    # Per-task writes log at DEBUG; job create/delete at INFO.
    "batchscrape.jobs.job_store": logging.INFO,
    "py.warnings": logging.ERROR,
}
_DEFAULT_THRESHOLD = logging.ERROR

# Marks handlers installed by setup_logging so a second call replaces only those.
_HANDLER_MARK = "_batchscrape_handler"


def console_threshold(name: str) -> int:
    best = ""
    for prefix in _CONSOLE_THRESHOLDS:
        if (name == prefix or name.startswith(prefix + ".")) and len(prefix) > len(best):
            best = prefix
    return _CONSOLE_THRESHOLDS[best] if best else _DEFAULT_THRESHOLD


class _ConsoleNoiseFilter(logging.Filter):
    """Keep the interactive console readable; the log file still gets everything."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= console_threshold(record.name)


def parse_level(level: int | str, default: int = logging.INFO) -> int:
    """Accept 20 or "info"; unknown names fall back to default."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else default


def setup_logging(
    *,
    log_dir: str | Path = ".local/batchscrape",
    console_level: int | str = logging.INFO,
    file_level: int | str = logging.DEBUG,
) -> Path:
    """
    Filtered console handler on stderr plus a full log file in log_dir.

    Call early, before the first job starts. Calling again replaces the handlers
    from the earlier call and leaves foreign handlers alone. Returns the log file path.
    """
    log_file = Path(log_dir) / LOG_FILE_NAME
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for old in [h for h in root.handlers if getattr(h, _HANDLER_MARK, False)]:
        root.removeHandler(old)
        old.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(parse_level(console_level))
    console.addFilter(_ConsoleNoiseFilter())

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(parse_level(file_level, logging.DEBUG))

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in (console, file_handler):
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARK, True)
        root.addHandler(handler)

    logging.captureWarnings(True)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return log_file
