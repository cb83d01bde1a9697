"""Logging configuration for the feed service.

Console output for humans plus a daily JSONL file that keeps structured
pipeline events (feed fetched, product dropped, run complete) for later
inspection. Every record carries the id of the run it belongs to and the
worker thread that emitted it, so interleaved feed logs can be told apart.
"""

import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = [
    "setup_logging",
    "get_logger",
    "log_pipeline_event",
    "new_run_id",
    "LOG_DIR",
]

LOG_DIR = Path(__file__).parent.parent / "logs"

# Libraries whose INFO/DEBUG chatter drowns the pipeline events
NOISY_LOGGERS = ("urllib3", "charset_normalizer")

_run_id = "-"


def new_run_id() -> str:
    """Start a new run id; it is stamped on every record from now on."""
    global _run_id
    _run_id = uuid.uuid4().hex[:8]
    return _run_id


class RunContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _run_id
        return True


class JSONLFileHandler(logging.Handler):
    """Appends one JSON object per record to `<prefix>_YYYYMMDD.jsonl`."""

    def __init__(self, log_dir: Path, prefix: str = "feedservice"):
        super().__init__()
        log_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir = log_dir
        self.prefix = prefix

    @property
    def path(self) -> Path:
        return self.log_dir / f"{self.prefix}_{datetime.now():%Y%m%d}.jsonl"

    def emit(self, record: logging.LogRecord) -> None:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", "-"),
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        event_type = getattr(record, "event_type", None)
        if event_type:
            entry["event_type"] = event_type
            entry.update(getattr(record, "event_data", {}))
        if record.exc_info:
            entry["exception"] = logging.Formatter().formatException(record.exc_info)

        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
        except OSError:
            self.handleError(record)


class ColoredConsoleHandler(logging.StreamHandler):
    """Colors the level name when writing to a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = self.COLORS.get(record.levelname)
        if color and getattr(self.stream, "isatty", lambda: False)():
            message = message.replace(record.levelname, f"{color}{record.levelname}{self.RESET}", 1)
        return message


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """Configure the 'feedservice' logger.

    The console shows `level` and above; the JSONL file always gets DEBUG so
    dropped records can be traced after the fact.

    Args:
        level: Console logging level (default: INFO)
        log_to_file: Whether to write the JSONL file
        log_to_console: Whether to log to stdout
        log_dir: Custom log directory (default: project logs/)

    Returns:
        Configured 'feedservice' logger
    """
    logger = logging.getLogger("feedservice")
    logger.setLevel(logging.DEBUG if log_to_file else level)
    logger.handlers.clear()

    if log_to_console:
        console_handler = ColoredConsoleHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.addFilter(RunContextFilter())
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
        logger.addHandler(console_handler)

    if log_to_file:
        file_handler = JSONLFileHandler(log_dir or LOG_DIR)
        file_handler.setLevel(logging.DEBUG)
        file_handler.addFilter(RunContextFilter())
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logger


def get_logger(name: str = "feedservice") -> logging.Logger:
    """Logger below the 'feedservice' namespace, e.g. get_logger("queue")."""
    if name == "feedservice" or name.startswith("feedservice."):
        return logging.getLogger(name)
    return logging.getLogger(f"feedservice.{name}")


def log_pipeline_event(
    event_type: str,
    data: Dict[str, Any],
    level: int = logging.INFO,
    logger_name: str = "feedservice",
) -> None:
    """Log a structured pipeline event.

    Args:
        event_type: e.g. 'feed_fetched', 'feed_failed', 'product_dropped', 'run_complete'
        data: Event fields for the JSONL file; a 'message' key becomes the log message
        level: Log level
        logger_name: Logger to use
    """
    fields = dict(data)
    message = fields.pop("message", event_type)
    get_logger(logger_name).log(
        level,
        message,
        extra={"event_type": event_type, "event_data": fields},
    )
