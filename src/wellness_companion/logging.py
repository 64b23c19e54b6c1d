"""Logging configuration using Loguru.

Routes Loguru records through a stdlib QueueHandler so console and file
output never block the event loop.
"""

import atexit
import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path

from loguru import logger

from wellness_companion.config.settings import settings

_queue_listener: QueueListener | None = None


def configure_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 7,
) -> None:
    """
    Configure async logging using stdlib QueueHandler + QueueListener.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Defaults to settings.
        log_file: Optional path to log file. If None, only console logging is used.
        max_bytes: Rotate the log file after this many bytes.
        backup_count: Number of rotated files to keep.
    """
    global _queue_listener

    logger.remove()

    level = (log_level or settings.LOG_LEVEL).upper()
    file_path = log_file or settings.LOG_FILE

    formatter = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d | %(levelname)-5s | %(message)s",
        datefmt="%H:%M:%S",
    )

    handlers: list[logging.Handler] = []
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(level)
    handlers.append(console_handler)

    if file_path:
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        handlers.append(file_handler)

    log_queue: queue.SimpleQueue = queue.SimpleQueue()
    queue_handler = QueueHandler(log_queue)

    root = logging.getLogger()
    root.handlers = [queue_handler]
    root.setLevel(level)

    if _queue_listener:
        _queue_listener.stop()

    _queue_listener = QueueListener(log_queue, *handlers, respect_handler_level=True)
    _queue_listener.start()
    atexit.register(_queue_listener.stop)

    def _loguru_sink(message):
        record = message.record
        exc = record.get("exception")
        exc_info = (exc.type, exc.value, exc.traceback) if exc else None
        logging.getLogger(record["name"]).log(
            record["level"].no,
            record["message"],
            exc_info=exc_info,
        )

    logger.add(_loguru_sink, level=level, backtrace=True, diagnose=False)

    for logger_name in ["httpx", "httpcore", "uvicorn.access", "apscheduler"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def format_log_context(kind: str, **fields: object) -> str:
    """
    Format a log context prefix for consistent, human-readable logs.

    Example:
        SYS=checkin USER=default RUN=3f2a STEP=send-summary | step_done
    """
    channel = fields.pop("channel", None)
    component = fields.pop("component", None)

    parts: list[str] = []
    if channel:
        parts.append(f"CH={channel}")
    elif component:
        parts.append(f"SYS={component}")

    key_map = {
        "user": "USER",
        "run": "RUN",
        "step": "STEP",
        "job": "JOB",
        "callback": "CB",
        "status": "STATUS",
    }

    for key, value in fields.items():
        if value is None or value == "":
            continue
        label = key_map.get(key, key.upper())
        parts.append(f"{label}={value}")

    context = " ".join(parts).strip()
    if context:
        return f"{context} | {kind}"
    return str(kind)


def truncate_log_text(text: str | None, limit: int = 200) -> str:
    """Trim long log messages while preserving basic readability."""
    if text is None:
        return ""
    cleaned = " ".join(str(text).split())
    if len(cleaned) <= limit:
        return cleaned
    return f"{cleaned[:limit]}..."


def get_logger(name: str | None = None):
    """
    Get a Loguru logger instance.

    Examples:
        >>> from wellness_companion.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Hello, world!")
    """
    if name:
        return logger.bind(name=name)
    return logger


__all__ = ["configure_logging", "format_log_context", "truncate_log_text", "get_logger", "logger"]
