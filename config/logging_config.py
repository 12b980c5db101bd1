"""Logging setup for batch runs: rotating run log, failure log and console."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config.constants import LOG_FILE

FAILURE_LOG_FILE = "failures.log"

# Structured fields passed through ``extra=`` that are worth printing
EXTRA_FIELDS = ("reason", "error_type", "error_code", "retry_delay", "location", "transient")

_configured = False


class ExtraFieldsFormatter(logging.Formatter):
    """Formatter that appends known ``extra=`` fields as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pairs = [
            f"{name}={getattr(record, name)}"
            for name in EXTRA_FIELDS
            if getattr(record, name, None) is not None
        ]
        return f"{line} [{' '.join(pairs)}]" if pairs else line


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter,
                      max_bytes: int, backup_count: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    command: str,
    log_dir: str = "logs",
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> logging.Logger:
    """
    Configure the root logger once per process.

    Logs go to ``<log_dir>/<command>/pipeline.log``; warnings and errors are
    also copied to ``failures.log`` next to it so failed items can be
    reviewed without the per-item noise.

    Args:
        command: CLI command name, used as the log subdirectory
        log_dir: Base logs directory
        level: Level for the run log and console
        max_bytes: Max file size before rotation
        backup_count: Rotated files kept per log

    Returns:
        The root logger
    """
    global _configured

    root_logger = logging.getLogger()
    if _configured:
        return root_logger

    log_path = Path(log_dir) / command
    log_path.mkdir(parents=True, exist_ok=True)

    formatter = ExtraFieldsFormatter(
        "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"
    )

    console_handler = logging.StreamHandler(stream=sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    root_logger.setLevel(level)
    root_logger.addHandler(_rotating_handler(log_path / LOG_FILE, level, formatter, max_bytes, backup_count))
    root_logger.addHandler(
        _rotating_handler(log_path / FAILURE_LOG_FILE, logging.WARNING, formatter, max_bytes, backup_count)
    )
    root_logger.addHandler(console_handler)

    # Provider SDK request logs are noisy at INFO
    for noisy in ("httpx", "openai", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True
    return root_logger
