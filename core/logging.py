"""
Logging setup utility

Shared logging configuration for the web process and operator scripts.
- Console: INFO level
- File: INFO level (TimedRotatingFileHandler, daily)

Usage:
    from core.logging import setup_logging
    setup_logging("web")      # web process
    setup_logging("scripts")  # operator scripts
"""

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.constants import Paths


LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_BACKUP_COUNT = 7  # keep seven days of files

# Loggers that flood the output at DEBUG/INFO
NOISY_LOGGERS = [
    "aiosqlite",      # one line per query
    "httpcore",
    "httpx",
    "asyncio",
]


def get_log_dir(process_name: str) -> Path:
    """Log directory for a process"""
    if process_name == "web":
        return Paths.WEB_LOGS_DIR
    elif process_name == "scripts":
        return Paths.SCRIPTS_LOGS_DIR
    return Paths.LOGS_DIR


def setup_logging(
    process_name: str,
    console_level: int = logging.INFO,
    file_level: int = logging.INFO,
) -> logging.Logger:
    """Initialize logging

    Writes file logs to the per-process directory, rolled daily at midnight.

    Args:
        process_name: process name ("web" or "scripts")
        console_level: console log level (default: INFO)
        file_level: file log level (default: INFO)

    Returns:
        Configured root logger
    """
    log_dir = get_log_dir(process_name)
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / f"{process_name}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # handlers filter

    # avoid duplicate handlers on re-initialization
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_handler = TimedRotatingFileHandler(
        filename=log_file,
        when="midnight",
        interval=1,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.suffix = "%Y-%m-%d"  # web.log.2026-10-19
    file_handler.setLevel(file_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized: {process_name}")
    root_logger.info(f"  - console: {logging.getLevelName(console_level)}")
    root_logger.info(f"  - file: {log_file} ({logging.getLevelName(file_level)}, daily rotation)")
    root_logger.info(f"  - retention: {LOG_FILE_BACKUP_COUNT} days")

    return root_logger