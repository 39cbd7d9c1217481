# app/utils/logger.py
"""
Centralised logging configuration for the entire application.
Logs to console and to a rotating file, LOG_DIR/LOG_FILE from settings
(default logs/toll.log under the project root).
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from app.config import settings

DEFAULT_LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs")

_configured = False


def log_file_path() -> str:
    """Where the rotating event log lives. Creates the directory."""
    log_dir = settings.LOG_DIR or DEFAULT_LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    return os.path.join(log_dir, settings.LOG_FILE)


def _configure_root_logger():
    global _configured
    if _configured:
        return
    _configured = True

    level = settings.LOG_LEVEL.upper()
    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(fmt)

    # Rotating file handler — keeps last 10 × 5MB log files
    file_handler = RotatingFileHandler(
        filename=log_file_path(),
        maxBytes=5 * 1024 * 1024,
        backupCount=10,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(console)
    root.addHandler(file_handler)

    # httpx logs every camera poll at INFO, SQL echo belongs to DEBUG runs only
    logging.getLogger("httpx").setLevel(logging.WARNING)
    if level != "DEBUG":
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger. Call this at the top of every module."""
    _configure_root_logger()
    return logging.getLogger(name)
