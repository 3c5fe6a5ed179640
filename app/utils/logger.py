# app/utils/logger.py
"""
Centralised logging configuration for the entire application.
Logs to console and to a rotating file in the configured log directory.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from app.config import get_settings

_configured = False


def _configure_root_logger():
    global _configured
    if _configured:
        return
    _configured = True

    settings = get_settings()
    level = settings.LOG_LEVEL.upper()

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(console)

    # Rotating file handler, last 10 files of 5MB
    if settings.LOG_DIR:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=os.path.join(settings.LOG_DIR, "fleet.log"),
            maxBytes=5 * 1024 * 1024,
            backupCount=10,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a named logger. Call this at the top of every module."""
    _configure_root_logger()
    return logging.getLogger(name)
