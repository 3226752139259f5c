"""Logging configuration for luxtrace."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

LOG_LEVEL = os.getenv("LUXTRACE_LOG_LEVEL", "WARNING")
LOG_FORMAT = os.getenv("LUXTRACE_LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[Path] = None,
    name: str = "luxtrace",
) -> logging.Logger:
    """
    Attach console (and optional rotating file) handlers to the package logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Defaults to ``LUXTRACE_LOG_LEVEL``.
        log_file: Optional path of a rotating log file.
        name: Logger to configure.

    Returns:
        The configured logger.
    """
    lvl = getattr(logging, (level or LOG_LEVEL).upper(), logging.WARNING)
    logger = logging.getLogger(name)
    logger.setLevel(lvl)
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    for h in logger.handlers:
        h.setLevel(lvl)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(lvl)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
