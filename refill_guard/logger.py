"""
Logging setup.

Configures the package logger once for command-line use. Library modules
only call logging.getLogger(__name__) and never add handlers themselves.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "refill_guard"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(
    log_level: int = logging.WARNING,
    log_file: Optional[str] = None,
    name: str = LOGGER_NAME
) -> logging.Logger:
    """Attach a stderr handler and an optional rotating file handler.

    Args:
        log_level: Level for the logger and its handlers
        log_file: Optional path for a rotating log file (5 MB, 3 backups)
        name: Logger to configure

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # Reuse existing handlers instead of stacking duplicates
    for handler in logger.handlers:
        handler.setLevel(log_level)

    if not any(_is_console_handler(h) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).resolve()
        has_file_handler = any(
            isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_path
            for h in logger.handlers
        )
        if not has_file_handler:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            logger.addHandler(file_handler)

    return logger


def _is_console_handler(handler: logging.Handler) -> bool:
    # FileHandler subclasses StreamHandler
    return isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler)
