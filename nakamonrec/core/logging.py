"""Recorder logging: one rotating ``app.log`` per log directory plus the console."""
from __future__ import annotations

import logging
import os
from collections import deque
from logging.handlers import RotatingFileHandler
from typing import List, Optional


LOGGER_NAME = "nakamonrec"
LOG_FILE = "app.log"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5


def log_path(log_dir: Optional[str] = None) -> str:
    return os.path.join(log_dir or os.environ.get("NAKAMON_LOG_DIR", "logs"), LOG_FILE)


def _file_handler(logger: logging.Logger) -> Optional[RotatingFileHandler]:
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler):
            return handler
    return None


def init_logging(log_dir: Optional[str] = None, level: str | int = "INFO") -> logging.Logger:
    """Configure the ``nakamonrec`` logger and return it.

    Safe to call once per runtime: the console handler is reused, the level
    follows the latest call, and the file handler is only replaced when the
    log directory changes. Module loggers (``nakamonrec.*``) propagate here.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    path = os.path.abspath(log_path(log_dir))
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    current = _file_handler(logger)
    if current is None or current.baseFilename != path:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
        handler.setFormatter(fmt)
        logger.addHandler(handler)
        if current is not None:
            logger.removeHandler(current)
            current.close()
    # RotatingFileHandler is itself a StreamHandler
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        logger.addHandler(console)
    for handler in logger.handlers:
        handler.setLevel(level)

    logger.debug("Logging to %s at level %s", path, logging.getLevelName(level))
    return logger


def tail(log_dir: Optional[str] = None, lines: int = 200) -> Optional[List[str]]:
    """Last ``lines`` lines of the current log file, or None before anything was logged."""
    path = log_path(log_dir)
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8", errors="ignore") as fh:
        return list(deque(fh, maxlen=max(0, lines)))
