"""
Logging helpers for the ancient store service.
"""

from __future__ import annotations

import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "ancientstore"
# Libraries underneath the S3 backend that are noisy at DEBUG.
QUIET_LOGGERS = ("urllib3", "minio")


class UTCFormatter(logging.Formatter):
    """ISO-8601 UTC timestamps with the emitting thread, since freezer work runs off the event loop."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)sZ %(levelname)-7s %(name)s [%(threadName)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )


def parse_level(name: str) -> int:
    level = logging.getLevelName(name.strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level {name!r}")
    return level


def setup_logging(log_file: Path | None, *, level: int = logging.INFO, console: bool = True) -> logging.Logger:
    """Attach stdout and rotating file handlers to the ``ancientstore`` logger tree."""

    formatter = UTCFormatter()
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    if console:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root.debug("Logging configured level=%s file=%s", logging.getLevelName(level), log_file)
    return root
