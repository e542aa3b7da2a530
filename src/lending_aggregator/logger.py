"""Logging configuration for the lending aggregator."""

import logging
import os
import sys

# Below DEBUG; exposes per-account decode chatter and HTTP client internals
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3")


class ColoredFormatter(logging.Formatter):
    """Colors the level name of the levels this package emits; others stay plain."""

    LEVEL_COLORS = {
        TRACE: "90",
        logging.DEBUG: "36",
        logging.INFO: "32",
        logging.WARNING: "33",
        logging.ERROR: "31",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        levelname = record.levelname
        record.levelname = f"\033[1;{color}m{levelname}\033[0m"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def setup_logging(level: str | None = None) -> None:
    """Configure root logging.

    Args:
        level: Level name (TRACE, DEBUG, INFO, ...). Falls back to the LOG_LEVEL
            environment variable, then INFO.

    HTTP client loggers stay at WARNING unless the level is TRACE.
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric_level = TRACE if log_level == "TRACE" else getattr(
        logging, log_level, logging.INFO
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        ColoredFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    logging.basicConfig(level=numeric_level, handlers=[handler], force=True)

    noisy_level = TRACE if log_level == "TRACE" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module (usually ``__name__``)."""
    return logging.getLogger(name)
