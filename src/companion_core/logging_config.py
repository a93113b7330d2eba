"""Loguru sink setup."""

from __future__ import annotations

import sys

from loguru import logger

from .config import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Replace loguru's default handler with the configured sinks.

    Args:
        config: Logging configuration, uses defaults if None
    """
    config = config or LoggingConfig()
    level = config.level.upper()

    logger.remove()
    logger.add(sys.stderr, level=level)
    if config.log_file:
        logger.add(
            config.log_file,
            level=level,
            rotation=config.rotation,
            encoding="utf-8",
            enqueue=True,
        )
    logger.debug(f"Logging configured: level={level}, file={config.log_file}")


def preview(text: str, limit: int = 50) -> str:
    """Shorten message text for log lines."""
    return text if len(text) <= limit else text[:limit] + "..."
