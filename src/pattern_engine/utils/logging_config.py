"""Loguru sink configuration for CLI and batch runs."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from loguru import logger

from pattern_engine.utils.config import LoggingConfig

TEXT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | <level>{message}</level>"
)


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Replace the default Loguru sink with the configured console/file sinks."""
    config = config or LoggingConfig()
    level = os.getenv("PATTERN_ENGINE_LOG_LEVEL", config.level).upper()
    serialize = config.format == "json"

    logger.remove()

    if config.enable_console:
        logger.add(sys.stderr, level=level, format=TEXT_FORMAT, serialize=serialize)

    if config.file:
        target = Path(config.file)
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(target),
            level=level,
            rotation=config.rotation,
            retention=config.retention,
            serialize=serialize,
            enqueue=True,
        )
