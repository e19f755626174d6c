"""Loguru sink setup for the CLI."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Replace loguru's default sink with a stderr sink (and optional file)."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        colorize=False,
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention="7 days")
