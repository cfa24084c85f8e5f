"""Loguru sink setup shared by the CLI and embedding services."""
from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger


def configure_logging(settings, level: str | None = None) -> None:
    """
    Replace the default loguru sink with the configured ones.

    Args:
        settings: Settings instance (log_level, log_file)
        level: Optional override for the stderr sink level
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level or settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )

    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.log_file,
            level=settings.log_level,
            rotation="10 MB",
            retention=5,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        )
