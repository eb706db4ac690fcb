"""Logging configuration and setup."""

import sys
from typing import Optional

from loguru import logger

from livesettings.core.config import Settings, settings as default_settings


def setup_logging(config: Optional[Settings] = None) -> None:
    """Configures Loguru logging for console and optional file output.

    This function removes the default handler and sets up a colorized console
    output to stderr. When ``LOG_TO_FILE`` is enabled a rotated/compressed log
    file is written to the data directory with async (enqueued) writes. Every
    record carries the active request scope id (``-`` outside a scope).

    Args:
        config: Configuration to read levels and paths from; defaults to the
            process-wide settings.
    """
    config = config or default_settings

    logger.remove()  # Remove default handler
    logger.configure(extra={"settings_scope": "-"})

    # Console Handler (Stderr)
    logger.add(
        sys.stderr,
        level=config.LOG_LEVEL,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{extra[settings_scope]}</cyan> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    )

    if config.LOG_TO_FILE:
        # File Handler (Rotated & Compressed)
        log_file = config.DATA_DIR / "logs" / "livesettings.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            rotation=config.LOG_ROTATION,
            retention=config.LOG_RETENTION,
            compression="zip",
            level=config.LOG_LEVEL,
            enqueue=True,  # Async logging
            backtrace=True,
            diagnose=True,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[settings_scope]} | {name}:{function}:{line} - {message}",
        )

    logger.info(f"Logging initialized. Level: {config.LOG_LEVEL}")
