"""
Configure logging for the application.

This module provides a consistent logging configuration across the entire
application, ensuring log messages are formatted correctly and directed
to the appropriate outputs (console, file, etc.).

Module loggers are created at import time, before the application config is
loaded, so the defaults below are read straight from the environment. The
entry point passes the loaded ``LoggingConfig`` explicitly.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from edgerelay.config.constants import LOGGER_NAME
from edgerelay.config.env_loader import safe_convert
from edgerelay.config.models import LoggingConfig, LogLevel


def _level_from_env() -> LogLevel:
    try:
        return LogLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    except ValueError:
        return LogLevel.INFO


def default_logging_config() -> LoggingConfig:
    """Logging settings taken from the environment."""
    return LoggingConfig(
        level=_level_from_env(),
        format=os.getenv("LOG_FORMAT", LoggingConfig.format),
        log_dir=Path(os.getenv("LOG_DIR", "logs")),
        log_filename=os.getenv("LOG_FILENAME", LoggingConfig.log_filename),
        max_log_size=safe_convert(
            os.getenv("LOG_MAX_SIZE"), int, LoggingConfig.max_log_size
        ),
        backup_count=safe_convert(
            os.getenv("LOG_BACKUP_COUNT"), int, LoggingConfig.backup_count
        ),
        console_output=safe_convert(os.getenv("LOG_CONSOLE_OUTPUT"), bool, True),
        file_output=safe_convert(os.getenv("LOG_FILE_OUTPUT"), bool, True),
    )


def configure_logging(
    name: str = LOGGER_NAME, config: Optional[LoggingConfig] = None
) -> logging.Logger:
    """
    Configure a named logger with console and rotating file handlers.

    Args:
        name: Logger name
        config: Settings to apply; read from the environment when omitted

    Returns:
        logging.Logger: The configured logger instance
    """
    config = config or default_logging_config()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.level.value, logging.INFO))

    # Remove existing handlers if any
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(config.format)

    if config.console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if config.file_output:
        try:
            config.log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                config.log_dir / config.log_filename,
                maxBytes=config.max_log_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not set up file logging: {e}")

    # Prevent log propagation to root logger
    logger.propagate = False

    return logger
