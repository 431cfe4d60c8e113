"""Logging configuration for the issue-forge daemon."""

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from issueforge.config import LoggingConfig

ROOT_LOGGER = "issueforge"
LOG_FILE_NAME = "issue-forge.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024


def configure_logging(
    config: Optional[LoggingConfig] = None, console: Optional[Console] = None
) -> logging.Logger:
    """Attach console (and optionally file) handlers to the package logger.

    Safe to call more than once; previously installed handlers are replaced.
    """
    config = config or LoggingConfig()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        log_time_format="%H:%M:%S",
    )
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(rich_handler)

    if config.file_enabled:
        config.file_path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.file_path / LOG_FILE_NAME,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=config.max_files,
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-5s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    return logger
