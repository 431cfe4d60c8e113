"""Shared utilities for CLI modules."""

import sys
from pathlib import Path
from typing import Optional, Tuple

from rich.console import Console

from issueforge.config import Config, ConfigError, load_config
from issueforge.logging_setup import configure_logging
from issueforge.notifications import NotificationService
from issueforge.processor import IssueProcessor
from issueforge.providers import create_provider

# Shared Rich console instance for all CLI modules
console = Console()


def load_config_or_exit(config_path: Optional[str]) -> Tuple[Config, Path]:
    """Load configuration, printing the error and exiting 1 on failure."""
    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


def build_processor(config: Config) -> Tuple[IssueProcessor, NotificationService]:
    """Wire provider, notifications and processor from configuration."""
    settings = config.global_
    configure_logging(config.logging, console=Console(stderr=True))

    provider = create_provider(
        settings.ai_provider,
        model=settings.model,
        timeout=settings.command_timeout,
        max_retries=settings.max_retries,
        retry_delay=settings.retry_delay,
    )
    notifier = NotificationService(config.notifications)
    processor = IssueProcessor(
        provider,
        max_iterations=settings.max_iterations,
        notifier=notifier,
    )
    return processor, notifier


__all__ = [
    "console",
    "load_config_or_exit",
    "build_processor",
]
