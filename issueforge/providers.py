"""AI provider adapters.

A provider turns a prompt into text by running an AI CLI inside the project
checkout. Timeouts and transient network failures are retried here with
linear backoff; rate limits (reported with a failed exit) are always passed
up to the caller.
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

from issueforge.process import run_command, retry_call

log = logging.getLogger(__name__)

DEFAULT_PROVIDER_TIMEOUT = 600


@dataclass
class ProviderResult:
    """Output of one provider call."""

    output: str
    duration: int
    model: str
    provider: str


class Provider(ABC):
    """Base class for AI CLI adapters."""

    name = "base"
    command = ""
    default_model = ""

    def __init__(
        self,
        model: Optional[str] = None,
        timeout: int = DEFAULT_PROVIDER_TIMEOUT,
        max_retries: int = 3,
        retry_delay: float = 5,
        runner: Callable = run_command,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.model = model or self.default_model
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.runner = runner
        self.sleep = sleep

    @abstractmethod
    def build_args(self, prompt: str, model: str) -> List[str]:
        """Build the CLI arguments for a prompt."""
        pass

    def build_env(self) -> Optional[dict]:
        """Environment for the CLI process (None inherits ours)."""
        return None

    def execute(
        self,
        prompt: str,
        cwd: Union[str, Path, None] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> ProviderResult:
        """Run the prompt through the CLI.

        Raises:
            RateLimitError: If the provider reported a rate limit
            CommandTimeoutError: If every attempt timed out
            CommandError: For other failures
        """
        model = model or self.model
        args = self.build_args(prompt, model)
        log.info("%s executing with model: %s", self.name, model)
        log.debug("Working directory: %s", cwd)

        started = time.monotonic()
        result = retry_call(
            lambda: self.runner(
                self.command,
                args,
                cwd=cwd,
                timeout=timeout or self.timeout,
                # Model output is free text; only a failed exit is checked
                # for rate-limit signatures.
                check_rate_limit=False,
                env=self.build_env(),
            ),
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            sleep=self.sleep,
        )
        duration = round(time.monotonic() - started)

        log.info("%s completed in %ss", self.name, duration)
        return ProviderResult(
            output=result.stdout,
            duration=duration,
            model=model,
            provider=self.name,
        )


class ClaudeProvider(Provider):
    """Adapter for the Claude Code CLI."""

    name = "claude"
    command = "claude"
    default_model = "sonnet"

    def build_args(self, prompt: str, model: str) -> List[str]:
        return ["--print", "--dangerously-skip-permissions", "--model", model, prompt]

    def build_env(self) -> Optional[dict]:
        return {**os.environ, "NO_COLOR": "1"}


class GeminiProvider(Provider):
    """Adapter for the Gemini CLI."""

    name = "gemini"
    command = "gemini"
    default_model = "pro"

    def build_args(self, prompt: str, model: str) -> List[str]:
        return ["-m", model, prompt]


PROVIDERS = {
    "claude": ClaudeProvider,
    "gemini": GeminiProvider,
}


def create_provider(name: str, model: Optional[str] = None, **kwargs) -> Provider:
    """Create a provider by configuration name.

    Raises:
        ValueError: If the provider is unknown
    """
    try:
        provider_class = PROVIDERS[name]
    except KeyError:
        raise ValueError(f"Unknown AI provider: {name}") from None
    return provider_class(model=model, **kwargs)
