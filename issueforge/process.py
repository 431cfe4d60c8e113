"""Command execution for Issue Forge.

Every external process (git, gh, AI CLIs) goes through ``run_command`` so that
failures are classified the same way everywhere:

- ``RateLimitError``: the output matched a rate-limit signature. Callers wait
  and retry; it never counts as a failed attempt.
- ``CommandTimeoutError``: the process was killed after its deadline.
- ``CommandError`` (kind FATAL): any other non-zero exit.
"""

import logging
import re
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 1800
DEFAULT_RETRY_AFTER = 60
MAX_OUTPUT_BYTES = 50 * 1024 * 1024
OUTPUT_EXCERPT_CHARS = 500
WAIT_SLICE_SECONDS = 10

RATE_LIMIT_PATTERNS = [
    re.compile(r"rate limit", re.IGNORECASE),
    re.compile(r"too many requests", re.IGNORECASE),
    re.compile(r"\b429\b"),
    re.compile(r"quota exceeded", re.IGNORECASE),
]

RETRY_AFTER_PATTERNS = [
    re.compile(r"retry after (\d+)", re.IGNORECASE),
    re.compile(r"wait (\d+) seconds", re.IGNORECASE),
]

TRANSIENT_ERROR_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ECONNRESET",
        r"ETIMEDOUT",
        r"ECONNREFUSED",
        r"socket hang up",
        r"network error",
        r"connection reset",
        r"temporarily unavailable",
        r"502 bad gateway",
        r"503 service unavailable",
    )
]


class ErrorKind(str, Enum):
    """Discriminant carried by every command failure."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    FATAL = "fatal"


class CommandError(Exception):
    """A command failed. ``kind`` tells callers how to react."""

    kind = ErrorKind.FATAL

    def __init__(self, message: str, command: str = "", output: str = "") -> None:
        super().__init__(message)
        self.command = command
        self.output = output


class RateLimitError(CommandError):
    """An external dependency asked us to slow down."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        message: str,
        retry_after: int = DEFAULT_RETRY_AFTER,
        command: str = "",
        output: str = "",
    ) -> None:
        super().__init__(message, command=command, output=output)
        self.retry_after = retry_after


class CommandTimeoutError(CommandError):
    """A command was killed after exceeding its deadline."""

    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, elapsed: float, command: str = "") -> None:
        super().__init__(message, command=command)
        self.elapsed = elapsed


@dataclass
class CommandResult:
    """Output of a finished command."""

    stdout: str
    stderr: str
    exit_code: Optional[int]


def is_rate_limited(output: str) -> bool:
    """Check whether command output matches any rate-limit signature."""
    return any(pattern.search(output) for pattern in RATE_LIMIT_PATTERNS)


def extract_retry_after(output: str) -> int:
    """Extract the suggested retry delay from output, defaulting to 60s."""
    for pattern in RETRY_AFTER_PATTERNS:
        match = pattern.search(output)
        if match:
            return int(match.group(1))
    return DEFAULT_RETRY_AFTER


def is_transient_error(error: BaseException) -> bool:
    """Check whether an error is worth retrying locally.

    Timeouts and transient network failures qualify. Rate limits never do:
    they must be handled by whoever coordinates all callers.
    """
    if isinstance(error, RateLimitError):
        return False
    if isinstance(error, CommandTimeoutError):
        return True
    message = str(error)
    if isinstance(error, CommandError):
        message = f"{message}\n{error.output}"
    return any(pattern.search(message) for pattern in TRANSIENT_ERROR_PATTERNS)


def _cap_output(text: Optional[str]) -> str:
    """Limit captured output to MAX_OUTPUT_BYTES, cutting on a line boundary."""
    if not text:
        return ""
    if len(text) <= MAX_OUTPUT_BYTES:
        return text
    cut = text.rfind("\n", 0, MAX_OUTPUT_BYTES)
    if cut == -1:
        cut = MAX_OUTPUT_BYTES
    return text[: cut + 1]


def run_command(
    command: str,
    args: list[str],
    cwd: Optional[Union[str, Path]] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    check_rate_limit: bool = True,
    env: Optional[dict[str, str]] = None,
) -> CommandResult:
    """Run an external command and classify its outcome.

    Args:
        command: Executable name (e.g. "git", "gh", "claude")
        args: Argument list
        cwd: Working directory
        timeout: Deadline in seconds (None for no deadline)
        check_rate_limit: When False, rate-limit signatures are only checked
            on failed commands. Use for reads that return user-authored text.
        env: Full environment for the child process (inherits when None)

    Returns:
        CommandResult with stdout, stderr and exit code

    Raises:
        RateLimitError: If the output matches a rate-limit signature
        CommandTimeoutError: If the command exceeded its deadline
        CommandError: For any other non-zero exit
    """
    display = f"{command} {' '.join(args)}"
    logger.debug("Executing: %s...", display[:100])

    started = time.monotonic()
    try:
        completed = subprocess.run(
            [command] + args,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            stdin=subprocess.DEVNULL,
            env=env,
        )
    except subprocess.TimeoutExpired as e:
        elapsed = time.monotonic() - started
        raise CommandTimeoutError(
            f"Command timed out after {elapsed:.0f}s: {command}",
            elapsed=elapsed,
            command=display,
        ) from e
    except OSError as e:
        raise CommandError(f"Failed to execute {command}: {e}", command=display) from e

    stdout = _cap_output(completed.stdout)
    stderr = _cap_output(completed.stderr)
    output = stdout + stderr
    failed = completed.returncode is not None and completed.returncode != 0

    if (check_rate_limit or failed) and is_rate_limited(output):
        raise RateLimitError(
            f"Rate limit hit for {command}",
            retry_after=extract_retry_after(output),
            command=display,
            output=output[:OUTPUT_EXCERPT_CHARS],
        )

    if failed:
        raise CommandError(
            f"Command failed with exit code {completed.returncode}: "
            f"{output[:OUTPUT_EXCERPT_CHARS]}",
            command=display,
            output=output[:OUTPUT_EXCERPT_CHARS],
        )

    return CommandResult(stdout=stdout, stderr=stderr, exit_code=completed.returncode)


def wait_for_rate_limit(
    seconds: int,
    sleep: Callable[[float], None] = time.sleep,
    on_progress: Optional[Callable[[int], None]] = None,
) -> None:
    """Block for ``seconds``, reporting the remaining time every 10 seconds.

    Args:
        seconds: Total time to wait
        sleep: Sleep function (injectable for tests)
        on_progress: Called with the remaining seconds after each slice
    """
    logger.warning("Rate limit hit. Waiting %s seconds...", seconds)

    remaining = seconds
    while remaining > 0:
        chunk = min(remaining, WAIT_SLICE_SECONDS)
        sleep(chunk)
        remaining -= chunk
        if remaining > 0:
            logger.info("Rate limit: %ss remaining...", remaining)
        if on_progress is not None:
            on_progress(remaining)

    logger.info("Rate limit wait complete. Resuming...")


def retry_call(
    fn: Callable[[], T],
    max_retries: int = 3,
    retry_delay: float = 5,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` with linear backoff on timeouts and transient errors.

    Args:
        fn: Zero-argument callable to invoke
        max_retries: Total number of attempts
        retry_delay: Base delay; attempt N waits ``retry_delay * N``
        sleep: Sleep function (injectable for tests)

    Returns:
        Whatever ``fn`` returns

    Raises:
        RateLimitError: Immediately, without retrying
        Exception: The last error once attempts are exhausted, or any
            non-transient error immediately
    """
    attempt = 1
    while True:
        try:
            return fn()
        except RateLimitError:
            raise
        except Exception as e:
            if not is_transient_error(e) or attempt >= max_retries:
                raise
            delay = retry_delay * attempt
            logger.warning(
                "Attempt %s/%s failed (%s). Retrying in %ss...",
                attempt, max_retries, e, delay,
            )
            sleep(delay)
            attempt += 1
