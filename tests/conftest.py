"""Pytest configuration and fixtures for issueforge tests.

No test talks to GitHub, an AI CLI or the network. External commands are
replaced by ``FakeRunner``, which records every call and fails the ones a
test asks it to.
"""

import logging

import pytest
from click.testing import CliRunner

from issueforge.process import CommandError, CommandResult


class FakeRunner:
    """Stand-in for ``run_command`` that records calls.

    Args:
        fail: Command prefixes (tuples like ``("git", "checkout", "main")``)
            that raise. Map a prefix to an exception instance to raise that
            instead of a plain CommandError.
        outputs: Exact command tuples mapped to stdout
    """

    def __init__(self, fail=None, outputs=None):
        self.calls = []
        if isinstance(fail, dict):
            self.fail = dict(fail)
        else:
            self.fail = {tuple(prefix): None for prefix in (fail or [])}
        self.outputs = outputs or {}

    def __call__(self, command, args, cwd=None, timeout=None, check_rate_limit=True, env=None):
        call = (command, *args)
        self.calls.append(call)
        for prefix, error in self.fail.items():
            if call[: len(prefix)] == tuple(prefix):
                raise error or CommandError(f"{' '.join(call)} failed", command=" ".join(call))
        return CommandResult(stdout=self.outputs.get(call, ""), stderr="", exit_code=0)

    def git_calls(self):
        return [call[1:] for call in self.calls if call[0] == "git"]


@pytest.fixture
def fake_runner():
    """Factory for FakeRunner instances."""
    return FakeRunner


@pytest.fixture(autouse=True)
def _reset_issueforge_logger():
    """Undo handler changes made by configure_logging between tests."""
    logger = logging.getLogger("issueforge")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def cli_runner():
    """Create a Click test runner."""
    return CliRunner()
