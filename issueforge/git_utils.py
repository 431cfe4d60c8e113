"""Git utility functions for Issue Forge.

Small read-only git queries shared by the GitHub client and the workspace
reconciler. All functions go through ``run_command`` so failures carry the
usual error classification.
"""

import re
from pathlib import Path
from typing import Callable, Union

from issueforge.process import CommandResult, run_command

Runner = Callable[..., CommandResult]

GITHUB_URL_PATTERNS = [
    # git@github.com:owner/repo.git, git@github.com-work:owner/repo.git
    re.compile(r"github\.com(?:-[^:]+)?[:/]([^/]+)/(.+?)(?:\.git)?$"),
    # https://github.com/owner/repo
    re.compile(r"github\.com(?:-[^/]+)?/([^/]+)/(.+?)(?:\.git)?$"),
]


def git(
    cwd: Union[str, Path], *args: str, runner: Runner = run_command
) -> str:
    """Run a git command in ``cwd`` and return stripped stdout."""
    result = runner("git", list(args), cwd=cwd, check_rate_limit=False)
    return result.stdout.strip()


def get_current_branch(cwd: Union[str, Path], runner: Runner = run_command) -> str:
    """Get the current git branch name.

    Raises:
        CommandError: If git command fails
    """
    return git(cwd, "rev-parse", "--abbrev-ref", "HEAD", runner=runner)


def has_uncommitted_changes(
    cwd: Union[str, Path], runner: Runner = run_command
) -> bool:
    """Check for uncommitted changes, tracked or untracked."""
    return bool(git(cwd, "status", "--porcelain", runner=runner))


def get_remote_url(cwd: Union[str, Path], runner: Runner = run_command) -> str:
    """Get the URL of the ``origin`` remote."""
    return git(cwd, "remote", "get-url", "origin", runner=runner)


def parse_github_url(url: str) -> tuple[str, str]:
    """Parse owner and repo from a GitHub remote URL.

    Handles SSH, HTTPS and SSH host aliases like ``github.com-work``.

    Returns:
        Tuple of (owner, repo)

    Raises:
        ValueError: If URL format is unrecognized
    """
    url = url.strip()
    for pattern in GITHUB_URL_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1), match.group(2)

    raise ValueError(f"Cannot parse GitHub URL: {url}")
