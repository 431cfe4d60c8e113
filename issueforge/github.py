"""GitHub integration for Issue Forge.

All calls go through the GitHub CLI (``gh``), scoped to the repository that
the project's ``origin`` remote points at.
"""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from issueforge.git_utils import Runner, get_remote_url, parse_github_url
from issueforge.process import CommandError, RateLimitError, run_command

log = logging.getLogger(__name__)

BRANCH_PREFIX = "issue-forge/issue-"
LABEL_IN_PROGRESS = "issue-forge:in-progress"
LABEL_NEEDS_HUMAN = "issue-forge:needs-human"

ISSUE_FIELDS = "number,title,body,url,labels,createdAt"
PR_FIELDS = "number,title,body,url,headRefName"


def branch_name_for_issue(issue_number: int) -> str:
    """Feature branch name for an issue."""
    return f"{BRANCH_PREFIX}{issue_number}"


class GitHubError(CommandError):
    """A gh command failed for a reason other than rate limiting."""


@dataclass(frozen=True)
class Issue:
    """GitHub issue information."""

    number: int
    title: str
    body: str = ""
    url: str = ""
    labels: List[str] = field(default_factory=list)
    created_at: str = ""

    def has_label(self, label: str) -> bool:
        return label in self.labels


@dataclass
class PullRequest:
    """GitHub pull request information."""

    number: int
    title: str
    url: str
    branch: str
    body: str = ""


@dataclass
class ExistingPR:
    """Result of looking for a pull request linked to an issue."""

    exists: bool
    pr: Optional[PullRequest] = None


def ensure_gh_cli() -> None:
    """Ensure gh CLI is installed and authenticated.

    Raises:
        RuntimeError: If gh not found or not authenticated
    """
    if not shutil.which("gh"):
        raise RuntimeError(
            "GitHub CLI (gh) not found.\n\n"
            "Install: https://cli.github.com/\n"
        )

    result = subprocess.run(
        ["gh", "auth", "status"],
        capture_output=True,
        text=True,
    )

    if result.returncode != 0:
        raise RuntimeError(
            "Not authenticated with GitHub.\n\n"
            "Run: gh auth login\n"
        )


def _issue_from_json(data: dict) -> Issue:
    return Issue(
        number=data["number"],
        title=data.get("title", ""),
        body=data.get("body") or "",
        url=data.get("url", ""),
        labels=[label["name"] for label in data.get("labels", [])],
        created_at=data.get("createdAt", ""),
    )


def _pr_from_json(data: dict) -> PullRequest:
    return PullRequest(
        number=data["number"],
        title=data.get("title", ""),
        url=data.get("url", ""),
        branch=data.get("headRefName", ""),
        body=data.get("body") or "",
    )


class GitHubClient:
    """GitHub operations for one project checkout."""

    def __init__(
        self,
        project_path: Union[str, Path],
        base_branch: str = "main",
        runner: Runner = run_command,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.project_path = Path(project_path)
        self.base_branch = base_branch
        self.runner = runner
        self.log = logger or log
        self.owner: Optional[str] = None
        self.repo: Optional[str] = None

    @property
    def repo_slug(self) -> str:
        if not self.owner or not self.repo:
            raise RuntimeError("GitHubClient used before initialize()")
        return f"{self.owner}/{self.repo}"

    def initialize(self) -> None:
        """Resolve owner/repo from the project's origin remote."""
        url = get_remote_url(self.project_path, runner=self.runner)
        self.owner, self.repo = parse_github_url(url)
        self.log.debug("GitHub client initialized for %s", self.repo_slug)

    def gh(self, args: List[str], check_rate_limit: bool = True) -> str:
        """Run a gh command in the project directory.

        Raises:
            RateLimitError: If GitHub rate limited the call
            GitHubError: If the command failed otherwise
        """
        try:
            result = self.runner(
                "gh", args, cwd=self.project_path, check_rate_limit=check_rate_limit
            )
        except RateLimitError:
            raise
        except CommandError as e:
            raise GitHubError(
                f"GitHub CLI command failed: {e}", command=e.command, output=e.output
            ) from e
        return result.stdout.strip()

    def _gh_json(self, args: List[str]) -> list:
        # Payloads contain user-authored text, so only failures are checked
        # for rate-limit signatures.
        output = self.gh(args, check_rate_limit=False)
        if not output:
            return []
        return json.loads(output)

    def fetch_open_issues(self) -> List[Issue]:
        """List open issues, oldest first. Pull requests are excluded."""
        data = self._gh_json([
            "issue", "list",
            "--repo", self.repo_slug,
            "--state", "open",
            "--limit", "100",
            "--json", ISSUE_FIELDS,
        ])
        issues = [_issue_from_json(item) for item in data]
        return sorted(issues, key=lambda issue: issue.number)

    def get_issue(self, issue_number: int) -> Issue:
        output = self.gh([
            "issue", "view", str(issue_number),
            "--repo", self.repo_slug,
            "--json", ISSUE_FIELDS,
        ], check_rate_limit=False)
        return _issue_from_json(json.loads(output))

    def has_existing_pr(self, issue_number: int) -> ExistingPR:
        """Check whether an open PR already addresses an issue.

        First looks for a PR from the issue's feature branch, then falls back
        to any open PR whose title or body mentions ``#<number>``.
        """
        by_branch = self._gh_json([
            "pr", "list",
            "--repo", self.repo_slug,
            "--state", "open",
            "--head", branch_name_for_issue(issue_number),
            "--json", PR_FIELDS,
        ])
        if by_branch:
            return ExistingPR(exists=True, pr=_pr_from_json(by_branch[0]))

        all_prs = self._gh_json([
            "pr", "list",
            "--repo", self.repo_slug,
            "--state", "open",
            "--limit", "100",
            "--json", PR_FIELDS,
        ])
        needle = f"#{issue_number}"
        for item in all_prs:
            if needle in item.get("title", "") or needle in (item.get("body") or ""):
                return ExistingPR(exists=True, pr=_pr_from_json(item))

        return ExistingPR(exists=False)

    def add_label(self, issue_number: int, label: str) -> None:
        """Add a label to an issue, creating the label if needed. Best-effort."""
        args = ["issue", "edit", str(issue_number), "--repo", self.repo_slug, "--add-label", label]
        try:
            self.gh(args)
            return
        except CommandError as e:
            self.log.debug("Failed to add label %s to #%s: %s", label, issue_number, e)

        try:
            self.gh(["label", "create", label, "--repo", self.repo_slug, "--force"])
            self.gh(args)
        except CommandError as e:
            self.log.debug("Failed to add label %s to #%s: %s", label, issue_number, e)

    def remove_label(self, issue_number: int, label: str) -> None:
        """Remove a label from an issue. Best-effort."""
        try:
            self.gh([
                "issue", "edit", str(issue_number),
                "--repo", self.repo_slug,
                "--remove-label", label,
            ])
        except CommandError as e:
            self.log.debug("Failed to remove label %s from #%s: %s", label, issue_number, e)

    def add_issue_comment(self, issue_number: int, body: str) -> None:
        self.gh([
            "issue", "comment", str(issue_number),
            "--repo", self.repo_slug,
            "--body", body,
        ])

    def get_branch_sha(self, branch: str) -> str:
        """Resolve a remote branch's head commit through the API."""
        return self.gh([
            "api", f"repos/{self.repo_slug}/git/ref/heads/{branch}",
            "--jq", ".object.sha",
        ])

    def create_remote_branch(self, branch: str, sha: str) -> None:
        """Create ``refs/heads/<branch>`` on GitHub pointing at ``sha``."""
        self.gh([
            "api", f"repos/{self.repo_slug}/git/refs",
            "-f", f"ref=refs/heads/{branch}",
            "-f", f"sha={sha}",
        ])

    def create_pull_request(
        self, title: str, body: str, branch: str, base: Optional[str] = None
    ) -> PullRequest:
        """Create a pull request.

        Returns:
            Created PullRequest object
        """
        output = self.gh([
            "pr", "create",
            "--repo", self.repo_slug,
            "--title", title,
            "--body", body,
            "--base", base or self.base_branch,
            "--head", branch,
        ])

        # gh prints the PR URL last
        pr_url = output.strip().splitlines()[-1].strip()
        pr_number = int(pr_url.rstrip("/").split("/")[-1])

        self.log.info("Created PR #%s: %s", pr_number, pr_url)
        return PullRequest(number=pr_number, title=title, url=pr_url, branch=branch, body=body)
