"""Working tree reconciliation for Issue Forge.

Brings a project checkout onto the right feature branch, built from the
current remote base branch, without ever silently discarding local work:
uncommitted changes are committed to a ``temp-backup-<timestamp>`` branch
before anything destructive runs.
"""

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Union

from issueforge.git_utils import Runner, has_uncommitted_changes
from issueforge.process import CommandError, CommandResult, run_command

if TYPE_CHECKING:
    from issueforge.github import GitHubClient

log = logging.getLogger(__name__)

GIT_TIMEOUT = 300
BACKUP_PREFIX = "temp-backup-"
BACKUP_COMMIT_MESSAGE = "WIP: automatic backup before issue-forge branch switch"


class WorkspaceError(Exception):
    """Every strategy for creating a feature branch failed."""


class WorkspaceReconciler:
    """Owns all mutations of one project's working tree."""

    def __init__(
        self,
        project_path: Union[str, Path],
        base_branch: str = "main",
        github: Optional["GitHubClient"] = None,
        runner: Runner = run_command,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.project_path = Path(project_path)
        self.base_branch = base_branch
        self.github = github
        self.runner = runner
        self.clock = clock
        self.log = logger or log

    def git(self, *args: str) -> CommandResult:
        return self.runner(
            "git", list(args), cwd=self.project_path, timeout=GIT_TIMEOUT,
            check_rate_limit=False,
        )

    def _try_git(self, *args: str) -> bool:
        try:
            self.git(*args)
            return True
        except CommandError as e:
            self.log.debug("git %s failed: %s", " ".join(args), e)
            return False

    def local_branch_exists(self, name: str) -> bool:
        return self._try_git("rev-parse", "--verify", "--quiet", f"refs/heads/{name}")

    def fetch(self) -> None:
        try:
            self.git("fetch", "origin")
        except CommandError as e:
            self.log.warning("git fetch failed, continuing with local refs: %s", e)

    def backup_if_dirty(self) -> Optional[str]:
        """Commit any uncommitted work to a timestamped backup branch.

        Never raises: a failed backup is logged and processing continues.

        Returns:
            Name of the backup branch, or None if nothing was backed up
        """
        try:
            if not has_uncommitted_changes(self.project_path, runner=self.runner):
                return None
        except CommandError as e:
            self.log.warning("Could not inspect working tree: %s", e)
            return None

        name = f"{BACKUP_PREFIX}{int(self.clock() * 1000)}"
        try:
            self.git("checkout", "-b", name)
            self.git("add", "-A")
            self.git("commit", "-m", BACKUP_COMMIT_MESSAGE)
        except CommandError as e:
            self.log.warning("Failed to back up uncommitted changes to %s: %s", name, e)
            return None

        self.log.warning("Uncommitted changes saved to backup branch %s", name)
        return name

    def checkout_base(self, base: Optional[str] = None) -> bool:
        """Check out the base branch, tracking it from origin if needed."""
        base = base or self.base_branch
        if self._try_git("checkout", base):
            return True
        if self._try_git("checkout", "-b", base, "--track", f"origin/{base}"):
            return True
        self.log.warning("Could not check out base branch %s, staying on current branch", base)
        return False

    def reset_to_clean(self) -> None:
        """Discard tracked modifications and untracked files."""
        try:
            self.git("reset", "--hard", "HEAD")
            self.git("clean", "-fd")
        except CommandError as e:
            self.log.debug("Clean working directory warning: %s", e)

    def reconcile(self, base: Optional[str] = None) -> Optional[str]:
        """Back up local work, then leave a pristine checkout of the base branch.

        Returns:
            Name of the backup branch created, if any
        """
        backup = self.backup_if_dirty()
        self.checkout_base(base)
        self.reset_to_clean()
        return backup

    def ensure_branch(self, feature: str, base: Optional[str] = None) -> None:
        """Make ``feature`` the checked-out branch, creating it from ``base``.

        An existing local feature branch is resumed as-is. Otherwise creation
        falls back through: remote API ref, local base checkout, tracked
        remote base, and finally the current HEAD.

        Raises:
            WorkspaceError: If no strategy could create the branch
        """
        base = base or self.base_branch

        self.fetch()
        self.reconcile(base)

        if self.local_branch_exists(feature):
            self.git("checkout", feature)
            self.log.info("Checked out existing branch: %s", feature)
            return

        strategies = [
            ("remote API", self._create_via_api),
            ("local base", self._create_from_local_base),
            ("tracked remote base", self._create_from_remote_base),
            ("current HEAD", self._create_from_head),
        ]
        for label, strategy in strategies:
            try:
                strategy(feature, base)
            except (CommandError, RuntimeError) as e:
                self.log.warning("Branch creation via %s failed: %s", label, e)
                continue
            self.log.info("Created and checked out branch %s (via %s)", feature, label)
            return

        raise WorkspaceError(f"Could not create branch {feature} from {base}")

    def _create_via_api(self, feature: str, base: str) -> None:
        if self.github is None:
            raise RuntimeError("no GitHub client configured")
        sha = self.github.get_branch_sha(base)
        self.github.create_remote_branch(feature, sha)
        self.git("fetch", "origin")
        self.git("checkout", feature)

    def _create_from_local_base(self, feature: str, base: str) -> None:
        self.git("checkout", base)
        if not self._try_git("pull", "origin", base):
            self.log.warning("Pull of %s failed, branching from local copy", base)
        self.git("checkout", "-b", feature)

    def _create_from_remote_base(self, feature: str, base: str) -> None:
        self.git("fetch", "origin", base)
        self.git("checkout", "-b", feature, "--no-track", f"origin/{base}")

    def _create_from_head(self, feature: str, base: str) -> None:
        self.log.error(
            "Creating %s from current HEAD; it may not be based on %s", feature, base
        )
        self.git("checkout", "-b", feature)

    def commit_and_push(self, message: str) -> bool:
        """Stage everything, commit and push the current branch.

        Returns:
            False if there was nothing to commit (no commit, no push)
        """
        self.git("add", "-A")

        if self._try_git("diff", "--cached", "--quiet"):
            self.log.debug("No changes to commit")
            return False

        self.git("commit", "-m", message)
        self.git("push", "-u", "origin", "HEAD")
        return True

    def cleanup_branch(self, name: str) -> None:
        """Return to the base branch and force-delete ``name``. Best-effort."""
        self.reconcile()
        try:
            self.git("branch", "-D", name)
        except CommandError as e:
            self.log.debug("Failed to delete branch %s: %s", name, e)
