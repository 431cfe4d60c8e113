"""Tests for working tree reconciliation."""

import shutil
import subprocess
from pathlib import Path
from unittest.mock import Mock

import pytest

from issueforge.git_utils import parse_github_url
from issueforge.process import CommandError
from issueforge.workspace import BACKUP_COMMIT_MESSAGE, WorkspaceError, WorkspaceReconciler

FEATURE = "issue-forge/issue-42"

RECONCILE_CALLS = [
    ("fetch", "origin"),
    ("status", "--porcelain"),
    ("checkout", "main"),
    ("reset", "--hard", "HEAD"),
    ("clean", "-fd"),
    ("rev-parse", "--verify", "--quiet", f"refs/heads/{FEATURE}"),
]


class TestParseGithubUrl:
    """Tests for parse_github_url."""

    @pytest.mark.parametrize("url", [
        "git@github.com:acme/widgets.git",
        "git@github.com-work:acme/widgets.git",
        "https://github.com/acme/widgets",
        "https://github.com/acme/widgets.git\n",
    ])
    def test_parses_owner_and_repo(self, url: str) -> None:
        assert parse_github_url(url) == ("acme", "widgets")

    def test_rejects_non_github(self) -> None:
        with pytest.raises(ValueError, match="Cannot parse GitHub URL"):
            parse_github_url("https://gitlab.com/acme/widgets")


class TestEnsureBranch:
    """Tests for ensure_branch and its creation fallbacks."""

    def test_existing_branch_is_checked_out_directly(self, fake_runner) -> None:
        runner = fake_runner()
        github = Mock()
        workspace = WorkspaceReconciler("/repo", github=github, runner=runner)

        workspace.ensure_branch(FEATURE)

        assert runner.git_calls() == RECONCILE_CALLS + [("checkout", FEATURE)]
        github.get_branch_sha.assert_not_called()

    def test_creates_branch_via_api(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "rev-parse")])
        github = Mock()
        github.get_branch_sha.return_value = "abc123"
        workspace = WorkspaceReconciler("/repo", github=github, runner=runner)

        workspace.ensure_branch(FEATURE)

        github.get_branch_sha.assert_called_once_with("main")
        github.create_remote_branch.assert_called_once_with(FEATURE, "abc123")
        assert runner.git_calls() == RECONCILE_CALLS + [
            ("fetch", "origin"),
            ("checkout", FEATURE),
        ]

    def test_falls_back_to_local_base(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "rev-parse")])
        github = Mock()
        github.get_branch_sha.side_effect = CommandError("api failed")
        workspace = WorkspaceReconciler("/repo", github=github, runner=runner)

        workspace.ensure_branch(FEATURE)

        assert runner.git_calls() == RECONCILE_CALLS + [
            ("checkout", "main"),
            ("pull", "origin", "main"),
            ("checkout", "-b", FEATURE),
        ]

    def test_pull_failure_still_branches_from_local_base(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "rev-parse"), ("git", "pull")])
        workspace = WorkspaceReconciler("/repo", runner=runner)

        workspace.ensure_branch(FEATURE)

        assert runner.git_calls()[-1] == ("checkout", "-b", FEATURE)

    def test_falls_back_to_remote_base(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "rev-parse"), ("git", "checkout", "main")])
        workspace = WorkspaceReconciler("/repo", runner=runner)

        workspace.ensure_branch(FEATURE)

        assert runner.git_calls()[-2:] == [
            ("fetch", "origin", "main"),
            ("checkout", "-b", FEATURE, "--no-track", "origin/main"),
        ]
        # base checkout fell back to tracking origin
        assert ("checkout", "-b", "main", "--track", "origin/main") in runner.git_calls()

    def test_falls_back_to_head(self, fake_runner) -> None:
        runner = fake_runner(fail=[
            ("git", "rev-parse"),
            ("git", "checkout", "main"),
            ("git", "fetch", "origin", "main"),
        ])
        workspace = WorkspaceReconciler("/repo", runner=runner)

        workspace.ensure_branch(FEATURE)

        calls = runner.git_calls()
        start = calls.index(("rev-parse", "--verify", "--quiet", f"refs/heads/{FEATURE}"))
        assert calls[start + 1:] == [
            ("checkout", "main"),
            ("fetch", "origin", "main"),
            ("checkout", "-b", FEATURE),
        ]
        assert ("checkout", "-b", FEATURE, "--no-track", "origin/main") not in calls

    def test_raises_when_every_strategy_fails(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "rev-parse"), ("git", "checkout", "-b", FEATURE)])
        workspace = WorkspaceReconciler("/repo", runner=runner)

        with pytest.raises(WorkspaceError, match=FEATURE):
            workspace.ensure_branch(FEATURE)

        # local base, remote base and HEAD were all attempted
        attempts = [c for c in runner.git_calls() if c[:3] == ("checkout", "-b", FEATURE)]
        assert len(attempts) == 3

    def test_uses_explicit_base(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "rev-parse")])
        github = Mock()
        github.get_branch_sha.return_value = "def456"
        workspace = WorkspaceReconciler("/repo", base_branch="main", github=github, runner=runner)

        workspace.ensure_branch(FEATURE, base="develop")

        github.get_branch_sha.assert_called_once_with("develop")
        assert ("checkout", "develop") in runner.git_calls()

    def test_fetch_failure_is_not_fatal(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "fetch")])
        workspace = WorkspaceReconciler("/repo", runner=runner)

        workspace.ensure_branch(FEATURE)

        assert runner.git_calls()[-1] == ("checkout", FEATURE)


class TestBackup:
    """Tests for backing up uncommitted work."""

    def test_clean_tree_needs_no_backup(self, fake_runner) -> None:
        runner = fake_runner()
        workspace = WorkspaceReconciler("/repo", runner=runner)

        assert workspace.backup_if_dirty() is None
        assert runner.git_calls() == [("status", "--porcelain")]

    def test_dirty_tree_is_committed_to_backup_branch(self, fake_runner) -> None:
        runner = fake_runner(outputs={("git", "status", "--porcelain"): " M app.py\n"})
        workspace = WorkspaceReconciler("/repo", runner=runner, clock=lambda: 1700000000.5)

        name = workspace.backup_if_dirty()

        assert name == "temp-backup-1700000000500"
        assert runner.git_calls() == [
            ("status", "--porcelain"),
            ("checkout", "-b", name),
            ("add", "-A"),
            ("commit", "-m", BACKUP_COMMIT_MESSAGE),
        ]

    def test_backup_failure_is_swallowed(self, fake_runner) -> None:
        runner = fake_runner(
            fail=[("git", "commit")],
            outputs={("git", "status", "--porcelain"): "?? new.txt\n"},
        )
        workspace = WorkspaceReconciler("/repo", runner=runner)

        assert workspace.backup_if_dirty() is None

    def test_backup_happens_before_reset(self, fake_runner) -> None:
        runner = fake_runner(outputs={("git", "status", "--porcelain"): " M app.py\n"})
        workspace = WorkspaceReconciler("/repo", runner=runner, clock=lambda: 1.0)

        workspace.reconcile()

        calls = runner.git_calls()
        assert calls.index(("commit", "-m", BACKUP_COMMIT_MESSAGE)) < calls.index(("reset", "--hard", "HEAD"))


class TestCommitAndPush:
    """Tests for commit_and_push."""

    def test_nothing_to_commit(self, fake_runner) -> None:
        runner = fake_runner()
        workspace = WorkspaceReconciler("/repo", runner=runner)

        assert workspace.commit_and_push("feat: x") is False
        assert runner.git_calls() == [("add", "-A"), ("diff", "--cached", "--quiet")]

    def test_commits_and_pushes_changes(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "diff", "--cached", "--quiet")])
        workspace = WorkspaceReconciler("/repo", runner=runner)

        assert workspace.commit_and_push("feat: x") is True
        assert runner.git_calls()[-2:] == [
            ("commit", "-m", "feat: x"),
            ("push", "-u", "origin", "HEAD"),
        ]

    def test_push_failure_propagates(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "diff"), ("git", "push")])
        workspace = WorkspaceReconciler("/repo", runner=runner)

        with pytest.raises(CommandError):
            workspace.commit_and_push("feat: x")


class TestCleanupBranch:
    """Tests for cleanup_branch."""

    def test_returns_to_base_and_deletes(self, fake_runner) -> None:
        runner = fake_runner()
        workspace = WorkspaceReconciler("/repo", base_branch="develop", runner=runner)

        workspace.cleanup_branch(FEATURE)

        calls = runner.git_calls()
        assert ("checkout", "develop") in calls
        assert calls[-1] == ("branch", "-D", FEATURE)

    def test_delete_failure_is_ignored(self, fake_runner) -> None:
        runner = fake_runner(fail=[("git", "branch", "-D")])
        workspace = WorkspaceReconciler("/repo", runner=runner)

        workspace.cleanup_branch(FEATURE)


def _git(cwd: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    ).stdout


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestWithRealRepository:
    """Reconcile a real repository on disk."""

    @pytest.fixture
    def repo(self, tmp_path: Path) -> Path:
        _git(tmp_path, "init", "-q")
        _git(tmp_path, "checkout", "-q", "-b", "main")
        _git(tmp_path, "config", "user.email", "forge@example.com")
        _git(tmp_path, "config", "user.name", "Forge")
        (tmp_path / "app.py").write_text("print('v1')\n")
        _git(tmp_path, "add", "-A")
        _git(tmp_path, "commit", "-q", "-m", "initial")
        return tmp_path

    def test_local_edits_survive_on_backup_branch(self, repo: Path) -> None:
        (repo / "app.py").write_text("print('local edit')\n")
        (repo / "notes.txt").write_text("scratch\n")
        workspace = WorkspaceReconciler(repo)

        backup = workspace.reconcile()

        assert backup is not None
        assert (repo / "app.py").read_text() == "print('v1')\n"
        assert not (repo / "notes.txt").exists()
        assert _git(repo, "rev-parse", "--abbrev-ref", "HEAD").strip() == "main"
        assert _git(repo, "show", f"{backup}:app.py") == "print('local edit')\n"

    def test_resumes_existing_feature_branch(self, repo: Path) -> None:
        _git(repo, "branch", FEATURE)
        workspace = WorkspaceReconciler(repo)

        workspace.ensure_branch(FEATURE)

        assert _git(repo, "rev-parse", "--abbrev-ref", "HEAD").strip() == FEATURE
