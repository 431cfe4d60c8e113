"""Drive one issue through the pipeline until approval or escalation.

Per issue: label it in-progress, prepare its feature branch, then run the
five-stage pipeline up to ``max_iterations`` times. An approved iteration ends
in a pull request; running out of iterations ends in an escalation comment
and the needs-human label. Rate limits pause and retry the same iteration
without using up the budget. Any other error removes the in-progress label
and propagates.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from issueforge.agents import Agent, PreviousFailure, StageContext, create_agents
from issueforge.audit_log import AuditLog
from issueforge.github import (
    LABEL_IN_PROGRESS,
    LABEL_NEEDS_HUMAN,
    GitHubClient,
    Issue,
    branch_name_for_issue,
)
from issueforge.process import RateLimitError, wait_for_rate_limit
from issueforge.state_machine import ProcessingStateMachine
from issueforge.workspace import WorkspaceReconciler

if TYPE_CHECKING:
    from issueforge.config import ProjectConfig
    from issueforge.notifications import NotificationService
    from issueforge.providers import Provider

log = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_ESCALATED = "escalated"


@dataclass
class ProcessingResult:
    """Terminal outcome of processing an issue."""

    status: str
    issue_number: int
    iterations: int
    pr_number: Optional[int] = None
    pr_url: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


def success_commit_message(issue_number: int) -> str:
    return f"fix: resolve issue #{issue_number}"


def escalation_commit_message(issue_number: int) -> str:
    return f"docs: issue #{issue_number} escalated - needs human intervention"


def pr_title(issue: Issue) -> str:
    return f"Fix #{issue.number}: {issue.title}"


class IssueProcessor:
    """Bounded-iteration state machine around the generation pipeline."""

    def __init__(
        self,
        provider: "Provider",
        max_iterations: int = 3,
        notifier: Optional["NotificationService"] = None,
        github_factory: Callable[..., GitHubClient] = GitHubClient,
        workspace_factory: Callable[..., WorkspaceReconciler] = WorkspaceReconciler,
        audit_log_factory: Callable[..., AuditLog] = AuditLog,
        agents_factory: Callable[..., list[Agent]] = create_agents,
        rate_limit_wait: Callable[[int], None] = wait_for_rate_limit,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.provider = provider
        self.max_iterations = max_iterations
        self.notifier = notifier
        self.github_factory = github_factory
        self.workspace_factory = workspace_factory
        self.audit_log_factory = audit_log_factory
        self.agents_factory = agents_factory
        self.rate_limit_wait = rate_limit_wait
        self.log = logger or log

    def process(
        self,
        project: "ProjectConfig",
        issue: Issue,
        github: Optional[GitHubClient] = None,
    ) -> ProcessingResult:
        """Process ``issue`` in ``project`` to a terminal outcome.

        Args:
            project: Project the issue belongs to
            issue: Issue to resolve
            github: Initialized client to reuse (one is created otherwise)

        Returns:
            ProcessingResult with status "success" or "escalated"

        Raises:
            Exception: Any non-rate-limit failure, after the in-progress
                label has been removed
        """
        project_path = Path(project.path)
        base_branch = project.base_branch

        if github is None:
            github = self.github_factory(project_path, base_branch=base_branch)
            github.initialize()

        workspace = self.workspace_factory(project_path, base_branch=base_branch, github=github)
        agents = self.agents_factory(self.provider, self.notifier)
        branch = branch_name_for_issue(issue.number)
        sm = ProcessingStateMachine(issue.number)

        self.log.info(
            "Processing issue #%s: %s (base: %s)", issue.number, issue.title, base_branch
        )

        try:
            github.add_label(issue.number, LABEL_IN_PROGRESS)
            sm.trigger_event("label")

            workspace.ensure_branch(branch, base_branch)
            sm.trigger_event("prepare_branch")

            audit_log = self.audit_log_factory(
                project_path, issue.number, max_iterations=self.max_iterations
            )
            audit_log.initialize(issue)

            review, iterations = self._iterate(agents, issue, audit_log, project_path, sm)

            if review is not None and review.get("approved"):
                return self._finalize_success(
                    github, workspace, issue, audit_log, branch, base_branch, iterations, sm
                )
            return self._escalate(github, workspace, issue, audit_log, iterations, sm)
        except Exception as e:
            self.log.error("Unexpected error during processing of #%s: %s", issue.number, e)
            if not sm.is_terminal():
                sm.trigger_event("fail")
            github.remove_label(issue.number, LABEL_IN_PROGRESS)
            raise

    def _iterate(
        self,
        agents: list[Agent],
        issue: Issue,
        audit_log: AuditLog,
        project_path: Path,
        sm: ProcessingStateMachine,
    ) -> tuple[Optional[dict[str, Any]], int]:
        review: Optional[dict[str, Any]] = None
        previous_failure: Optional[PreviousFailure] = None
        iteration = 0

        while iteration < self.max_iterations:
            iteration = audit_log.start_new_iteration()
            sm.trigger_event("start_iteration")
            self.log.info("Starting iteration %s/%s", iteration, self.max_iterations)

            if self.notifier is not None:
                self.notifier.notify_issue_start(
                    issue_number=issue.number,
                    issue_title=issue.title,
                    project_path=str(project_path),
                    iteration=iteration,
                    max_iterations=self.max_iterations,
                )

            context = StageContext(
                issue=issue,
                audit_log=audit_log,
                project_path=project_path,
                is_retry=iteration > 1,
                previous_failure=previous_failure,
            )

            try:
                review = self.run_iteration(agents, context)
            except RateLimitError as e:
                self.rate_limit_wait(e.retry_after)
                audit_log.abandon_iteration()
                iteration -= 1
                continue

            if review.get("approved"):
                self.log.info("Iteration %s approved!", iteration)
                sm.trigger_event("approve")
                return review, iteration

            previous_failure = PreviousFailure(
                reason=", ".join(review.get("reasons") or []) or "Unknown",
                feedback=list(review.get("feedback") or []),
            )
            self.log.warning("Iteration %s rejected. Retrying...", iteration)

        return review, iteration

    def run_iteration(self, agents: list[Agent], context: StageContext) -> dict[str, Any]:
        """Run every stage once; the last stage's output is the review."""
        result: dict[str, Any] = {}
        for agent in agents:
            result = agent.execute(context)
            context.outputs[agent.key] = result
        return result

    def _finalize_success(
        self,
        github: GitHubClient,
        workspace: WorkspaceReconciler,
        issue: Issue,
        audit_log: AuditLog,
        branch: str,
        base_branch: str,
        iterations: int,
        sm: ProcessingStateMachine,
    ) -> ProcessingResult:
        audit_log.add_final_summary(iterations=iterations, result="APPROVED - PR Created")

        body = (
            "## Summary\n"
            f"This PR addresses issue #{issue.number}.\n\n"
            "## Changes\n"
            "See the implementation details in the linked issue.\n\n"
            "## Memory File\n"
            "The full agent collaboration log is available in "
            f"`{audit_log.relative_path()}`\n\n"
            "---\n*Automated by Issue Forge*"
        )

        workspace.commit_and_push(success_commit_message(issue.number))
        pr = github.create_pull_request(pr_title(issue), body, branch, base_branch)
        sm.trigger_event("open_pr")
        github.remove_label(issue.number, LABEL_IN_PROGRESS)

        if self.notifier is not None:
            self.notifier.notify_analysis_complete(
                issue_number=issue.number,
                issue_title=issue.title,
                status=STATUS_SUCCESS,
                pr_number=pr.number,
                pr_url=pr.url,
            )

        return ProcessingResult(
            status=STATUS_SUCCESS,
            issue_number=issue.number,
            iterations=iterations,
            pr_number=pr.number,
            pr_url=pr.url,
        )

    def _escalate(
        self,
        github: GitHubClient,
        workspace: WorkspaceReconciler,
        issue: Issue,
        audit_log: AuditLog,
        iterations: int,
        sm: ProcessingStateMachine,
    ) -> ProcessingResult:
        sm.trigger_event("exhaust")
        audit_log.add_final_summary(
            iterations=iterations, result="ESCALATED - Human intervention required"
        )
        workspace.commit_and_push(escalation_commit_message(issue.number))

        comment = (
            "## Issue Forge - Escalation Required\n\n"
            f"After {self.max_iterations} attempts, Issue Forge was unable to fully "
            "resolve this issue automatically.\n\n"
            "Please review the agent collaboration log in "
            f"`{audit_log.relative_path()}` for details on what was attempted.\n\n"
            "---\n*Automated by Issue Forge*"
        )
        github.add_issue_comment(issue.number, comment)
        github.remove_label(issue.number, LABEL_IN_PROGRESS)
        github.add_label(issue.number, LABEL_NEEDS_HUMAN)
        sm.trigger_event("escalate")

        if self.notifier is not None:
            self.notifier.notify_analysis_complete(
                issue_number=issue.number,
                issue_title=issue.title,
                status=STATUS_ESCALATED,
                iteration_count=iterations,
            )

        self.log.warning(
            "Issue #%s escalated after %s failed attempts", issue.number, self.max_iterations
        )
        return ProcessingResult(
            status=STATUS_ESCALATED, issue_number=issue.number, iterations=iterations
        )
