"""Polling scheduler.

Projects are polled strictly one after another. For each project the first
eligible open issue is processed to completion before anything else touches
that project's working tree, which is what keeps checkouts consistent
without locks.

All tracking here is in memory and is lost on restart; the durable record is
on GitHub (labels, branches, pull requests).
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set

from issueforge.github import LABEL_IN_PROGRESS, LABEL_NEEDS_HUMAN, GitHubClient, Issue
from issueforge.process import RateLimitError, wait_for_rate_limit
from issueforge.scheduling import get_wait

if TYPE_CHECKING:
    from issueforge.config import Config, ProjectConfig
    from issueforge.notifications import NotificationService
    from issueforge.processor import IssueProcessor

log = logging.getLogger(__name__)

RETRY_COOLDOWN_SECONDS = 5 * 60


@dataclass
class ProjectRuntimeState:
    """What the orchestrator remembers about one project while running."""

    project: "ProjectConfig"
    github: GitHubClient
    processed_ids: Set[int] = field(default_factory=set)
    failed_ids: Dict[int, float] = field(default_factory=dict)
    last_processed_id: Optional[int] = None


@dataclass
class CycleOutcome:
    processed_any: bool = False
    had_errors: bool = False


class Orchestrator:
    """Polls configured projects and feeds issues to the IssueProcessor."""

    def __init__(
        self,
        config: "Config",
        processor: "IssueProcessor",
        notifier: Optional["NotificationService"] = None,
        github_factory: Callable[..., GitHubClient] = GitHubClient,
        sleep: Optional[Callable[[float], Any]] = None,
        clock: Callable[[], float] = time.time,
        now: Callable[[], datetime] = datetime.now,
        rate_limit_wait: Callable[[int], None] = wait_for_rate_limit,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.processor = processor
        self.notifier = notifier
        self.github_factory = github_factory
        self.clock = clock
        self.now = now
        self.rate_limit_wait = rate_limit_wait
        self.log = logger or log

        # Cancellation token, checked between projects and between cycles.
        self.cancel = threading.Event()
        self._idle_sleep = sleep or self.cancel.wait
        self._item_sleep = sleep or time.sleep

        self.project_states: Dict[str, ProjectRuntimeState] = {}

    @property
    def running(self) -> bool:
        return not self.cancel.is_set()

    def start(self) -> None:
        """Initialize projects and poll until ``stop()`` is called."""
        self.cancel.clear()
        self.log.info("Issue Forge started")
        self.log.info("Monitoring %s project(s)", len(self.config.enabled_projects()))
        self.log.info(
            "AI Provider: %s (model: %s)",
            self.config.global_.ai_provider,
            self.config.global_.model or "default",
        )

        self.initialize_projects()
        self.run_loop()

    def stop(self) -> None:
        """Request a stop. In-flight work finishes first."""
        self.cancel.set()
        self.log.info("Issue Forge stopping...")

    def initialize_projects(self) -> None:
        for project in self.config.enabled_projects():
            key = str(project.path)
            try:
                github = self.github_factory(project.path, base_branch=project.base_branch)
                github.initialize()
            except Exception as e:
                self.log.error("Failed to initialize project %s: %s", key, e)
                continue

            self.project_states[key] = ProjectRuntimeState(project=project, github=github)
            self.log.info("Initialized project: %s", key)

    def run_loop(self) -> None:
        while self.running:
            outcome = self.run_once()
            if not self.running:
                break

            if not outcome.processed_any:
                if outcome.had_errors:
                    interval = self.config.global_.error_retry_interval
                    self.log.info("Errors occurred. Retrying in %ss...", interval)
                else:
                    interval = self.config.global_.polling_interval
                    self.log.info("No issues to process. Waiting %ss...", interval)
                self._idle_sleep(interval)

        self.log.info("Issue Forge stopped")

    def run_once(self) -> CycleOutcome:
        """Poll every project once."""
        outcome = CycleOutcome()

        for key, state in list(self.project_states.items()):
            if not self.running:
                break

            try:
                if self.process_next_issue(state):
                    outcome.processed_any = True
            except RateLimitError as e:
                self.rate_limit_wait(e.retry_after)
                outcome.processed_any = True
            except Exception as e:
                self.log.error("Error processing project %s: %s", key, e)
                outcome.had_errors = True

        return outcome

    def in_cooldown(self, state: ProjectRuntimeState, issue_number: int) -> bool:
        """Whether a recently failed issue must still be skipped.

        Expired entries are removed so the issue becomes eligible again.
        """
        failed_at = state.failed_ids.get(issue_number)
        if failed_at is None:
            return False
        if self.clock() - failed_at < RETRY_COOLDOWN_SECONDS:
            return True
        del state.failed_ids[issue_number]
        self.log.info("Issue #%s cooldown expired, retrying...", issue_number)
        return False

    def select_issue(self, state: ProjectRuntimeState) -> Optional[Issue]:
        """First open issue that is not done, cooling down, escalated or PR'd."""
        for issue in state.github.fetch_open_issues():
            if issue.number in state.processed_ids:
                continue

            if self.in_cooldown(state, issue.number):
                self.log.debug("Issue #%s in cooldown, skipping", issue.number)
                continue

            if issue.has_label(LABEL_NEEDS_HUMAN):
                self.log.debug("Issue #%s needs human intervention, skipping", issue.number)
                state.processed_ids.add(issue.number)
                continue

            existing = state.github.has_existing_pr(issue.number)
            if existing.exists:
                self.log.debug(
                    "Issue #%s already has PR #%s, skipping", issue.number, existing.pr.number
                )
                state.processed_ids.add(issue.number)
                continue

            return issue

        return None

    def wait_for_schedule(self, issue: Issue) -> None:
        """Block until the time-of-day directive in the title, if any."""
        scheduled = get_wait(issue.title, self.now())
        if scheduled is None:
            return

        self.log.info(
            "Issue #%s scheduled for %s",
            issue.number, scheduled.target_time.strftime("%Y-%m-%d %H:%M"),
        )
        if self.notifier is not None:
            self.notifier.notify_scheduled(
                issue_number=issue.number,
                issue_title=issue.title,
                target_time=scheduled.target_time,
            )
        self._item_sleep(scheduled.wait_seconds)

    def process_next_issue(self, state: ProjectRuntimeState) -> bool:
        """Process the next eligible issue of a project.

        Returns:
            True if an issue was attempted
        """
        issue = self.select_issue(state)
        if issue is None:
            return False

        self.wait_for_schedule(issue)
        self.log.info("Processing issue #%s: %s", issue.number, issue.title)

        try:
            result = self.processor.process(state.project, issue, github=state.github)
        except RateLimitError as e:
            # Not marked processed: the issue is picked up again next cycle.
            self.rate_limit_wait(e.retry_after)
            return True
        except Exception as e:
            self.log.error("Failed to process issue #%s: %s", issue.number, e)
            try:
                state.github.remove_label(issue.number, LABEL_IN_PROGRESS)
            except Exception as label_error:
                self.log.debug("Failed to remove in-progress label: %s", label_error)
            state.failed_ids[issue.number] = self.clock()
            return True

        state.processed_ids.add(issue.number)
        state.last_processed_id = issue.number

        if result.succeeded:
            self.log.info("Issue #%s resolved -> PR #%s", issue.number, result.pr_number)
        else:
            self.log.warning("Issue #%s escalated", issue.number)
        return True

    def get_status(self) -> Dict[str, Any]:
        projects: List[Dict[str, Any]] = []
        for key, state in self.project_states.items():
            projects.append({
                "path": key,
                "processed_count": len(state.processed_ids),
                "cooldown_count": len(state.failed_ids),
                "last_processed": state.last_processed_id,
            })

        return {
            "running": self.running,
            "provider": self.config.global_.ai_provider,
            "projects": projects,
        }
