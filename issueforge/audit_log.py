"""Per-issue audit log.

Every pipeline stage output and reviewer decision for one issue is appended
to ``<project>/.issue-forge/issue-<n>.md``. The file is committed with the
fix so reviewers can see how the change was produced.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence, Union

if TYPE_CHECKING:
    from issueforge.github import Issue

AUDIT_DIR = ".issue-forge"
ITERATION_HEADER = re.compile(r"^# Iteration (\d+)", re.MULTILINE)


class AuditLog:
    """Append-only markdown record of one issue's processing session."""

    def __init__(
        self, project_path: Union[str, Path], issue_number: int, max_iterations: int = 3
    ) -> None:
        self.project_path = Path(project_path)
        self.issue_number = issue_number
        self.max_iterations = max_iterations
        self.directory = self.project_path / AUDIT_DIR
        self.file_path = self.directory / f"issue-{issue_number}.md"
        self.content = ""
        self.current_iteration = 0

    def initialize(self, issue: "Issue") -> None:
        """Start a fresh log for ``issue``, overwriting any previous one."""
        self.directory.mkdir(parents=True, exist_ok=True)

        labels = ", ".join(issue.labels) or "none"
        created = issue.created_at[:10] if issue.created_at else "unknown"

        self.content = (
            f"# Issue Forge Memory - Issue #{self.issue_number}\n\n"
            "## Issue Summary\n"
            f"- **Title**: {issue.title}\n"
            f"- **Labels**: {labels}\n"
            f"- **Created**: {created}\n"
            f"- **Max Iterations**: {self.max_iterations}\n\n"
            "## Issue Body\n"
            f"{issue.body or 'No description provided.'}\n\n"
            "---\n\n"
        )
        self.current_iteration = 0
        self.save()

    def load(self) -> None:
        """Read an existing log and recover the iteration counter."""
        if self.file_path.exists():
            self.content = self.file_path.read_text(encoding="utf-8")
            self.current_iteration = self._parse_current_iteration()

    def save(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.file_path.write_text(self.content, encoding="utf-8")

    def _parse_current_iteration(self) -> int:
        numbers = [int(n) for n in ITERATION_HEADER.findall(self.content)]
        return max(numbers) if numbers else 0

    def _append(self, text: str) -> None:
        self.content += text
        self.save()

    def start_new_iteration(self) -> int:
        self.current_iteration += 1
        self._append(f"\n# Iteration {self.current_iteration}\n\n")
        return self.current_iteration

    def abandon_iteration(self, reason: str = "rate limited") -> None:
        """Give back the current iteration so the next one reuses its number."""
        if self.current_iteration == 0:
            return
        self._append(
            f"_Iteration {self.current_iteration} interrupted ({reason}); "
            "it will be retried._\n\n"
        )
        self.current_iteration -= 1

    def add_agent_entry(
        self,
        agent_name: str,
        provider: str,
        action: str,
        duration: Optional[int] = None,
        content: Optional[str] = None,
        tokens: Optional[int] = None,
    ) -> None:
        timestamp = datetime.now().astimezone().isoformat(timespec="seconds")

        entry = f"## [{timestamp}] {agent_name} Agent ({provider}) - {action}\n"
        entry += f"**Iteration**: {self.current_iteration}/{self.max_iterations}\n"
        if duration:
            entry += f"**Duration**: {duration}s\n"
        if tokens:
            entry += f"**Tokens**: {tokens:,}\n"
        entry += "\n"
        if content:
            entry += content + "\n"
        entry += "\n---\n\n"

        self._append(entry)

    def add_decision(
        self,
        decision: str,
        reasons: Sequence[str] = (),
        feedback: Sequence[str] = (),
    ) -> None:
        entry = f"### Decision: **{decision.upper()}**\n\n"

        if reasons:
            heading = "Rejection" if decision == "rejected" else "Approval"
            entry += f"### {heading} Reasons\n"
            for i, reason in enumerate(reasons, 1):
                entry += f"{i}. {reason}\n"
            entry += "\n"

        if feedback and decision == "rejected":
            entry += "### Feedback for Next Iteration\n"
            for item in feedback:
                entry += f"- {item}\n"
            entry += "\n"

        self._append(entry)

    def add_final_summary(
        self,
        iterations: int,
        result: str,
        total_duration: Optional[int] = None,
    ) -> None:
        entry = "\n# Final Summary\n\n"
        entry += "| Metric | Value |\n"
        entry += "|--------|-------|\n"
        entry += f"| Total Iterations | {iterations} |\n"
        if total_duration is not None:
            entry += f"| Total Duration | {total_duration}s |\n"
        entry += f"| Result | **{result}** |\n\n"

        self._append(entry)

    def get_content(self) -> str:
        return self.content

    def get_file_path(self) -> Path:
        return self.file_path

    def relative_path(self) -> str:
        """Path of the log relative to the project root, for messages."""
        return f"{AUDIT_DIR}/{self.file_path.name}"

    def can_retry(self) -> bool:
        return self.current_iteration < self.max_iterations
