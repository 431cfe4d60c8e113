"""Pipeline stages.

Each iteration runs five stages in order: Strategist, Architect, Coder,
Tester, Reviewer. A stage builds a prompt from the issue and the previous
stage's output, runs it through the AI provider inside the project checkout,
parses the markdown sections it asked for, and records the raw output in the
audit log.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from issueforge.audit_log import AuditLog
    from issueforge.github import Issue
    from issueforge.notifications import NotificationService
    from issueforge.providers import Provider

log = logging.getLogger(__name__)

PREVIEW_CHARS = 500


@dataclass
class PreviousFailure:
    """Why the last iteration was rejected."""

    reason: str
    feedback: list[str] = field(default_factory=list)


@dataclass
class StageContext:
    """Everything a stage needs; ``outputs`` holds earlier stages' results."""

    issue: "Issue"
    audit_log: "AuditLog"
    project_path: Path
    is_retry: bool = False
    previous_failure: Optional[PreviousFailure] = None
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)


class StageLogger(logging.LoggerAdapter):
    """Prefixes every message with the stage name."""

    def process(self, msg, kwargs):
        return f"[{self.extra['stage']}] {msg}", kwargs


def extract_section(text: str, heading: str) -> Optional[str]:
    """Body of a ``### heading`` section, up to the next ``###``."""
    match = re.search(rf"### {re.escape(heading)}[^\n]*\n(.*?)(?=\n###|\Z)", text, re.DOTALL)
    return match.group(1).strip() if match else None


def extract_bold_field(text: str, name: str) -> Optional[str]:
    """Value of a ``**Name**: value`` field."""
    match = re.search(
        rf"\*\*{re.escape(name)}\*\*:?\s*(.+?)(?=\n\*\*|\n###|\Z)", text, re.DOTALL
    )
    return match.group(1).strip() if match else None


def extract_numbered(section: Optional[str]) -> list[str]:
    if not section:
        return []
    return [m.strip() for m in re.findall(r"^\d+\.\s+(.+)$", section, re.MULTILINE)]


def extract_bullets(section: Optional[str]) -> list[str]:
    if not section:
        return []
    return [
        line.strip()[1:].strip()
        for line in section.splitlines()
        if line.strip().startswith("-")
    ]


class Agent(ABC):
    """Base class for pipeline stages."""

    name = "Agent"
    key = "agent"
    action = "Run"

    def __init__(self, provider: "Provider", notifier: Optional["NotificationService"] = None):
        self.provider = provider
        self.notifier = notifier
        self.log = StageLogger(log, {"stage": self.name})

    def action_for(self, context: StageContext) -> str:
        return self.action

    @abstractmethod
    def build_prompt(self, context: StageContext) -> str:
        pass

    def parse_response(self, output: str) -> dict[str, Any]:
        return {"raw": output}

    def record(self, context: StageContext, parsed: dict[str, Any]) -> None:
        """Hook for stage-specific audit log entries."""
        pass

    def execute(self, context: StageContext) -> dict[str, Any]:
        """Run this stage and return its parsed output.

        Raises:
            RateLimitError: Passed through from the provider
            CommandError: If the provider failed
        """
        issue = context.issue
        action = self.action_for(context)
        self.log.info("Starting %s for issue #%s", action, issue.number)

        result = self.provider.execute(self.build_prompt(context), cwd=context.project_path)
        parsed = self.parse_response(result.output)

        context.audit_log.add_agent_entry(
            self.name, result.provider, action,
            duration=result.duration, content=result.output,
        )
        self.record(context, parsed)

        if self.notifier is not None:
            self.notifier.notify_agent_response(
                agent_name=self.name,
                action=action,
                issue_number=issue.number,
                issue_title=issue.title,
                duration=result.duration,
                output_preview=result.output[:PREVIEW_CHARS],
            )

        self.log.info("%s completed in %ss", action, result.duration)
        return {**parsed, "action": action, "duration": result.duration}


class StrategistAgent(Agent):
    name = "Strategist"
    key = "strategy"

    def action_for(self, context: StageContext) -> str:
        return "ReStrategize" if context.is_retry else "Analyze"

    def build_prompt(self, context: StageContext) -> str:
        issue = context.issue
        header = f"## Issue #{issue.number}: {issue.title}\n\n{issue.body or 'No description provided.'}\n"

        if context.is_retry and context.previous_failure:
            failure = context.previous_failure
            feedback = ""
            if failure.feedback:
                feedback = "### Reviewer Feedback\n" + "\n".join(failure.feedback) + "\n"
            return (
                "You are a Strategist Agent. The previous implementation attempt failed. "
                "Analyze the failure and create a new strategy.\n\n"
                f"{header}\n"
                f"## Previous Attempt Context\n{context.audit_log.get_content()}\n\n"
                f"## Previous Failure\n{failure.reason or 'Unknown failure reason'}\n\n"
                f"{feedback}\n"
                "## Output Format\n"
                "### Failure Analysis\n**Root Cause**: [What fundamentally went wrong]\n\n"
                "### Strategy Revision\n**Approach**: [How this differs from before]\n"
                "**Risk**: [Main risks to consider]\n\n"
                "### Alternatives Considered\n1. [Alternative and why not chosen]\n"
            )

        labels = ", ".join(issue.labels) or "none"
        return (
            "You are a Strategist Agent. Analyze this GitHub issue and create an "
            "implementation strategy.\n\n"
            f"{header}\n## Labels\n{labels}\n\n"
            "## Output Format\n"
            "### Issue Analysis\n[Summarize what needs to be done]\n\n"
            "### Strategy Decision\n**Approach**: [Your chosen approach]\n"
            "**Technology**: [Key technologies/libraries to use]\n"
            "**Risk**: [Main risks to consider]\n\n"
            "### Alternatives Considered\n1. [Alternative 1 and why not chosen]\n\n"
            "### Success Criteria\n- [Criterion 1]\n"
        )

    def parse_response(self, output: str) -> dict[str, Any]:
        return {
            "raw": output,
            "approach": extract_bold_field(output, "Approach"),
            "risks": extract_bold_field(output, "Risk"),
            "alternatives": extract_section(output, "Alternatives Considered"),
        }


class ArchitectAgent(Agent):
    name = "Architect"
    key = "design"
    action = "Design"

    def build_prompt(self, context: StageContext) -> str:
        issue = context.issue
        return (
            "You are an Architect Agent. Based on the strategy, create a detailed "
            "implementation design.\n\n"
            f"## Issue #{issue.number}: {issue.title}\n\n"
            f"## Strategy Context\n{context.outputs['strategy']['raw']}\n\n"
            "## Output Format\n"
            "### Design Overview\n[High-level description]\n\n"
            "### File Changes\n- `path/to/file` - [description of changes]\n\n"
            "### Implementation Plan\n1. [Step 1]\n"
        )

    def parse_response(self, output: str) -> dict[str, Any]:
        files = [
            {"path": path, "description": desc.strip()}
            for path, desc in re.findall(r"^- `([^`]+)`\s*-\s*(.+)$", extract_section(output, "File Changes") or "", re.MULTILINE)
        ]
        return {
            "raw": output,
            "files": files,
            "plan": extract_numbered(extract_section(output, "Implementation Plan")),
        }


class CoderAgent(Agent):
    name = "Coder"
    key = "implementation"
    action = "Implement"

    def build_prompt(self, context: StageContext) -> str:
        issue = context.issue
        return (
            "You are a Coder Agent. Implement the solution based on the design.\n\n"
            f"## Issue #{issue.number}: {issue.title}\n\n"
            f"## Design to Implement\n{context.outputs['design']['raw']}\n\n"
            "## Your Task\n"
            "1. Create and modify files according to the design\n"
            "2. Follow existing project conventions\n"
            "3. Ensure code is ready for testing\n\n"
            "## Output Format\n"
            "### Files Created/Modified\n"
            "- `path/to/file` (X lines) - NEW/MODIFIED [brief description]\n\n"
            "### Notes for Tester\n[Specific test scenarios to focus on]\n"
        )

    def parse_response(self, output: str) -> dict[str, Any]:
        files = [
            {"path": path, "lines": int(lines), "status": status.upper()}
            for path, lines, status in re.findall(
                r"- `([^`]+)`\s*\((\d+)\s*lines?\)\s*-\s*(NEW|MODIFIED)", output, re.IGNORECASE
            )
        ]
        return {"raw": output, "files_changed": files}


class TesterAgent(Agent):
    __test__ = False

    name = "Tester"
    key = "test_results"
    action = "Test"

    def build_prompt(self, context: StageContext) -> str:
        issue = context.issue
        return (
            "You are a Tester Agent. Verify the implementation by writing and running tests.\n\n"
            f"## Issue #{issue.number}: {issue.title}\n\n"
            f"## Implementation Summary\n{context.outputs['implementation']['raw']}\n\n"
            "## Output Format\n"
            "### Test Results\nTotal: N\nPassing: N\nFailing: N\n\n"
            "### Issues Found\n- [Problem found, or 'None']\n"
        )

    def parse_response(self, output: str) -> dict[str, Any]:
        results = {}
        for name in ("total", "passing", "failing"):
            match = re.search(rf"{name}:\s*(\d+)", output, re.IGNORECASE)
            results[name] = int(match.group(1)) if match else 0
        return {
            "raw": output,
            "results": results,
            "issues": extract_bullets(extract_section(output, "Issues Found")),
        }


class ReviewerAgent(Agent):
    name = "Reviewer"
    key = "review"
    action = "Evaluate"

    def build_prompt(self, context: StageContext) -> str:
        issue = context.issue
        return (
            "You are a Reviewer Agent. Evaluate the implementation and decide whether "
            "to approve or reject.\n\n"
            f"## Issue #{issue.number}: {issue.title}\n\n"
            f"## Full Context\n{context.audit_log.get_content()}\n\n"
            f"## Test Results Summary\n{context.outputs['test_results']['raw']}\n\n"
            "## Output Format\n"
            "### Code Review\n[Assessment]\n\n"
            "### Decision: **APPROVED** or **REJECTED**\n\n"
            "### Reasons\n1. [First reason]\n\n"
            "### Feedback for Next Iteration (if REJECTED)\n- [Specific improvement]\n"
        )

    def parse_response(self, output: str) -> dict[str, Any]:
        decision = None
        if re.search(r"Decision:\s*\*\*APPROVED\*\*", output, re.IGNORECASE):
            decision = "approved"
        elif re.search(r"Decision:\s*\*\*REJECTED\*\*", output, re.IGNORECASE):
            decision = "rejected"

        return {
            "raw": output,
            "decision": decision,
            "reasons": extract_numbered(extract_section(output, "Reasons")),
            "feedback": extract_bullets(extract_section(output, "Feedback for Next Iteration")),
            "approved": decision == "approved",
        }

    def record(self, context: StageContext, parsed: dict[str, Any]) -> None:
        if parsed["decision"]:
            context.audit_log.add_decision(parsed["decision"], parsed["reasons"], parsed["feedback"])


def create_agents(
    provider: "Provider", notifier: Optional["NotificationService"] = None
) -> list[Agent]:
    """The pipeline, in execution order."""
    return [
        StrategistAgent(provider, notifier),
        ArchitectAgent(provider, notifier),
        CoderAgent(provider, notifier),
        TesterAgent(provider, notifier),
        ReviewerAgent(provider, notifier),
    ]
