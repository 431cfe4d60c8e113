"""Lifecycle state machine for processing one issue.

Uses the transitions library so the processor can only move an issue along
legal edges::

    init -> labeled_in_progress -> branch_ready -> iterating (repeats)
    iterating -> approved -> pr_created
    iterating -> exhausted -> escalated
    any non-terminal state -> failed
"""

from __future__ import annotations

import logging
from typing import Optional

from transitions import Machine, MachineError

logger = logging.getLogger(__name__)


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, source: str, trigger: str, message: Optional[str] = None) -> None:
        self.source = source
        self.trigger = trigger
        if message:
            super().__init__(message)
        else:
            super().__init__(f"Cannot '{trigger}' from state '{source}'")


class ProcessingStateMachine:
    """Tracks where one issue is in its processing session.

    Example usage:
        >>> sm = ProcessingStateMachine(issue_number=7)
        >>> sm.trigger_event("label")
        >>> sm.current_state
        'labeled_in_progress'
    """

    STATES = [
        "init",
        "labeled_in_progress",
        "branch_ready",
        "iterating",
        "approved",
        "pr_created",
        "exhausted",
        "escalated",
        "failed",
    ]

    TERMINAL_STATES = frozenset({"pr_created", "escalated", "failed"})

    TRANSITIONS = [
        {"trigger": "label", "source": "init", "dest": "labeled_in_progress"},
        {"trigger": "prepare_branch", "source": "labeled_in_progress", "dest": "branch_ready"},
        {"trigger": "start_iteration", "source": "branch_ready", "dest": "iterating"},
        {"trigger": "start_iteration", "source": "iterating", "dest": "iterating"},
        {"trigger": "approve", "source": "iterating", "dest": "approved"},
        {"trigger": "open_pr", "source": "approved", "dest": "pr_created"},
        {"trigger": "exhaust", "source": "iterating", "dest": "exhausted"},
        {"trigger": "exhaust", "source": "branch_ready", "dest": "exhausted"},
        {"trigger": "escalate", "source": "exhausted", "dest": "escalated"},
        {
            "trigger": "fail",
            "source": ["init", "labeled_in_progress", "branch_ready", "iterating", "approved", "exhausted"],
            "dest": "failed",
        },
    ]

    def __init__(self, issue_number: int = 0, initial_state: str = "init") -> None:
        self.issue_number = issue_number
        self.machine = Machine(
            model=self,
            states=self.STATES,
            transitions=self.TRANSITIONS,
            initial=initial_state,
            auto_transitions=False,
            send_event=False,
        )

    @property
    def current_state(self) -> str:
        return str(self.state)

    def trigger_event(self, name: str) -> None:
        """Fire a trigger, converting illegal moves to InvalidTransitionError."""
        source = self.current_state
        try:
            self.trigger(name)
        except (MachineError, AttributeError) as e:
            raise InvalidTransitionError(source, name) from e
        logger.debug("Issue #%s: %s -> %s", self.issue_number, source, self.current_state)

    def is_terminal(self) -> bool:
        return self.current_state in self.TERMINAL_STATES
