"""Tests for the issue processing state machine."""

import pytest

from issueforge.state_machine import InvalidTransitionError, ProcessingStateMachine


def drive(sm: ProcessingStateMachine, *triggers: str) -> None:
    for name in triggers:
        sm.trigger_event(name)


class TestHappyPaths:
    """Tests for the success and escalation paths."""

    def test_initial_state(self) -> None:
        sm = ProcessingStateMachine(issue_number=42)
        assert sm.current_state == "init"
        assert not sm.is_terminal()

    def test_success_path(self) -> None:
        sm = ProcessingStateMachine(issue_number=42)

        drive(sm, "label", "prepare_branch", "start_iteration", "start_iteration", "approve", "open_pr")

        assert sm.current_state == "pr_created"
        assert sm.is_terminal()

    def test_escalation_path(self) -> None:
        sm = ProcessingStateMachine(issue_number=42)

        drive(sm, "label", "prepare_branch", "start_iteration", "exhaust", "escalate")

        assert sm.current_state == "escalated"
        assert sm.is_terminal()

    def test_zero_iterations_can_exhaust(self) -> None:
        sm = ProcessingStateMachine(issue_number=42)

        drive(sm, "label", "prepare_branch", "exhaust")

        assert sm.current_state == "exhausted"


class TestFailures:
    """Tests for illegal moves and the fail trigger."""

    @pytest.mark.parametrize("state", ["init", "labeled_in_progress", "branch_ready", "iterating", "approved", "exhausted"])
    def test_fail_from_non_terminal(self, state: str) -> None:
        sm = ProcessingStateMachine(initial_state=state)

        sm.trigger_event("fail")

        assert sm.current_state == "failed"

    @pytest.mark.parametrize("state", ["pr_created", "escalated", "failed"])
    def test_terminal_states_do_not_move(self, state: str) -> None:
        sm = ProcessingStateMachine(initial_state=state)

        with pytest.raises(InvalidTransitionError):
            sm.trigger_event("fail")

        assert sm.current_state == state

    def test_cannot_open_pr_before_approval(self) -> None:
        sm = ProcessingStateMachine(initial_state="iterating")

        with pytest.raises(InvalidTransitionError) as exc_info:
            sm.trigger_event("open_pr")

        assert exc_info.value.source == "iterating"
        assert exc_info.value.trigger == "open_pr"
        assert "Cannot 'open_pr' from state 'iterating'" in str(exc_info.value)

    def test_unknown_trigger(self) -> None:
        sm = ProcessingStateMachine()

        with pytest.raises(InvalidTransitionError):
            sm.trigger_event("teleport")
