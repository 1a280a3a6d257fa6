"""Tests for the project, task and pledge state machines."""

import pytest

from squadledger.exceptions import InvalidStateError, TransitionError
from squadledger.state_machine import (
    can_transition_pledge,
    can_transition_project,
    can_transition_task,
    normalize_pledge_status,
    validate_pledge_transition,
    validate_project_transition,
    validate_task_transition,
)


class TestProjectTransitions:
    """Tests for the coarse project lifecycle."""

    def test_forward_path(self):
        assert can_transition_project("pledging", "active")
        assert can_transition_project("active", "completed")
        assert can_transition_project("completed", "archived")

    def test_no_skipping_activation(self):
        assert not can_transition_project("pledging", "completed")

    def test_archived_is_terminal(self):
        for target in ("pledging", "active", "completed"):
            assert not can_transition_project("archived", target)

    def test_invalid_raises_transition_error(self):
        with pytest.raises(TransitionError) as exc_info:
            validate_project_transition("completed", "active")
        assert exc_info.value.current_status == "completed"
        assert exc_info.value.target_status == "active"


class TestTaskTransitions:
    """Tests for the task lifecycle including the audit loop."""

    def test_happy_path(self):
        path = ["proposed", "taskConfirmed", "inProgress", "inAudit", "completed"]
        for current, target in zip(path, path[1:]):
            validate_task_transition(current, target)

    def test_cannot_accept_unconfirmed_task(self):
        assert not can_transition_task("proposed", "inProgress")

    def test_challenge_loop(self):
        assert can_transition_task("inAudit", "pendingConfirmation")
        assert can_transition_task("pendingConfirmation", "inAudit")
        assert can_transition_task("pendingConfirmation", "rejected")

    def test_pending_confirmation_cannot_complete(self):
        """Approval needs every challenge resolved first."""
        with pytest.raises(InvalidStateError):
            validate_task_transition("pendingConfirmation", "completed")

    def test_legacy_active_status_accepts(self):
        assert can_transition_task("active", "inProgress")

    def test_terminal_statuses(self):
        assert not can_transition_task("completed", "inAudit")
        assert not can_transition_task("rejected", "inProgress")


class TestPledgeTransitions:
    """Tests for the pledge lifecycle."""

    def test_pending_outcomes(self):
        assert can_transition_pledge("pending", "confirmed")
        assert can_transition_pledge("pending", "expired")

    def test_confirmed_only_reassigns(self):
        assert can_transition_pledge("confirmed", "reassigned")
        assert not can_transition_pledge("confirmed", "expired")

    def test_expired_is_terminal(self):
        with pytest.raises(TransitionError):
            validate_pledge_transition("expired", "confirmed")

    def test_approved_alias(self):
        assert normalize_pledge_status("approved") == "confirmed"
        assert normalize_pledge_status("pending") == "pending"
        assert can_transition_pledge("approved", "reassigned")
