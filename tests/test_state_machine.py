"""Tests for state machine validation."""
import pytest
from agentflow_core.errors import InvalidTransition
from agentflow_core.models import ProjectStatus, ProposalStatus, TaskStatus
from agentflow_core.state_machine import (
    TASK_STATUS_SORT_ORDER,
    get_allowed_task_transitions,
    is_task_transition_valid,
    is_terminal_task_status,
    validate_project_advance,
    validate_proposal_transition,
    validate_task_transition,
)


class TestTaskTransitions:
    """Test task state machine transition validation."""

    def test_valid_forward_transitions(self):
        """Test the happy path pending → assigned → in_progress → completed → approved."""
        path = [
            TaskStatus.PENDING,
            TaskStatus.ASSIGNED,
            TaskStatus.IN_PROGRESS,
            TaskStatus.COMPLETED,
            TaskStatus.APPROVED,
        ]
        for current, new in zip(path, path[1:]):
            assert is_task_transition_valid(current, new)
            validate_task_transition(current, new)  # Should not raise

    def test_every_non_terminal_status_can_block(self):
        for status in [TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED]:
            assert is_task_transition_valid(status, TaskStatus.BLOCKED)

    def test_blocked_resumes_only_through_assignment(self):
        assert get_allowed_task_transitions(TaskStatus.BLOCKED) == [TaskStatus.ASSIGNED]

        with pytest.raises(InvalidTransition) as exc_info:
            validate_task_transition(TaskStatus.BLOCKED, TaskStatus.IN_PROGRESS)

        assert "re-assignment" in str(exc_info.value)

    def test_repeated_transition_is_an_error(self):
        """Completing an already completed task must fail, not silently succeed."""
        assert not is_task_transition_valid(TaskStatus.COMPLETED, TaskStatus.COMPLETED)

        with pytest.raises(InvalidTransition) as exc_info:
            validate_task_transition(TaskStatus.COMPLETED, TaskStatus.COMPLETED)

        assert "already completed" in str(exc_info.value)

    def test_cannot_skip_work(self):
        with pytest.raises(InvalidTransition) as exc_info:
            validate_task_transition(TaskStatus.PENDING, TaskStatus.COMPLETED)

        error = exc_info.value
        assert error.current_status == TaskStatus.PENDING
        assert error.requested_status == TaskStatus.COMPLETED
        assert error.allowed_transitions == [TaskStatus.ASSIGNED, TaskStatus.BLOCKED]

    def test_approved_is_terminal(self):
        assert is_terminal_task_status(TaskStatus.APPROVED)
        assert get_allowed_task_transitions(TaskStatus.APPROVED) == []

        for status in TaskStatus:
            assert not is_task_transition_valid(TaskStatus.APPROVED, status)

        with pytest.raises(InvalidTransition) as exc_info:
            validate_task_transition(TaskStatus.APPROVED, TaskStatus.BLOCKED)
        assert "terminal" in str(exc_info.value).lower()

    def test_allowed_transitions_returns_copy(self):
        allowed = get_allowed_task_transitions(TaskStatus.PENDING)
        allowed.append(TaskStatus.APPROVED)

        assert TaskStatus.APPROVED not in get_allowed_task_transitions(TaskStatus.PENDING)

    def test_sort_order_covers_every_status(self):
        assert set(TASK_STATUS_SORT_ORDER) == set(TaskStatus)
        assert TASK_STATUS_SORT_ORDER[TaskStatus.BLOCKED] < TASK_STATUS_SORT_ORDER[TaskStatus.APPROVED]


class TestProjectAdvance:
    """Test the forward-only project phase sequence."""

    def test_single_forward_hops_are_valid(self):
        order = list(ProjectStatus)
        for current, new in zip(order, order[1:]):
            validate_project_advance(current, new)

    def test_skipping_a_phase_is_rejected(self):
        with pytest.raises(InvalidTransition) as exc_info:
            validate_project_advance(ProjectStatus.IDEATION, ProjectStatus.DEVELOPMENT)

        error = exc_info.value
        assert error.allowed_transitions == [ProjectStatus.STRATEGY_REVIEW]
        assert "strategy_review" in str(error)

    def test_moving_backwards_is_rejected(self):
        with pytest.raises(InvalidTransition):
            validate_project_advance(ProjectStatus.TESTING, ProjectStatus.DEVELOPMENT)

    def test_deployed_is_terminal(self):
        with pytest.raises(InvalidTransition) as exc_info:
            validate_project_advance(ProjectStatus.DEPLOYED, ProjectStatus.IDEATION)

        assert exc_info.value.allowed_transitions == []


class TestProposalTransitions:
    """Test proposal review status transitions."""

    def test_pending_review_can_be_decided(self):
        validate_proposal_transition(ProposalStatus.PENDING_REVIEW, ProposalStatus.APPROVED)
        validate_proposal_transition(ProposalStatus.PENDING_REVIEW, ProposalStatus.REJECTED)

    def test_rejected_can_only_be_revised(self):
        validate_proposal_transition(ProposalStatus.REJECTED, ProposalStatus.REVISED)

        with pytest.raises(InvalidTransition) as exc_info:
            validate_proposal_transition(ProposalStatus.REJECTED, ProposalStatus.APPROVED)
        assert "revises" in str(exc_info.value)

    @pytest.mark.parametrize("status", [ProposalStatus.APPROVED, ProposalStatus.REVISED])
    def test_decided_proposals_are_final(self, status):
        for new_status in ProposalStatus:
            with pytest.raises(InvalidTransition):
                validate_proposal_transition(status, new_status)
