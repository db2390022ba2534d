"""State machine validation for task, project and proposal status transitions.

Enforces valid status transitions to maintain workflow integrity:
- Tasks must be assigned and worked on before completion (no skipping)
- Approved tasks are terminal
- Blocked tasks only resume through an explicit re-assignment
- Projects move forward through a fixed phase sequence
- Proposals are reviewed exactly once

Unlike field edits, repeating a transition is an error: completing an
already-completed task must fail rather than silently succeed.
"""
import logging

from .errors import InvalidTransition
from .models import TaskStatus, ProjectStatus, ProposalStatus

logger = logging.getLogger("agentflow-core.state_machine")


# Task state machine transition matrix
# Maps current status → list of allowed next statuses
TASK_TRANSITION_MATRIX: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.PENDING: [
        TaskStatus.ASSIGNED,     # Forward: agent picked up the task
        TaskStatus.BLOCKED,      # Side: blocker found before assignment
    ],
    TaskStatus.ASSIGNED: [
        TaskStatus.IN_PROGRESS,  # Forward: first progress report or spec promotion
        TaskStatus.BLOCKED,      # Side: agent reported a blocker
    ],
    TaskStatus.IN_PROGRESS: [
        TaskStatus.COMPLETED,    # Forward: work finished
        TaskStatus.BLOCKED,      # Side: agent reported a blocker
    ],
    TaskStatus.COMPLETED: [
        TaskStatus.APPROVED,     # Forward: reviewer accepted the work
        TaskStatus.BLOCKED,      # Back: reviewer rejected the work
    ],
    TaskStatus.BLOCKED: [
        TaskStatus.ASSIGNED,     # Re-entry: explicit re-assignment after unblocking
    ],
    TaskStatus.APPROVED: [
        # Terminal state - no transitions out
    ],
}


# Project phases, in the only order they may be visited
PROJECT_PHASE_ORDER: list[ProjectStatus] = [
    ProjectStatus.IDEATION,
    ProjectStatus.STRATEGY_REVIEW,
    ProjectStatus.DESIGN,
    ProjectStatus.DEVELOPMENT,
    ProjectStatus.TESTING,
    ProjectStatus.DEPLOYED,
]


PROPOSAL_TRANSITION_MATRIX: dict[ProposalStatus, list[ProposalStatus]] = {
    ProposalStatus.PENDING_REVIEW: [
        ProposalStatus.APPROVED,
        ProposalStatus.REJECTED,
    ],
    ProposalStatus.REJECTED: [
        ProposalStatus.REVISED,  # Only when a newer proposal answers the feedback
    ],
    ProposalStatus.APPROVED: [],
    ProposalStatus.REVISED: [],
}


def is_task_transition_valid(current_status: TaskStatus, new_status: TaskStatus) -> bool:
    """
    Check if a task status transition is valid.

    Args:
        current_status: Current task status
        new_status: Requested new task status

    Returns:
        True if transition is allowed, False otherwise
    """
    return new_status in TASK_TRANSITION_MATRIX.get(current_status, [])


def validate_task_transition(current_status: TaskStatus, new_status: TaskStatus) -> None:
    """
    Validate a task status transition and raise exception if invalid.

    Args:
        current_status: Current task status
        new_status: Requested new task status

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    if is_task_transition_valid(current_status, new_status):
        logger.debug(f"Valid task transition: {current_status.value} → {new_status.value}")
        return

    allowed_transitions = TASK_TRANSITION_MATRIX.get(current_status, [])
    allowed_names = [s.value for s in allowed_transitions]

    error_msg = (
        f"Invalid task status transition: {current_status.value} → {new_status.value}. "
        f"From {current_status.value}, you can only transition to: {', '.join(allowed_names) or 'nothing'}."
    )

    # Add helpful guidance based on the attempted transition
    if current_status == new_status:
        error_msg += f" The task is already {current_status.value}."
    elif current_status == TaskStatus.APPROVED:
        error_msg += " Approved tasks are terminal. Create a new task for additional work."
    elif current_status == TaskStatus.BLOCKED:
        error_msg += " Blocked tasks resume only through an explicit re-assignment."
    elif new_status in (TaskStatus.COMPLETED, TaskStatus.APPROVED):
        error_msg += " Tasks must be assigned and in progress before they can be completed or approved."

    logger.warning(f"Blocked task transition: {error_msg}")
    raise InvalidTransition(
        message=error_msg,
        current_status=current_status,
        requested_status=new_status,
        allowed_transitions=allowed_transitions,
    )


def get_allowed_task_transitions(current_status: TaskStatus) -> list[TaskStatus]:
    """
    Get list of allowed transitions from current task status.

    Args:
        current_status: Current task status

    Returns:
        List of allowed next statuses
    """
    return list(TASK_TRANSITION_MATRIX.get(current_status, []))


def is_terminal_task_status(status: TaskStatus) -> bool:
    """Check if a task status is terminal (no further transitions)."""
    return not TASK_TRANSITION_MATRIX.get(status)


# Statuses in which a task occupies its agent
ACTIVE_TASK_STATUSES: list[TaskStatus] = [TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS]


def validate_project_advance(current_status: ProjectStatus, new_status: ProjectStatus) -> None:
    """
    Validate a single forward hop of the project phase sequence.

    Raises:
        InvalidTransition: If new_status is not the phase right after current_status
    """
    current_index = PROJECT_PHASE_ORDER.index(current_status)
    if current_index + 1 < len(PROJECT_PHASE_ORDER) and PROJECT_PHASE_ORDER[current_index + 1] == new_status:
        logger.debug(f"Valid project transition: {current_status.value} → {new_status.value}")
        return

    expected = (
        PROJECT_PHASE_ORDER[current_index + 1].value
        if current_index + 1 < len(PROJECT_PHASE_ORDER) else None
    )
    error_msg = f"Invalid project status transition: {current_status.value} → {new_status.value}."
    if expected:
        error_msg += f" The next phase after {current_status.value} is {expected}."
    else:
        error_msg += " Deployed projects are terminal."

    logger.warning(f"Blocked project transition: {error_msg}")
    raise InvalidTransition(
        message=error_msg,
        current_status=current_status,
        requested_status=new_status,
        allowed_transitions=[PROJECT_PHASE_ORDER[current_index + 1]] if expected else [],
    )


def validate_proposal_transition(current_status: ProposalStatus, new_status: ProposalStatus) -> None:
    """
    Validate a proposal status transition.

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    allowed_transitions = PROPOSAL_TRANSITION_MATRIX.get(current_status, [])
    if new_status in allowed_transitions:
        return

    error_msg = f"Invalid proposal status transition: {current_status.value} → {new_status.value}."
    if current_status == ProposalStatus.REJECTED:
        error_msg += " Rejected proposals are answered by submitting a new proposal that revises them."
    logger.warning(f"Blocked proposal transition: {error_msg}")
    raise InvalidTransition(
        message=error_msg,
        current_status=current_status,
        requested_status=new_status,
        allowed_transitions=allowed_transitions,
    )


# Task status sort order for list queries
# Lower number = higher priority (shown first)
# Reflects workflow priority: blocked and active work first, done last
TASK_STATUS_SORT_ORDER: dict[TaskStatus, int] = {
    TaskStatus.BLOCKED: 1,       # Needs attention - highest priority
    TaskStatus.IN_PROGRESS: 2,   # Actively working
    TaskStatus.ASSIGNED: 3,      # Ready to start
    TaskStatus.COMPLETED: 4,     # Needs review decision
    TaskStatus.PENDING: 5,       # Backlog
    TaskStatus.APPROVED: 6,      # Done (usually excluded from lists)
}
