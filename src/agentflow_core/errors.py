"""Error taxonomy for the workflow engine.

State-machine violations and missing input are usage errors: they are raised
synchronously to the caller and never retried. ``ExternalUnavailable`` is the
only transient failure; the sync loop recovers from it locally, interactive
operations surface it.
"""
from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for every error the engine raises on purpose."""

    code = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(WorkflowError):
    """Raised when a referenced entity does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransition(WorkflowError):
    """Raised when a state machine precondition is violated."""

    code = "invalid_transition"

    def __init__(
        self,
        message: str,
        current_status: Any = None,
        requested_status: Any = None,
        allowed_transitions: Optional[list] = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions or []


class AgentBusy(WorkflowError):
    """Raised when an agent already holds an active task."""

    code = "agent_busy"

    def __init__(self, agent_id: int, current_task_id: Optional[int] = None):
        detail = f" (holding task {current_task_id})" if current_task_id else ""
        super().__init__(f"Agent {agent_id} is not idle{detail}")
        self.agent_id = agent_id
        self.current_task_id = current_task_id


class AlreadyReviewed(WorkflowError):
    """Raised when a proposal that left pending_review is reviewed again."""

    code = "already_reviewed"


class FeedbackRequired(WorkflowError):
    """Raised when a rejection arrives without feedback."""

    code = "feedback_required"


class ExternalUnavailable(WorkflowError):
    """Raised when a collaborator call fails or times out."""

    code = "external_unavailable"

    def __init__(self, collaborator: str, reason: str):
        super().__init__(f"{collaborator} unavailable: {reason}")
        self.collaborator = collaborator
        self.reason = reason


class Conflict(WorkflowError):
    """Raised when a concurrent write hit a guarded resource."""

    code = "conflict"


class CircularDependencyError(Conflict):
    """Raised when a task dependency edge would close a cycle."""

    code = "circular_dependency"

    def __init__(self, message: str, cycle: list[int]):
        super().__init__(message)
        self.cycle = cycle
