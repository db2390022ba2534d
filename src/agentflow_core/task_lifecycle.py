"""Task lifecycle machine.

Every public operation runs in one transaction: the activity log row and the
task/agent mutation it describes are committed together or not at all.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from . import agent_tracker, crud, models, project_workflow
from .database import transaction
from .errors import FeedbackRequired, InvalidTransition
from .models import TaskStatus
from .state_machine import ACTIVE_TASK_STATUSES, get_allowed_task_transitions, validate_task_transition

logger = logging.getLogger("agentflow-core.task_lifecycle")


def _clamp_percent(percent: int) -> int:
    return max(0, min(100, int(percent)))


def allowed_transitions(status: TaskStatus) -> list[TaskStatus]:
    return get_allowed_task_transitions(status)


def assign(db: Session, task_id: int, agent_id: int) -> models.Task:
    """
    Assign a task to an agent.

    Allowed from pending, and from blocked as an explicit re-assignment.
    A blocked task may go back to the agent that is blocked on it.

    Raises:
        NotFound: If the task or agent does not exist
        InvalidTransition: If the task is in another status or not assignable yet
        AgentBusy: If the agent already holds an active task
    """
    with transaction(db):
        task = crud.require_task(db, task_id)
        validate_task_transition(task.status, TaskStatus.ASSIGNED)

        if not task.assignable:
            raise InvalidTransition(
                f"Task {task_id} is not assignable until its project's task assignments are approved",
                current_status=task.status,
                requested_status=TaskStatus.ASSIGNED,
            )

        previous_agent_id = task.assigned_agent_id
        agent_tracker.assign_agent(db, agent_id, task.id)

        # Re-assignment away from the agent that was blocked on this task frees it
        if previous_agent_id and previous_agent_id != agent_id:
            previous = crud.get_agent(db, previous_agent_id)
            if previous and previous.current_task_id == task.id:
                agent_tracker.release_agent(db, previous_agent_id)

        old_status = task.status
        task.status = TaskStatus.ASSIGNED
        task.assigned_agent_id = agent_id
        task.blocker_reason = None
        crud.log_activity(
            db,
            agent_id,
            "task_assigned",
            task_id=task.id,
            details=f"{old_status.value} → assigned",
        )

    logger.info(f"Task {task_id} assigned to agent {agent_id}")
    return task


def report_progress(db: Session, task_id: int, percent: int, note: Optional[str] = None) -> models.Task:
    """
    Record progress on an active task. The first report moves it to in_progress.

    Raises:
        InvalidTransition: If the task is not assigned or in progress
    """
    with transaction(db):
        task = crud.require_task(db, task_id)
        if task.status not in ACTIVE_TASK_STATUSES:
            raise InvalidTransition(
                f"Cannot report progress on task {task_id} in status {task.status.value}; "
                f"the task must be assigned or in_progress",
                current_status=task.status,
                requested_status=TaskStatus.IN_PROGRESS,
                allowed_transitions=get_allowed_task_transitions(task.status),
            )

        if task.status == TaskStatus.ASSIGNED:
            validate_task_transition(task.status, TaskStatus.IN_PROGRESS)
            task.status = TaskStatus.IN_PROGRESS

        task.progress_percentage = _clamp_percent(percent)
        crud.log_activity(
            db,
            task.assigned_agent_id,
            "progress_reported",
            task_id=task.id,
            details=f"{task.progress_percentage}%" + (f": {note}" if note else ""),
        )

    logger.debug(f"Task {task_id} progress {task.progress_percentage}%")
    return task


def start_work(db: Session, task: models.Task, action: str, details: Optional[str] = None) -> models.Task:
    """
    Move an assigned task to in_progress. A task already in progress stays there.

    Flushes without committing; used by callers that pair the transition with
    other writes in their own transaction.

    Raises:
        InvalidTransition: If the task is not assigned or in progress
    """
    if task.status not in ACTIVE_TASK_STATUSES:
        raise InvalidTransition(
            f"Task {task.id} must be assigned or in_progress to start work, not {task.status.value}",
            current_status=task.status,
            requested_status=TaskStatus.IN_PROGRESS,
            allowed_transitions=get_allowed_task_transitions(task.status),
        )
    if task.status == TaskStatus.ASSIGNED:
        task.status = TaskStatus.IN_PROGRESS
    crud.log_activity(db, task.assigned_agent_id, action, task_id=task.id, details=details)
    return task


def complete(db: Session, task_id: int, result: Optional[str] = None) -> models.Task:
    """
    Complete an in-progress task and release its agent.

    completed_at is written on the first completion only. A second call fails
    because completed → completed is not a transition.

    Raises:
        InvalidTransition: If the task is not in progress
    """
    with transaction(db):
        task = crud.require_task(db, task_id)
        validate_task_transition(task.status, TaskStatus.COMPLETED)

        task.status = TaskStatus.COMPLETED
        task.progress_percentage = 100
        if task.completed_at is None:
            task.completed_at = datetime.utcnow()
        if result is not None:
            task.result = result

        if task.assigned_agent_id:
            agent_tracker.release_agent(db, task.assigned_agent_id)

        crud.log_activity(db, task.assigned_agent_id, "task_completed", task_id=task.id, details=result)

    logger.info(f"Task {task_id} completed")
    return task


def apply_block(db: Session, task: models.Task, reason: str, action: str = "task_blocked") -> models.Task:
    """
    Move a task to blocked and block its agent if the agent still holds it.

    Flushes without committing.

    Raises:
        InvalidTransition: If the task is approved or already blocked
    """
    validate_task_transition(task.status, TaskStatus.BLOCKED)

    old_status = task.status
    task.status = TaskStatus.BLOCKED
    task.blocker_reason = reason

    if task.assigned_agent_id:
        agent = crud.get_agent(db, task.assigned_agent_id)
        if agent and agent.current_task_id == task.id:
            agent_tracker.mark_blocked(db, agent.id, task.id, reason)

    crud.log_activity(
        db,
        task.assigned_agent_id,
        action,
        task_id=task.id,
        details=f"{old_status.value} → blocked: {reason}",
    )
    return task


def block(db: Session, task_id: int, reason: str) -> models.Task:
    """
    Block a task. Its agent, if still holding it, is blocked too and keeps the task.

    Raises:
        FeedbackRequired: If reason is blank
        InvalidTransition: If the task is approved or already blocked
    """
    if not reason or not reason.strip():
        raise FeedbackRequired("A blocker reason is required to block a task")

    with transaction(db):
        task = crud.require_task(db, task_id)
        apply_block(db, task, reason)

    logger.info(f"Task {task_id} blocked: {reason}")
    return task


def approve(
    db: Session,
    task_id: int,
    reviewer_id: Optional[int] = None,
    comments: Optional[str] = None,
) -> models.Task:
    """
    Approve a completed task.

    Approving the last open task of a project in development moves the
    project to testing in the same transaction.

    Raises:
        InvalidTransition: If the task is not completed
    """
    with transaction(db):
        task = crud.require_task(db, task_id)
        if reviewer_id is not None:
            crud.require_user(db, reviewer_id)
        validate_task_transition(task.status, TaskStatus.APPROVED)

        task.status = TaskStatus.APPROVED
        crud.create_approval(
            db,
            models.ApprovalEntityType.TASK,
            task.id,
            models.ApprovalStatus.APPROVED,
            user_id=reviewer_id,
            comments=comments,
        )
        crud.log_activity(
            db,
            task.assigned_agent_id,
            "task_approved",
            task_id=task.id,
            details=f"Approved by user {reviewer_id}" + (f": {comments}" if comments else ""),
        )

        project_workflow.on_task_approved(db, crud.get_project_id_for_task(db, task))

    logger.info(f"Task {task_id} approved")
    return task


def reject(db: Session, task_id: int, reviewer_id: Optional[int], feedback: str) -> models.Task:
    """
    Send completed work back. The task becomes blocked with the feedback as
    its blocker reason and needs an explicit re-assignment.

    Raises:
        FeedbackRequired: If feedback is blank
        InvalidTransition: If the task is not completed
    """
    if not feedback or not feedback.strip():
        raise FeedbackRequired("Feedback is required when rejecting a task")

    with transaction(db):
        task = crud.require_task(db, task_id)
        if reviewer_id is not None:
            crud.require_user(db, reviewer_id)
        if task.status != TaskStatus.COMPLETED:
            raise InvalidTransition(
                f"Only completed tasks can be rejected; task {task_id} is {task.status.value}",
                current_status=task.status,
                requested_status=TaskStatus.BLOCKED,
                allowed_transitions=get_allowed_task_transitions(task.status),
            )

        task.status = TaskStatus.BLOCKED
        task.blocker_reason = feedback
        crud.create_approval(
            db,
            models.ApprovalEntityType.TASK,
            task.id,
            models.ApprovalStatus.REJECTED,
            user_id=reviewer_id,
            comments=feedback,
        )
        crud.log_activity(
            db,
            task.assigned_agent_id,
            "task_rejected",
            task_id=task.id,
            details=f"Rejected by user {reviewer_id}: {feedback}",
        )

    logger.info(f"Task {task_id} rejected: {feedback}")
    return task
