"""Agent assignment tracker.

Enforces that an agent holds at most one active task. ``status`` and
``current_task_id`` on Agent rows are only written here.

Everything except ``mark_failed`` flushes without committing so it can run
inside the caller's transaction.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import crud, models
from .database import transaction
from .errors import AgentBusy
from .state_machine import ACTIVE_TASK_STATUSES

logger = logging.getLogger("agentflow-core.agent_tracker")


def active_task_for(db: Session, agent_id: int) -> Optional[models.Task]:
    """Return the task the agent is actively working on, if any."""
    tasks = crud.get_active_tasks_for_agent(db, agent_id, ACTIVE_TASK_STATUSES)
    return tasks[0] if tasks else None


def agent_for_role(db: Session, role: models.AgentRole) -> Optional[models.Agent]:
    return crud.get_agent_by_role(db, role)


def is_busy(agent: models.Agent, task_id: Optional[int] = None) -> bool:
    """
    Check if an agent can not take the given task.

    An agent that is blocked on a task may be handed that same task again.
    """
    if agent.status == models.AgentStatus.IDLE:
        return False
    return task_id is None or agent.current_task_id != task_id


def assign_agent(db: Session, agent_id: int, task_id: int) -> models.Agent:
    """
    Bind an idle agent to a task.

    Raises:
        NotFound: If the agent does not exist
        AgentBusy: If the agent is not idle, or another active task already
            names it as assignee
    """
    agent = crud.require_agent(db, agent_id)

    if is_busy(agent, task_id):
        logger.warning(f"Agent {agent_id} is {agent.status.value}, refusing task {task_id}")
        raise AgentBusy(agent_id, agent.current_task_id)

    # The agent row and the task table must agree
    other_active = [
        t for t in crud.get_active_tasks_for_agent(db, agent_id, ACTIVE_TASK_STATUSES)
        if t.id != task_id
    ]
    if other_active:
        logger.warning(f"Agent {agent_id} still holds active task {other_active[0].id}")
        raise AgentBusy(agent_id, other_active[0].id)

    agent.status = models.AgentStatus.WORKING
    agent.current_task_id = task_id
    agent.blocker_reason = None
    db.flush()
    logger.info(f"Agent {agent_id} now working on task {task_id}")
    return agent


def release_agent(db: Session, agent_id: int) -> models.Agent:
    """Set the agent idle. Releasing an idle agent is a no-op."""
    agent = crud.require_agent(db, agent_id)
    if agent.status == models.AgentStatus.IDLE and agent.current_task_id is None:
        return agent

    agent.status = models.AgentStatus.IDLE
    agent.current_task_id = None
    agent.blocker_reason = None
    db.flush()
    logger.info(f"Agent {agent_id} released")
    return agent


def mark_blocked(db: Session, agent_id: int, task_id: Optional[int], reason: Optional[str] = None) -> models.Agent:
    """Mark an agent blocked. The agent keeps ``current_task_id`` so the blocker stays traceable."""
    agent = crud.require_agent(db, agent_id)
    if (
        agent.status == models.AgentStatus.BLOCKED
        and agent.current_task_id == task_id
        and agent.blocker_reason == reason
    ):
        return agent

    agent.status = models.AgentStatus.BLOCKED
    agent.current_task_id = task_id
    agent.blocker_reason = reason
    db.flush()
    logger.info(f"Agent {agent_id} blocked on task {task_id}: {reason}")
    return agent


def mark_working(db: Session, agent_id: int) -> models.Agent:
    """
    Mark an agent busy with planning work that is not a task.

    Clears a previous collaborator failure so a retry starts clean.

    Raises:
        AgentBusy: If the agent holds a task
    """
    agent = crud.require_agent(db, agent_id)
    if agent.current_task_id is not None:
        raise AgentBusy(agent_id, agent.current_task_id)
    agent.status = models.AgentStatus.WORKING
    agent.blocker_reason = None
    db.flush()
    return agent


def mark_failed(db: Session, agent_id: int, reason: str) -> models.Agent:
    """
    Record a failed collaborator call on the agent that attempted it.

    Runs in its own transaction, after the caller rolled back its work, so
    the failure is visible even though nothing else was persisted.
    """
    with transaction(db):
        agent = crud.require_agent(db, agent_id)
        agent.status = models.AgentStatus.BLOCKED
        agent.blocker_reason = reason
        crud.log_activity(db, agent_id, "collaborator_failed", task_id=agent.current_task_id, details=reason)
    logger.warning(f"Agent {agent_id} blocked after collaborator failure: {reason}")
    return agent
