"""Project workflow machine.

Project status is only ever written here, in response to an approved
proposal or one of the two external events. ``next_status`` is the pure
decision table; the other functions apply it to the database.
"""
import enum
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from pydantic import BaseModel
from sqlalchemy.orm import Session

from . import crud, models
from .database import transaction
from .errors import InvalidTransition
from .models import ProjectStatus, ProposalType
from .state_machine import validate_project_advance

logger = logging.getLogger("agentflow-core.project_workflow")


class Decision(str, enum.Enum):
    """Reviewer decision on a proposal."""

    APPROVE = "approve"
    REJECT = "reject"


class SideEffect(str, enum.Enum):
    NONE = "none"
    TRIGGER_BREAKDOWN = "trigger_breakdown"
    MARK_TASKS_ASSIGNABLE = "mark_tasks_assignable"
    STORE_DESIGN_SPECS = "store_design_specs"


class ProjectEvent(str, enum.Enum):
    """Events raised outside the proposal gate."""

    ALL_TASKS_APPROVED = "all_tasks_approved"
    QA_SIGNOFF = "qa_signoff"


@dataclass(frozen=True)
class WorkflowStep:
    """Statuses to visit, in order, plus the side effect to dispatch afterwards."""

    path: tuple[ProjectStatus, ...]
    side_effect: SideEffect = SideEffect.NONE


class Planner(Protocol):
    """Downstream collaborator that turns an approved strategy into a project tree."""

    def breakdown_project(self, db: Session, project_id: int) -> models.Proposal:
        ...


class ProjectProgress(BaseModel):
    project_id: int
    status: ProjectStatus
    total_tasks: int
    completed_tasks: int
    blocked_tasks: int
    next_actions: list[str]


NO_CHANGE = WorkflowStep(path=())

# Knowledge keys written by the workflow
PROPOSED_STRATEGY_KEY = "proposed_strategy"
APPROVED_STRATEGY_KEY = "approved_strategy"
DESIGN_SPECS_KEY = "design_specs"

MAX_NEXT_ACTIONS = 5


def next_status(current: ProjectStatus, proposal_type: ProposalType, decision: Decision) -> WorkflowStep:
    """
    Decide the project path for a proposal decision.

    A rejection never moves the project. A strategy approval goes through
    strategy_review to design in one step and never skips to development.

    Args:
        current: Current project status
        proposal_type: Type of the reviewed proposal
        decision: Reviewer decision

    Returns:
        WorkflowStep with the statuses to visit (possibly none) and the side effect
    """
    if decision != Decision.APPROVE:
        return NO_CHANGE

    if proposal_type == ProposalType.STRATEGY:
        if current == ProjectStatus.IDEATION:
            return WorkflowStep(
                path=(ProjectStatus.STRATEGY_REVIEW, ProjectStatus.DESIGN),
                side_effect=SideEffect.TRIGGER_BREAKDOWN,
            )
        if current == ProjectStatus.STRATEGY_REVIEW:
            return WorkflowStep(path=(ProjectStatus.DESIGN,), side_effect=SideEffect.TRIGGER_BREAKDOWN)

    elif proposal_type == ProposalType.TASK_ASSIGNMENT:
        if current == ProjectStatus.DESIGN:
            return WorkflowStep(path=(ProjectStatus.DEVELOPMENT,), side_effect=SideEffect.MARK_TASKS_ASSIGNABLE)

    elif proposal_type == ProposalType.DESIGN:
        if current == ProjectStatus.DESIGN:
            return WorkflowStep(path=(), side_effect=SideEffect.STORE_DESIGN_SPECS)

    return NO_CHANGE


def _set_status(db: Session, project: models.Project, new_status: ProjectStatus, reason: str) -> None:
    old_status = project.status
    validate_project_advance(old_status, new_status)
    project.status = new_status
    db.flush()
    crud.log_activity(
        db,
        project.pm_agent_id,
        "project_status_changed",
        details=f"Project {project.id}: {old_status.value} → {new_status.value} ({reason})",
    )
    logger.info(f"Project {project.id} status: {old_status.value} → {new_status.value} ({reason})")


def on_proposal_decision(
    db: Session,
    proposal: models.Proposal,
    decision: Decision,
    planner: Optional[Planner] = None,
) -> WorkflowStep:
    """
    Apply a proposal decision to the owning project.

    Flushes without committing; the proposal gate owns the transaction so a
    failing side effect rolls back the review as well.

    Raises:
        ExternalUnavailable: If the breakdown collaborator fails
    """
    project = crud.require_project(db, proposal.project_id)
    step = next_status(project.status, proposal.proposal_type, decision)

    reason = f"{proposal.proposal_type.value} proposal {proposal.id} {decision.value}d"
    for status in step.path:
        _set_status(db, project, status, reason)

    if step.side_effect == SideEffect.TRIGGER_BREAKDOWN:
        _store_approved_strategy(db, project, proposal)
        if planner is None:
            logger.info(f"No planner configured, breakdown of project {project.id} deferred")
        else:
            planner.breakdown_project(db, project.id)

    elif step.side_effect == SideEffect.MARK_TASKS_ASSIGNABLE:
        tasks = crud.get_project_tasks(db, project.id)
        for task in tasks:
            task.assignable = True
        db.flush()
        logger.info(f"Marked {len(tasks)} tasks assignable for project {project.id}")

    elif step.side_effect == SideEffect.STORE_DESIGN_SPECS:
        crud.add_knowledge(
            db,
            project.id,
            DESIGN_SPECS_KEY,
            json.dumps(proposal.content),
            source=f"proposal:{proposal.id}",
        )

    return step


def _store_approved_strategy(db: Session, project: models.Project, proposal: models.Proposal) -> None:
    proposed = crud.get_knowledge(db, project.id, PROPOSED_STRATEGY_KEY)
    value = proposed.value if proposed else json.dumps(proposal.content)
    crud.add_knowledge(db, project.id, APPROVED_STRATEGY_KEY, value, source=f"proposal:{proposal.id}")


def _all_tasks_approved(tasks: list[models.Task]) -> bool:
    return bool(tasks) and all(t.status == models.TaskStatus.APPROVED for t in tasks)


def on_task_approved(db: Session, project_id: int) -> None:
    """Move a development project to testing once every one of its tasks is approved."""
    project = crud.require_project(db, project_id)
    if project.status != ProjectStatus.DEVELOPMENT:
        return
    if _all_tasks_approved(crud.get_project_tasks(db, project_id)):
        _set_status(db, project, ProjectStatus.TESTING, ProjectEvent.ALL_TASKS_APPROVED.value)


def advance(db: Session, project_id: int, event: ProjectEvent) -> models.Project:
    """
    Apply an external event to a project.

    Raises:
        NotFound: If the project does not exist
        InvalidTransition: If the event does not apply to the current phase,
            or not every task is approved yet
    """
    with transaction(db):
        project = crud.require_project(db, project_id)

        if event == ProjectEvent.ALL_TASKS_APPROVED:
            validate_project_advance(project.status, ProjectStatus.TESTING)
            tasks = crud.get_project_tasks(db, project_id)
            if not _all_tasks_approved(tasks):
                open_count = sum(1 for t in tasks if t.status != models.TaskStatus.APPROVED)
                raise InvalidTransition(
                    f"Project {project_id} has {open_count} task(s) not approved yet"
                    if tasks else f"Project {project_id} has no tasks",
                    current_status=project.status,
                    requested_status=ProjectStatus.TESTING,
                )
            _set_status(db, project, ProjectStatus.TESTING, event.value)

        elif event == ProjectEvent.QA_SIGNOFF:
            _set_status(db, project, ProjectStatus.DEPLOYED, event.value)

    return project


def project_progress(db: Session, project_id: int) -> ProjectProgress:
    """Summarize task counts and the next few actions for a project."""
    project = crud.require_project(db, project_id)

    total = completed = blocked = 0
    next_actions: list[str] = []
    for task in crud.get_project_tasks(db, project_id):
        total += 1
        if task.status in (models.TaskStatus.COMPLETED, models.TaskStatus.APPROVED):
            completed += 1
        elif task.status == models.TaskStatus.BLOCKED:
            blocked += 1
            next_actions.append(f"Resolve blocker for task: {task.title}")
        elif task.status in (models.TaskStatus.ASSIGNED, models.TaskStatus.PENDING):
            next_actions.append(f"Execute task: {task.title}")

    return ProjectProgress(
        project_id=project.id,
        status=project.status,
        total_tasks=total,
        completed_tasks=completed,
        blocked_tasks=blocked,
        next_actions=next_actions[:MAX_NEXT_ACTIONS],
    )
