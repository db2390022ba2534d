"""CRUD operations for the workflow entity store.

Write helpers add and flush but never commit. Callers own the unit of work
and wrap mutations in ``database.transaction`` so that several writes (for
example a task transition and its activity log row) land together.

Activity logs, approvals and knowledge entries are append-only: this module
exposes no update or delete for them.
"""
import logging
from typing import Any, Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from . import models
from .dependencies import validate_dependency
from .errors import NotFound
from .state_machine import TASK_STATUS_SORT_ORDER

logger = logging.getLogger("agentflow-core.crud")


def _task_status_sort_expression():
    """Build SQLAlchemy CASE expression for status-based sorting.

    Returns a CASE expression that maps status to sort order,
    with blocked first and approved last.
    """
    return case(
        *[(models.Task.status == status, order)
          for status, order in TASK_STATUS_SORT_ORDER.items()],
        else_=99
    )


def _require(entity: str, entity_id: Any, instance):
    if instance is None:
        raise NotFound(entity, entity_id)
    return instance


# =============================================================================
# Users
# =============================================================================


def create_user(db: Session, name: str, email: Optional[str] = None) -> models.User:
    """Create a reviewer identity."""
    user = models.User(name=name, email=email)
    db.add(user)
    db.flush()
    logger.info(f"Created user {user.id}: {name}")
    return user


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def require_user(db: Session, user_id: int) -> models.User:
    return _require("User", user_id, get_user(db, user_id))


# =============================================================================
# Projects
# =============================================================================


def create_project(
    db: Session,
    name: str,
    description: str,
    created_by: Optional[int] = None,
    pm_agent_id: Optional[int] = None,
) -> models.Project:
    """
    Create a new project in the ideation phase.

    Args:
        db: Database session
        name: Project name
        description: Free-text project idea
        created_by: User ID of the creator (optional)
        pm_agent_id: Project manager agent ID (optional)

    Returns:
        Created project instance
    """
    project = models.Project(
        name=name,
        description=description,
        status=models.ProjectStatus.IDEATION,
        created_by=created_by,
        pm_agent_id=pm_agent_id,
    )
    db.add(project)
    db.flush()
    logger.info(f"Created project {project.id}: {name}")
    return project


def get_project(db: Session, project_id: int) -> Optional[models.Project]:
    """
    Get a project by ID.

    Args:
        db: Database session
        project_id: Project ID

    Returns:
        Project instance or None if not found
    """
    return db.query(models.Project).filter(models.Project.id == project_id).first()


def require_project(db: Session, project_id: int) -> models.Project:
    return _require("Project", project_id, get_project(db, project_id))


def get_projects(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    status: Optional[models.ProjectStatus] = None,
    created_by: Optional[int] = None,
) -> tuple[list[models.Project], int]:
    """
    Get projects with optional filtering and pagination.

    Returns:
        Tuple of (projects list, total count)
    """
    query = db.query(models.Project)

    if status:
        query = query.filter(models.Project.status == status)
    if created_by:
        query = query.filter(models.Project.created_by == created_by)

    total = query.count()
    projects = query.order_by(models.Project.created_at.desc()).offset(skip).limit(limit).all()
    return projects, total


# =============================================================================
# Attachments
# =============================================================================


def create_attachment(
    db: Session,
    project_id: int,
    file_name: str,
    file_size: int,
    mime_type: str,
    file_key: str,
    file_url: str,
    uploaded_by: Optional[int] = None,
) -> models.ProjectAttachment:
    attachment = models.ProjectAttachment(
        project_id=project_id,
        file_name=file_name,
        file_size=file_size,
        mime_type=mime_type,
        file_key=file_key,
        file_url=file_url,
        uploaded_by=uploaded_by,
    )
    db.add(attachment)
    db.flush()
    return attachment


def get_attachment(db: Session, attachment_id: int) -> Optional[models.ProjectAttachment]:
    return db.query(models.ProjectAttachment).filter(models.ProjectAttachment.id == attachment_id).first()


def require_attachment(db: Session, attachment_id: int) -> models.ProjectAttachment:
    return _require("Attachment", attachment_id, get_attachment(db, attachment_id))


def get_attachments_by_project(db: Session, project_id: int) -> list[models.ProjectAttachment]:
    return (
        db.query(models.ProjectAttachment)
        .filter(models.ProjectAttachment.project_id == project_id)
        .order_by(models.ProjectAttachment.created_at)
        .all()
    )


def delete_attachment(db: Session, attachment: models.ProjectAttachment) -> None:
    db.delete(attachment)
    db.flush()


# =============================================================================
# Proposals
# =============================================================================


def create_proposal(
    db: Session,
    project_id: int,
    proposal_type: models.ProposalType,
    title: str,
    content: dict,
    created_by_agent_id: Optional[int] = None,
    revises_proposal_id: Optional[int] = None,
) -> models.Proposal:
    """
    Create a proposal awaiting review.

    Content is stored as given and never edited afterwards.
    """
    proposal = models.Proposal(
        project_id=project_id,
        proposal_type=proposal_type,
        title=title,
        content=content,
        status=models.ProposalStatus.PENDING_REVIEW,
        created_by_agent_id=created_by_agent_id,
        revises_proposal_id=revises_proposal_id,
    )
    db.add(proposal)
    db.flush()
    logger.info(f"Created {proposal_type.value} proposal {proposal.id} for project {project_id}")
    return proposal


def get_proposal(db: Session, proposal_id: int) -> Optional[models.Proposal]:
    return db.query(models.Proposal).filter(models.Proposal.id == proposal_id).first()


def require_proposal(db: Session, proposal_id: int) -> models.Proposal:
    return _require("Proposal", proposal_id, get_proposal(db, proposal_id))


def get_proposals_by_project(
    db: Session,
    project_id: int,
    status: Optional[models.ProposalStatus] = None,
) -> list[models.Proposal]:
    query = db.query(models.Proposal).filter(models.Proposal.project_id == project_id)
    if status:
        query = query.filter(models.Proposal.status == status)
    return query.order_by(models.Proposal.created_at.desc(), models.Proposal.id.desc()).all()


def get_pending_proposals(db: Session) -> list[models.Proposal]:
    return (
        db.query(models.Proposal)
        .filter(models.Proposal.status == models.ProposalStatus.PENDING_REVIEW)
        .order_by(models.Proposal.created_at, models.Proposal.id)
        .all()
    )


# =============================================================================
# Subsystems and modules
# =============================================================================


def create_subsystem(
    db: Session,
    project_id: int,
    name: str,
    description: str,
    owner_agent_id: Optional[int] = None,
) -> models.Subsystem:
    subsystem = models.Subsystem(
        project_id=project_id,
        name=name,
        description=description,
        owner_agent_id=owner_agent_id,
    )
    db.add(subsystem)
    db.flush()
    return subsystem


def get_subsystems_by_project(db: Session, project_id: int) -> list[models.Subsystem]:
    return (
        db.query(models.Subsystem)
        .filter(models.Subsystem.project_id == project_id)
        .order_by(models.Subsystem.id)
        .all()
    )


def create_module(
    db: Session,
    subsystem_id: int,
    name: str,
    description: str,
    owner_agent_id: Optional[int] = None,
) -> models.Module:
    module = models.Module(
        subsystem_id=subsystem_id,
        name=name,
        description=description,
        owner_agent_id=owner_agent_id,
    )
    db.add(module)
    db.flush()
    return module


def get_module(db: Session, module_id: int) -> Optional[models.Module]:
    return db.query(models.Module).filter(models.Module.id == module_id).first()


def require_module(db: Session, module_id: int) -> models.Module:
    return _require("Module", module_id, get_module(db, module_id))


# =============================================================================
# Tasks
# =============================================================================


def create_task(
    db: Session,
    module_id: int,
    title: str,
    description: str,
    requirements: str,
    planned_role: Optional[models.AgentRole] = None,
    assignable: bool = True,
) -> models.Task:
    """
    Create a task in the pending state.

    Tasks created by a breakdown start with ``assignable=False`` and become
    assignable once the task assignment proposal is approved.
    """
    task = models.Task(
        module_id=module_id,
        title=title,
        description=description,
        requirements=requirements,
        status=models.TaskStatus.PENDING,
        planned_role=planned_role,
        assignable=assignable,
        progress_percentage=0,
    )
    db.add(task)
    db.flush()
    return task


def get_task(db: Session, task_id: int) -> Optional[models.Task]:
    """
    Get a task by ID.

    Args:
        db: Database session
        task_id: Task ID

    Returns:
        Task instance or None if not found
    """
    return db.query(models.Task).filter(models.Task.id == task_id).first()


def require_task(db: Session, task_id: int) -> models.Task:
    return _require("Task", task_id, get_task(db, task_id))


def get_tasks(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    project_id: Optional[int] = None,
    module_id: Optional[int] = None,
    status: Optional[models.TaskStatus] = None,
    assigned_agent_id: Optional[int] = None,
    include_approved: bool = True,
) -> tuple[list[models.Task], int]:
    """
    Get tasks with optional filtering and pagination.

    Tasks are sorted by workflow priority (blocked first, approved last),
    then by creation time.

    Returns:
        Tuple of (tasks list, total count)
    """
    query = db.query(models.Task)

    if project_id:
        query = (
            query.join(models.Module, models.Task.module_id == models.Module.id)
            .join(models.Subsystem, models.Module.subsystem_id == models.Subsystem.id)
            .filter(models.Subsystem.project_id == project_id)
        )
    if module_id:
        query = query.filter(models.Task.module_id == module_id)
    if status:
        query = query.filter(models.Task.status == status)
    if assigned_agent_id:
        query = query.filter(models.Task.assigned_agent_id == assigned_agent_id)
    if not include_approved:
        query = query.filter(models.Task.status != models.TaskStatus.APPROVED)

    total = query.count()
    tasks = (
        query.order_by(_task_status_sort_expression(), models.Task.created_at, models.Task.id)
        .offset(skip)
        .limit(limit)
        .all()
    )
    return tasks, total


def get_project_tasks(db: Session, project_id: int) -> list[models.Task]:
    """Walk subsystem → module → task for one project."""
    return (
        db.query(models.Task)
        .join(models.Module, models.Task.module_id == models.Module.id)
        .join(models.Subsystem, models.Module.subsystem_id == models.Subsystem.id)
        .filter(models.Subsystem.project_id == project_id)
        .order_by(models.Task.id)
        .all()
    )


def get_project_id_for_task(db: Session, task: models.Task) -> int:
    return (
        db.query(models.Subsystem.project_id)
        .join(models.Module, models.Module.subsystem_id == models.Subsystem.id)
        .filter(models.Module.id == task.module_id)
        .scalar()
    )


def get_tasks_by_status(db: Session, statuses: list[models.TaskStatus]) -> list[models.Task]:
    return (
        db.query(models.Task)
        .filter(models.Task.status.in_(statuses))
        .order_by(models.Task.id)
        .all()
    )


def get_active_tasks_for_agent(
    db: Session,
    agent_id: int,
    active_statuses: list[models.TaskStatus],
) -> list[models.Task]:
    return (
        db.query(models.Task)
        .filter(models.Task.assigned_agent_id == agent_id)
        .filter(models.Task.status.in_(active_statuses))
        .all()
    )


# =============================================================================
# Task dependencies
# =============================================================================


def add_task_dependency(db: Session, task_id: int, depends_on_task_id: int) -> models.TaskDependency:
    """
    Add a directed dependency edge between two tasks.

    Adding an edge that already exists returns the existing row.

    Raises:
        NotFound: If either task does not exist
        CircularDependencyError: If the edge is a self edge or closes a cycle
    """
    require_task(db, task_id)
    require_task(db, depends_on_task_id)

    existing = (
        db.query(models.TaskDependency)
        .filter(models.TaskDependency.task_id == task_id)
        .filter(models.TaskDependency.depends_on_task_id == depends_on_task_id)
        .first()
    )
    if existing:
        return existing

    validate_dependency(db, task_id, depends_on_task_id)

    dependency = models.TaskDependency(task_id=task_id, depends_on_task_id=depends_on_task_id)
    db.add(dependency)
    db.flush()
    logger.info(f"Task {task_id} now depends on task {depends_on_task_id}")
    return dependency


def get_task_dependencies(db: Session, task_id: int) -> list[models.Task]:
    return (
        db.query(models.Task)
        .join(models.TaskDependency, models.TaskDependency.depends_on_task_id == models.Task.id)
        .filter(models.TaskDependency.task_id == task_id)
        .order_by(models.Task.id)
        .all()
    )


# =============================================================================
# Agents
# =============================================================================


def create_agent(
    db: Session,
    name: str,
    role: models.AgentRole,
    specialization: str,
) -> models.Agent:
    agent = models.Agent(
        name=name,
        role=role,
        specialization=specialization,
        status=models.AgentStatus.IDLE,
    )
    db.add(agent)
    db.flush()
    logger.info(f"Created agent {agent.id}: {name} ({role.value})")
    return agent


def get_agent(db: Session, agent_id: int) -> Optional[models.Agent]:
    return db.query(models.Agent).filter(models.Agent.id == agent_id).first()


def require_agent(db: Session, agent_id: int) -> models.Agent:
    return _require("Agent", agent_id, get_agent(db, agent_id))


def get_agents(db: Session, status: Optional[models.AgentStatus] = None) -> list[models.Agent]:
    query = db.query(models.Agent)
    if status:
        query = query.filter(models.Agent.status == status)
    return query.order_by(models.Agent.id).all()


def get_agent_by_role(db: Session, role: models.AgentRole) -> Optional[models.Agent]:
    return (
        db.query(models.Agent)
        .filter(models.Agent.role == role)
        .order_by(models.Agent.id)
        .first()
    )


# =============================================================================
# Activity logs (append-only)
# =============================================================================


def log_activity(
    db: Session,
    agent_id: Optional[int],
    action: str,
    task_id: Optional[int] = None,
    details: Optional[str] = None,
    tool_called: Optional[str] = None,
) -> models.ActivityLog:
    entry = models.ActivityLog(
        agent_id=agent_id,
        task_id=task_id,
        action=action,
        details=details,
        tool_called=tool_called,
    )
    db.add(entry)
    db.flush()
    return entry


def get_agent_activity_logs(db: Session, agent_id: int, limit: int = 50) -> list[models.ActivityLog]:
    return (
        db.query(models.ActivityLog)
        .filter(models.ActivityLog.agent_id == agent_id)
        .order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc())
        .limit(limit)
        .all()
    )


def get_task_activity_logs(db: Session, task_id: int) -> list[models.ActivityLog]:
    return (
        db.query(models.ActivityLog)
        .filter(models.ActivityLog.task_id == task_id)
        .order_by(models.ActivityLog.created_at, models.ActivityLog.id)
        .all()
    )


def get_recent_activity_logs(db: Session, limit: int = 50) -> list[models.ActivityLog]:
    return (
        db.query(models.ActivityLog)
        .order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc())
        .limit(limit)
        .all()
    )


# =============================================================================
# Approvals (append-only)
# =============================================================================


def create_approval(
    db: Session,
    entity_type: models.ApprovalEntityType,
    entity_id: int,
    status: models.ApprovalStatus,
    user_id: Optional[int] = None,
    comments: Optional[str] = None,
) -> models.Approval:
    approval = models.Approval(
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        status=status,
        comments=comments,
    )
    db.add(approval)
    db.flush()
    return approval


def get_approvals(
    db: Session,
    entity_type: models.ApprovalEntityType,
    entity_id: int,
) -> list[models.Approval]:
    return (
        db.query(models.Approval)
        .filter(models.Approval.entity_type == entity_type)
        .filter(models.Approval.entity_id == entity_id)
        .order_by(models.Approval.created_at, models.Approval.id)
        .all()
    )


# =============================================================================
# Knowledge entries (append-only)
# =============================================================================


def add_knowledge(db: Session, project_id: int, key: str, value: str, source: str) -> models.KnowledgeEntry:
    entry = models.KnowledgeEntry(project_id=project_id, key=key, value=value, source=source)
    db.add(entry)
    db.flush()
    return entry


def get_knowledge(db: Session, project_id: int, key: str) -> Optional[models.KnowledgeEntry]:
    """Return the latest entry for a key, or None when the key was never stored."""
    return (
        db.query(models.KnowledgeEntry)
        .filter(models.KnowledgeEntry.project_id == project_id)
        .filter(models.KnowledgeEntry.key == key)
        .order_by(models.KnowledgeEntry.created_at.desc(), models.KnowledgeEntry.id.desc())
        .first()
    )


def get_project_knowledge(db: Session, project_id: int, key: Optional[str] = None) -> list[models.KnowledgeEntry]:
    query = db.query(models.KnowledgeEntry).filter(models.KnowledgeEntry.project_id == project_id)
    if key:
        query = query.filter(models.KnowledgeEntry.key == key)
    return query.order_by(models.KnowledgeEntry.created_at.desc(), models.KnowledgeEntry.id.desc()).all()


# =============================================================================
# Deliverables
# =============================================================================


def create_deliverable(
    db: Session,
    task_id: int,
    type: str,
    name: str,
    url: str,
    agent_id: Optional[int] = None,
    description: Optional[str] = None,
) -> models.Deliverable:
    deliverable = models.Deliverable(
        task_id=task_id,
        agent_id=agent_id,
        type=type,
        name=name,
        url=url,
        description=description,
    )
    db.add(deliverable)
    db.flush()
    return deliverable


def get_deliverables_by_task(db: Session, task_id: int) -> list[models.Deliverable]:
    return (
        db.query(models.Deliverable)
        .filter(models.Deliverable.task_id == task_id)
        .order_by(models.Deliverable.id)
        .all()
    )


# =============================================================================
# Execution slot
# =============================================================================


def find_execution_slot(db: Session) -> Optional[models.ExecutionSlot]:
    return db.query(models.ExecutionSlot).filter(models.ExecutionSlot.id == 1).first()


def get_execution_slot(db: Session) -> models.ExecutionSlot:
    """Return the single slot row, creating the empty register on first use."""
    slot = find_execution_slot(db)
    if slot is None:
        slot = models.ExecutionSlot(id=1)
        db.add(slot)
        db.flush()
    return slot


def get_project_activity_logs(db: Session, project_id: int, limit: int = 50) -> list[models.ActivityLog]:
    """Most recent activity on the tasks of one project."""
    return (
        db.query(models.ActivityLog)
        .join(models.Task, models.ActivityLog.task_id == models.Task.id)
        .join(models.Module, models.Task.module_id == models.Module.id)
        .join(models.Subsystem, models.Module.subsystem_id == models.Subsystem.id)
        .filter(models.Subsystem.project_id == project_id)
        .order_by(models.ActivityLog.created_at.desc(), models.ActivityLog.id.desc())
        .limit(limit)
        .all()
    )
