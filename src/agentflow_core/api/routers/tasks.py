"""Tasks API endpoints: the task lifecycle."""
import logging
from math import ceil
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from agentflow_core import crud, models, schemas, task_lifecycle
from agentflow_core.database import get_db, transaction
from agentflow_core.dependencies import get_unfinished_dependencies

logger = logging.getLogger("agentflow-core.tasks")

router = APIRouter(tags=["tasks"])


@router.post("/", response_model=schemas.TaskResponse, status_code=201)
def create_task(task_data: schemas.TaskCreate, db: Session = Depends(get_db)):
    """
    Create an ad hoc task in an existing module.

    Ad hoc tasks are assignable right away; tasks from a project breakdown
    wait for the task assignment proposal.
    """
    with transaction(db):
        crud.require_module(db, task_data.module_id)
        task = crud.create_task(
            db,
            module_id=task_data.module_id,
            title=task_data.title,
            description=task_data.description,
            requirements=task_data.requirements,
            planned_role=task_data.planned_role,
        )
    logger.info(f"Created task {task.id}: {task.title}")
    return task


@router.get("/", response_model=schemas.TaskListResponse)
def list_tasks(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    project_id: Optional[int] = Query(None, description="Filter by project"),
    module_id: Optional[int] = Query(None, description="Filter by module"),
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    assigned_agent_id: Optional[int] = Query(None, description="Filter by assigned agent"),
    include_approved: bool = Query(True, description="Include approved tasks"),
    db: Session = Depends(get_db),
):
    """
    List tasks with filtering and pagination.

    Tasks are ordered by workflow priority (blocked first, approved last),
    then by creation time.
    """
    skip = (page - 1) * page_size
    tasks, total = crud.get_tasks(
        db,
        skip=skip,
        limit=page_size,
        project_id=project_id,
        module_id=module_id,
        status=status,
        assigned_agent_id=assigned_agent_id,
        include_approved=include_approved,
    )
    return schemas.TaskListResponse(
        items=tasks,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(task_id: int, db: Session = Depends(get_db)):
    return crud.require_task(db, task_id)


@router.get("/{task_id}/transitions", response_model=schemas.AllowedTransitionsResponse)
def get_allowed_transitions(task_id: int, db: Session = Depends(get_db)):
    task = crud.require_task(db, task_id)
    return schemas.AllowedTransitionsResponse(
        task_id=task.id,
        status=task.status,
        allowed_transitions=task_lifecycle.allowed_transitions(task.status),
    )


@router.post("/{task_id}/assign", response_model=schemas.TaskResponse)
def assign_task(task_id: int, data: schemas.TaskAssignRequest, db: Session = Depends(get_db)):
    """Assign a pending task, or re-assign a blocked one. The agent must be idle."""
    return task_lifecycle.assign(db, task_id, data.agent_id)


@router.post("/{task_id}/progress", response_model=schemas.TaskResponse)
def report_progress(task_id: int, data: schemas.TaskProgressRequest, db: Session = Depends(get_db)):
    return task_lifecycle.report_progress(db, task_id, data.percent, data.note)


@router.post("/{task_id}/complete", response_model=schemas.TaskResponse)
def complete_task(
    task_id: int,
    data: Optional[schemas.TaskCompleteRequest] = None,
    db: Session = Depends(get_db),
):
    return task_lifecycle.complete(db, task_id, data.result if data else None)


@router.post("/{task_id}/block", response_model=schemas.TaskResponse)
def block_task(task_id: int, data: schemas.TaskBlockRequest, db: Session = Depends(get_db)):
    return task_lifecycle.block(db, task_id, data.reason)


@router.post("/{task_id}/approve", response_model=schemas.TaskResponse)
def approve_task(
    task_id: int,
    data: Optional[schemas.TaskApproveRequest] = None,
    db: Session = Depends(get_db),
):
    data = data or schemas.TaskApproveRequest()
    return task_lifecycle.approve(db, task_id, data.reviewer_id, data.comments)


@router.post("/{task_id}/reject", response_model=schemas.TaskResponse)
def reject_task(task_id: int, data: schemas.RejectRequest, db: Session = Depends(get_db)):
    """Send completed work back. The task is blocked with the feedback."""
    return task_lifecycle.reject(db, task_id, data.reviewer_id, data.feedback)


@router.get("/{task_id}/dependencies", response_model=list[schemas.TaskResponse])
def list_dependencies(
    task_id: int,
    unfinished_only: bool = Query(False, description="Only dependencies not completed or approved yet"),
    db: Session = Depends(get_db),
):
    crud.require_task(db, task_id)
    if unfinished_only:
        return get_unfinished_dependencies(db, task_id)
    return crud.get_task_dependencies(db, task_id)


@router.post("/{task_id}/dependencies", response_model=list[schemas.TaskResponse], status_code=201)
def add_dependency(task_id: int, data: schemas.DependencyCreate, db: Session = Depends(get_db)):
    """Add a dependency edge. Edges that would close a cycle are rejected with 409."""
    with transaction(db):
        crud.add_task_dependency(db, task_id, data.depends_on_task_id)
    return crud.get_task_dependencies(db, task_id)


@router.get("/{task_id}/deliverables", response_model=list[schemas.DeliverableResponse])
def list_deliverables(task_id: int, db: Session = Depends(get_db)):
    crud.require_task(db, task_id)
    return crud.get_deliverables_by_task(db, task_id)


@router.post("/{task_id}/deliverables", response_model=schemas.DeliverableResponse, status_code=201)
def add_deliverable(task_id: int, data: schemas.DeliverableCreate, db: Session = Depends(get_db)):
    with transaction(db):
        task = crud.require_task(db, task_id)
        agent_id = data.agent_id or task.assigned_agent_id
        deliverable = crud.create_deliverable(
            db,
            task_id=task.id,
            type=data.type,
            name=data.name,
            url=data.url,
            agent_id=agent_id,
            description=data.description,
        )
        crud.log_activity(db, agent_id, "deliverable_added", task_id=task.id, details=f"{data.type}: {data.name}")
    return deliverable


@router.get("/{task_id}/activity", response_model=list[schemas.ActivityLogResponse])
def list_task_activity(task_id: int, db: Session = Depends(get_db)):
    crud.require_task(db, task_id)
    return crud.get_task_activity_logs(db, task_id)


@router.get("/{task_id}/approvals", response_model=list[schemas.ApprovalResponse])
def list_task_approvals(task_id: int, db: Session = Depends(get_db)):
    crud.require_task(db, task_id)
    return crud.get_approvals(db, models.ApprovalEntityType.TASK, task_id)
