"""Projects API endpoints."""
import base64
import binascii
import logging
from math import ceil
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from agentflow_core import attachments, context, crud, models, project_workflow, schemas
from agentflow_core.database import get_db, transaction
from agentflow_core.errors import NotFound
from agentflow_core.external.storage import ObjectStorage
from agentflow_core.planning import Planner

from ..dependencies import get_planner, get_storage

logger = logging.getLogger("agentflow-core.projects")

router = APIRouter(tags=["projects"])


@router.post("/", response_model=schemas.ProjectResponse, status_code=201)
def create_project(project_data: schemas.ProjectCreate, db: Session = Depends(get_db)):
    """
    Create a new project in the ideation phase.

    - **name**: Project name
    - **description**: Free-text project idea the project manager analyzes
    - **created_by**: Creating user (optional)
    """
    with transaction(db):
        if project_data.created_by is not None:
            crud.require_user(db, project_data.created_by)
        project = crud.create_project(
            db,
            name=project_data.name,
            description=project_data.description,
            created_by=project_data.created_by,
        )
    return project


@router.get("/", response_model=schemas.ProjectListResponse)
def list_projects(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    status: Optional[models.ProjectStatus] = Query(None, description="Filter by status"),
    created_by: Optional[int] = Query(None, description="Filter by creator"),
    db: Session = Depends(get_db),
):
    """List projects, newest first."""
    skip = (page - 1) * page_size
    projects, total = crud.get_projects(db, skip=skip, limit=page_size, status=status, created_by=created_by)
    return schemas.ProjectListResponse(
        items=projects,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{project_id}", response_model=schemas.ProjectResponse)
def get_project(project_id: int, db: Session = Depends(get_db)):
    return crud.require_project(db, project_id)


@router.get("/{project_id}/subsystems", response_model=list[schemas.SubsystemResponse])
def list_subsystems(project_id: int, db: Session = Depends(get_db)):
    """Subsystems of a project with their modules."""
    crud.require_project(db, project_id)
    return crud.get_subsystems_by_project(db, project_id)


@router.post("/{project_id}/subsystems", response_model=schemas.SubsystemResponse, status_code=201)
def create_subsystem(project_id: int, data: schemas.SubsystemCreate, db: Session = Depends(get_db)):
    with transaction(db):
        crud.require_project(db, project_id)
        subsystem = crud.create_subsystem(db, project_id, data.name, data.description)
    return subsystem


@router.post(
    "/{project_id}/subsystems/{subsystem_id}/modules",
    response_model=schemas.ModuleResponse,
    status_code=201,
)
def create_module(project_id: int, subsystem_id: int, data: schemas.ModuleCreate, db: Session = Depends(get_db)):
    with transaction(db):
        subsystems = {s.id for s in crud.get_subsystems_by_project(db, crud.require_project(db, project_id).id)}
        if subsystem_id not in subsystems:
            raise NotFound("Subsystem", f"{subsystem_id} in project {project_id}")
        module = crud.create_module(db, subsystem_id, data.name, data.description)
    return module


@router.get("/{project_id}/tasks", response_model=list[schemas.TaskResponse])
def list_project_tasks(project_id: int, db: Session = Depends(get_db)):
    crud.require_project(db, project_id)
    return crud.get_project_tasks(db, project_id)


@router.get("/{project_id}/progress", response_model=project_workflow.ProjectProgress)
def get_progress(project_id: int, db: Session = Depends(get_db)):
    """Task counts and up to five next actions."""
    return project_workflow.project_progress(db, project_id)


@router.get("/{project_id}/context", response_model=context.TaskContext)
def get_context(project_id: int, task_id: Optional[int] = Query(None), db: Session = Depends(get_db)):
    """Resolved context an agent sees for the project, optionally for one task."""
    return context.build_context(db, project_id, task_id)


@router.get("/{project_id}/knowledge", response_model=list[schemas.KnowledgeResponse])
def list_knowledge(
    project_id: int,
    key: Optional[str] = Query(None, description="Only entries for this key, newest first"),
    db: Session = Depends(get_db),
):
    crud.require_project(db, project_id)
    return crud.get_project_knowledge(db, project_id, key)


@router.post("/{project_id}/knowledge", response_model=schemas.KnowledgeResponse, status_code=201)
def add_knowledge(project_id: int, data: schemas.KnowledgeCreate, db: Session = Depends(get_db)):
    """Append a knowledge entry. The latest entry per key wins on read."""
    with transaction(db):
        crud.require_project(db, project_id)
        entry = context.store_context(db, project_id, data.key, data.value, data.source)
    return entry


@router.post("/{project_id}/history", response_model=schemas.KnowledgeResponse, status_code=201)
def snapshot_history(project_id: int, db: Session = Depends(get_db)):
    """Store a snapshot of recent project activity as project_history knowledge."""
    context.update_project_history(db, project_id)
    return crud.get_knowledge(db, project_id, context.PROJECT_HISTORY_KEY)


@router.post("/{project_id}/start", response_model=schemas.ProposalResponse, status_code=201)
def start_project(
    project_id: int,
    data: Optional[schemas.ProjectStartRequest] = None,
    db: Session = Depends(get_db),
    planner: Planner = Depends(get_planner),
):
    """
    Have the project manager draft a strategy and submit it for review.

    Pass **revises** to answer a rejected strategy proposal.
    """
    revises = data.revises if data else None
    return planner.analyze_project_idea(db, project_id, revises=revises)


@router.post("/{project_id}/advance", response_model=schemas.ProjectResponse)
def advance_project(project_id: int, data: schemas.ProjectAdvanceRequest, db: Session = Depends(get_db)):
    """Apply an external event (all_tasks_approved, qa_signoff)."""
    return project_workflow.advance(db, project_id, data.event)


@router.get("/{project_id}/attachments", response_model=list[schemas.AttachmentResponse])
def list_attachments(project_id: int, db: Session = Depends(get_db)):
    crud.require_project(db, project_id)
    return crud.get_attachments_by_project(db, project_id)


@router.post("/{project_id}/attachments", response_model=schemas.AttachmentResponse, status_code=201)
def upload_attachment(
    project_id: int,
    data: schemas.AttachmentUpload,
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    """
    Upload a file and record it as a project attachment.

    - **file_data**: base64 encoded file content
    """
    try:
        content = base64.b64decode(data.file_data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="file_data is not valid base64")

    return attachments.add_attachment(
        db,
        storage,
        project_id,
        file_name=data.file_name,
        data=content,
        mime_type=data.mime_type,
        uploaded_by=data.uploaded_by,
    )


@router.delete("/{project_id}/attachments/{attachment_id}", status_code=204)
def delete_attachment(
    project_id: int,
    attachment_id: int,
    db: Session = Depends(get_db),
    storage: ObjectStorage = Depends(get_storage),
):
    attachment = crud.require_attachment(db, attachment_id)
    if attachment.project_id != project_id:
        raise NotFound("Attachment", f"{attachment_id} in project {project_id}")
    attachments.delete_attachment(db, storage, attachment_id)
