"""Task export API endpoints: the spec handoff queue and the execution slot."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from agentflow_core import schemas
from agentflow_core.database import get_db
from agentflow_core.task_export import CurrentSlot, TaskExportPipeline, TaskSpec

from ..dependencies import get_export_pipeline

logger = logging.getLogger("agentflow-core.task_export_api")

router = APIRouter(tags=["task-export"])


@router.post("/specs", response_model=TaskSpec, response_model_by_alias=True, status_code=201)
def generate_spec(
    data: schemas.SpecGenerateRequest,
    db: Session = Depends(get_db),
    pipeline: TaskExportPipeline = Depends(get_export_pipeline),
):
    """Generate a spec for a task and place it in the pending queue."""
    return pipeline.generate_spec(db, data.project_id, data.task_id, data.extra_context)


@router.get("/specs", response_model=list[TaskSpec], response_model_by_alias=True)
def list_pending_specs(
    include_decided: bool = Query(False, description="Include approved and rejected specs"),
    pipeline: TaskExportPipeline = Depends(get_export_pipeline),
):
    return pipeline.list_pending(include_decided)


@router.get("/specs/{spec_id}", response_model=TaskSpec, response_model_by_alias=True)
def get_pending_spec(spec_id: str, pipeline: TaskExportPipeline = Depends(get_export_pipeline)):
    return pipeline.read_pending(spec_id)


@router.post("/specs/{spec_id}/promote", response_model=TaskSpec, response_model_by_alias=True)
def promote_spec(
    spec_id: str,
    data: Optional[schemas.SpecPromoteRequest] = None,
    db: Session = Depends(get_db),
    pipeline: TaskExportPipeline = Depends(get_export_pipeline),
):
    """Promote a spec to the current slot, replacing an unfinished occupant."""
    return pipeline.promote(db, spec_id, data.reviewer_id if data else None)


@router.post("/specs/{spec_id}/try-promote", response_model=TaskSpec, response_model_by_alias=True)
def try_promote_spec(
    spec_id: str,
    data: Optional[schemas.SpecPromoteRequest] = None,
    db: Session = Depends(get_db),
    pipeline: TaskExportPipeline = Depends(get_export_pipeline),
):
    """Promote a spec only if the current slot is free; 409 otherwise."""
    return pipeline.try_promote(db, spec_id, data.reviewer_id if data else None)


@router.post("/specs/{spec_id}/reject", response_model=TaskSpec, response_model_by_alias=True)
def reject_spec(
    spec_id: str,
    data: schemas.SpecRejectRequest,
    db: Session = Depends(get_db),
    pipeline: TaskExportPipeline = Depends(get_export_pipeline),
):
    """Reject a pending spec. Its task is blocked with the feedback."""
    return pipeline.reject_spec(db, spec_id, data.reviewer_id, data.feedback)


@router.get("/current", response_model=CurrentSlot)
def get_current_slot(db: Session = Depends(get_db), pipeline: TaskExportPipeline = Depends(get_export_pipeline)):
    return pipeline.current_slot(db)
