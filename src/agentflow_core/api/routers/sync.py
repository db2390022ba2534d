"""Remote task-list sync API endpoints."""
import logging

from fastapi import APIRouter, Depends
from agentflow_core import schemas
from agentflow_core.config import get_settings
from agentflow_core.sync import SyncReport, TaskListSync

from ..dependencies import get_sync

logger = logging.getLogger("agentflow-core.sync_api")

router = APIRouter(tags=["sync"])


@router.get("/status", response_model=schemas.SyncStatusResponse)
def get_sync_status(sync: TaskListSync = Depends(get_sync)):
    return schemas.SyncStatusResponse(
        enabled=get_settings().sync_enabled,
        running=sync.running,
        list_id=sync.list_id,
        interval_minutes=sync.interval_seconds / 60,
        last_report=sync.last_report.model_dump(mode="json") if sync.last_report else None,
    )


@router.post("/run", response_model=SyncReport)
async def run_sync(sync: TaskListSync = Depends(get_sync)):
    """Run one sync tick now. Remote failures are reported, not raised."""
    return await sync.run_once()


@router.get("/task-lists")
async def list_remote_task_lists(sync: TaskListSync = Depends(get_sync)):
    """Task lists visible to the remote collaborator."""
    return {"items": await sync.list_task_lists()}
