"""FastAPI dependencies that hand routers the collaborators created at startup."""
from fastapi import Request

from ..external.storage import HttpObjectStorage, ObjectStorage
from ..planning import Planner
from ..sync import TaskListSync
from ..task_export import TaskExportPipeline


def get_planner(request: Request) -> Planner:
    return Planner(request.app.state.text_generator)


def get_storage(request: Request) -> ObjectStorage:
    """
    Object storage for attachments.

    Raises:
        ExternalUnavailable: If no storage endpoint is configured
    """
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        storage = HttpObjectStorage.from_settings(request.app.state.settings)
        request.app.state.storage = storage
    return storage


def get_export_pipeline(request: Request) -> TaskExportPipeline:
    return request.app.state.export_pipeline


def get_sync(request: Request) -> TaskListSync:
    return request.app.state.sync
