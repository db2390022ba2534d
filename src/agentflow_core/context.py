"""Resolved project context handed to planners and the task export pipeline."""
import json
import logging
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from . import crud
from .database import transaction
from .project_workflow import APPROVED_STRATEGY_KEY, DESIGN_SPECS_KEY

logger = logging.getLogger("agentflow-core.context")

PROJECT_HISTORY_KEY = "project_history"


class TaskContext(BaseModel):
    project_id: int
    task_id: Optional[int] = None
    project_name: Optional[str] = None
    project_vision: Optional[str] = None
    approved_strategy: Optional[str] = None
    design_specs: Optional[str] = None
    project_history: Optional[str] = None
    attachments: Optional[str] = None
    related_work: Optional[str] = None


def _decode(value: str) -> str:
    """Knowledge values may hold JSON; strings are unwrapped, anything else is re-serialized."""
    try:
        parsed = json.loads(value)
    except (ValueError, TypeError):
        return value
    return parsed if isinstance(parsed, str) else json.dumps(parsed)


def _knowledge(db: Session, project_id: int, key: str) -> Optional[str]:
    entry = crud.get_knowledge(db, project_id, key)
    return _decode(entry.value) if entry else None


def _format_attachments(db: Session, project_id: int) -> Optional[str]:
    attachments = crud.get_attachments_by_project(db, project_id)
    if not attachments:
        return None
    lines = ["## Project Attachments", ""]
    for a in attachments:
        lines.append(f"- **{a.file_name}** ({a.mime_type})")
        lines.append(f"  Size: {a.file_size / 1024:.1f} KB")
        lines.append(f"  URL: {a.file_url}")
        lines.append("")
    return "\n".join(lines)


def _format_deliverables(db: Session, task_id: int) -> Optional[str]:
    deliverables = crud.get_deliverables_by_task(db, task_id)
    if not deliverables:
        return None
    lines = ["## Related Deliverables", ""]
    for d in deliverables:
        lines.append(f"### {d.name}")
        lines.append(f"**Type**: {d.type}")
        lines.append(f"**URL**: {d.url}")
        if d.description:
            lines.append(f"**Description**: {d.description}")
        lines.append("")
    return "\n".join(lines)


def build_context(db: Session, project_id: int, task_id: Optional[int] = None) -> TaskContext:
    """
    Collect what an agent needs to know about a project, and optionally one task.

    Raises:
        NotFound: If the project does not exist
    """
    project = crud.require_project(db, project_id)
    return TaskContext(
        project_id=project.id,
        task_id=task_id,
        project_name=project.name,
        project_vision=project.description,
        approved_strategy=_knowledge(db, project_id, APPROVED_STRATEGY_KEY),
        design_specs=_knowledge(db, project_id, DESIGN_SPECS_KEY),
        project_history=_knowledge(db, project_id, PROJECT_HISTORY_KEY),
        attachments=_format_attachments(db, project_id),
        related_work=_format_deliverables(db, task_id) if task_id else None,
    )


def store_context(db: Session, project_id: int, key: str, value: Any, source: str):
    """Append a knowledge entry. Non-string values are stored as JSON. Flushes without committing."""
    value_str = value if isinstance(value, str) else json.dumps(value)
    return crud.add_knowledge(db, project_id, key, value_str, source)


def project_history(db: Session, project_id: int, limit: int = 50) -> str:
    logs = crud.get_project_activity_logs(db, project_id, limit)
    if not logs:
        return "No activity history available."
    lines = ["## Recent Project Activity", ""]
    for log in logs:
        lines.append(f"- **{log.action}** ({log.created_at.isoformat()})")
        if log.details:
            lines.append(f"  {log.details}")
    return "\n".join(lines)


def update_project_history(db: Session, project_id: int) -> str:
    """Snapshot recent activity into the project_history knowledge key."""
    with transaction(db):
        crud.require_project(db, project_id)
        history = project_history(db, project_id)
        store_context(db, project_id, PROJECT_HISTORY_KEY, history, "system")
    return history
