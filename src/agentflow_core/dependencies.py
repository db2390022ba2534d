"""Dependency validation and query logic for task dependencies."""
import logging
from typing import Optional, Set

from sqlalchemy.orm import Session

from . import models
from .errors import CircularDependencyError

logger = logging.getLogger("agentflow-core.dependencies")


def get_transitive_dependencies(db: Session, task_id: int) -> Set[int]:
    """
    Get all transitive dependencies of a task.

    Follows chains of any length; each task is visited once.

    Args:
        db: Database session
        task_id: Starting task ID

    Returns:
        Set of visited task IDs, including the starting task itself
    """
    visited: Set[int] = set()
    stack = [task_id]

    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)

        dependencies = (
            db.query(models.TaskDependency.depends_on_task_id)
            .filter(models.TaskDependency.task_id == current)
            .all()
        )
        stack.extend(dep_id for (dep_id,) in dependencies if dep_id not in visited)

    return visited


def detect_circular_dependency(
    db: Session,
    task_id: int,
    depends_on_task_id: int,
) -> Optional[list[int]]:
    """
    Detect if adding the edge task_id → depends_on_task_id would close a cycle.

    Uses depth-first search over the existing edges.

    Returns:
        List representing the cycle path if found, None otherwise
    """
    if task_id == depends_on_task_id:
        return [task_id, task_id]

    if task_id in get_transitive_dependencies(db, depends_on_task_id):
        return [task_id, depends_on_task_id, task_id]

    return None


def validate_dependency(db: Session, task_id: int, depends_on_task_id: int) -> None:
    """
    Validate a new dependency edge before it is written.

    Raises:
        CircularDependencyError: If the edge would make the graph cyclic
    """
    cycle = detect_circular_dependency(db, task_id, depends_on_task_id)
    if cycle:
        path = " → ".join(str(t) for t in cycle)
        logger.warning(f"Rejected circular task dependency: {path}")
        raise CircularDependencyError(f"Circular dependency detected: {path}", cycle)


def get_unfinished_dependencies(db: Session, task_id: int) -> list[models.Task]:
    """
    Get direct dependencies of a task that are not completed or approved yet.

    Returns:
        Tasks the given task is still waiting on
    """
    return (
        db.query(models.Task)
        .join(models.TaskDependency, models.TaskDependency.depends_on_task_id == models.Task.id)
        .filter(models.TaskDependency.task_id == task_id)
        .filter(models.Task.status.notin_([models.TaskStatus.COMPLETED, models.TaskStatus.APPROVED]))
        .all()
    )
