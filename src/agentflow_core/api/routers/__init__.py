"""API routers for AgentFlow Core."""

from . import agents, projects, proposals, sync, task_export, tasks

__all__ = ["agents", "projects", "proposals", "sync", "task_export", "tasks"]
