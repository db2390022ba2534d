"""Remote task-list collaborator.

Every call returns a RemoteResult and never raises across this boundary.
Timeouts are applied by the caller.
"""
import asyncio
import json
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from ..config import Settings

logger = logging.getLogger("agentflow-core.task_list")

REMOTE_COMPLETED = "completed"
REMOTE_NEEDS_ACTION = "needsAction"


@dataclass
class RemoteResult:
    success: bool
    data: Any = None
    error: Optional[str] = None

    def items(self) -> list[dict]:
        """Return the ``items`` array of a list response, or an empty list."""
        if isinstance(self.data, dict):
            return self.data.get("items") or []
        if isinstance(self.data, list):
            return self.data
        return []


class TaskListClient(Protocol):
    """
    Remote list of title + notes + status records.

    Used as an async context manager around a batch of calls; entering
    opens the connection, exiting closes it.
    """

    async def __aenter__(self) -> "TaskListClient":
        ...

    async def __aexit__(self, exc_type, exc, tb) -> None:
        ...

    async def list_task_lists(self) -> RemoteResult:
        ...

    async def list_tasks(self, list_id: str) -> RemoteResult:
        ...

    async def create_task(self, list_id: str, title: str, notes: str) -> RemoteResult:
        ...

    async def update_task(self, list_id: str, task_id: str, title: str, notes: str, status: str) -> RemoteResult:
        ...


class McpTaskListClient:
    """Task-list client that calls tools on an MCP server spawned over stdio."""

    def __init__(
        self,
        command: str,
        args: list[str],
        cwd: Optional[str] = None,
        tool_names: Optional[dict[str, str]] = None,
    ):
        self.server_params = StdioServerParameters(command=command, args=args, cwd=cwd)
        self.tool_names = {
            "list_lists": "google_tasks_list_tasklists",
            "list_tasks": "google_tasks_list_tasks",
            "create_task": "google_tasks_create_task",
            "update_task": "google_tasks_update_task",
            **(tool_names or {}),
        }
        self._stack: Optional[AsyncExitStack] = None
        self._session: Optional[ClientSession] = None
        self._connect_error: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "McpTaskListClient":
        return cls(
            command=settings.task_list_server_command,
            args=settings.task_list_server_args,
            cwd=settings.task_list_server_cwd,
            tool_names={
                "list_lists": settings.task_list_tool_list_lists,
                "list_tasks": settings.task_list_tool_list_tasks,
                "create_task": settings.task_list_tool_create_task,
                "update_task": settings.task_list_tool_update_task,
            },
        )

    async def __aenter__(self) -> "McpTaskListClient":
        self._connect_error = None
        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(self.server_params))
            session = await stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
        except asyncio.CancelledError:
            await stack.aclose()
            raise
        except Exception as e:
            await stack.aclose()
            self._connect_error = f"Failed to connect to task-list server: {e}"
            logger.error(self._connect_error, exc_info=True)
            return self

        self._stack = stack
        self._session = session
        logger.info(f"Connected to task-list server ({self.server_params.command})")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        stack, self._stack, self._session = self._stack, None, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except Exception as e:
            logger.warning(f"Error closing task-list server connection: {e}")

    async def _call(self, tool_key: str, arguments: dict) -> RemoteResult:
        if self._session is None:
            return RemoteResult(success=False, error=self._connect_error or "Task-list client is not connected")

        name = self.tool_names[tool_key]
        try:
            result = await self._session.call_tool(name, arguments=arguments)
        except Exception as e:
            logger.warning(f"Task-list tool {name} failed: {e}")
            return RemoteResult(success=False, error=str(e) or type(e).__name__)

        text = "".join(getattr(item, "text", "") for item in result.content)
        if result.isError:
            return RemoteResult(success=False, error=text or f"{name} returned an error")

        try:
            data = json.loads(text) if text else None
        except json.JSONDecodeError:
            data = text
        return RemoteResult(success=True, data=data)

    async def list_task_lists(self) -> RemoteResult:
        return await self._call("list_lists", {})

    async def list_tasks(self, list_id: str) -> RemoteResult:
        return await self._call("list_tasks", {"taskListId": list_id})

    async def create_task(self, list_id: str, title: str, notes: str) -> RemoteResult:
        return await self._call("create_task", {"taskListId": list_id, "title": title, "notes": notes})

    async def update_task(self, list_id: str, task_id: str, title: str, notes: str, status: str) -> RemoteResult:
        return await self._call(
            "update_task",
            {"taskListId": list_id, "taskId": task_id, "title": title, "notes": notes, "status": status},
        )
