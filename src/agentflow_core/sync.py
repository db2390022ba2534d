"""Periodic mirror of open tasks into a remote task list.

The loop is owned by the application lifespan: ``start()`` schedules it on the
running event loop and ``stop()`` cancels it. Each tick opens its own database
session and one connection to the remote list.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models
from .config import Settings
from .errors import ExternalUnavailable
from .external.task_list import REMOTE_COMPLETED, REMOTE_NEEDS_ACTION, RemoteResult, TaskListClient
from .models import TaskStatus

logger = logging.getLogger("agentflow-core.sync")

COLLABORATOR = "task-list"
OPEN_STATUSES = [TaskStatus.PENDING, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS]
DONE_STATUSES = [TaskStatus.COMPLETED, TaskStatus.APPROVED]


class SyncReport(BaseModel):
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    list_id: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class SyncItem:
    """What one tick needs to know about a task, read in the worker thread."""

    task_id: int
    title: str
    remote_task_id: Optional[str]
    status: str
    notes: str


def remote_status_for(status: TaskStatus) -> str:
    return REMOTE_COMPLETED if status in DONE_STATUSES else REMOTE_NEEDS_ACTION


def build_notes(task: models.Task, agent: Optional[models.Agent], synced_at: datetime) -> str:
    lines = [
        f"Orchestrator Task ID: {task.id}",
        f"Description: {task.description or 'N/A'}",
        f"Requirements: {task.requirements or 'N/A'}",
        f"Status: {task.status.value}",
        f"Progress: {task.progress_percentage}%",
        "",
    ]
    if agent is not None:
        lines += [
            f"Agent: {agent.name}",
            f"Role: {agent.role.value}",
            f"Specialization: {agent.specialization}",
            f"Agent Status: {agent.status.value}",
            f"Current Task: {f'Task #{agent.current_task_id}' if agent.current_task_id else 'None'}",
        ]
    else:
        lines.append("Agent: Unassigned")
    lines += ["", f"Last Synced: {synced_at.isoformat()}"]
    return "\n".join(lines)


def sync_candidates(db: Session) -> list[models.Task]:
    """Open tasks, plus mirrored tasks that finished but are not yet completed remotely."""
    tasks = crud.get_tasks_by_status(db, OPEN_STATUSES)
    finished = [
        t
        for t in crud.get_tasks_by_status(db, DONE_STATUSES)
        if t.remote_task_id and t.remote_status != REMOTE_COMPLETED
    ]
    return sorted(tasks + finished, key=lambda t: t.id)


class TaskListSync:
    """Pushes orchestrator tasks to a remote task list on a fixed interval."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        client: TaskListClient,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.client = client
        self.list_id = settings.task_list_id
        self.interval_seconds = settings.sync_interval_minutes * 60
        self.call_timeout = settings.sync_call_timeout_seconds
        self.last_report: Optional[SyncReport] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="task-list-sync")
        logger.info(f"Task-list sync started (every {self.interval_seconds / 60:g} minutes)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Task-list sync stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("Task-list sync tick failed", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    async def _bounded(self, call: Awaitable[RemoteResult], what: str) -> Any:
        """
        Await a remote call under the call ceiling.

        Raises:
            ExternalUnavailable: If the call times out or reports a failure
        """
        try:
            result = await asyncio.wait_for(call, timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise ExternalUnavailable(COLLABORATOR, f"{what} timed out after {self.call_timeout:g}s") from e
        if not result.success:
            raise ExternalUnavailable(COLLABORATOR, f"{what} failed: {result.error}")
        return result

    @asynccontextmanager
    async def _connected(self) -> AsyncIterator[TaskListClient]:
        """
        Hold one connection to the remote list, opening and closing it under
        the call ceiling.

        Raises:
            ExternalUnavailable: If opening the connection times out
        """
        try:
            async with asyncio.timeout(self.call_timeout):
                await self.client.__aenter__()
        except TimeoutError as e:
            raise ExternalUnavailable(COLLABORATOR, f"connect timed out after {self.call_timeout:g}s") from e
        try:
            yield self.client
        finally:
            try:
                async with asyncio.timeout(self.call_timeout):
                    await self.client.__aexit__(None, None, None)
            except TimeoutError:
                logger.warning(f"Closing the task-list connection timed out after {self.call_timeout:g}s")

    async def list_task_lists(self) -> list[dict]:
        async with self._connected():
            result = await self._bounded(self.client.list_task_lists(), "list task lists")
        return result.items()

    async def _resolve_list_id(self) -> str:
        if self.list_id:
            return self.list_id
        result = await self._bounded(self.client.list_task_lists(), "list task lists")
        lists = result.items()
        if not lists:
            raise ExternalUnavailable(COLLABORATOR, "no remote task lists available")
        self.list_id = lists[0]["id"]
        logger.info(f"Using remote task list {self.list_id} ({lists[0].get('title', 'untitled')})")
        return self.list_id

    async def run_once(self) -> SyncReport:
        """
        Run one sync tick.

        A failure to reach the remote list or list its tasks ends the tick
        with the error recorded on the report. Failures on single tasks are
        counted and the batch continues. Database work runs in a worker
        thread; only the remote calls are awaited on the event loop.
        """
        async with self._lock:
            report = SyncReport(started_at=datetime.utcnow())
            db = self.session_factory()
            try:
                async with self._connected():
                    list_id = await self._resolve_list_id()
                    remote = (await self._bounded(self.client.list_tasks(list_id), "list remote tasks")).items()
                    report.list_id = list_id
                    await self._sync_tasks(db, list_id, remote, report)
            except ExternalUnavailable as e:
                logger.error(f"Task-list sync aborted: {e.message}")
                report.error = e.message
            finally:
                await asyncio.to_thread(db.close)
            return self._finish(report)

    def _finish(self, report: SyncReport) -> SyncReport:
        report.finished_at = datetime.utcnow()
        self.last_report = report
        logger.info(
            f"Task-list sync: {report.created} created, {report.updated} updated, "
            f"{report.failed} failed, {report.skipped} skipped"
        )
        return report

    def _load_items(self, db: Session) -> tuple[list[SyncItem], set[str]]:
        synced_at = datetime.utcnow()
        linked_ids = {t.remote_task_id for t in db.query(models.Task).filter(models.Task.remote_task_id.isnot(None))}
        items = []
        for task in sync_candidates(db):
            agent = crud.get_agent(db, task.assigned_agent_id) if task.assigned_agent_id else None
            items.append(
                SyncItem(
                    task_id=task.id,
                    title=task.title,
                    remote_task_id=task.remote_task_id,
                    status=remote_status_for(task.status),
                    notes=build_notes(task, agent, synced_at),
                )
            )
        return items, linked_ids

    async def _sync_tasks(self, db: Session, list_id: str, remote: list[dict], report: SyncReport) -> None:
        remote_by_id = {r["id"]: r for r in remote if r.get("id")}
        remote_by_title: dict[str, dict] = {}
        for r in remote:
            remote_by_title.setdefault(r.get("title"), r)
        items, linked_ids = await asyncio.to_thread(self._load_items, db)

        for item in items:
            existing = None
            if item.remote_task_id:
                existing = remote_by_id.get(item.remote_task_id)
            else:
                match = remote_by_title.get(item.title)
                if match is not None and match.get("id") not in linked_ids:
                    existing = match

            if existing is not None and existing.get("status") == item.status == REMOTE_COMPLETED:
                await asyncio.to_thread(self._record, db, item.task_id, existing["id"], item.status)
                report.skipped += 1
                continue

            try:
                if existing is None:
                    result = await self._bounded(
                        self.client.create_task(list_id, item.title, item.notes), f"create task {item.task_id}"
                    )
                    remote_id = (result.data or {}).get("id") if isinstance(result.data, dict) else None
                    if item.status == REMOTE_COMPLETED and remote_id:
                        await self._bounded(
                            self.client.update_task(list_id, remote_id, item.title, item.notes, item.status),
                            f"complete task {item.task_id}",
                        )
                    report.created += 1
                else:
                    remote_id = existing["id"]
                    await self._bounded(
                        self.client.update_task(list_id, remote_id, item.title, item.notes, item.status),
                        f"update task {item.task_id}",
                    )
                    report.updated += 1
            except ExternalUnavailable as e:
                logger.warning(f"Task {item.task_id} not synced: {e.message}")
                report.failed += 1
                continue

            if remote_id:
                linked_ids.add(remote_id)
            await asyncio.to_thread(self._record, db, item.task_id, remote_id, item.status)

    def _record(self, db: Session, task_id: int, remote_id: Optional[str], status: str) -> None:
        """Store the mirror state. A concurrent edit of the task wins; the next tick retries."""
        task = crud.get_task(db, task_id)
        if task is None:
            logger.warning(f"Task {task_id} disappeared before its sync state was recorded")
            return
        if remote_id:
            task.remote_task_id = remote_id
        task.remote_status = status
        task.remote_synced_at = datetime.utcnow()
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.warning(f"Could not record sync state for task {task_id}", exc_info=True)
