"""Shared fixtures: in-memory database, seeded agents and fake collaborators."""
import asyncio
import json
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agentflow_core import agent_roles, crud, models
from agentflow_core.config import Settings
from agentflow_core.errors import ExternalUnavailable
from agentflow_core.external.task_list import RemoteResult
from agentflow_core.models import AgentRole, Base
from agentflow_core.planning import Planner
from agentflow_core.sync import TaskListSync
from agentflow_core.task_export import TaskExportPipeline


SAMPLE_BREAKDOWN = {
    "subsystems": [
        {
            "name": "Web App",
            "description": "Customer-facing application",
            "modules": [
                {
                    "name": "Auth",
                    "description": "Sign-in and sessions",
                    "tasks": [
                        {
                            "title": "Build login form",
                            "description": "Email and password form",
                            "requirements": "- Validate email\n- Show errors inline",
                            "assignedRole": "frontend",
                        },
                        {
                            "title": "Session API",
                            "description": "Issue and refresh sessions",
                            "requirements": "Tokens expire after 1 hour",
                            "assignedRole": "backend",
                        },
                    ],
                }
            ],
        }
    ]
}


class FakeTextGenerator:
    """Returns canned strategy text, or the sample breakdown when a schema is requested."""

    def __init__(self, strategy: str = "Strategy: build it in three phases.", breakdown: Optional[dict] = None):
        self.strategy = strategy
        self.breakdown = breakdown if breakdown is not None else SAMPLE_BREAKDOWN
        self.fail = False
        self.raw_breakdown: Optional[str] = None
        self.calls: list[dict] = []

    def generate(self, messages, response_schema=None):
        self.calls.append({"messages": messages, "response_schema": response_schema})
        if self.fail:
            raise ExternalUnavailable("text-generation", "service down")
        if response_schema is not None:
            return self.raw_breakdown if self.raw_breakdown is not None else json.dumps(self.breakdown)
        return self.strategy


class FakeObjectStorage:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.fail = False

    def put(self, key, data, mime_type):
        if self.fail:
            raise ExternalUnavailable("object-storage", "bucket unreachable")
        self.objects[key] = data
        return f"https://storage.test/{key}"

    def delete(self, key):
        if self.fail:
            raise ExternalUnavailable("object-storage", "bucket unreachable")
        self.objects.pop(key, None)


class FakeTaskListClient:
    """In-memory remote task list with switches for failures and slow calls."""

    def __init__(self, lists: Optional[list[dict]] = None):
        self.lists = lists if lists is not None else [{"id": "list-1", "title": "Orchestrator"}]
        self.tasks: dict[str, dict] = {}
        self.fail_titles: set[str] = set()
        self.slow_titles: set[str] = set()
        self.list_fails = False
        self.connect_delay = 0.0
        self.close_delay = 0.0
        self.entered = 0
        self.closed = 0
        self.calls: list[tuple] = []
        self._next_id = 1

    async def __aenter__(self):
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        self.closed += 1
        return None

    async def list_task_lists(self):
        self.calls.append(("list_task_lists",))
        return RemoteResult(success=True, data={"items": self.lists})

    async def list_tasks(self, list_id):
        self.calls.append(("list_tasks", list_id))
        if self.list_fails:
            return RemoteResult(success=False, error="quota exceeded")
        return RemoteResult(success=True, data={"items": list(self.tasks.values())})

    async def _maybe_fail(self, title):
        if title in self.slow_titles:
            await asyncio.sleep(5)
        if title in self.fail_titles:
            return RemoteResult(success=False, error=f"rejected {title}")
        return None

    async def create_task(self, list_id, title, notes):
        self.calls.append(("create_task", list_id, title))
        failure = await self._maybe_fail(title)
        if failure:
            return failure
        remote_id = f"remote-{self._next_id}"
        self._next_id += 1
        self.tasks[remote_id] = {"id": remote_id, "title": title, "notes": notes, "status": "needsAction"}
        return RemoteResult(success=True, data=self.tasks[remote_id])

    async def update_task(self, list_id, task_id, title, notes, status):
        self.calls.append(("update_task", list_id, task_id, status))
        failure = await self._maybe_fail(title)
        if failure:
            return failure
        self.tasks[task_id].update({"title": title, "notes": notes, "status": status})
        return RemoteResult(success=True, data=self.tasks[task_id])


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    crud.create_user(session, "Reviewer", "reviewer@example.com")
    session.commit()
    agent_roles.seed_agents(session)
    yield session
    session.close()


@pytest.fixture
def reviewer_id():
    return 1


@pytest.fixture
def agent_ids(db):
    """Agent ID per role, from the seeded roster."""
    return {agent.role: agent.id for agent in crud.get_agents(db)}


@pytest.fixture
def make_task(db):
    """Create a project tree with one module and return a factory for tasks in it."""
    project = crud.create_project(db, "Storefront", "Sell handmade goods online")
    subsystem = crud.create_subsystem(db, project.id, "Web App", "Customer-facing application")
    module = crud.create_module(db, subsystem.id, "Catalog", "Product listing")
    db.commit()

    def _make(
        title: str = "Build product grid",
        requirements: str = "- Show 12 products per page\n- Lazy-load images",
        assignable: bool = True,
        planned_role: Optional[AgentRole] = AgentRole.FRONTEND,
    ) -> models.Task:
        task = crud.create_task(
            db,
            module_id=module.id,
            title=title,
            description=f"{title} for the storefront",
            requirements=requirements,
            planned_role=planned_role,
            assignable=assignable,
        )
        db.commit()
        return task

    _make.project = project
    _make.module = module
    return _make


@pytest.fixture
def text_generator():
    return FakeTextGenerator()


@pytest.fixture
def planner(text_generator):
    return Planner(text_generator)


@pytest.fixture
def storage():
    return FakeObjectStorage()


@pytest.fixture
def task_list_client():
    return FakeTaskListClient()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        export_root=str(tmp_path),
        sync_interval_minutes=15,
        sync_call_timeout_seconds=0.2,
        seed_agents=False,
    )


@pytest.fixture
def pipeline(tmp_path):
    return TaskExportPipeline(tmp_path)


@pytest.fixture
def task_list_sync(session_factory, task_list_client, settings, db):
    return TaskListSync(session_factory, task_list_client, settings)


@pytest.fixture
def client(db, planner, storage, pipeline, task_list_sync):
    from agentflow_core.api import dependencies
    from agentflow_core.api.main import app
    from agentflow_core.database import get_db

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_planner] = lambda: planner
    app.dependency_overrides[dependencies.get_storage] = lambda: storage
    app.dependency_overrides[dependencies.get_export_pipeline] = lambda: pipeline
    app.dependency_overrides[dependencies.get_sync] = lambda: task_list_sync

    yield TestClient(app)

    app.dependency_overrides.clear()
