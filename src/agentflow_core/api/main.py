"""AgentFlow Core FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..agent_roles import seed_agents
from ..config import get_settings
from ..database import SessionLocal
from ..errors import (
    AgentBusy,
    AlreadyReviewed,
    Conflict,
    ExternalUnavailable,
    FeedbackRequired,
    InvalidTransition,
    NotFound,
    WorkflowError,
)
from ..external.llm import HttpTextGenerator
from ..external.task_list import McpTaskListClient
from ..sync import TaskListSync
from ..task_export import TaskExportPipeline
from .routers import agents, projects, proposals, sync, task_export, tasks

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("agentflow-core")

settings = get_settings()

# Order matters: subclasses before their bases
_ERROR_STATUS = [
    (NotFound, 404),
    (InvalidTransition, 400),
    (FeedbackRequired, 400),
    (AgentBusy, 409),
    (AlreadyReviewed, 409),
    (Conflict, 409),
    (ExternalUnavailable, 503),
]


def status_code_for(error: WorkflowError) -> int:
    for error_cls, status_code in _ERROR_STATUS:
        if isinstance(error, error_cls):
            return status_code
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.settings = settings
    app.state.text_generator = HttpTextGenerator.from_settings(settings)
    app.state.storage = None
    app.state.export_pipeline = TaskExportPipeline(settings.export_root)
    app.state.sync = TaskListSync(SessionLocal, McpTaskListClient.from_settings(settings), settings)

    if settings.seed_agents:
        db = SessionLocal()
        try:
            seed_agents(db)
        finally:
            db.close()

    if settings.sync_enabled:
        app.state.sync.start()

    logger.info("Starting AgentFlow Core API")
    yield

    await app.state.sync.stop()
    logger.info("AgentFlow Core API stopped")


# Create FastAPI app
app = FastAPI(
    title="AgentFlow Core API",
    description="Multi-agent project orchestration with human approval gates",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"error": exc.code, "message": exc.message})


# Include all business logic routers with /api/v1 prefix
app.include_router(projects.router, prefix="/api/v1/projects")
app.include_router(proposals.router, prefix="/api/v1/proposals")
app.include_router(tasks.router, prefix="/api/v1/tasks")
app.include_router(agents.router, prefix="/api/v1/agents")
app.include_router(task_export.router, prefix="/api/v1/task-export")
app.include_router(sync.router, prefix="/api/v1/sync")


@app.get("/")
def root():
    """Root endpoint with server info."""
    return {
        "name": "AgentFlow Core API",
        "version": "1.0.0",
        "docs": "/docs",
        "description": "Multi-agent project orchestration with human approval gates",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
