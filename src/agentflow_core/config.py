"""Application settings loaded from environment variables."""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for agentflow-core.

    Every field can be overridden with an ``AGENTFLOW_``-prefixed environment
    variable (e.g. ``AGENTFLOW_DATABASE_URL``) or a local ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTFLOW_",
        env_file=".env",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./agentflow.db"

    # HTTP boundary
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # Task export - checkout that receives the .tasks/ queue
    export_root: str = "."

    # Text-generation collaborator (OpenAI-compatible chat completions)
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 120.0

    # Object-storage collaborator
    storage_base_url: Optional[str] = None
    storage_api_key: Optional[str] = None

    # Remote task-list sync
    sync_enabled: bool = False
    sync_interval_minutes: float = 15.0
    sync_call_timeout_seconds: float = 20.0
    task_list_id: Optional[str] = None
    task_list_server_command: str = "node"
    task_list_server_args: list[str] = Field(default_factory=lambda: ["index.js"])
    task_list_server_cwd: Optional[str] = None
    task_list_tool_list_lists: str = "google_tasks_list_tasklists"
    task_list_tool_list_tasks: str = "google_tasks_list_tasks"
    task_list_tool_create_task: str = "google_tasks_create_task"
    task_list_tool_update_task: str = "google_tasks_update_task"

    # Startup
    seed_agents: bool = True


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
