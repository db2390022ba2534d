"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import (
    AgentRole,
    AgentStatus,
    ApprovalEntityType,
    ApprovalStatus,
    ComponentStatus,
    ProjectStatus,
    ProposalStatus,
    ProposalType,
    TaskStatus,
)
from .project_workflow import ProjectEvent


# User Schemas

class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = Field(None, max_length=320)


class UserResponse(UserCreate):
    id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Project Schemas

class ProjectCreate(BaseModel):
    """Schema for creating a project. Projects start in ideation."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, description="Free-text project idea")
    created_by: Optional[int] = None


class ProjectResponse(BaseModel):
    id: int
    name: str
    description: str
    status: ProjectStatus
    created_by: Optional[int] = None
    pm_agent_id: Optional[int] = None
    strategy_doc_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectListResponse(BaseModel):
    """Schema for paginated project list."""

    items: list[ProjectResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ProjectStartRequest(BaseModel):
    revises: Optional[int] = Field(None, description="Rejected strategy proposal this draft answers")


class ProjectAdvanceRequest(BaseModel):
    event: ProjectEvent


class KnowledgeCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=255)
    value: Any
    source: str = Field("user", min_length=1, max_length=255)


class KnowledgeResponse(BaseModel):
    id: int
    project_id: int
    key: str
    value: str
    source: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AttachmentUpload(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field("application/octet-stream", max_length=100)
    file_data: str = Field(..., description="Base64 encoded file content")
    uploaded_by: Optional[int] = None


class AttachmentResponse(BaseModel):
    id: int
    project_id: int
    file_name: str
    file_size: int
    mime_type: str
    file_key: str
    file_url: str
    uploaded_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Tree Schemas

class ModuleResponse(BaseModel):
    id: int
    subsystem_id: int
    name: str
    description: str
    status: ComponentStatus
    owner_agent_id: Optional[int] = None
    design_doc_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SubsystemResponse(BaseModel):
    id: int
    project_id: int
    name: str
    description: str
    status: ComponentStatus
    owner_agent_id: Optional[int] = None
    modules: list[ModuleResponse] = []

    model_config = ConfigDict(from_attributes=True)


class SubsystemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str


class ModuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str


# Proposal Schemas

class ProposalCreate(BaseModel):
    project_id: int
    proposal_type: ProposalType
    title: str = Field(..., min_length=1, max_length=255)
    content: dict[str, Any]
    created_by_agent_id: Optional[int] = None
    revises: Optional[int] = Field(None, description="Rejected proposal this one revises")


class ProposalResponse(BaseModel):
    id: int
    project_id: int
    proposal_type: ProposalType
    title: str
    content: dict[str, Any]
    status: ProposalStatus
    created_by_agent_id: Optional[int] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    feedback: Optional[str] = None
    revises_proposal_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewRequest(BaseModel):
    reviewer_id: Optional[int] = None
    feedback: Optional[str] = None


class RejectRequest(BaseModel):
    reviewer_id: Optional[int] = None
    feedback: str = Field(..., description="Reason for the rejection; must not be blank")


# Task Schemas

class TaskCreate(BaseModel):
    """Schema for an ad hoc task added to an existing module."""

    module_id: int
    title: str = Field(..., min_length=1, max_length=255)
    description: str
    requirements: str = ""
    planned_role: Optional[AgentRole] = None


class TaskResponse(BaseModel):
    id: int
    module_id: int
    title: str
    description: str
    requirements: str
    status: TaskStatus
    assigned_agent_id: Optional[int] = None
    planned_role: Optional[AgentRole] = None
    assignable: bool
    progress_percentage: int
    blocker_reason: Optional[str] = None
    result: Optional[str] = None
    completed_at: Optional[datetime] = None
    remote_task_id: Optional[str] = None
    remote_status: Optional[str] = None
    remote_synced_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskListResponse(BaseModel):
    """Schema for paginated task list."""

    items: list[TaskResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TaskAssignRequest(BaseModel):
    agent_id: int


class TaskProgressRequest(BaseModel):
    percent: int = Field(..., description="Progress percentage; values outside 0-100 are clamped")
    note: Optional[str] = None


class TaskCompleteRequest(BaseModel):
    result: Optional[str] = None


class TaskBlockRequest(BaseModel):
    reason: str


class TaskApproveRequest(BaseModel):
    reviewer_id: Optional[int] = None
    comments: Optional[str] = None


class AllowedTransitionsResponse(BaseModel):
    task_id: int
    status: TaskStatus
    allowed_transitions: list[TaskStatus]


class DependencyCreate(BaseModel):
    depends_on_task_id: int


class DeliverableCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    url: str
    agent_id: Optional[int] = None
    description: Optional[str] = None


class DeliverableResponse(DeliverableCreate):
    id: int
    task_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ApprovalResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    entity_type: ApprovalEntityType
    entity_id: int
    status: ApprovalStatus
    comments: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Agent Schemas

class AgentResponse(BaseModel):
    id: int
    name: str
    role: AgentRole
    specialization: str
    status: AgentStatus
    current_task_id: Optional[int] = None
    blocker_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ActivityLogResponse(BaseModel):
    id: int
    agent_id: Optional[int] = None
    task_id: Optional[int] = None
    action: str
    details: Optional[str] = None
    tool_called: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Task Export Schemas

class SpecGenerateRequest(BaseModel):
    project_id: int
    task_id: int
    extra_context: Optional[str] = Field(None, description="Research summary to attach to the spec")


class SpecPromoteRequest(BaseModel):
    reviewer_id: Optional[int] = None


class SpecRejectRequest(BaseModel):
    reviewer_id: Optional[int] = None
    feedback: str


# Sync Schemas

class SyncStatusResponse(BaseModel):
    enabled: bool
    running: bool
    list_id: Optional[str] = None
    interval_minutes: float
    last_report: Optional[dict[str, Any]] = None
