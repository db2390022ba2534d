"""SQLAlchemy database models."""
from datetime import datetime
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.ext.declarative import declarative_base

# Base class for all models
Base = declarative_base()


def _enum_column(enum_cls, **kwargs) -> Column:
    # Use values_callable to serialize enum values (lowercase) instead of names (UPPERCASE)
    return Column(
        Enum(enum_cls, values_callable=lambda obj: [e.value for e in obj]),
        **kwargs,
    )


# =============================================================================
# Enums
# =============================================================================


class ProjectStatus(str, enum.Enum):
    """Project phase enum. Phases only move forward, in this order."""

    IDEATION = "ideation"
    STRATEGY_REVIEW = "strategy_review"
    DESIGN = "design"
    DEVELOPMENT = "development"
    TESTING = "testing"
    DEPLOYED = "deployed"


class ProposalType(str, enum.Enum):
    """Proposal type enum - which project phase the proposal gates."""

    STRATEGY = "strategy"
    DESIGN = "design"
    TASK_ASSIGNMENT = "task_assignment"


class ProposalStatus(str, enum.Enum):
    """Proposal review status enum."""

    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISED = "revised"  # Superseded by a newer proposal that answers the feedback


class ComponentStatus(str, enum.Enum):
    """Reduced lifecycle shared by subsystems and modules."""

    PLANNED = "planned"
    DESIGNING = "designing"
    IN_DEVELOPMENT = "in_development"
    TESTING = "testing"
    DEPLOYED = "deployed"


class TaskStatus(str, enum.Enum):
    """Task lifecycle status enum."""

    PENDING = "pending"  # Not yet handed to an agent
    ASSIGNED = "assigned"  # Agent holds the task, work not started
    IN_PROGRESS = "in_progress"  # Agent reported progress or spec was promoted
    COMPLETED = "completed"  # Work finished, awaiting review
    APPROVED = "approved"  # Terminal: accepted by a reviewer
    BLOCKED = "blocked"  # Needs an explicit re-assignment to resume


class AgentRole(str, enum.Enum):
    """Specialist roles. One agent row per role in the default roster."""

    PROJECT_MANAGER = "project_manager"
    RESEARCH = "research"
    ARCHITECTURE = "architecture"
    UI_UX = "ui_ux"
    FRONTEND = "frontend"
    BACKEND = "backend"
    DEVOPS = "devops"
    QA = "qa"


class AgentStatus(str, enum.Enum):
    """Agent availability enum."""

    IDLE = "idle"
    WORKING = "working"
    BLOCKED = "blocked"


class ApprovalEntityType(str, enum.Enum):
    """Entity kinds an approval decision can target."""

    PROPOSAL = "proposal"
    TASK = "task"
    DELIVERABLE = "deliverable"


class ApprovalStatus(str, enum.Enum):
    """Approval decision enum."""

    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_REVISION = "pending_revision"


# =============================================================================
# Users and projects
# =============================================================================


class User(Base):
    """Human reviewer. Approvals reference users, not agents."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<User {self.id}: {self.name}>"


class Project(Base):
    """
    Project model - top-level unit of work moving through a fixed phase sequence.

    The status column is owned by the project workflow machine; no API route
    edits it directly.
    """

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    status = _enum_column(ProjectStatus, nullable=False, default=ProjectStatus.IDEATION, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    pm_agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    strategy_doc_url = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    creator = relationship("User", foreign_keys=[created_by])
    subsystems = relationship("Subsystem", back_populates="project", order_by="Subsystem.id")
    proposals = relationship("Proposal", back_populates="project", order_by="Proposal.id")
    attachments = relationship("ProjectAttachment", back_populates="project", order_by="ProjectAttachment.id")

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name} ({self.status.value})>"


class ProjectAttachment(Base):
    """Metadata for a file uploaded with a project. Bytes live in object storage."""

    __tablename__ = "project_attachments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)  # in bytes
    mime_type = Column(String(100), nullable=False)
    file_key = Column(Text, nullable=False)  # storage key
    file_url = Column(Text, nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    project = relationship("Project", back_populates="attachments")

    def __repr__(self) -> str:
        return f"<ProjectAttachment {self.file_name}>"


class Proposal(Base):
    """
    Reviewable document gating advancement of a project phase.

    Content is written once at creation. A rejected proposal is answered by a
    new row whose revises_proposal_id points back at it.
    """

    __tablename__ = "proposals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    proposal_type = _enum_column(ProposalType, nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(JSON, nullable=False)
    status = _enum_column(ProposalStatus, nullable=False, default=ProposalStatus.PENDING_REVIEW, index=True)
    created_by_agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    feedback = Column(Text, nullable=True)
    revises_proposal_id = Column(Integer, ForeignKey("proposals.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    project = relationship("Project", back_populates="proposals")
    reviewer = relationship("User", foreign_keys=[reviewed_by])

    def __repr__(self) -> str:
        return f"<Proposal {self.id}: {self.proposal_type.value} ({self.status.value})>"


# =============================================================================
# Project tree
# =============================================================================


class Subsystem(Base):
    """Major functional area within a project."""

    __tablename__ = "subsystems"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    status = _enum_column(ComponentStatus, nullable=False, default=ComponentStatus.PLANNED)
    owner_agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    project = relationship("Project", back_populates="subsystems")
    modules = relationship("Module", back_populates="subsystem", order_by="Module.id")

    def __repr__(self) -> str:
        return f"<Subsystem {self.id}: {self.name}>"


class Module(Base):
    """Smaller component within a subsystem; owns tasks."""

    __tablename__ = "modules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subsystem_id = Column(Integer, ForeignKey("subsystems.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    status = _enum_column(ComponentStatus, nullable=False, default=ComponentStatus.PLANNED)
    owner_agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    design_doc_url = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    subsystem = relationship("Subsystem", back_populates="modules")
    tasks = relationship("Task", back_populates="module", order_by="Task.id")

    def __repr__(self) -> str:
        return f"<Module {self.id}: {self.name}>"


class Task(Base):
    """
    Smallest unit of assignable work.

    Status and progress are mutated only by the task lifecycle machine. The
    version column guards read-modify-write races between request handlers
    and the sync loop.
    """

    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    module_id = Column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)

    # Core task fields
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    requirements = Column(Text, nullable=False)
    status = _enum_column(TaskStatus, nullable=False, default=TaskStatus.PENDING, index=True)

    # Assignment
    assigned_agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True)
    planned_role = _enum_column(AgentRole, nullable=True)  # Role suggested by the breakdown
    assignable = Column(Boolean, nullable=False, default=True)  # False until task assignments are approved

    # Progress
    progress_percentage = Column(Integer, nullable=False, default=0)
    blocker_reason = Column(Text, nullable=True)
    result = Column(Text, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Remote task-list mirror
    remote_task_id = Column(String(255), nullable=True, index=True)
    remote_status = Column(String(32), nullable=True)
    remote_synced_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    module = relationship("Module", back_populates="tasks")
    assigned_agent = relationship("Agent", foreign_keys=[assigned_agent_id])
    deliverables = relationship("Deliverable", back_populates="task", order_by="Deliverable.id")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "progress_percentage >= 0 AND progress_percentage <= 100",
            name="valid_progress_percentage",
        ),
    )

    def __repr__(self) -> str:
        return f"<Task {self.id}: {self.title[:30]} ({self.status.value})>"


class TaskDependency(Base):
    """Directed edge: task_id cannot start before depends_on_task_id."""

    __tablename__ = "task_dependencies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    depends_on_task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("task_id", "depends_on_task_id", name="unique_task_dependency"),
        CheckConstraint("task_id != depends_on_task_id", name="no_self_dependency"),
    )

    def __repr__(self) -> str:
        return f"<TaskDependency {self.task_id} -> {self.depends_on_task_id}>"


# =============================================================================
# Agents and audit trail
# =============================================================================


class Agent(Base):
    """
    Specialist agent. Holds at most one active task.

    current_task_id is non-null only while status is working or blocked.
    """

    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    role = _enum_column(AgentRole, nullable=False, index=True)
    specialization = Column(Text, nullable=False)
    status = _enum_column(AgentStatus, nullable=False, default=AgentStatus.IDLE, index=True)
    current_task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL", use_alter=True), nullable=True)
    blocker_reason = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Agent {self.id}: {self.role.value} ({self.status.value})>"


class ActivityLog(Base):
    """Append-only record of agent actions."""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True)  # None for reviewer-only actions
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String(255), nullable=False)
    details = Column(Text, nullable=True)
    tool_called = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    agent = relationship("Agent")

    def __repr__(self) -> str:
        return f"<ActivityLog {self.agent_id}: {self.action}>"


class Approval(Base):
    """Append-only review decision. Several rows may target one entity."""

    __tablename__ = "approvals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    entity_type = _enum_column(ApprovalEntityType, nullable=False)
    entity_id = Column(Integer, nullable=False)
    status = _enum_column(ApprovalStatus, nullable=False)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Approval {self.entity_type.value}:{self.entity_id} {self.status.value}>"


class KnowledgeEntry(Base):
    """Append-only project context. The latest row for a key wins on read."""

    __tablename__ = "knowledge_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(255), nullable=False, index=True)
    value = Column(Text, nullable=False)
    source = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<KnowledgeEntry {self.project_id}:{self.key}>"


class Deliverable(Base):
    """Artifact produced by an execution collaborator for a task."""

    __tablename__ = "deliverables"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(Integer, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(100), nullable=False)  # e.g., "code", "document", "design"
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    task = relationship("Task", back_populates="deliverables")

    def __repr__(self) -> str:
        return f"<Deliverable {self.name}>"


class ExecutionSlot(Base):
    """
    Single-row register naming the spec the external executor works on.

    The row with id=1 is the only slot. version increments on every promotion
    so concurrent promoters can detect each other.
    """

    __tablename__ = "execution_slot"

    id = Column(Integer, primary_key=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    spec_id = Column(String(64), nullable=True)
    promoted_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    promoted_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    task = relationship("Task")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("id = 1", name="single_execution_slot"),
    )

    def __repr__(self) -> str:
        return f"<ExecutionSlot {self.spec_id} v{self.version}>"
