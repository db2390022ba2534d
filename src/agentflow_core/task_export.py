"""Task export pipeline.

Turns a task and its resolved context into a spec document for the external
executor and manages two file slots under ``<export_root>/.tasks``:

    queue/task-{id}.json   pending slot, one per task, overwritten on regenerate
    current-task.json      the single spec the executor is working on

Each JSON file has a derived ``.md`` companion. The current slot is backed by
the ExecutionSlot row; promotion writes the files and the database together
and restores the previous files if the commit fails.
"""
import enum
import json
import logging
import os
import re
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from . import context, crud, models, task_lifecycle
from .agent_roles import DEFAULT_DOCS, DEFAULT_PERSONA, get_profile
from .database import transaction
from .errors import Conflict, FeedbackRequired, InvalidTransition, NotFound
from .markdown_utils import render_spec_markdown
from .state_machine import ACTIVE_TASK_STATUSES

logger = logging.getLogger("agentflow-core.task_export")

SPEC_ID_PATTERN = re.compile(r"^task-(\d+)$")
DEFAULT_VALIDATION_COMMANDS = ["npm run build"]
DEFAULT_VALIDATION_CRITERIA = ["Build passes without errors"]

# Serializes promotions within this process; the versioned slot row guards across processes
_promotion_lock = threading.Lock()


class SpecStatus(str, enum.Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    REJECTED = "rejected"


class SpecPriority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class _SpecModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SpecAgent(_SpecModel):
    role: str
    persona: str


class SpecContext(_SpecModel):
    project: str
    workflows: list[str] = []
    docs: list[str] = []
    related_files: list[str] = []
    description: Optional[str] = None
    strategy: Optional[str] = None
    design_specs: Optional[str] = None
    deliverables: Optional[str] = None


class SpecStep(_SpecModel):
    step: int
    action: str
    file: str
    location: Optional[str] = None
    description: str


class SpecValidation(_SpecModel):
    commands: list[str]
    criteria: list[str]


class SpecImplementation(_SpecModel):
    summary: str
    steps: list[SpecStep]
    validation: SpecValidation


class SpecResearch(_SpecModel):
    summary: str
    sources: list[str]


class TaskSpec(_SpecModel):
    """Self-contained handoff document for one task."""

    id: str
    title: str
    status: SpecStatus
    created_at: datetime
    priority: SpecPriority = SpecPriority.MEDIUM
    agent: SpecAgent
    context: SpecContext
    implementation: SpecImplementation
    research: Optional[SpecResearch] = None
    notes: Optional[str] = None

    @property
    def task_id(self) -> int:
        return parse_spec_id(self.id)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CurrentSlot(BaseModel):
    task_id: Optional[int] = None
    spec_id: Optional[str] = None
    version: int = 0
    promoted_by: Optional[int] = None
    promoted_at: Optional[datetime] = None
    task_status: Optional[models.TaskStatus] = None
    occupied: bool = False
    spec: Optional[dict[str, Any]] = None


def spec_id_for(task_id: int) -> str:
    return f"task-{task_id}"


def parse_spec_id(spec_id: str) -> int:
    """
    Return the task ID a spec ID refers to.

    Raises:
        NotFound: If spec_id is not of the form task-{id}
    """
    match = SPEC_ID_PATTERN.match(spec_id or "")
    if not match:
        raise NotFound("Spec", spec_id)
    return int(match.group(1))


def _requirement_lines(requirements: str) -> list[str]:
    lines = []
    for raw in (requirements or "").splitlines():
        line = re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", raw).strip()
        if line:
            lines.append(line)
    return lines


def build_steps(description: str, requirements: str) -> list[SpecStep]:
    """One step per requirement line, or a single step covering the description."""
    lines = _requirement_lines(requirements)
    if not lines:
        return [SpecStep(step=1, action="Implement feature", file="Determined by agent", description=description)]
    return [
        SpecStep(step=i, action=f"Implement requirement {i}", file="Determined by agent", description=line)
        for i, line in enumerate(lines, start=1)
    ]


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class TaskExportPipeline:
    """File-based handoff queue rooted at a project checkout."""

    def __init__(self, export_root: str | Path):
        self.root = Path(export_root)
        self.tasks_dir = self.root / ".tasks"
        self.queue_dir = self.tasks_dir / "queue"
        self.current_path = self.tasks_dir / "current-task.json"

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def pending_path(self, spec_id: str) -> Path:
        parse_spec_id(spec_id)
        return self.queue_dir / f"{spec_id}.json"

    def _write_files(self, path: Path, spec: TaskSpec) -> Path:
        document = spec.to_document()
        _atomic_write(path, json.dumps(document, indent=2, ensure_ascii=False))
        _atomic_write(path.with_suffix(".md"), render_spec_markdown(document))
        return path

    def _snapshot(self, path: Path) -> dict[Path, Optional[str]]:
        snapshot = {}
        for p in (path, path.with_suffix(".md")):
            snapshot[p] = p.read_text(encoding="utf-8") if p.exists() else None
        return snapshot

    def _restore(self, snapshot: dict[Path, Optional[str]]) -> None:
        for p, text in snapshot.items():
            try:
                if text is None:
                    p.unlink(missing_ok=True)
                else:
                    _atomic_write(p, text)
            except OSError:
                logger.error(f"Failed to restore {p}", exc_info=True)

    def write_pending(self, spec: TaskSpec) -> Path:
        """Write a spec to its pending slot. Rewriting overwrites the same files."""
        path = self._write_files(self.pending_path(spec.id), spec)
        logger.info(f"Wrote pending spec {spec.id} to {path}")
        return path

    def read_pending(self, spec_id: str) -> TaskSpec:
        """
        Read a spec from its pending slot.

        Raises:
            NotFound: If no pending spec exists for spec_id
        """
        path = self.pending_path(spec_id)
        if not path.exists():
            raise NotFound("Spec", spec_id)
        return TaskSpec.model_validate_json(path.read_text(encoding="utf-8"))

    def list_pending(self, include_decided: bool = False) -> list[TaskSpec]:
        """Specs waiting in the queue, ordered by task ID. Approved and rejected ones only on request."""
        if not self.queue_dir.exists():
            return []
        specs = []
        for path in self.queue_dir.glob("task-*.json"):
            if not SPEC_ID_PATTERN.match(path.stem):
                continue
            try:
                spec = TaskSpec.model_validate_json(path.read_text(encoding="utf-8"))
            except ValueError:
                logger.warning(f"Skipping unreadable spec file {path}")
                continue
            if include_decided or spec.status == SpecStatus.PENDING_APPROVAL:
                specs.append(spec)
        return sorted(specs, key=lambda s: s.task_id)

    def read_current(self) -> Optional[dict[str, Any]]:
        if not self.current_path.exists():
            return None
        return json.loads(self.current_path.read_text(encoding="utf-8"))

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate_spec(
        self,
        db: Session,
        project_id: int,
        task_id: int,
        extra_context: Optional[str] = None,
    ) -> TaskSpec:
        """
        Build a spec for a task and write it to the task's pending slot.

        Args:
            db: Database session
            project_id: Project the task belongs to
            task_id: Task to export
            extra_context: Research summary to attach (optional)

        Returns:
            The spec, with status pending_approval

        Raises:
            NotFound: If the project or task does not exist, or the task
                belongs to another project
        """
        project = crud.require_project(db, project_id)
        task = crud.require_task(db, task_id)
        if crud.get_project_id_for_task(db, task) != project.id:
            raise NotFound("Task", f"{task_id} in project {project_id}")

        role = None
        if task.assigned_agent_id:
            agent = crud.get_agent(db, task.assigned_agent_id)
            role = agent.role if agent else None
        role = role or task.planned_role
        profile = get_profile(role) if role else None

        resolved = context.build_context(db, project_id, task_id)

        spec = TaskSpec(
            id=spec_id_for(task.id),
            title=task.title,
            status=SpecStatus.PENDING_APPROVAL,
            created_at=datetime.utcnow(),
            agent=SpecAgent(
                role=role.value if role else "general",
                persona=profile.persona if profile else DEFAULT_PERSONA,
            ),
            context=SpecContext(
                project=project.name,
                workflows=list(profile.workflows) if profile else [],
                docs=list(profile.docs) if profile else list(DEFAULT_DOCS),
                related_files=list(profile.related_files) if profile else [],
                description=resolved.project_vision,
                strategy=resolved.approved_strategy,
                design_specs=resolved.design_specs,
                deliverables=resolved.related_work,
            ),
            implementation=SpecImplementation(
                summary=task.description,
                steps=build_steps(task.description, task.requirements),
                validation=SpecValidation(
                    commands=list(DEFAULT_VALIDATION_COMMANDS),
                    criteria=DEFAULT_VALIDATION_CRITERIA + [
                        f"Requirement met: {line}" for line in _requirement_lines(task.requirements)
                    ],
                ),
            ),
            research=SpecResearch(summary=extra_context, sources=["Research collaborator"]) if extra_context else None,
            notes=f"Generated from orchestrator task {task.id}",
        )

        with transaction(db):
            self.write_pending(spec)
            crud.log_activity(
                db, task.assigned_agent_id, "task_spec_generated", task_id=task.id, details=f"Spec ID: {spec.id}"
            )
        return spec

    # -------------------------------------------------------------------------
    # Current slot
    # -------------------------------------------------------------------------

    def current_slot(self, db: Session) -> CurrentSlot:
        slot = crud.find_execution_slot(db)
        if slot is None or slot.task_id is None:
            return CurrentSlot(version=slot.version if slot else 0, spec=self.read_current())
        task = crud.get_task(db, slot.task_id)
        return CurrentSlot(
            task_id=slot.task_id,
            spec_id=slot.spec_id,
            version=slot.version,
            promoted_by=slot.promoted_by,
            promoted_at=slot.promoted_at,
            task_status=task.status if task else None,
            occupied=bool(task and task.status in ACTIVE_TASK_STATUSES),
            spec=self.read_current(),
        )

    def try_promote(
        self,
        db: Session,
        spec_id: str,
        reviewer_id: Optional[int] = None,
        expect_empty: bool = True,
    ) -> TaskSpec:
        """
        Promote a pending spec into the current slot.

        The task moves to in_progress, an Approval is recorded, the slot row
        is updated and the current files are written. The database commits
        only after the files are in place; if it fails the previous current
        files and the pending file are restored.

        Args:
            db: Database session
            spec_id: Pending spec to promote (task-{id})
            reviewer_id: Approving user
            expect_empty: Refuse when the slot holds a task that is still
                assigned or in progress

        Returns:
            The promoted spec, with status approved

        Raises:
            NotFound: If the pending spec or its task does not exist
            InvalidTransition: If the spec is not pending_approval, or the task
                is not assigned or in progress
            Conflict: If expect_empty and the slot is occupied, or the slot was
                promoted concurrently
        """
        with _promotion_lock:
            spec = self.read_pending(spec_id)
            if spec.status != SpecStatus.PENDING_APPROVAL:
                raise InvalidTransition(
                    f"Spec {spec_id} is {spec.status.value}; only pending_approval specs can be promoted. "
                    f"Generate the spec again to promote it a second time.",
                    current_status=spec.status,
                    requested_status=SpecStatus.APPROVED,
                )

            pending_path = self.pending_path(spec_id)
            snapshot = {**self._snapshot(self.current_path), **self._snapshot(pending_path)}
            files_written = False
            approved = spec.model_copy(update={"status": SpecStatus.APPROVED})

            try:
                with transaction(db):
                    task = crud.require_task(db, spec.task_id)
                    if reviewer_id is not None:
                        crud.require_user(db, reviewer_id)

                    slot = crud.get_execution_slot(db)
                    occupant = crud.get_task(db, slot.task_id) if slot.task_id else None
                    if occupant is not None and occupant.status in ACTIVE_TASK_STATUSES:
                        if expect_empty:
                            raise Conflict(
                                f"Execution slot is occupied by {slot.spec_id} "
                                f"(task {occupant.id} is {occupant.status.value})"
                            )
                        logger.warning(
                            f"Replacing unfinished {slot.spec_id} (task {occupant.id} is "
                            f"{occupant.status.value}) with {spec_id} in the execution slot"
                        )

                    task_lifecycle.start_work(db, task, "task_promoted", details=f"Spec {spec_id} promoted")
                    crud.create_approval(
                        db,
                        models.ApprovalEntityType.TASK,
                        task.id,
                        models.ApprovalStatus.APPROVED,
                        user_id=reviewer_id,
                        comments=f"Spec {spec_id} promoted to current",
                    )
                    slot.task_id = task.id
                    slot.spec_id = spec_id
                    slot.promoted_by = reviewer_id
                    slot.promoted_at = datetime.utcnow()
                    db.flush()

                    files_written = True
                    self._write_files(self.current_path, approved)
                    self._write_files(pending_path, approved)
            except Exception:
                if files_written:
                    logger.error(f"Promotion of {spec_id} failed, restoring previous slot files")
                    self._restore(snapshot)
                raise

        logger.info(f"Promoted {spec_id} to the execution slot")
        return approved

    def promote(self, db: Session, spec_id: str, reviewer_id: Optional[int] = None) -> TaskSpec:
        """Promote a pending spec, replacing whatever occupies the slot."""
        return self.try_promote(db, spec_id, reviewer_id, expect_empty=False)

    def reject_spec(self, db: Session, spec_id: str, reviewer_id: Optional[int], feedback: str) -> TaskSpec:
        """
        Reject a pending spec. Its task is blocked with the feedback.

        Raises:
            FeedbackRequired: If feedback is blank
            NotFound: If the pending spec or its task does not exist
            InvalidTransition: If the spec is not pending_approval or the task
                can not be blocked
        """
        if not feedback or not feedback.strip():
            raise FeedbackRequired("Feedback is required when rejecting a task spec")

        with _promotion_lock:
            spec = self.read_pending(spec_id)
            if spec.status != SpecStatus.PENDING_APPROVAL:
                raise InvalidTransition(
                    f"Spec {spec_id} is {spec.status.value}; only pending_approval specs can be rejected",
                    current_status=spec.status,
                    requested_status=SpecStatus.REJECTED,
                )

            pending_path = self.pending_path(spec_id)
            snapshot = self._snapshot(pending_path)
            files_written = False
            rejected = spec.model_copy(update={"status": SpecStatus.REJECTED, "notes": feedback})

            try:
                with transaction(db):
                    task = crud.require_task(db, spec.task_id)
                    if reviewer_id is not None:
                        crud.require_user(db, reviewer_id)
                    task_lifecycle.apply_block(db, task, feedback, action="task_spec_rejected")
                    crud.create_approval(
                        db,
                        models.ApprovalEntityType.TASK,
                        task.id,
                        models.ApprovalStatus.REJECTED,
                        user_id=reviewer_id,
                        comments=feedback,
                    )
                    files_written = True
                    self._write_files(pending_path, rejected)
            except Exception:
                if files_written:
                    self._restore(snapshot)
                raise

        logger.info(f"Rejected spec {spec_id}: {feedback}")
        return rejected
