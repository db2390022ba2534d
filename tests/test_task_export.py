"""Tests for the task export pipeline and the execution slot."""
import json

import pytest
from agentflow_core import crud, models, task_lifecycle
from agentflow_core.errors import Conflict, FeedbackRequired, InvalidTransition, NotFound
from agentflow_core.markdown_utils import parse_frontmatter
from agentflow_core.models import AgentRole, TaskStatus
from agentflow_core.task_export import SpecStatus, build_steps, parse_spec_id


@pytest.fixture
def assigned_task(db, make_task, agent_ids):
    task = make_task()
    task_lifecycle.assign(db, task.id, agent_ids[AgentRole.FRONTEND])
    return task


def _assigned(db, make_task, agent_ids, title, role):
    task = make_task(title, planned_role=role)
    task_lifecycle.assign(db, task.id, agent_ids[role])
    return task


class TestSpecIds:
    def test_parse_spec_id(self):
        assert parse_spec_id("task-42") == 42

    @pytest.mark.parametrize("spec_id", ["task-", "42", "task-4a", "../task-1", "", "task-1.json"])
    def test_malformed_spec_id(self, spec_id):
        with pytest.raises(NotFound):
            parse_spec_id(spec_id)


class TestBuildSteps:
    def test_one_step_per_requirement(self):
        steps = build_steps("Grid", "- Show 12 products\n* Lazy-load images\n\n3. Keyboard navigation")

        assert [s.description for s in steps] == ["Show 12 products", "Lazy-load images", "Keyboard navigation"]
        assert [s.step for s in steps] == [1, 2, 3]

    def test_no_requirements_uses_description(self):
        steps = build_steps("Build the grid", "  ")

        assert len(steps) == 1
        assert steps[0].action == "Implement feature"
        assert steps[0].description == "Build the grid"


class TestGenerateSpec:
    """Test spec generation into the pending slot."""

    def test_writes_pending_spec(self, db, make_task, assigned_task, pipeline):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        assert spec.id == f"task-{assigned_task.id}"
        assert spec.status == SpecStatus.PENDING_APPROVAL
        assert pipeline.pending_path(spec.id).exists()
        assert pipeline.read_pending(spec.id).to_document() == spec.to_document()

    def test_document_uses_camel_case_keys(self, db, make_task, assigned_task, pipeline):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        document = json.loads(pipeline.pending_path(spec.id).read_text())
        assert document["status"] == "pending_approval"
        assert "createdAt" in document
        assert document["context"]["relatedFiles"] == ["components/"]
        assert "research" not in document

    def test_agent_and_validation(self, db, make_task, assigned_task, pipeline):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        assert spec.agent.role == "frontend"
        assert spec.agent.persona == ".cursor/agents/frontend.md"
        assert spec.implementation.validation.commands == ["npm run build"]
        assert spec.implementation.validation.criteria == [
            "Build passes without errors",
            "Requirement met: Show 12 products per page",
            "Requirement met: Lazy-load images",
        ]
        assert spec.notes == f"Generated from orchestrator task {assigned_task.id}"

    def test_unassigned_task_uses_planned_role(self, db, make_task, pipeline):
        task = make_task(planned_role=AgentRole.BACKEND)

        spec = pipeline.generate_spec(db, make_task.project.id, task.id)

        assert spec.agent.role == "backend"

    def test_task_without_role_is_general(self, db, make_task, pipeline):
        task = make_task(planned_role=None)

        spec = pipeline.generate_spec(db, make_task.project.id, task.id)

        assert spec.agent.role == "general"
        assert spec.agent.persona == ".cursor/agents/coordinator.md"

    def test_extra_context_becomes_research(self, db, make_task, assigned_task, pipeline):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id, "Use CSS grid")

        assert spec.research.summary == "Use CSS grid"

    def test_markdown_companion(self, db, make_task, assigned_task, pipeline):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        markdown = pipeline.pending_path(spec.id).with_suffix(".md").read_text()
        frontmatter = parse_frontmatter(markdown)
        assert frontmatter["id"] == spec.id
        assert frontmatter["status"] == "pending_approval"
        assert "# Task: Build product grid" in markdown
        assert "npm run build" in markdown

    def test_regenerate_overwrites_same_slot(self, db, make_task, assigned_task, pipeline):
        pipeline.generate_spec(db, make_task.project.id, assigned_task.id)
        pipeline.generate_spec(db, make_task.project.id, assigned_task.id, "Second pass")

        specs = pipeline.list_pending()
        assert len(specs) == 1
        assert specs[0].research.summary == "Second pass"

    def test_task_of_other_project(self, db, make_task, assigned_task, pipeline):
        other = crud.create_project(db, "Other", "Unrelated")
        db.commit()

        with pytest.raises(NotFound):
            pipeline.generate_spec(db, other.id, assigned_task.id)

    def test_logs_generation(self, db, make_task, assigned_task, pipeline):
        pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        actions = [log.action for log in crud.get_task_activity_logs(db, assigned_task.id)]
        assert actions[-1] == "task_spec_generated"


class TestPromotion:
    """Test promotion into the single execution slot."""

    def test_promote_fills_slot_and_starts_work(self, db, make_task, assigned_task, pipeline, reviewer_id):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        promoted = pipeline.try_promote(db, spec.id, reviewer_id)

        slot = pipeline.current_slot(db)
        assert promoted.status == SpecStatus.APPROVED
        assert assigned_task.status == TaskStatus.IN_PROGRESS
        assert slot.task_id == assigned_task.id
        assert slot.spec_id == spec.id
        assert slot.promoted_by == reviewer_id
        assert slot.occupied
        assert slot.spec["status"] == "approved"
        assert pipeline.read_pending(spec.id).status == SpecStatus.APPROVED

    def test_promotion_records_approval(self, db, make_task, assigned_task, pipeline, reviewer_id):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        pipeline.try_promote(db, spec.id, reviewer_id)

        approvals = crud.get_approvals(db, models.ApprovalEntityType.TASK, assigned_task.id)
        assert [a.status for a in approvals] == [models.ApprovalStatus.APPROVED]

    def test_promoted_spec_leaves_pending_list(self, db, make_task, assigned_task, pipeline):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        pipeline.try_promote(db, spec.id)

        assert pipeline.list_pending() == []
        assert [s.id for s in pipeline.list_pending(include_decided=True)] == [spec.id]

    def test_second_promotion_is_refused(self, db, make_task, assigned_task, pipeline):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)
        pipeline.try_promote(db, spec.id)

        with pytest.raises(InvalidTransition):
            pipeline.promote(db, spec.id)

    def test_try_promote_refuses_occupied_slot(self, db, make_task, agent_ids, pipeline):
        first = _assigned(db, make_task, agent_ids, "Grid", AgentRole.FRONTEND)
        second = _assigned(db, make_task, agent_ids, "Orders API", AgentRole.BACKEND)
        first_spec = pipeline.generate_spec(db, make_task.project.id, first.id)
        second_spec = pipeline.generate_spec(db, make_task.project.id, second.id)
        pipeline.try_promote(db, first_spec.id)
        current_before = pipeline.current_path.read_text()

        with pytest.raises(Conflict):
            pipeline.try_promote(db, second_spec.id)

        db.expire_all()
        assert pipeline.current_slot(db).task_id == first.id
        assert pipeline.current_path.read_text() == current_before
        assert pipeline.read_pending(second_spec.id).status == SpecStatus.PENDING_APPROVAL
        assert crud.get_task(db, second.id).status == TaskStatus.ASSIGNED

    def test_promote_replaces_occupant_with_warning(self, db, make_task, agent_ids, pipeline, caplog):
        first = _assigned(db, make_task, agent_ids, "Grid", AgentRole.FRONTEND)
        second = _assigned(db, make_task, agent_ids, "Orders API", AgentRole.BACKEND)
        pipeline.try_promote(db, pipeline.generate_spec(db, make_task.project.id, first.id).id)
        second_spec = pipeline.generate_spec(db, make_task.project.id, second.id)

        with caplog.at_level("WARNING", logger="agentflow-core.task_export"):
            pipeline.promote(db, second_spec.id)

        assert "Replacing unfinished" in caplog.text
        assert pipeline.current_slot(db).task_id == second.id
        assert pipeline.read_current()["id"] == second_spec.id

    def test_try_promote_after_occupant_completes(self, db, make_task, agent_ids, pipeline):
        first = _assigned(db, make_task, agent_ids, "Grid", AgentRole.FRONTEND)
        second = _assigned(db, make_task, agent_ids, "Orders API", AgentRole.BACKEND)
        pipeline.try_promote(db, pipeline.generate_spec(db, make_task.project.id, first.id).id)
        task_lifecycle.complete(db, first.id)

        pipeline.try_promote(db, pipeline.generate_spec(db, make_task.project.id, second.id).id)

        assert pipeline.current_slot(db).task_id == second.id

    def test_promote_requires_active_task(self, db, make_task, pipeline):
        task = make_task()
        spec = pipeline.generate_spec(db, make_task.project.id, task.id)

        with pytest.raises(InvalidTransition):
            pipeline.try_promote(db, spec.id)

        assert not pipeline.current_path.exists()
        assert pipeline.read_pending(spec.id).status == SpecStatus.PENDING_APPROVAL

    def test_promote_unknown_spec(self, db, pipeline):
        with pytest.raises(NotFound):
            pipeline.try_promote(db, "task-999")

    def test_empty_slot(self, db, pipeline):
        slot = pipeline.current_slot(db)

        assert slot.task_id is None
        assert not slot.occupied
        assert slot.spec is None
        assert crud.find_execution_slot(db) is None

    def test_failed_slot_write_leaves_task_assigned(
        self, db, make_task, assigned_task, pipeline, reviewer_id, monkeypatch
    ):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)
        write_files = pipeline._write_files

        def failing_write(path, document):
            if path == pipeline.current_path:
                raise OSError("disk full")
            return write_files(path, document)

        monkeypatch.setattr(pipeline, "_write_files", failing_write)

        with pytest.raises(OSError):
            pipeline.try_promote(db, spec.id, reviewer_id)

        db.expire_all()
        slot = pipeline.current_slot(db)
        assert crud.get_task(db, assigned_task.id).status == TaskStatus.ASSIGNED
        assert slot.task_id is None
        assert slot.spec is None
        assert pipeline.read_pending(spec.id).status == SpecStatus.PENDING_APPROVAL
        assert crud.get_approvals(db, models.ApprovalEntityType.TASK, assigned_task.id) == []


class TestRejectSpec:
    def test_reject_blocks_task(self, db, make_task, assigned_task, pipeline, reviewer_id, agent_ids):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        rejected = pipeline.reject_spec(db, spec.id, reviewer_id, "Steps are too vague")

        agent = crud.get_agent(db, agent_ids[AgentRole.FRONTEND])
        assert rejected.status == SpecStatus.REJECTED
        assert rejected.notes == "Steps are too vague"
        assert assigned_task.status == TaskStatus.BLOCKED
        assert assigned_task.blocker_reason == "Steps are too vague"
        assert agent.status == models.AgentStatus.BLOCKED
        assert pipeline.read_pending(spec.id).status == SpecStatus.REJECTED

    def test_reject_requires_feedback(self, db, make_task, assigned_task, pipeline, reviewer_id):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)

        with pytest.raises(FeedbackRequired):
            pipeline.reject_spec(db, spec.id, reviewer_id, "")

    def test_rejected_spec_cannot_be_promoted(self, db, make_task, assigned_task, pipeline, reviewer_id):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)
        pipeline.reject_spec(db, spec.id, reviewer_id, "Steps are too vague")

        with pytest.raises(InvalidTransition):
            pipeline.try_promote(db, spec.id)

    def test_regenerating_after_rejection_reopens_the_slot(
        self, db, make_task, assigned_task, pipeline, reviewer_id, agent_ids
    ):
        spec = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)
        pipeline.reject_spec(db, spec.id, reviewer_id, "Steps are too vague")
        task_lifecycle.assign(db, assigned_task.id, agent_ids[AgentRole.FRONTEND])

        regenerated = pipeline.generate_spec(db, make_task.project.id, assigned_task.id)
        pipeline.try_promote(db, regenerated.id, reviewer_id)

        assert pipeline.current_slot(db).task_id == assigned_task.id
