"""Project manager planning: strategy drafting and project breakdown.

Both steps call the text-generation collaborator once and never retry. The
breakdown runs inside the proposal review transaction, so a failure there
leaves no subsystem, module, task or proposal behind.
"""
import json
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from . import agent_tracker, context, crud, models, proposal_gate
from .agent_roles import get_profile
from .database import transaction
from .errors import ExternalUnavailable, InvalidTransition, NotFound
from .external.llm import COLLABORATOR, TextGenerator
from .models import AgentRole, ProposalType
from .project_workflow import APPROVED_STRATEGY_KEY, PROPOSED_STRATEGY_KEY

logger = logging.getLogger("agentflow-core.planning")


class BreakdownTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    requirements: str
    assigned_role: str = Field(alias="assignedRole")


class BreakdownModule(BaseModel):
    name: str
    description: str
    tasks: list[BreakdownTask]


class BreakdownSubsystem(BaseModel):
    name: str
    description: str
    modules: list[BreakdownModule]


class ProjectBreakdown(BaseModel):
    subsystems: list[BreakdownSubsystem]

    def task_count(self) -> int:
        return sum(len(m.tasks) for s in self.subsystems for m in s.modules)


def _object(properties: dict) -> dict:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


BREAKDOWN_SCHEMA = {
    "name": "project_breakdown",
    "schema": _object({
        "subsystems": {
            "type": "array",
            "items": _object({
                "name": {"type": "string"},
                "description": {"type": "string"},
                "modules": {
                    "type": "array",
                    "items": _object({
                        "name": {"type": "string"},
                        "description": {"type": "string"},
                        "tasks": {
                            "type": "array",
                            "items": _object({
                                "title": {"type": "string"},
                                "description": {"type": "string"},
                                "requirements": {"type": "string"},
                                "assignedRole": {"type": "string"},
                            }),
                        },
                    }),
                },
            }),
        },
    }),
}

ASSIGNABLE_ROLES = "|".join(r.value for r in AgentRole if r != AgentRole.PROJECT_MANAGER)


def _strategy_prompt(project: models.Project, feedback: Optional[str], attachments: Optional[str]) -> str:
    prompt = f"""Analyze this project idea and create a comprehensive strategy:

Project: {project.name}
Description: {project.description}
"""
    if attachments:
        prompt += f"\n{attachments}\n"
    if feedback:
        prompt += f"\nThe previous strategy was rejected with this feedback, address it:\n{feedback}\n"
    prompt += """
Create a detailed strategy proposal including:
1. Executive Summary
2. Market Analysis
3. Technical Feasibility Assessment
4. Proposed Architecture
5. Feature Breakdown
6. Technology Stack Recommendations
7. Project Structure (Subsystems and Modules)
8. Timeline Estimate
9. Risk Assessment
10. Success Metrics

Format the response as a structured document."""
    return prompt


def _breakdown_prompt(project: models.Project, strategy: str) -> str:
    return f"""Based on the approved strategy, break down this project into subsystems, modules, and tasks:

Project: {project.name}
Strategy: {strategy}

Create a detailed breakdown with:
1. Subsystems (major functional areas)
2. Modules within each subsystem
3. Tasks for each module with a clear title and description, specific
   requirements, and the assigned agent role ({ASSIGNABLE_ROLES})

Return the breakdown as JSON matching the provided schema."""


def _parse_role(value: str) -> Optional[AgentRole]:
    try:
        return AgentRole(value.strip().lower())
    except ValueError:
        logger.warning(f"Breakdown named unknown role '{value}', leaving task without a planned role")
        return None


class Planner:
    """Project manager actions backed by a text generator."""

    def __init__(self, generator: TextGenerator):
        self.generator = generator

    def _pm_agent_id(self, db: Session, project: models.Project) -> int:
        if project.pm_agent_id:
            return project.pm_agent_id
        pm = agent_tracker.agent_for_role(db, AgentRole.PROJECT_MANAGER)
        if pm is None:
            raise NotFound("Agent", AgentRole.PROJECT_MANAGER.value)
        return pm.id

    def _messages(self, prompt: str) -> list[dict]:
        return [
            {"role": "system", "content": get_profile(AgentRole.PROJECT_MANAGER).system_prompt},
            {"role": "user", "content": prompt},
        ]

    def analyze_project_idea(self, db: Session, project_id: int, revises: Optional[int] = None) -> models.Proposal:
        """
        Draft a strategy for a project in ideation and submit it for review.

        Args:
            db: Database session
            project_id: Project to analyze
            revises: Rejected strategy proposal this draft answers (optional)

        Returns:
            The submitted strategy proposal

        Raises:
            NotFound: If the project or project manager agent does not exist
            InvalidTransition: If the project has left ideation
            ExternalUnavailable: If text generation fails; nothing is persisted
                except the project manager agent being marked blocked
        """
        project = crud.require_project(db, project_id)
        pm_agent_id = self._pm_agent_id(db, project)

        try:
            with transaction(db):
                if project.status != models.ProjectStatus.IDEATION:
                    raise InvalidTransition(
                        f"Strategy analysis only runs in ideation; project {project_id} is {project.status.value}",
                        current_status=project.status,
                    )

                feedback = None
                if revises is not None:
                    feedback = crud.require_proposal(db, revises).feedback

                agent_tracker.mark_working(db, pm_agent_id)
                crud.log_activity(db, pm_agent_id, "Starting project analysis", details=f"Project ID: {project_id}")

                project_context = context.build_context(db, project_id)
                strategy = self.generator.generate(
                    self._messages(_strategy_prompt(project, feedback, project_context.attachments))
                )

                context.store_context(db, project_id, PROPOSED_STRATEGY_KEY, strategy, "ai_project_manager")
                project.pm_agent_id = pm_agent_id
                proposal = proposal_gate.create_proposal(
                    db,
                    project_id,
                    ProposalType.STRATEGY,
                    f"Strategy Proposal for {project.name}",
                    {"content": strategy},
                    agent_id=pm_agent_id,
                    revises=revises,
                )
                crud.log_activity(
                    db, pm_agent_id, "Strategy proposal submitted", details=f"Proposal ID: {proposal.id}"
                )
                agent_tracker.release_agent(db, pm_agent_id)

        except ExternalUnavailable as e:
            agent_tracker.mark_failed(db, pm_agent_id, e.message)
            raise

        logger.info(f"Strategy proposal {proposal.id} submitted for project {project_id}")
        return proposal

    def breakdown_project(self, db: Session, project_id: int) -> models.Proposal:
        """
        Break an approved strategy into subsystems, modules and tasks, then
        submit a task assignment proposal.

        Tasks are created unassignable with their planned role; approving the
        task assignment proposal makes them assignable. Flushes without
        committing.

        Raises:
            InvalidTransition: If no approved strategy is stored
            ExternalUnavailable: If text generation fails or returns a
                document that does not match the breakdown schema
        """
        project = crud.require_project(db, project_id)
        pm_agent_id = self._pm_agent_id(db, project)

        strategy = crud.get_knowledge(db, project_id, APPROVED_STRATEGY_KEY)
        if strategy is None:
            raise InvalidTransition(f"Project {project_id} has no approved strategy to break down")

        agent_tracker.mark_working(db, pm_agent_id)
        crud.log_activity(db, pm_agent_id, "Starting project breakdown", details=f"Project ID: {project_id}")

        raw = self.generator.generate(
            self._messages(_breakdown_prompt(project, strategy.value)),
            response_schema=BREAKDOWN_SCHEMA,
        )
        try:
            breakdown = ProjectBreakdown.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Breakdown for project {project_id} did not match the schema: {e}")
            raise ExternalUnavailable(COLLABORATOR, "breakdown response did not match the schema") from e

        for subsystem_data in breakdown.subsystems:
            subsystem = crud.create_subsystem(db, project_id, subsystem_data.name, subsystem_data.description)
            for module_data in subsystem_data.modules:
                module = crud.create_module(db, subsystem.id, module_data.name, module_data.description)
                for task_data in module_data.tasks:
                    crud.create_task(
                        db,
                        module_id=module.id,
                        title=task_data.title,
                        description=task_data.description,
                        requirements=task_data.requirements,
                        planned_role=_parse_role(task_data.assigned_role),
                        assignable=False,
                    )

        proposal = proposal_gate.create_proposal(
            db,
            project_id,
            ProposalType.TASK_ASSIGNMENT,
            f"Task Assignments for {project.name}",
            {
                "content": (
                    f"Project has been broken down into {len(breakdown.subsystems)} subsystems "
                    f"with {breakdown.task_count()} tasks assigned to specialist agents."
                ),
                "breakdown": json.loads(breakdown.model_dump_json(by_alias=True)),
            },
            agent_id=pm_agent_id,
        )
        crud.log_activity(db, pm_agent_id, "Project breakdown completed", details=f"Proposal ID: {proposal.id}")
        agent_tracker.release_agent(db, pm_agent_id)

        logger.info(f"Project {project_id} broken down into {breakdown.task_count()} tasks")
        return proposal
