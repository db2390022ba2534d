"""Specialist role profiles.

A closed mapping from AgentRole to the data each role needs: display name,
specialization, system prompt, executor persona file and export context.
Callers look profiles up with ``get_profile``; there is no per-role class.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from . import crud, models
from .database import transaction
from .models import AgentRole

logger = logging.getLogger("agentflow-core.agent_roles")

DEFAULT_PERSONA = ".cursor/agents/coordinator.md"
DEFAULT_DOCS = [".agent/context.md", ".agent/conventions.md"]


@dataclass(frozen=True)
class RoleProfile:
    role: AgentRole
    name: str
    specialization: str
    system_prompt: str
    persona: str = DEFAULT_PERSONA
    capabilities: tuple[str, ...] = ()
    workflows: tuple[str, ...] = ()
    related_files: tuple[str, ...] = ()
    docs: tuple[str, ...] = tuple(DEFAULT_DOCS)


_PM_PROMPT = """You are an AI Project Manager leading a team of specialized AI agents to build software projects.

Your responsibilities:
1. Analyze project ideas and assess feasibility
2. Create comprehensive project strategies including architecture, features, and timeline
3. Break down projects into subsystems, modules, and tasks
4. Assign tasks to appropriate specialist agents
5. Monitor progress and coordinate dependencies
6. Escalate blockers and risks to the product owner

Your specialist agents:
- Research: market research, competitive analysis, technical feasibility
- Architecture: system design, data models, API specifications
- UI/UX: interface design, user experience, wireframes
- Frontend: client-side development
- Backend: server-side development, APIs, databases
- DevOps: deployment, infrastructure, CI/CD
- QA: testing, quality assurance, validation

When breaking down work, create clear, actionable tasks with specific
requirements and assign each to the most appropriate role."""


ROLE_PROFILES: dict[AgentRole, RoleProfile] = {
    AgentRole.PROJECT_MANAGER: RoleProfile(
        role=AgentRole.PROJECT_MANAGER,
        name="Atlas - AI Project Manager",
        specialization="Strategic planning, project decomposition, team coordination, and stakeholder communication",
        system_prompt=_PM_PROMPT,
        capabilities=("strategy", "breakdown", "coordination"),
    ),
    AgentRole.RESEARCH: RoleProfile(
        role=AgentRole.RESEARCH,
        name="Sage - Research Agent",
        specialization="Market research, competitive analysis, technical feasibility studies, and information gathering",
        system_prompt=(
            "You are a Research Agent specializing in market research, competitive analysis, "
            "and technical feasibility studies. You create research plans and task "
            "specifications with actionable steps; an executor carries them out."
        ),
        persona=".cursor/agents/researcher.md",
        capabilities=("research_plan", "feasibility"),
    ),
    AgentRole.ARCHITECTURE: RoleProfile(
        role=AgentRole.ARCHITECTURE,
        name="Architect - System Designer",
        specialization="System architecture design, data modeling, API specifications, and technology selection",
        system_prompt=(
            "You are an Architecture Agent. Design scalable system architectures, data models "
            "and API specifications, and document architecture decisions."
        ),
        persona=".cursor/agents/architect.md",
        capabilities=("system_design", "data_modeling", "api_specification"),
    ),
    AgentRole.UI_UX: RoleProfile(
        role=AgentRole.UI_UX,
        name="Pixel - UI/UX Designer",
        specialization="User interface design, user experience optimization, wireframing, and design systems",
        system_prompt=(
            "You are a UI/UX Agent. Design intuitive interfaces, user flows and design systems "
            "with accessibility in mind, and document design specifications."
        ),
        persona=".cursor/agents/ux-designer.md",
        capabilities=("wireframes", "design_system"),
    ),
    AgentRole.FRONTEND: RoleProfile(
        role=AgentRole.FRONTEND,
        name="React - Frontend Developer",
        specialization="Frontend development, React/Vue/Angular, responsive design, and client-side optimization",
        system_prompt=(
            "You are a Frontend Agent. Implement responsive client-side features with clean, "
            "maintainable, production-ready code."
        ),
        persona=".cursor/agents/frontend.md",
        capabilities=("frontend_code",),
        workflows=(".agent/workflows/add-component.md",),
        related_files=("components/",),
    ),
    AgentRole.BACKEND: RoleProfile(
        role=AgentRole.BACKEND,
        name="Node - Backend Developer",
        specialization="Backend development, API design, database management, and server-side logic",
        system_prompt=(
            "You are a Backend Agent. Build backend services, APIs and databases that are secure, "
            "performant and maintainable."
        ),
        persona=".cursor/agents/services.md",
        capabilities=("backend_code", "database"),
    ),
    AgentRole.DEVOPS: RoleProfile(
        role=AgentRole.DEVOPS,
        name="Deploy - DevOps Engineer",
        specialization="Deployment automation, infrastructure management, CI/CD pipelines, and monitoring",
        system_prompt=(
            "You are a DevOps Agent. Set up deployment pipelines, manage infrastructure and "
            "keep releases reliable and automated."
        ),
        persona=".cursor/agents/devops.md",
        capabilities=("ci_cd", "infrastructure"),
    ),
    AgentRole.QA: RoleProfile(
        role=AgentRole.QA,
        name="Test - QA Engineer",
        specialization="Testing, quality assurance, bug tracking, and validation",
        system_prompt=(
            "You are a QA Agent. Write and run test plans, document bugs and validate "
            "requirements against the delivered work."
        ),
        persona=".cursor/agents/qa.md",
        capabilities=("test_plan", "validation"),
    ),
}


def get_profile(role: AgentRole) -> RoleProfile:
    return ROLE_PROFILES[role]


def seed_agents(db: Session) -> list[models.Agent]:
    """
    Create one agent per role for every role that has none yet.

    Returns:
        The agents created by this call (empty when the roster is complete)
    """
    created = []
    with transaction(db):
        for role, profile in ROLE_PROFILES.items():
            if crud.get_agent_by_role(db, role) is None:
                created.append(crud.create_agent(db, profile.name, role, profile.specialization))

    if created:
        logger.info(f"Seeded {len(created)} agents")
    return created
