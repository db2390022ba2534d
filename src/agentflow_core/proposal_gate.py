"""Proposal approval gate.

A proposal is reviewed exactly once. Each review appends one Approval row
and, on approval, hands the decision to the project workflow machine inside
the same transaction.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from . import agent_tracker, crud, models, project_workflow
from .database import transaction
from .errors import AlreadyReviewed, ExternalUnavailable, FeedbackRequired, InvalidTransition
from .models import ProposalStatus
from .project_workflow import Decision, Planner
from .state_machine import validate_proposal_transition

logger = logging.getLogger("agentflow-core.proposal_gate")

_DECISION_STATUS = {
    Decision.APPROVE: (ProposalStatus.APPROVED, models.ApprovalStatus.APPROVED),
    Decision.REJECT: (ProposalStatus.REJECTED, models.ApprovalStatus.REJECTED),
}


def create_proposal(
    db: Session,
    project_id: int,
    proposal_type: models.ProposalType,
    title: str,
    content: dict,
    agent_id: Optional[int] = None,
    revises: Optional[int] = None,
) -> models.Proposal:
    """
    Create a pending proposal, marking the proposal it revises as revised.

    Flushes without committing.

    Raises:
        NotFound: If the project or revised proposal does not exist
        InvalidTransition: If the revised proposal is not rejected or belongs
            to another project
    """
    crud.require_project(db, project_id)

    if revises is not None:
        previous = crud.require_proposal(db, revises)
        if previous.project_id != project_id:
            raise InvalidTransition(
                f"Proposal {revises} belongs to project {previous.project_id}, not {project_id}"
            )
        validate_proposal_transition(previous.status, ProposalStatus.REVISED)
        previous.status = ProposalStatus.REVISED

    return crud.create_proposal(
        db,
        project_id=project_id,
        proposal_type=proposal_type,
        title=title,
        content=content,
        created_by_agent_id=agent_id,
        revises_proposal_id=revises,
    )


def submit(
    db: Session,
    project_id: int,
    proposal_type: models.ProposalType,
    title: str,
    content: dict,
    agent_id: Optional[int] = None,
    revises: Optional[int] = None,
) -> models.Proposal:
    """Submit a proposal for review in its own transaction."""
    with transaction(db):
        proposal = create_proposal(db, project_id, proposal_type, title, content, agent_id, revises)
    return proposal


def _pm_agent_id(db: Session, project: models.Project) -> Optional[int]:
    if project.pm_agent_id:
        return project.pm_agent_id
    pm = agent_tracker.agent_for_role(db, models.AgentRole.PROJECT_MANAGER)
    return pm.id if pm else None


def review(
    db: Session,
    proposal_id: int,
    decision: Decision,
    reviewer_id: Optional[int] = None,
    feedback: Optional[str] = None,
    planner: Optional[Planner] = None,
) -> models.Proposal:
    """
    Record a reviewer decision on a pending proposal.

    Args:
        db: Database session
        proposal_id: Proposal to review
        decision: approve or reject
        reviewer_id: Reviewing user
        feedback: Reviewer feedback, mandatory for rejections
        planner: Breakdown collaborator used when a strategy approval
            triggers project breakdown

    Returns:
        The reviewed proposal

    Raises:
        NotFound: If the proposal or reviewer does not exist
        AlreadyReviewed: If the proposal is not pending review
        FeedbackRequired: If decision is reject and feedback is blank
        ExternalUnavailable: If the downstream breakdown fails; nothing of the
            review is persisted and the project manager agent is marked blocked
    """
    if decision == Decision.REJECT and (not feedback or not feedback.strip()):
        raise FeedbackRequired("Feedback is required when rejecting a proposal")

    try:
        with transaction(db):
            proposal = crud.require_proposal(db, proposal_id)
            if reviewer_id is not None:
                crud.require_user(db, reviewer_id)

            if proposal.status != ProposalStatus.PENDING_REVIEW:
                raise AlreadyReviewed(
                    f"Proposal {proposal_id} was already reviewed (status: {proposal.status.value})"
                )

            new_status, approval_status = _DECISION_STATUS[decision]
            validate_proposal_transition(proposal.status, new_status)

            proposal.status = new_status
            proposal.reviewed_by = reviewer_id
            proposal.reviewed_at = datetime.utcnow()
            proposal.feedback = feedback
            crud.create_approval(
                db,
                models.ApprovalEntityType.PROPOSAL,
                proposal.id,
                approval_status,
                user_id=reviewer_id,
                comments=feedback,
            )

            if decision == Decision.APPROVE:
                project_workflow.on_proposal_decision(db, proposal, decision, planner)

    except ExternalUnavailable as e:
        proposal = crud.require_proposal(db, proposal_id)
        pm_agent_id = _pm_agent_id(db, crud.require_project(db, proposal.project_id))
        if pm_agent_id:
            agent_tracker.mark_failed(db, pm_agent_id, e.message)
        logger.error(f"Review of proposal {proposal_id} rolled back: {e.message}")
        raise

    logger.info(f"Proposal {proposal_id} {new_status.value} by user {reviewer_id}")
    return proposal


def approve(
    db: Session,
    proposal_id: int,
    reviewer_id: Optional[int] = None,
    feedback: Optional[str] = None,
    planner: Optional[Planner] = None,
) -> models.Proposal:
    return review(db, proposal_id, Decision.APPROVE, reviewer_id, feedback, planner)


def reject(
    db: Session,
    proposal_id: int,
    reviewer_id: Optional[int],
    feedback: str,
) -> models.Proposal:
    return review(db, proposal_id, Decision.REJECT, reviewer_id, feedback)
