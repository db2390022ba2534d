"""Proposals API endpoints: the human review gate."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from agentflow_core import crud, models, proposal_gate, schemas
from agentflow_core.database import get_db
from agentflow_core.planning import Planner

from ..dependencies import get_planner

logger = logging.getLogger("agentflow-core.proposals")

router = APIRouter(tags=["proposals"])


@router.post("/", response_model=schemas.ProposalResponse, status_code=201)
def submit_proposal(data: schemas.ProposalCreate, db: Session = Depends(get_db)):
    """
    Submit a proposal for review.

    - **revises**: a rejected proposal of the same project this one answers;
      it is marked revised
    """
    return proposal_gate.submit(
        db,
        data.project_id,
        data.proposal_type,
        data.title,
        data.content,
        agent_id=data.created_by_agent_id,
        revises=data.revises,
    )


@router.get("/", response_model=list[schemas.ProposalResponse])
def list_proposals(
    project_id: int = Query(..., description="Project ID"),
    status: Optional[models.ProposalStatus] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
):
    crud.require_project(db, project_id)
    return crud.get_proposals_by_project(db, project_id, status)


@router.get("/pending", response_model=list[schemas.ProposalResponse])
def list_pending_proposals(db: Session = Depends(get_db)):
    """Proposals waiting for a reviewer, across all projects."""
    return crud.get_pending_proposals(db)


@router.get("/{proposal_id}", response_model=schemas.ProposalResponse)
def get_proposal(proposal_id: int, db: Session = Depends(get_db)):
    return crud.require_proposal(db, proposal_id)


@router.get("/{proposal_id}/approvals", response_model=list[schemas.ApprovalResponse])
def list_proposal_approvals(proposal_id: int, db: Session = Depends(get_db)):
    crud.require_proposal(db, proposal_id)
    return crud.get_approvals(db, models.ApprovalEntityType.PROPOSAL, proposal_id)


@router.post("/{proposal_id}/approve", response_model=schemas.ProposalResponse)
def approve_proposal(
    proposal_id: int,
    data: Optional[schemas.ReviewRequest] = None,
    db: Session = Depends(get_db),
    planner: Planner = Depends(get_planner),
):
    """
    Approve a pending proposal.

    Approving a strategy moves the project on and runs the project breakdown
    in the same transaction; if text generation fails nothing is persisted
    and the response is 503.
    """
    data = data or schemas.ReviewRequest()
    return proposal_gate.approve(db, proposal_id, data.reviewer_id, data.feedback, planner=planner)


@router.post("/{proposal_id}/reject", response_model=schemas.ProposalResponse)
def reject_proposal(proposal_id: int, data: schemas.RejectRequest, db: Session = Depends(get_db)):
    """Reject a pending proposal. Feedback is required."""
    return proposal_gate.reject(db, proposal_id, data.reviewer_id, data.feedback)
