"""Agents API endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from agentflow_core import agent_roles, crud, models, schemas
from agentflow_core.database import get_db

logger = logging.getLogger("agentflow-core.agents")

router = APIRouter(tags=["agents"])


@router.get("/", response_model=list[schemas.AgentResponse])
def list_agents(
    status: Optional[models.AgentStatus] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db),
):
    return crud.get_agents(db, status)


@router.post("/seed", response_model=list[schemas.AgentResponse])
def seed_agents(db: Session = Depends(get_db)):
    """Create one agent for every role that has none. Returns the agents created."""
    return agent_roles.seed_agents(db)


@router.get("/activity", response_model=list[schemas.ActivityLogResponse])
def list_recent_activity(limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    return crud.get_recent_activity_logs(db, limit)


@router.get("/{agent_id}", response_model=schemas.AgentResponse)
def get_agent(agent_id: int, db: Session = Depends(get_db)):
    return crud.require_agent(db, agent_id)


@router.get("/{agent_id}/activity", response_model=list[schemas.ActivityLogResponse])
def list_agent_activity(agent_id: int, limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    """Most recent activity of one agent, newest first."""
    crud.require_agent(db, agent_id)
    return crud.get_agent_activity_logs(db, agent_id, limit)
