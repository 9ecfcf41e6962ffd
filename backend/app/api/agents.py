from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_orchestrator
from app.auth.deps import get_current_user_id
from app.persistence.database import get_db
from app.persistence.models import Agent
from app.schemas.agent import ActivityOut, ApprovalOut, InvokeRequest, ResolveApprovalRequest
from app.services.activity_ledger import ActivityLedger
from app.services.errors import NotFound
from app.services.orchestrator import TaskOrchestrator

router = APIRouter(prefix="/agents", tags=["agents"])


@router.post("/invoke")
def invoke_agent(
    payload: InvokeRequest,
    user_id: UUID = Depends(get_current_user_id),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    result = orchestrator.invoke(
        payload.agent_id,
        payload.input,
        user_id=user_id,
        context=payload.context,
        requires_approval=payload.requires_approval,
    )
    return result.to_dict()


@router.get("/approvals", response_model=list[ApprovalOut])
def list_approvals(
    user_id: UUID = Depends(get_current_user_id),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_pending_approvals(user_id)


@router.post("/approvals/{approval_id}/resolve")
def resolve_approval(
    approval_id: UUID,
    payload: ResolveApprovalRequest,
    user_id: UUID = Depends(get_current_user_id),
    orchestrator: TaskOrchestrator = Depends(get_orchestrator),
) -> dict:
    result = orchestrator.resolve_approval(approval_id, payload.decision, user_id=user_id, reason=payload.reason)
    return result.to_dict()


@router.get("/{agent_id}/activity", response_model=list[ActivityOut])
def agent_activity(
    agent_id: UUID,
    correlation_id: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    user_id: UUID = Depends(get_current_user_id),
):
    agent = db.query(Agent).filter(Agent.id == agent_id, Agent.owner_id == user_id).first()
    if agent is None:
        raise NotFound("Agent not found or access denied")
    return ActivityLedger(db).for_agent(agent_id, correlation_id=correlation_id, limit=min(limit, 500))
