from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.persistence.models import ActivityType, ApprovalStatus, ToolStatus


class PlanStep(BaseModel):
    tool: str
    input: dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class Plan(BaseModel):
    steps: list[PlanStep] = Field(default_factory=list)


class InvokeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: UUID | None = Field(default=None, alias="agentId")
    input: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    requires_approval: bool = Field(default=False, alias="requiresApproval")


class ResolveApprovalRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    reason: str | None = None


class ApprovalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    correlation_id: str
    agent_id: UUID
    input: str
    plan_snapshot: dict
    status: ApprovalStatus
    expires_at: datetime
    created_at: datetime


class ActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    agent_id: UUID
    correlation_id: str
    activity_type: ActivityType
    tool_name: str | None = None
    tool_status: ToolStatus
    latency_ms: int | None = None
    payload: dict
    error_message: str | None = None
    created_at: datetime
