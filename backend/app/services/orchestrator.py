"""
Task orchestrator: plan -> approval gate -> step dispatch -> synthesis.

Every invocation gets a fresh correlation id that joins its ledger rows, its
approval request (if any) and the response. An invocation that needs
approval stops after planning; ``resolve_approval`` later resumes it with
the persisted plan and the original correlation id.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.persistence.models import (
    ActivityType,
    Agent,
    AgentStatus,
    ApprovalRequest,
    ApprovalStatus,
    ToolStatus,
)
from app.providers.base import ProviderError
from app.schemas.agent import Plan
from app.services.activity_ledger import ActivityLedger
from app.services.errors import (
    AgentNotActive,
    ApprovalStateError,
    ExternalServiceError,
    NotFound,
    ValidationError,
)
from app.services.planner import Planner
from app.services.step_pipeline import ExecutionContext, StepPipeline, ToolDispatcher, partition_steps

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class InvocationResult:
    status: str
    correlation_id: str
    plan: list[dict[str, Any]] = field(default_factory=list)
    response: str | None = None
    execution_results: list[dict[str, Any]] = field(default_factory=list)
    skipped_steps: list[dict[str, Any]] = field(default_factory=list)
    approval_request_id: uuid.UUID | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.status == "approval_required":
            return {
                "status": self.status,
                "correlationId": self.correlation_id,
                "plan": self.plan,
                "approvalRequestId": str(self.approval_request_id),
                "message": self.message,
            }
        if self.status == ApprovalStatus.rejected.value:
            return {
                "status": self.status,
                "correlationId": self.correlation_id,
                "approvalRequestId": str(self.approval_request_id),
            }
        return {
            "status": self.status,
            "correlationId": self.correlation_id,
            "response": self.response,
            "executionResults": self.execution_results,
            "plan": self.plan,
            "skippedSteps": self.skipped_steps,
        }


class TaskOrchestrator:
    def __init__(
        self,
        db: Session,
        planner: Planner,
        tools: ToolDispatcher,
        *,
        ledger: ActivityLedger | None = None,
        approval_ttl_seconds: int = 86_400,
        step_max_attempts: int = 1,
        retry_wait=None,
    ) -> None:
        self.db = db
        self.planner = planner
        self.tools = tools
        self.ledger = ledger or ActivityLedger(db)
        self.approval_ttl_seconds = approval_ttl_seconds
        self.pipeline = StepPipeline(tools, self.ledger, max_attempts=step_max_attempts, retry_wait=retry_wait)

    def _load_agent(self, agent_id: uuid.UUID, user_id: uuid.UUID) -> Agent:
        agent = (
            self.db.query(Agent)
            .filter(Agent.id == agent_id, Agent.owner_id == user_id)
            .populate_existing()
            .first()
        )
        if agent is None:
            raise NotFound("Agent not found or access denied")
        return agent

    @staticmethod
    def _require_active(agent: Agent) -> None:
        if agent.status != AgentStatus.active:
            raise AgentNotActive(f"Agent is {agent.status.value}")

    def invoke(
        self,
        agent_id: uuid.UUID | None,
        user_input: str | None,
        *,
        user_id: uuid.UUID,
        context: dict[str, Any] | None = None,
        requires_approval: bool = False,
    ) -> InvocationResult:
        if not agent_id or not user_input:
            raise ValidationError("Missing required fields: agentId, input")
        agent = self._load_agent(agent_id, user_id)
        self._require_active(agent)

        ctx = ExecutionContext(
            correlation_id=str(uuid.uuid4()),
            agent_id=agent.id,
            user_id=user_id,
            input=user_input,
            context=context or {},
        )
        logger.info("Invoking agent %s", agent.id, extra={"correlation_id": ctx.correlation_id})

        try:
            plan, raw_plan = self.planner.plan(user_input, list(agent.tools_enabled or []), agent.system_prompt)
        except ProviderError as exc:
            self.ledger.record(
                agent_id=agent.id,
                user_id=user_id,
                correlation_id=ctx.correlation_id,
                activity_type=ActivityType.planning,
                tool_status=ToolStatus.failure,
                payload={"input": user_input, "context": ctx.context},
                error_message=str(exc),
            )
            raise ExternalServiceError(f"Planning failed: {exc}") from exc

        self.ledger.record(
            agent_id=agent.id,
            user_id=user_id,
            correlation_id=ctx.correlation_id,
            activity_type=ActivityType.planning,
            tool_status=ToolStatus.success,
            payload={"input": user_input, "context": ctx.context, "plan": raw_plan},
        )

        if requires_approval or agent.requires_approval:
            return self._request_approval(agent, ctx, plan)
        return self._execute(agent, ctx, plan)

    def _request_approval(self, agent: Agent, ctx: ExecutionContext, plan: Plan) -> InvocationResult:
        snapshot = plan.model_dump()
        approval = ApprovalRequest(
            correlation_id=ctx.correlation_id,
            agent_id=agent.id,
            user_id=ctx.user_id,
            input=ctx.input,
            context=ctx.context,
            plan_snapshot=snapshot,
            status=ApprovalStatus.pending,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.approval_ttl_seconds),
        )
        self.db.add(approval)
        self.db.commit()
        self.ledger.record(
            agent_id=agent.id,
            user_id=ctx.user_id,
            correlation_id=ctx.correlation_id,
            activity_type=ActivityType.approval_requested,
            tool_status=ToolStatus.pending,
            payload={"approvalRequestId": str(approval.id), "plan": snapshot},
        )
        return InvocationResult(
            status="approval_required",
            correlation_id=ctx.correlation_id,
            plan=snapshot["steps"],
            approval_request_id=approval.id,
            message="Plan requires approval before execution",
        )

    def _execute(self, agent: Agent, ctx: ExecutionContext, plan: Plan) -> InvocationResult:
        partition = partition_steps(plan, list(agent.tools_enabled or []))
        self.pipeline.run(ctx, partition)

        try:
            summary = self.planner.synthesize(ctx.input, ctx.results)
        except ProviderError as exc:
            self.ledger.record(
                agent_id=agent.id,
                user_id=ctx.user_id,
                correlation_id=ctx.correlation_id,
                activity_type=ActivityType.error,
                tool_status=ToolStatus.failure,
                payload={"results": ctx.results},
                error_message=str(exc),
            )
            raise ExternalServiceError(f"Synthesis failed: {exc}") from exc

        self.ledger.record(
            agent_id=agent.id,
            user_id=ctx.user_id,
            correlation_id=ctx.correlation_id,
            activity_type=ActivityType.completion,
            tool_status=ToolStatus.success,
            payload={"summary": summary, "results": ctx.results, "skippedSteps": partition.skipped},
        )
        return InvocationResult(
            status="completed",
            correlation_id=ctx.correlation_id,
            plan=[step.model_dump() for step in plan.steps],
            response=summary,
            execution_results=ctx.results,
            skipped_steps=partition.skipped,
        )

    def list_pending_approvals(self, user_id: uuid.UUID) -> list[ApprovalRequest]:
        now = datetime.now(timezone.utc)
        rows = (
            self.db.query(ApprovalRequest)
            .join(Agent, Agent.id == ApprovalRequest.agent_id)
            .filter(Agent.owner_id == user_id, ApprovalRequest.status == ApprovalStatus.pending)
            .order_by(ApprovalRequest.created_at.desc())
            .all()
        )
        return [r for r in rows if _as_utc(r.expires_at) > now]

    def _transition_approval(self, approval_id: uuid.UUID, new_status: ApprovalStatus, **values: Any) -> bool:
        result = self.db.execute(
            update(ApprovalRequest)
            .where(ApprovalRequest.id == approval_id, ApprovalRequest.status == ApprovalStatus.pending)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def resolve_approval(
        self,
        approval_request_id: uuid.UUID,
        decision: str,
        *,
        user_id: uuid.UUID,
        reason: str | None = None,
    ) -> InvocationResult:
        if decision not in (ApprovalStatus.approved.value, ApprovalStatus.rejected.value):
            raise ValidationError("Decision must be 'approved' or 'rejected'")

        approval = self.db.get(ApprovalRequest, approval_request_id, populate_existing=True)
        if approval is None:
            raise NotFound("Approval request not found")
        agent = self.db.get(Agent, approval.agent_id, populate_existing=True)
        if agent is None or agent.owner_id != user_id:
            raise NotFound("Approval request not found")
        if approval.status != ApprovalStatus.pending:
            raise ApprovalStateError(f"Approval request is {approval.status.value}")

        now = datetime.now(timezone.utc)
        correlation_id = approval.correlation_id
        if _as_utc(approval.expires_at) <= now:
            if self._transition_approval(approval.id, ApprovalStatus.expired, decided_at=now):
                self.ledger.record(
                    agent_id=agent.id,
                    user_id=approval.user_id,
                    correlation_id=correlation_id,
                    activity_type=ActivityType.completion,
                    tool_status=ToolStatus.failure,
                    payload={"decision": ApprovalStatus.expired.value, "approvalRequestId": str(approval.id)},
                    error_message="Approval request expired",
                )
            raise ApprovalStateError("Approval request expired")

        new_status = ApprovalStatus(decision)
        if new_status == ApprovalStatus.approved:
            self._require_active(agent)

        if not self._transition_approval(
            approval.id, new_status, decided_by=user_id, decided_at=now, reason=reason
        ):
            raise ApprovalStateError("Approval request already resolved")
        logger.info("Approval %s %s", approval.id, decision, extra={"correlation_id": correlation_id})

        if new_status == ApprovalStatus.rejected:
            self.ledger.record(
                agent_id=agent.id,
                user_id=approval.user_id,
                correlation_id=correlation_id,
                activity_type=ActivityType.completion,
                tool_status=ToolStatus.failure,
                payload={"decision": decision, "approvalRequestId": str(approval.id), "reason": reason},
            )
            return InvocationResult(
                status=ApprovalStatus.rejected.value,
                correlation_id=correlation_id,
                approval_request_id=approval.id,
            )

        ctx = ExecutionContext(
            correlation_id=correlation_id,
            agent_id=agent.id,
            user_id=approval.user_id,
            input=approval.input,
            context=approval.context or {},
        )
        return self._execute(agent, ctx, Plan.model_validate(approval.plan_snapshot))
