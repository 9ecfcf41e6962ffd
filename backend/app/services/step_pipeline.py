"""
Step pipeline: runs the runnable steps of a plan strictly in order.

Before anything executes, ``partition_steps`` splits the plan into runnable
steps and steps skipped because their tool is not enabled for the agent.
Each runnable step is timed, retried per the configured policy, ledgered,
and appended to the execution results. A failing step never aborts the run.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from app.monitoring.metrics import TOOL_CALLS, TOOL_LATENCY
from app.persistence.models import ActivityType, ToolStatus
from app.providers.base import ProviderError
from app.schemas.agent import Plan, PlanStep
from app.services.activity_ledger import ActivityLedger
from app.services.errors import DomainError

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    correlation_id: str
    agent_id: uuid.UUID
    user_id: uuid.UUID
    input: str
    context: dict[str, Any] = field(default_factory=dict)
    results: list[dict[str, Any]] = field(default_factory=list)

    def last_output(self, tool: str) -> Any:
        for result in reversed(self.results):
            if result["tool"] == tool and result["status"] == ToolStatus.success.value:
                return result.get("output")
        return None


@dataclass
class StepPartition:
    runnable: list[tuple[int, PlanStep]]
    skipped: list[dict[str, Any]]


class ToolDispatcher(Protocol):
    def dispatch(self, index: int, step: PlanStep, ctx: ExecutionContext) -> Any: ...


def partition_steps(plan: Plan, enabled_tools: list[str]) -> StepPartition:
    enabled = set(enabled_tools or [])
    runnable: list[tuple[int, PlanStep]] = []
    skipped: list[dict[str, Any]] = []
    for index, step in enumerate(plan.steps):
        if step.tool in enabled:
            runnable.append((index, step))
        else:
            skipped.append({"index": index, "tool": step.tool, "reason": "tool_not_enabled"})
    return StepPartition(runnable=runnable, skipped=skipped)


def _retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderError):
        return exc.transient
    if isinstance(exc, DomainError):
        return exc.retryable
    return False


class StepPipeline:
    def __init__(
        self,
        dispatcher: ToolDispatcher,
        ledger: ActivityLedger,
        *,
        max_attempts: int = 1,
        retry_wait=None,
    ) -> None:
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.max_attempts = max(1, max_attempts)
        self.retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=4)

    def run(self, ctx: ExecutionContext, partition: StepPartition) -> list[dict[str, Any]]:
        for skipped in partition.skipped:
            logger.warning(
                "Tool %s not enabled for agent %s", skipped["tool"], ctx.agent_id,
                extra={"correlation_id": ctx.correlation_id},
            )
        for index, step in partition.runnable:
            ctx.results.append(self._run_step(index, step, ctx))
        return ctx.results

    def _call_with_policy(self, index: int, step: PlanStep, ctx: ExecutionContext) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception(_retryable),
            reraise=True,
        )
        return retrying(self.dispatcher.dispatch, index, step, ctx)

    def _run_step(self, index: int, step: PlanStep, ctx: ExecutionContext) -> dict[str, Any]:
        logger.info("Executing step %s: %s", index, step.tool, extra={"correlation_id": ctx.correlation_id})
        started = time.perf_counter()
        try:
            output = self._call_with_policy(index, step, ctx)
        except Exception as exc:
            latency_ms = int((time.perf_counter() - started) * 1000)
            logger.error("Tool %s failed: %s", step.tool, exc, extra={"correlation_id": ctx.correlation_id})
            self.ledger.record(
                agent_id=ctx.agent_id,
                user_id=ctx.user_id,
                correlation_id=ctx.correlation_id,
                activity_type=ActivityType.tool_call,
                tool_status=ToolStatus.failure,
                tool_name=step.tool,
                latency_ms=latency_ms,
                payload={"stepIndex": index, "input": step.input},
                error_message=str(exc),
            )
            TOOL_CALLS.labels(tool=step.tool, status="failure").inc()
            return {
                "tool": step.tool,
                "description": step.description,
                "error": str(exc),
                "latencyMs": latency_ms,
                "status": ToolStatus.failure.value,
            }

        latency_ms = int((time.perf_counter() - started) * 1000)
        self.ledger.record(
            agent_id=ctx.agent_id,
            user_id=ctx.user_id,
            correlation_id=ctx.correlation_id,
            activity_type=ActivityType.tool_call,
            tool_status=ToolStatus.success,
            tool_name=step.tool,
            latency_ms=latency_ms,
            payload={"stepIndex": index, "input": step.input, "output": output},
        )
        TOOL_CALLS.labels(tool=step.tool, status="success").inc()
        TOOL_LATENCY.labels(tool=step.tool).observe(latency_ms / 1000)
        return {
            "tool": step.tool,
            "description": step.description,
            "output": output,
            "latencyMs": latency_ms,
            "status": ToolStatus.success.value,
        }
