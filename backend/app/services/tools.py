"""
Tool dispatch for agent plan steps.

``wallet_transfer`` runs in-process through the transfer gateway so agent
transfers get the same idempotency and spend-limit guarantees as the REST
endpoint. ``wallet_balance`` reads through the balance service. Every other
tool is forwarded to the remote tool server.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from app.providers.tool_server import ToolServerProvider
from app.schemas.agent import PlanStep
from app.services.balance_service import BalanceService
from app.services.step_pipeline import ExecutionContext
from app.services.transfer_gateway import TransferGateway, TransferRequest

logger = logging.getLogger(__name__)

LocalTool = Callable[[int, PlanStep, ExecutionContext], Any]


def step_idempotency_key(ctx: ExecutionContext, index: int) -> str:
    return f"{ctx.correlation_id}:{index}"


class ToolRegistry:
    def __init__(
        self,
        tool_server: ToolServerProvider,
        *,
        transfer_gateway: TransferGateway | None = None,
        balance_service: BalanceService | None = None,
    ) -> None:
        self.tool_server = tool_server
        self._local: dict[str, LocalTool] = {}
        if transfer_gateway is not None:
            self._gateway = transfer_gateway
            self.register("wallet_transfer", self._wallet_transfer)
        if balance_service is not None:
            self._balances = balance_service
            self.register("wallet_balance", self._wallet_balance)

    def register(self, name: str, handler: LocalTool) -> None:
        self._local[name] = handler

    def is_local(self, name: str) -> bool:
        return name in self._local

    def dispatch(self, index: int, step: PlanStep, ctx: ExecutionContext) -> Any:
        handler = self._local.get(step.tool)
        if handler is not None:
            return handler(index, step, ctx)
        return self.tool_server.invoke(step.tool, step.input, correlation_id=ctx.correlation_id)

    def _wallet_transfer(self, index: int, step: PlanStep, ctx: ExecutionContext) -> dict[str, Any]:
        payload = {**step.input, "fromUserId": str(ctx.user_id)}
        key = step.input.get("idempotencyKey") or step_idempotency_key(ctx, index)
        outcome = self._gateway.transfer(
            TransferRequest.from_payload(payload),
            idempotency_key=key,
            correlation_id=ctx.correlation_id,
        )
        return {"statusCode": outcome.status_code, **outcome.body}

    def _wallet_balance(self, index: int, step: PlanStep, ctx: ExecutionContext) -> dict[str, Any]:
        data = step.input
        return self._balances.get_balance(
            data.get("address", ""),
            int(data.get("chainId") or 1),
            data.get("tokenAddress"),
        )
