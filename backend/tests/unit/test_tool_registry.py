from __future__ import annotations

import uuid

import pytest

from app.persistence.models import Transaction
from app.schemas.agent import PlanStep
from app.services.balance_service import BalanceService
from app.services.step_pipeline import ExecutionContext
from app.services.tools import ToolRegistry, step_idempotency_key
from app.services.transfer_gateway import TransferGateway


@pytest.fixture()
def ctx(user_id):
    return ExecutionContext(correlation_id="corr-42", agent_id=uuid.uuid4(), user_id=user_id, input="x")


def test_remote_tools_go_to_tool_server(tool_server, ctx):
    tool_server.outputs["search_venues"] = ["Blue Room"]
    registry = ToolRegistry(tool_server)

    output = registry.dispatch(0, PlanStep(tool="search_venues", input={"city": "Austin"}), ctx)

    assert output == ["Blue Room"]
    assert tool_server.calls == [{"tool": "search_venues", "input": {"city": "Austin"}, "correlation_id": "corr-42"}]
    assert registry.is_local("search_venues") is False


def test_wallet_balance_is_local(tool_server, payment_provider, ctx):
    registry = ToolRegistry(tool_server, balance_service=BalanceService(payment_provider))
    step = PlanStep(tool="wallet_balance", input={"address": "0x" + "1" * 40, "chainId": 1})

    output = registry.dispatch(0, step, ctx)

    assert output["symbol"] == "ETH"
    assert tool_server.calls == []


def test_wallet_transfer_uses_step_key_and_caller_identity(tool_server, payment_provider, db_session, ctx, user_id):
    registry = ToolRegistry(tool_server, transfer_gateway=TransferGateway(db_session, payment_provider))
    step = PlanStep(
        tool="wallet_transfer",
        input={"fromUserId": "victim", "toUserId": "u2", "amount": "3", "tokenContract": "0xtoken"},
    )

    first = registry.dispatch(4, step, ctx)
    again = registry.dispatch(4, step, ctx)

    assert step_idempotency_key(ctx, 4) == "corr-42:4"
    assert first["statusCode"] == 200
    assert again == first
    assert len(payment_provider.created) == 1
    tx = db_session.query(Transaction).filter(Transaction.correlation_id == "corr-42").one()
    assert tx.from_user_id == str(user_id)
