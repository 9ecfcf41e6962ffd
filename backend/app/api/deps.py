"""FastAPI dependencies that wire request-scoped services to the DB session."""
from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.persistence.database import get_db
from app.providers.llm_provider import get_llm_provider
from app.providers.payment_provider import PaymentProvider, get_payment_provider
from app.providers.tool_server import get_tool_server
from app.services.balance_service import BalanceService, TTLCache
from app.services.orchestrator import TaskOrchestrator
from app.services.planner import Planner
from app.services.reconciliation import ReconciliationService
from app.services.tools import ToolRegistry
from app.services.transfer_gateway import TransferGateway


def get_correlation_id(request: Request) -> str:
    return request.state.correlation_id


def get_payment_client() -> PaymentProvider:
    return get_payment_provider()


@lru_cache(maxsize=1)
def get_balance_service() -> BalanceService:
    settings = get_settings()
    return BalanceService(get_payment_provider(), TTLCache(ttl_seconds=settings.balance_cache_ttl_seconds))


def get_transfer_gateway(
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_client),
) -> TransferGateway:
    return TransferGateway(db, provider)


def get_orchestrator(
    db: Session = Depends(get_db),
    gateway: TransferGateway = Depends(get_transfer_gateway),
    balances: BalanceService = Depends(get_balance_service),
) -> TaskOrchestrator:
    settings = get_settings()
    tools = ToolRegistry(get_tool_server(), transfer_gateway=gateway, balance_service=balances)
    return TaskOrchestrator(
        db,
        Planner(get_llm_provider()),
        tools,
        approval_ttl_seconds=settings.approval_ttl_seconds,
        step_max_attempts=settings.step_max_attempts,
    )


def get_reconciliation_service(
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_client),
) -> ReconciliationService:
    return ReconciliationService(db, provider, batch_size=get_settings().reconciliation_batch_size)
