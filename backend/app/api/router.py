from fastapi import APIRouter

from app.api import agents, health, transactions, transfers, wallets

api_router = APIRouter(prefix="/api")

api_router.include_router(health.router)
api_router.include_router(agents.router)
api_router.include_router(transfers.router)
api_router.include_router(transactions.router)
api_router.include_router(wallets.router)
