from fastapi import APIRouter, Depends, Query

from app.api.deps import get_balance_service
from app.auth.deps import get_current_user
from app.services.balance_service import BalanceService

router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.get("/balance")
def wallet_balance(
    address: str = Query(default=""),
    chain_id: int = Query(default=1, alias="chainId"),
    token_address: str | None = Query(default=None, alias="tokenAddress"),
    balances: BalanceService = Depends(get_balance_service),
    user: dict = Depends(get_current_user),
) -> dict:
    _ = user
    return balances.get_balance(address, chain_id, token_address)
