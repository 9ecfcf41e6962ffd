from fastapi import APIRouter, Depends

from app.api.deps import get_correlation_id, get_reconciliation_service
from app.auth.deps import get_current_user
from app.schemas.transfer import SyncOut
from app.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post("/sync", response_model=SyncOut)
def sync_transactions(
    correlation_id: str = Depends(get_correlation_id),
    service: ReconciliationService = Depends(get_reconciliation_service),
    user: dict = Depends(get_current_user),
):
    _ = user
    summary = service.sync(correlation_id=correlation_id)
    message = "Transaction sync completed" if summary.processed else "No pending transactions to sync"
    return {"message": message, **summary.to_dict()}
