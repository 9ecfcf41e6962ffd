from uuid import UUID

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from app.api.deps import get_correlation_id, get_transfer_gateway
from app.auth.deps import get_current_user_id
from app.schemas.transfer import CompleteTransferIn, TransferIn
from app.services.confirmation_token import (
    ConfirmationPayload,
    ConfirmationVerifier,
    get_confirmation_verifier,
)
from app.services.errors import Forbidden, ValidationError
from app.services.transfer_gateway import TransferGateway, TransferRequest, validate_transfer

router = APIRouter(prefix="/transfers", tags=["transfers"])


@router.post("")
def create_transfer(
    payload: TransferIn,
    user_id: UUID = Depends(get_current_user_id),
    correlation_id: str = Depends(get_correlation_id),
    idempotency_key: str | None = Header(default=None, alias="x-idempotency-key"),
    confirmation_token: str | None = Header(default=None, alias="x-confirmation-token"),
    user_confirmation: str | None = Header(default=None, alias="x-user-confirmation"),
    gateway: TransferGateway = Depends(get_transfer_gateway),
    verifier: ConfirmationVerifier | None = Depends(get_confirmation_verifier),
) -> JSONResponse:
    request = TransferRequest.from_payload(payload.to_payload())
    if request.from_user_id:
        try:
            from_user = UUID(request.from_user_id)
        except ValueError:
            raise ValidationError("Invalid fromUserId") from None
        if from_user != user_id:
            raise Forbidden("Cannot transfer on behalf of another user")
        request.from_user_id = str(from_user)
    if verifier is not None:
        validate_transfer(request)
        verifier.verify(
            confirmation_token,
            ConfirmationPayload(
                from_wallet=request.from_address or "",
                to_wallet=request.to_address or "",
                amount=request.amount,
                memo=request.message,
            ),
            user_confirmation,
        )
    outcome = gateway.transfer(request, idempotency_key=idempotency_key, correlation_id=correlation_id)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


@router.post("/{transaction_id}/complete")
def complete_transfer(
    transaction_id: UUID,
    payload: CompleteTransferIn | None = None,
    user_id: UUID = Depends(get_current_user_id),
    correlation_id: str = Depends(get_correlation_id),
    gateway: TransferGateway = Depends(get_transfer_gateway),
) -> JSONResponse:
    payload = payload or CompleteTransferIn()
    outcome = gateway.complete_pending(
        transaction_id,
        user_id=str(user_id),
        correlation_id=correlation_id,
        provider_token=payload.provider_token,
        from_address=payload.from_address,
    )
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
