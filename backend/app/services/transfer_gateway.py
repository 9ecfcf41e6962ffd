"""
Transfer gateway: the only path that moves money.

Order of operations for one transfer:
  validate -> idempotency reservation -> daily spend slot -> pending
  Transaction -> provider create payment -> provider complete payment.

The provider's completion acknowledgement is not confirmation; the
Transaction stays ``pending`` until the reconciliation sweep sees a terminal
provider status.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.monitoring.metrics import TRANSFER_OUTCOMES
from app.persistence.models import Transaction, TransactionStatus
from app.providers.base import ProviderError
from app.providers.payment_provider import PaymentCompletion, PaymentProvider
from app.services.audit_service import AuditService
from app.services.errors import (
    ExternalServiceError,
    NotFound,
    RateLimitExceeded,
    TransactionStateError,
    ValidationError,
)
from app.services.idempotency_service import IdempotencyService
from app.services.spend_limiter import SpendLimiter

logger = logging.getLogger(__name__)


@dataclass
class TransferRequest:
    from_user_id: str
    to_user_id: str
    amount: str
    token_contract: str
    from_address: str | None = None
    to_address: str | None = None
    token_symbol: str | None = None
    chain_id: int | None = None
    message: str | None = None
    provider_token: str | None = field(default=None, repr=False)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "TransferRequest":
        """Build from a camelCase body (REST or agent tool input)."""
        chain_id = data.get("chainId")
        amount = data.get("amount")
        return cls(
            from_user_id=str(data.get("fromUserId") or ""),
            to_user_id=str(data.get("toUserId") or ""),
            amount="" if amount is None else str(amount),
            token_contract=str(data.get("tokenContract") or ""),
            from_address=data.get("fromAddress"),
            to_address=data.get("toAddress"),
            token_symbol=data.get("tokenSymbol"),
            chain_id=int(chain_id) if chain_id not in (None, "") else None,
            message=data.get("message"),
            provider_token=data.get("providerToken"),
        )

    def fingerprint(self) -> dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to_address,
            "amount": _canonical_amount(self.amount),
            "token": self.token_contract,
            "chain": self.chain_id,
        }


def _canonical_amount(amount: str) -> str:
    try:
        return format(Decimal(amount).normalize(), "f")
    except InvalidOperation:
        return amount


@dataclass
class TransferOutcome:
    status_code: int
    body: dict[str, Any]
    replayed: bool = False

    @property
    def insufficient_funds(self) -> bool:
        return self.body.get("status") == "insufficient_funds"


def validate_transfer(request: TransferRequest) -> Decimal:
    if not (request.from_user_id and request.to_user_id and request.amount and request.token_contract):
        raise ValidationError("Missing required fields")
    try:
        amount = Decimal(request.amount)
    except InvalidOperation:
        raise ValidationError("Invalid amount") from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Invalid amount")
    return amount


def _require_submission(completion: PaymentCompletion) -> None:
    if not completion.insufficient_funds and not completion.provider_transaction_id:
        raise ProviderError("Payment completion returned no transaction id")


def transition_transaction(
    db: Session, transaction_id: uuid.UUID, new_status: TransactionStatus, **values: Any
) -> bool:
    """Move a transaction out of ``pending``. False when it was already terminal."""
    now = datetime.now(timezone.utc)
    if new_status == TransactionStatus.confirmed:
        values.setdefault("confirmed_at", now)
    result = db.execute(
        update(Transaction)
        .where(Transaction.id == transaction_id, Transaction.status == TransactionStatus.pending)
        .values(status=new_status, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


class TransferGateway:
    def __init__(
        self,
        db: Session,
        provider: PaymentProvider,
        *,
        spend_limiter: SpendLimiter | None = None,
        idempotency: IdempotencyService | None = None,
        audit: AuditService | None = None,
    ) -> None:
        self.db = db
        self.provider = provider
        self.spend_limiter = spend_limiter or SpendLimiter(db, get_settings().max_daily_transactions)
        self.idempotency = idempotency or IdempotencyService(db)
        self.audit = audit or AuditService(db)

    def transfer(
        self,
        request: TransferRequest,
        *,
        idempotency_key: str | None = None,
        correlation_id: str | None = None,
    ) -> TransferOutcome:
        correlation_id = correlation_id or str(uuid.uuid4())
        validate_transfer(request)

        if idempotency_key:
            cached = self.idempotency.reserve_or_get(
                idempotency_key,
                owner=request.from_user_id,
                method="transfer",
                payload=request.fingerprint(),
            )
            if cached is not None:
                logger.info("Replaying cached transfer response for key %s", idempotency_key,
                            extra={"correlation_id": correlation_id})
                TRANSFER_OUTCOMES.labels(outcome="replayed").inc()
                return TransferOutcome(status_code=cached.status_code, body=cached.body, replayed=True)

        if not self.spend_limiter.try_acquire(request.from_user_id):
            if idempotency_key:
                self.idempotency.fail(idempotency_key, "Daily transaction limit exceeded")
            TRANSFER_OUTCOMES.labels(outcome="rate_limited").inc()
            raise RateLimitExceeded("Daily transaction limit exceeded")

        tx = Transaction(
            from_user_id=request.from_user_id,
            to_user_id=request.to_user_id,
            from_address=request.from_address,
            to_address=request.to_address,
            amount=request.amount,
            token_contract=request.token_contract,
            token_symbol=request.token_symbol,
            chain_id=request.chain_id,
            message=request.message,
            status=TransactionStatus.pending,
            correlation_id=correlation_id,
        )
        self.db.add(tx)
        self.db.commit()
        if idempotency_key:
            self.idempotency.attach_transaction(idempotency_key, tx.id)
        logger.info("Transaction %s created", tx.id, extra={"correlation_id": correlation_id})

        try:
            payment = self.provider.create_payment(
                recipient=request.to_address or request.to_user_id,
                token_contract=request.token_contract,
                chain_id=request.chain_id,
                amount=request.amount,
                name=f"Payment to {request.to_address or request.to_user_id}",
                description=request.message or f"Transfer {request.amount} {request.token_symbol or ''}".strip(),
                auth_token=request.provider_token,
            )
            tx.provider_payment_id = payment["id"]
            tx.payment_link = payment.get("link")
            self.db.commit()
            completion = self.provider.complete_payment(
                payment["id"], from_address=request.from_address, auth_token=request.provider_token
            )
            _require_submission(completion)
        except ProviderError as exc:
            self._fail(tx, idempotency_key, str(exc), correlation_id)
            raise ExternalServiceError(str(exc)) from exc
        except Exception as exc:
            if isinstance(exc, SQLAlchemyError):
                self.db.rollback()
            logger.exception("Unexpected error submitting transaction %s", tx.id,
                             extra={"correlation_id": correlation_id})
            self._fail(tx, idempotency_key, "Payment provider error", correlation_id)
            raise ExternalServiceError("Payment provider error") from exc

        outcome = self._settle(tx, completion, request.from_user_id, correlation_id)
        if idempotency_key:
            self.idempotency.complete(idempotency_key, outcome.body, status_code=outcome.status_code)
        return outcome

    def complete_pending(
        self,
        transaction_id: uuid.UUID,
        *,
        user_id: str,
        correlation_id: str | None = None,
        provider_token: str | None = None,
        from_address: str | None = None,
    ) -> TransferOutcome:
        """Retry phase two for a transfer that previously hit insufficient funds."""
        correlation_id = correlation_id or str(uuid.uuid4())
        tx = self.db.get(Transaction, transaction_id, populate_existing=True)
        if tx is None or tx.from_user_id != user_id:
            raise NotFound("Transaction not found")
        if tx.status != TransactionStatus.pending or tx.provider_transaction_id:
            raise TransactionStateError(f"Transaction is {tx.status.value} and already submitted")
        if not tx.provider_payment_id:
            raise TransactionStateError("Transaction has no provider payment to complete")

        try:
            completion = self.provider.complete_payment(
                tx.provider_payment_id,
                from_address=from_address or tx.from_address,
                auth_token=provider_token,
            )
            _require_submission(completion)
        except ProviderError as exc:
            self._fail(tx, None, str(exc), correlation_id)
            self.idempotency.fail_for_transaction(tx.id, str(exc))
            raise ExternalServiceError(str(exc)) from exc
        except Exception as exc:
            if isinstance(exc, SQLAlchemyError):
                self.db.rollback()
            logger.exception("Unexpected error completing transaction %s", tx.id,
                             extra={"correlation_id": correlation_id})
            self._fail(tx, None, "Payment provider error", correlation_id)
            self.idempotency.fail_for_transaction(tx.id, "Payment provider error")
            raise ExternalServiceError("Payment provider error") from exc

        outcome = self._settle(tx, completion, user_id, correlation_id)
        self.idempotency.complete_for_transaction(tx.id, outcome.body, status_code=outcome.status_code)
        return outcome

    def _settle(
        self, tx: Transaction, completion: PaymentCompletion, actor_id: str, correlation_id: str
    ) -> TransferOutcome:
        if completion.insufficient_funds:
            logger.info("Transaction %s awaiting funds", tx.id, extra={"correlation_id": correlation_id})
            TRANSFER_OUTCOMES.labels(outcome="insufficient_funds").inc()
            return TransferOutcome(
                status_code=402,
                body={
                    "status": "insufficient_funds",
                    "paymentLink": tx.payment_link,
                    "transactionId": str(tx.id),
                },
            )

        tx.provider_transaction_id = completion.provider_transaction_id
        self.db.commit()
        self.audit.log(
            "token_transfer_initiated",
            resource_type="transaction",
            resource_id=str(tx.id),
            actor_id=actor_id,
            details={
                "recipient": tx.to_address,
                "amount": tx.amount,
                "token": tx.token_symbol,
                "chain_id": tx.chain_id,
                "provider_transaction_id": completion.provider_transaction_id,
            },
            correlation_id=correlation_id,
        )
        TRANSFER_OUTCOMES.labels(outcome="submitted").inc()
        return TransferOutcome(
            status_code=200,
            body={
                "transactionId": str(tx.id),
                "providerTransactionId": completion.provider_transaction_id,
                "status": TransactionStatus.pending.value,
                "message": "Transaction submitted successfully",
            },
        )

    def _fail(self, tx: Transaction, idempotency_key: str | None, error: str, correlation_id: str) -> None:
        logger.error("Transfer %s failed at provider: %s", tx.id, error, extra={"correlation_id": correlation_id})
        transition_transaction(self.db, tx.id, TransactionStatus.failed)
        if idempotency_key:
            self.idempotency.fail(idempotency_key, error)
        TRANSFER_OUTCOMES.labels(outcome="failed").inc()
