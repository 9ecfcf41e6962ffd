"""
Reconciliation sweep: resolves ``pending`` transactions against the payment
provider's authoritative status.

Each transaction is processed in isolation: a provider or storage failure on
one row is counted and logged, never raised, and never stops the batch.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.monitoring.metrics import RECONCILIATION_RESULTS
from app.persistence.models import Transaction, TransactionStatus
from app.providers.payment_provider import PaymentProvider
from app.services.audit_service import AuditService
from app.services.transfer_gateway import transition_transaction

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ReconciliationService:
    def __init__(
        self,
        db: Session,
        provider: PaymentProvider,
        *,
        batch_size: int = 100,
        audit: AuditService | None = None,
    ) -> None:
        self.db = db
        self.provider = provider
        self.batch_size = batch_size
        self.audit = audit or AuditService(db)

    def _pending_batch(self) -> list[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(
                Transaction.status == TransactionStatus.pending,
                Transaction.provider_transaction_id.isnot(None),
            )
            .order_by(Transaction.created_at.asc())
            .limit(self.batch_size)
            .all()
        )

    def sync(self, correlation_id: str | None = None) -> SyncSummary:
        correlation_id = correlation_id or str(uuid.uuid4())
        batch = self._pending_batch()
        summary = SyncSummary(processed=len(batch))
        if not batch:
            logger.info("No pending transactions to sync", extra={"correlation_id": correlation_id})
            return summary

        # Rows are expired by each per-item commit; iterate over plain values.
        items = [(tx.id, tx.provider_transaction_id, tx.from_user_id) for tx in batch]
        for tx_id, provider_tx_id, owner in items:
            result = self._process_one(tx_id, provider_tx_id, owner, correlation_id)
            setattr(summary, result, getattr(summary, result) + 1)
            RECONCILIATION_RESULTS.labels(result=result).inc()

        logger.info(
            "Transaction sync completed: %s", summary.to_dict(), extra={"correlation_id": correlation_id}
        )
        return summary

    def _process_one(self, tx_id: uuid.UUID, provider_tx_id: str, owner: str, correlation_id: str) -> str:
        try:
            status = self.provider.get_transaction_status(provider_tx_id)
            new_status = TransactionStatus(status.status)
            if new_status == TransactionStatus.pending:
                return "unchanged"

            values = {}
            if status.transaction_hash:
                values["transaction_hash"] = status.transaction_hash
            if not transition_transaction(self.db, tx_id, new_status, **values):
                # Someone else already moved it out of pending.
                return "unchanged"

            self.audit.log(
                f"transaction_{new_status.value}",
                resource_type="transaction",
                resource_id=str(tx_id),
                actor_id=owner,
                details={
                    "provider_transaction_id": provider_tx_id,
                    "transaction_hash": status.transaction_hash,
                    "previous_status": TransactionStatus.pending.value,
                    "new_status": new_status.value,
                },
                correlation_id=correlation_id,
            )
            logger.info("Transaction %s updated to %s", tx_id, new_status.value,
                        extra={"correlation_id": correlation_id})
            return "updated"
        except SQLAlchemyError as exc:
            logger.error("Failed to update transaction %s: %s", tx_id, exc,
                         extra={"correlation_id": correlation_id})
            self.db.rollback()
            return "errors"
        except Exception as exc:
            logger.error("Error processing transaction %s: %s", tx_id, exc,
                         extra={"correlation_id": correlation_id})
            return "errors"
