from __future__ import annotations

import pytest

from app.persistence.models import AuditLog, Transaction, TransactionStatus
from app.providers.payment_provider import TransactionStatusResult, map_provider_status
from app.services.reconciliation import ReconciliationService


def _pending_tx(db_session, provider_tx_id, status=TransactionStatus.pending):
    tx = Transaction(
        from_user_id="user-1",
        to_user_id="user-2",
        amount="5",
        token_contract="0x" + "c" * 40,
        status=status,
        provider_transaction_id=provider_tx_id,
    )
    db_session.add(tx)
    db_session.commit()
    return tx


@pytest.mark.parametrize(
    "provider_status, expected",
    [
        ("QUEUED", "pending"),
        ("SUBMITTED", "pending"),
        ("CONFIRMED", "confirmed"),
        ("FAILED", "failed"),
        ("confirmed", "confirmed"),
        ("MINED_SOMEWHERE", "pending"),
        (None, "pending"),
    ],
)
def test_map_provider_status(provider_status, expected):
    assert map_provider_status(provider_status) == expected


def test_empty_batch(db_session, payment_provider):
    summary = ReconciliationService(db_session, payment_provider).sync()
    assert summary.to_dict() == {"processed": 0, "updated": 0, "unchanged": 0, "errors": 0}


def test_sync_applies_terminal_statuses_and_isolates_errors(db_session, payment_provider, provider_error):
    confirmed = _pending_tx(db_session, "ptx-ok")
    broken = _pending_tx(db_session, "ptx-broken")
    still_pending = _pending_tx(db_session, "ptx-wait")
    failed = _pending_tx(db_session, "ptx-failed")
    payment_provider.statuses = {
        "ptx-ok": TransactionStatusResult(status="confirmed", transaction_hash="0xhash"),
        "ptx-broken": provider_error("lookup failed", status_code=500),
        "ptx-wait": TransactionStatusResult(status="pending"),
        "ptx-failed": TransactionStatusResult(status="failed"),
    }

    summary = ReconciliationService(db_session, payment_provider).sync(correlation_id="sweep-1")

    assert summary.to_dict() == {"processed": 4, "updated": 2, "unchanged": 1, "errors": 1}
    for tx in (confirmed, broken, still_pending, failed):
        db_session.refresh(tx)
    assert confirmed.status == TransactionStatus.confirmed
    assert confirmed.transaction_hash == "0xhash"
    assert confirmed.confirmed_at is not None
    assert broken.status == TransactionStatus.pending
    assert still_pending.status == TransactionStatus.pending
    assert failed.status == TransactionStatus.failed
    assert failed.confirmed_at is None

    [audit] = db_session.query(AuditLog).filter(AuditLog.resource_id == str(confirmed.id)).all()
    assert audit.action == "transaction_confirmed"
    assert audit.details["previous_status"] == "pending"
    assert audit.details["new_status"] == "confirmed"
    assert audit.correlation_id == "sweep-1"


def test_terminal_and_unsubmitted_rows_are_not_selected(db_session, payment_provider):
    _pending_tx(db_session, "ptx-done", status=TransactionStatus.confirmed)
    _pending_tx(db_session, None)

    summary = ReconciliationService(db_session, payment_provider).sync()
    assert summary.processed == 0


def test_row_finalized_concurrently_counts_as_unchanged(db_session, payment_provider):
    tx = _pending_tx(db_session, "ptx-race")

    class RacingProvider:
        def get_transaction_status(self, provider_transaction_id):
            # Another sweep finalizes the row between selection and update.
            db_session.query(Transaction).filter(Transaction.id == tx.id).update(
                {"status": TransactionStatus.failed}
            )
            db_session.commit()
            return TransactionStatusResult(status="confirmed")

    summary = ReconciliationService(db_session, RacingProvider()).sync()

    assert summary.unchanged == 1
    assert summary.updated == 0
    db_session.refresh(tx)
    assert tx.status == TransactionStatus.failed


def test_batch_size_limits_processed_rows(db_session, payment_provider):
    for i in range(3):
        _pending_tx(db_session, f"ptx-{i}")

    summary = ReconciliationService(db_session, payment_provider, batch_size=2).sync()
    assert summary.processed == 2
    assert summary.unchanged == 2
