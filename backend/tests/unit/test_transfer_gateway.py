from __future__ import annotations

import uuid

import pytest

from app.persistence.models import AuditLog, IdempotencyKey, IdempotencyStatus, Transaction, TransactionStatus
from app.providers.payment_provider import PaymentCompletion
from app.services.errors import (
    ExternalServiceError,
    IdempotencyConflictError,
    IdempotencyInProgressError,
    NotFound,
    RateLimitExceeded,
    TransactionStateError,
    ValidationError,
)
from app.services.idempotency_service import IdempotencyService
from app.services.spend_limiter import SpendLimiter
from app.services.transfer_gateway import TransferGateway, TransferRequest

SENDER = "0x" + "a" * 40
RECIPIENT = "0x" + "b" * 40
USDC = "0x" + "c" * 40


def _request(**overrides) -> TransferRequest:
    payload = {
        "fromUserId": "user-1",
        "toUserId": "user-2",
        "fromAddress": SENDER,
        "toAddress": RECIPIENT,
        "amount": "25.5",
        "tokenContract": USDC,
        "tokenSymbol": "USDC",
        "chainId": 8453,
    }
    payload.update(overrides)
    return TransferRequest.from_payload(payload)


@pytest.fixture()
def gateway(db_session, payment_provider):
    return TransferGateway(
        db_session,
        payment_provider,
        spend_limiter=SpendLimiter(db_session, max_daily_transactions=2),
    )


def _transactions(db_session, user="user-1"):
    return db_session.query(Transaction).filter(Transaction.from_user_id == user).all()


def test_successful_transfer_stays_pending_and_is_audited(gateway, db_session, payment_provider):
    outcome = gateway.transfer(_request(), idempotency_key="k-success", correlation_id="corr-1")

    assert outcome.status_code == 200
    assert outcome.replayed is False
    assert outcome.body["status"] == "pending"
    assert outcome.body["providerTransactionId"] == "ptx_1"
    assert outcome.body["message"] == "Transaction submitted successfully"

    [tx] = _transactions(db_session)
    assert str(tx.id) == outcome.body["transactionId"]
    assert tx.status == TransactionStatus.pending
    assert tx.provider_payment_id == "pay_1"
    assert tx.provider_transaction_id == "ptx_1"
    assert tx.correlation_id == "corr-1"
    assert payment_provider.created[0]["recipient"] == RECIPIENT

    [audit] = db_session.query(AuditLog).filter(AuditLog.resource_id == str(tx.id)).all()
    assert audit.action == "token_transfer_initiated"
    assert audit.details["provider_transaction_id"] == "ptx_1"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"toUserId": ""}, "Missing required fields"),
        ({"tokenContract": None}, "Missing required fields"),
        ({"amount": "abc"}, "Invalid amount"),
        ({"amount": "-1"}, "Invalid amount"),
        ({"amount": "0"}, "Invalid amount"),
        ({"amount": "NaN"}, "Invalid amount"),
    ],
)
def test_invalid_request_writes_nothing(gateway, db_session, payment_provider, overrides, message):
    with pytest.raises(ValidationError) as exc:
        gateway.transfer(_request(**overrides), idempotency_key="k-invalid")

    assert exc.value.message == message
    assert _transactions(db_session) == []
    assert db_session.query(IdempotencyKey).filter_by(key="k-invalid").first() is None
    assert payment_provider.created == []


def test_replay_returns_cached_response_without_provider_calls(gateway, db_session, payment_provider):
    first = gateway.transfer(_request(), idempotency_key="k-replay")
    second = gateway.transfer(_request(), idempotency_key="k-replay")

    assert second.replayed is True
    assert second.status_code == first.status_code
    assert second.body == first.body
    assert len(payment_provider.created) == 1
    assert len(_transactions(db_session)) == 1


def test_same_key_different_payload_conflicts(gateway, payment_provider):
    gateway.transfer(_request(), idempotency_key="k-conflict")

    with pytest.raises(IdempotencyConflictError) as exc:
        gateway.transfer(_request(amount="99"), idempotency_key="k-conflict")
    assert exc.value.status_code == 409
    assert len(payment_provider.created) == 1


def test_in_flight_key_is_rejected(gateway, db_session):
    IdempotencyService(db_session).reserve_or_get(
        "k-inflight", owner="user-1", method="transfer", payload=_request().fingerprint()
    )

    with pytest.raises(IdempotencyInProgressError):
        gateway.transfer(_request(), idempotency_key="k-inflight")
    assert _transactions(db_session) == []


def test_daily_cap_rejects_without_creating_transaction(gateway, db_session, payment_provider):
    gateway.transfer(_request())
    gateway.transfer(_request())

    with pytest.raises(RateLimitExceeded) as exc:
        gateway.transfer(_request(), idempotency_key="k-capped")

    assert exc.value.status_code == 429
    assert exc.value.message == "Daily transaction limit exceeded"
    assert len(_transactions(db_session)) == 2
    key = db_session.query(IdempotencyKey).filter_by(key="k-capped").one()
    assert key.status == IdempotencyStatus.failed


def test_insufficient_funds_keeps_transaction_pending(gateway, db_session, payment_provider):
    payment_provider.complete_results.append(PaymentCompletion(insufficient_funds=True))

    outcome = gateway.transfer(_request(), idempotency_key="k-402")

    assert outcome.status_code == 402
    assert outcome.insufficient_funds
    assert outcome.body["paymentLink"] == "https://pay.example/pay_1"
    [tx] = _transactions(db_session)
    assert tx.status == TransactionStatus.pending
    assert tx.provider_transaction_id is None

    replay = gateway.transfer(_request(), idempotency_key="k-402")
    assert replay.replayed and replay.status_code == 402


def test_provider_failure_marks_transaction_and_key_failed(
    gateway, db_session, payment_provider, provider_error
):
    payment_provider.create_error = provider_error("gateway down", status_code=503)

    with pytest.raises(ExternalServiceError) as exc:
        gateway.transfer(_request(), idempotency_key="k-fail")

    assert exc.value.status_code == 500
    [tx] = _transactions(db_session)
    db_session.refresh(tx)
    assert tx.status == TransactionStatus.failed
    key = db_session.query(IdempotencyKey).filter_by(key="k-fail").one()
    assert key.status == IdempotencyStatus.failed


def test_failed_key_can_be_retried(gateway, db_session, payment_provider, provider_error):
    payment_provider.complete_results.append(provider_error())
    with pytest.raises(ExternalServiceError):
        gateway.transfer(_request(), idempotency_key="k-retry")

    outcome = gateway.transfer(_request(), idempotency_key="k-retry")
    assert outcome.status_code == 200
    assert outcome.replayed is False


def test_complete_pending_after_insufficient_funds(gateway, db_session, payment_provider):
    payment_provider.complete_results.append(PaymentCompletion(insufficient_funds=True))
    first = gateway.transfer(_request(), idempotency_key="k-topup")
    tx_id = uuid.UUID(first.body["transactionId"])

    outcome = gateway.complete_pending(tx_id, user_id="user-1")

    assert outcome.status_code == 200
    assert outcome.body["transactionId"] == str(tx_id)
    assert payment_provider.completed == ["pay_1", "pay_1"]
    replay = gateway.transfer(_request(), idempotency_key="k-topup")
    assert replay.status_code == 200
    assert replay.body["providerTransactionId"] == outcome.body["providerTransactionId"]


def test_complete_pending_rejects_submitted_or_foreign_transactions(gateway):
    outcome = gateway.transfer(_request())
    tx_id = uuid.UUID(outcome.body["transactionId"])

    with pytest.raises(TransactionStateError):
        gateway.complete_pending(tx_id, user_id="user-1")
    with pytest.raises(NotFound):
        gateway.complete_pending(tx_id, user_id="someone-else")
    with pytest.raises(NotFound):
        gateway.complete_pending(uuid.uuid4(), user_id="user-1")


@pytest.mark.parametrize("error", [KeyError("id"), AttributeError("'list' object has no attribute 'get'")])
def test_unexpected_provider_error_still_fails_transaction_and_key(gateway, db_session, payment_provider, error):
    payment_provider.create_error = error

    with pytest.raises(ExternalServiceError) as exc:
        gateway.transfer(_request(), idempotency_key="k-stuck")

    assert exc.value.status_code == 500
    [tx] = _transactions(db_session)
    db_session.refresh(tx)
    assert tx.status == TransactionStatus.failed
    key = db_session.query(IdempotencyKey).filter_by(key="k-stuck").populate_existing().one()
    assert key.status == IdempotencyStatus.failed

    payment_provider.create_error = None
    retry = gateway.transfer(_request(), idempotency_key="k-stuck")
    assert retry.status_code == 200


def test_completion_without_transaction_id_fails(gateway, db_session, payment_provider):
    payment_provider.complete_results.append(PaymentCompletion(insufficient_funds=False))

    with pytest.raises(ExternalServiceError, match="no transaction id"):
        gateway.transfer(_request(), idempotency_key="k-no-ptx")

    [tx] = _transactions(db_session)
    db_session.refresh(tx)
    assert tx.status == TransactionStatus.failed
    assert tx.provider_transaction_id is None
    key = db_session.query(IdempotencyKey).filter_by(key="k-no-ptx").populate_existing().one()
    assert key.status == IdempotencyStatus.failed


def test_complete_pending_failure_releases_original_key(gateway, db_session, payment_provider, provider_error):
    payment_provider.complete_results.extend(
        [PaymentCompletion(insufficient_funds=True), provider_error("still down")]
    )
    first = gateway.transfer(_request(), idempotency_key="k-402-fail")
    tx_id = uuid.UUID(first.body["transactionId"])

    with pytest.raises(ExternalServiceError):
        gateway.complete_pending(tx_id, user_id="user-1")

    tx = db_session.get(Transaction, tx_id, populate_existing=True)
    assert tx.status == TransactionStatus.failed
    key = db_session.query(IdempotencyKey).filter_by(key="k-402-fail").populate_existing().one()
    assert key.status == IdempotencyStatus.failed

    retry = gateway.transfer(_request(), idempotency_key="k-402-fail")
    assert retry.replayed is False
    assert retry.status_code == 200
    assert retry.body["transactionId"] != str(tx_id)


def test_same_key_from_another_sender_conflicts(gateway, payment_provider):
    gateway.transfer(_request(), idempotency_key="k-shared")

    with pytest.raises(IdempotencyConflictError):
        gateway.transfer(_request(fromUserId="user-3"), idempotency_key="k-shared")
    assert len(payment_provider.created) == 1


def test_equivalent_amount_spellings_replay(gateway, payment_provider):
    first = gateway.transfer(_request(amount="10"), idempotency_key="k-amount")
    second = gateway.transfer(_request(amount="10.00"), idempotency_key="k-amount")

    assert second.replayed is True
    assert second.body == first.body
    assert len(payment_provider.created) == 1
