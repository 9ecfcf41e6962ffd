"""Tests for the idempotency service."""
import uuid

import pytest

from app.persistence.models import IdempotencyKey, IdempotencyStatus
from app.services.idempotency_service import (
    CachedResponse,
    IdempotencyConflictError,
    IdempotencyInProgressError,
    IdempotencyService,
)


@pytest.fixture()
def svc(db_session):
    return IdempotencyService(db_session)


def test_reserve_new_key(svc):
    result = svc.reserve_or_get(
        key="test-key-1",
        owner=str(uuid.uuid4()),
        method="POST /transfers",
        payload={"amount": "10"},
    )
    assert result is None  # New reservation returns None


def test_complete_and_get_cached(svc):
    key = "test-key-2"
    owner = str(uuid.uuid4())
    payload = {"x": 1}
    svc.reserve_or_get(key=key, owner=owner, method="m", payload=payload)
    svc.complete(key, {"result": "done"}, status_code=201)
    cached = svc.reserve_or_get(key=key, owner=owner, method="m", payload=payload)
    assert cached == CachedResponse(status_code=201, body={"result": "done"})


def test_payload_key_order_does_not_matter(svc):
    svc.reserve_or_get(key="order-key", owner=None, method="m", payload={"a": 1, "b": 2})
    svc.complete("order-key", {"ok": True})
    cached = svc.reserve_or_get(key="order-key", owner=None, method="m", payload={"b": 2, "a": 1})
    assert cached.body == {"ok": True}


def test_conflict_different_payload(svc):
    key = "conflict-key"
    owner = str(uuid.uuid4())
    svc.reserve_or_get(key=key, owner=owner, method="m", payload={"a": 1})
    svc.complete(key, {"ok": True})
    with pytest.raises(IdempotencyConflictError):
        svc.reserve_or_get(key=key, owner=owner, method="m", payload={"b": 2})


def test_conflict_different_method(svc):
    svc.reserve_or_get(key="method-key", owner=None, method="a", payload={})
    with pytest.raises(IdempotencyConflictError):
        svc.reserve_or_get(key="method-key", owner=None, method="b", payload={})


def test_in_progress_same_payload(svc):
    key = "progress-key"
    owner = str(uuid.uuid4())
    payload = {"data": "test"}
    svc.reserve_or_get(key=key, owner=owner, method="m", payload=payload)
    with pytest.raises(IdempotencyInProgressError) as exc:
        svc.reserve_or_get(key=key, owner=owner, method="m", payload=payload)
    assert exc.value.status_code == 409


def test_failed_key_is_rearmed(svc, db_session):
    key = "fail-key"
    svc.reserve_or_get(key=key, owner=None, method="m", payload={})
    svc.fail(key, "something went wrong")

    row = db_session.query(IdempotencyKey).filter_by(key=key).one()
    assert row.status == IdempotencyStatus.failed
    assert row.response == {"error": "something went wrong"}

    assert svc.reserve_or_get(key=key, owner=None, method="m", payload={}) is None
    db_session.refresh(row)
    assert row.status == IdempotencyStatus.pending
    assert row.response is None


def test_complete_for_transaction_refreshes_cached_body(svc):
    tx_id = uuid.uuid4()
    svc.reserve_or_get(key="tx-key", owner=None, method="m", payload={})
    svc.attach_transaction("tx-key", tx_id)
    svc.complete("tx-key", {"status": "insufficient_funds"}, status_code=402)

    svc.complete_for_transaction(tx_id, {"status": "pending"}, status_code=200)

    cached = svc.reserve_or_get(key="tx-key", owner=None, method="m", payload={})
    assert cached == CachedResponse(status_code=200, body={"status": "pending"})


def test_unknown_key_operations_are_noops(svc):
    svc.complete("missing", {"ok": True})
    svc.fail("missing", "nope")
    svc.attach_transaction("missing", uuid.uuid4())
    svc.complete_for_transaction(uuid.uuid4(), {"ok": True})
    svc.fail_for_transaction(uuid.uuid4(), "nope")


def test_key_owned_by_another_caller_conflicts(svc):
    payload = {"amount": "5"}
    svc.reserve_or_get(key="shared-key", owner="user-a", method="m", payload=payload)
    svc.complete("shared-key", {"transactionId": "tx-a"})

    with pytest.raises(IdempotencyConflictError):
        svc.reserve_or_get(key="shared-key", owner="user-b", method="m", payload=payload)


def test_expired_pending_key_is_reclaimed(svc, db_session):
    svc.reserve_or_get(key="stale-key", owner="user-a", method="m", payload={"a": 1}, ttl_seconds=-60)

    assert svc.reserve_or_get(key="stale-key", owner="user-b", method="m", payload={"b": 2}) is None

    row = db_session.query(IdempotencyKey).filter_by(key="stale-key").populate_existing().one()
    assert row.status == IdempotencyStatus.pending
    assert row.owner == "user-b"
    with pytest.raises(IdempotencyInProgressError):
        svc.reserve_or_get(key="stale-key", owner="user-b", method="m", payload={"b": 2})


def test_expired_completed_key_is_not_replayed(svc):
    svc.reserve_or_get(key="old-key", owner=None, method="m", payload={}, ttl_seconds=-60)
    svc.complete("old-key", {"ok": True})

    assert svc.reserve_or_get(key="old-key", owner=None, method="m", payload={}) is None


def test_fail_for_transaction_frees_the_key(svc, db_session):
    tx_id = uuid.uuid4()
    svc.reserve_or_get(key="tx-fail-key", owner=None, method="m", payload={})
    svc.attach_transaction("tx-fail-key", tx_id)
    svc.complete("tx-fail-key", {"status": "insufficient_funds"}, status_code=402)

    svc.fail_for_transaction(tx_id, "provider down")

    row = db_session.query(IdempotencyKey).filter_by(key="tx-fail-key").populate_existing().one()
    assert row.status == IdempotencyStatus.failed
    assert row.response == {"error": "provider down"}
    assert row.response_status is None
    assert svc.reserve_or_get(key="tx-fail-key", owner=None, method="m", payload={}) is None
