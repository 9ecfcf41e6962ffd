from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.persistence.models import IdempotencyKey, IdempotencyStatus
from app.services.errors import IdempotencyConflictError, IdempotencyInProgressError

logger = logging.getLogger(__name__)


@dataclass
class CachedResponse:
    status_code: int
    body: dict[str, Any]


class IdempotencyService:
    """Key -> (request hash, cached terminal response) store.

    Reservation is a single ``INSERT ... ON CONFLICT DO NOTHING`` so two
    concurrent requests carrying the same fresh key cannot both proceed.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    @staticmethod
    def _request_hash(method: str, payload: dict[str, Any]) -> str:
        packed = json.dumps({"method": method, "payload": payload}, sort_keys=True, ensure_ascii=True)
        return hashlib.sha256(packed.encode("utf-8")).hexdigest()

    def _insert_if_absent(self, values: dict[str, Any]) -> bool:
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(IdempotencyKey).values(**values).on_conflict_do_nothing(
                index_elements=["key"]
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(IdempotencyKey).values(**values).on_conflict_do_nothing(
                index_elements=["key"]
            )
        else:  # pragma: no cover
            raise RuntimeError(f"Unsupported dialect for idempotency store: {dialect}")
        result = self.db.execute(stmt)
        return result.rowcount == 1

    def _get(self, key: str) -> IdempotencyKey | None:
        return self.db.query(IdempotencyKey).filter(IdempotencyKey.key == key).populate_existing().first()

    def reserve_or_get(
        self,
        key: str,
        owner: str | None,
        method: str,
        payload: dict[str, Any],
        ttl_seconds: int = 86_400,
    ) -> CachedResponse | None:
        """Reserve ``key`` for this request or return the cached response.

        Returns ``None`` when the caller now holds the reservation and must do
        the work, or the cached response when a completed record exists. Expired
        records are reclaimed as if absent.
        """
        request_hash = self._request_hash(method=method, payload=payload)
        now = datetime.now(timezone.utc)
        fresh = {
            "owner": owner,
            "method": method,
            "request_hash": request_hash,
            "status": IdempotencyStatus.pending,
            "response": None,
            "created_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
        }
        inserted = self._insert_if_absent({"id": uuid4(), "key": key, **fresh})
        self.db.commit()
        if inserted:
            return None
        if self._replace_expired(key, now, fresh):
            logger.info("Idempotency key %s expired and was reclaimed", key)
            return None

        existing = self._get(key)
        if existing is None:  # pragma: no cover
            raise IdempotencyInProgressError("Request already in progress")
        if existing.owner != owner:
            raise IdempotencyConflictError("Idempotency key belongs to another caller")
        if existing.request_hash != request_hash:
            raise IdempotencyConflictError("Idempotency key reused with different payload")
        if existing.status == IdempotencyStatus.completed:
            return CachedResponse(status_code=existing.response_status or 200, body=existing.response or {})
        if existing.status == IdempotencyStatus.failed and self._rearm(key):
            logger.info("Idempotency key %s re-armed after failure", key)
            return None
        raise IdempotencyInProgressError("Request already in progress")

    def _replace_expired(self, key: str, now: datetime, values: dict[str, Any]) -> bool:
        result = self.db.execute(
            update(IdempotencyKey)
            .where(IdempotencyKey.key == key, IdempotencyKey.expires_at < now)
            .values(response_status=None, transaction_id=None, **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def _rearm(self, key: str) -> bool:
        result = self.db.execute(
            update(IdempotencyKey)
            .where(IdempotencyKey.key == key, IdempotencyKey.status == IdempotencyStatus.failed)
            .values(status=IdempotencyStatus.pending, response=None, response_status=None)
        )
        self.db.commit()
        return result.rowcount == 1

    def attach_transaction(self, key: str, transaction_id: UUID) -> None:
        existing = self._get(key)
        if not existing:
            return
        existing.transaction_id = transaction_id
        self.db.commit()

    def complete(self, key: str, response: dict[str, Any], status_code: int = 200) -> None:
        existing = self._get(key)
        if not existing:
            return
        existing.status = IdempotencyStatus.completed
        existing.response = response
        existing.response_status = status_code
        self.db.commit()

    def fail(self, key: str, error_message: str) -> None:
        existing = self._get(key)
        if not existing:
            return
        existing.status = IdempotencyStatus.failed
        existing.response = {"error": error_message}
        self.db.commit()

    def _get_for_transaction(self, transaction_id: UUID) -> IdempotencyKey | None:
        return (
            self.db.query(IdempotencyKey)
            .filter(IdempotencyKey.transaction_id == transaction_id)
            .populate_existing()
            .first()
        )

    def complete_for_transaction(self, transaction_id: UUID, response: dict[str, Any], status_code: int = 200) -> None:
        """Refresh the cached response of the record that created ``transaction_id``."""
        existing = self._get_for_transaction(transaction_id)
        if not existing:
            return
        existing.status = IdempotencyStatus.completed
        existing.response = response
        existing.response_status = status_code
        self.db.commit()

    def fail_for_transaction(self, transaction_id: UUID, error_message: str) -> None:
        """Mark the record that created ``transaction_id`` failed so its key can be retried."""
        existing = self._get_for_transaction(transaction_id)
        if not existing:
            return
        existing.status = IdempotencyStatus.failed
        existing.response = {"error": error_message}
        existing.response_status = None
        self.db.commit()
