"""
Per-user daily transfer counter.

The cap counts accepted transfer attempts, not amounts. ``try_acquire``
checks and increments in one conditional UPDATE so concurrent transfers from
the same user cannot push the counter past the limit.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.persistence.models import DailySpendCounter

logger = logging.getLogger(__name__)

MAX_DAILY_TRANSACTIONS = 50


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class SpendLimiter:
    def __init__(self, db: Session, max_daily_transactions: int = MAX_DAILY_TRANSACTIONS) -> None:
        self.db = db
        self.max_daily_transactions = max_daily_transactions

    def _ensure_row(self, user_id: str, day: date) -> None:
        table = DailySpendCounter.__table__
        values = {"id": uuid4(), "user_id": user_id, "date": day, "transaction_count": 0}
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing(
                index_elements=["user_id", "date"]
            )
        else:
            stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing(
                index_elements=["user_id", "date"]
            )
        self.db.execute(stmt)

    def count_for(self, user_id: str, day: date | None = None) -> int:
        day = day or utc_today()
        row = (
            self.db.query(DailySpendCounter)
            .filter(DailySpendCounter.user_id == user_id, DailySpendCounter.spend_date == day)
            .populate_existing()
            .first()
        )
        return row.transaction_count if row else 0

    def try_acquire(self, user_id: str, day: date | None = None) -> bool:
        """Reserve one transfer slot for today. False when the cap is reached."""
        day = day or utc_today()
        self._ensure_row(user_id, day)
        result = self.db.execute(
            update(DailySpendCounter)
            .where(
                DailySpendCounter.user_id == user_id,
                DailySpendCounter.spend_date == day,
                DailySpendCounter.transaction_count < self.max_daily_transactions,
            )
            .values(transaction_count=DailySpendCounter.transaction_count + 1)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        acquired = result.rowcount == 1
        if not acquired:
            logger.warning("Daily transaction limit reached for user %s", user_id)
        return acquired
