"""
Activity ledger: append-only record of everything an agent invocation does.

Rows are joined by correlation id. This service never updates or deletes.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session as DbSession

from app.persistence.models import ActivityLogEntry, ActivityType, ToolStatus

logger = logging.getLogger(__name__)


class ActivityLedger:
    def __init__(self, db: DbSession) -> None:
        self.db = db

    def record(
        self,
        *,
        agent_id: uuid.UUID,
        user_id: uuid.UUID | None,
        correlation_id: str,
        activity_type: ActivityType,
        tool_status: ToolStatus,
        tool_name: str | None = None,
        latency_ms: int | None = None,
        cost: float | None = None,
        payload: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            agent_id=agent_id,
            user_id=user_id,
            correlation_id=correlation_id,
            activity_type=activity_type,
            tool_name=tool_name,
            tool_status=tool_status,
            latency_ms=latency_ms,
            cost=cost,
            payload=payload or {},
            error_message=error_message,
        )
        self.db.add(entry)
        self.db.commit()
        logger.info(
            "ledger %s/%s tool=%s",
            activity_type.value,
            tool_status.value,
            tool_name or "-",
            extra={"correlation_id": correlation_id},
        )
        return entry

    def for_correlation(self, correlation_id: str) -> list[ActivityLogEntry]:
        return (
            self.db.query(ActivityLogEntry)
            .filter(ActivityLogEntry.correlation_id == correlation_id)
            .order_by(ActivityLogEntry.created_at.asc())
            .all()
        )

    def for_agent(
        self,
        agent_id: uuid.UUID,
        *,
        correlation_id: str | None = None,
        limit: int = 100,
    ) -> list[ActivityLogEntry]:
        q = self.db.query(ActivityLogEntry).filter(ActivityLogEntry.agent_id == agent_id)
        if correlation_id:
            q = q.filter(ActivityLogEntry.correlation_id == correlation_id)
        return q.order_by(ActivityLogEntry.created_at.desc()).limit(limit).all()
