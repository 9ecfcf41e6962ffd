from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session as DbSession

from app.persistence.models import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, db: DbSession) -> None:
        self.db = db

    def log(
        self,
        action: str,
        *,
        resource_type: str,
        resource_id: str | None = None,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> AuditLog:
        row = AuditLog(
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details or {},
            correlation_id=correlation_id,
        )
        self.db.add(row)
        self.db.commit()
        logger.info("audit %s %s/%s", action, resource_type, resource_id, extra={"correlation_id": correlation_id})
        return row

    def for_resource(self, resource_type: str, resource_id: str) -> list[AuditLog]:
        return (
            self.db.query(AuditLog)
            .filter(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
            .order_by(AuditLog.created_at.asc())
            .all()
        )
