from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text

from app.monitoring.metrics import metrics_response
from app.persistence.database import engine
from app.schemas.common import HealthResponse
from app.services.cron_service import CronService

router = APIRouter(tags=["system"])


@router.get("/healthz", response_model=HealthResponse)
def healthz() -> dict:
    db_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        pass
    return {
        "status": "ok" if db_ok else "degraded",
        "db": db_ok,
        "sweep_next_run": CronService.next_run_time(),
        "timestamp": datetime.now(timezone.utc),
    }


@router.get("/metrics")
def metrics():
    return metrics_response()
