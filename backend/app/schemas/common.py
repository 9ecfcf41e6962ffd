from datetime import datetime

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str


class HealthResponse(BaseModel):
    status: str
    db: bool
    sweep_next_run: datetime | None = None
    timestamp: datetime
