from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class RunRequest(BaseModel):
    budget_ms: int | None = Field(default=None, ge=1_000, le=900_000)


class RunResponse(BaseModel):
    run_id: str
    kind: str
    duration_ms: int
    degraded: bool
    stats: dict[str, Any]
    error: str | None = None


class CycleRunOut(BaseModel):
    model_config = {"from_attributes": True}

    id: UUID
    run_id: str
    kind: str
    trigger: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    budget_ms: int | None
    stats: dict | None
    error_count: int
    error: str | None
    degraded: bool
    created_at: datetime
