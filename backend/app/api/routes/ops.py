from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import OpsTokenIdentity, require_ops_token
from app.core.database import get_db
from app.models.cycle_run import CycleRun
from app.schemas.ops import CycleRunOut, RunRequest, RunResponse
from app.services.runs import RunOutcome, run_aggregate, run_auto_map, run_cross_match

router = APIRouter()


def _response(outcome: RunOutcome) -> RunResponse:
    return RunResponse(
        run_id=outcome.run_id,
        kind=outcome.kind,
        duration_ms=outcome.duration_ms,
        degraded=outcome.degraded,
        stats=outcome.stats,
        error=outcome.error,
    )


@router.post("/aggregate", response_model=RunResponse)
async def trigger_aggregate(
    payload: RunRequest = Body(default_factory=RunRequest),
    _ops: OpsTokenIdentity = Depends(require_ops_token),
) -> RunResponse:
    return _response(await run_aggregate(budget_ms=payload.budget_ms, trigger="api"))


@router.post("/cross-match", response_model=RunResponse)
async def trigger_cross_match(
    payload: RunRequest = Body(default_factory=RunRequest),
    _ops: OpsTokenIdentity = Depends(require_ops_token),
) -> RunResponse:
    return _response(await run_cross_match(budget_ms=payload.budget_ms, trigger="api"))


@router.post("/auto-map", response_model=RunResponse)
async def trigger_auto_map(
    payload: RunRequest = Body(default_factory=RunRequest),
    _ops: OpsTokenIdentity = Depends(require_ops_token),
) -> RunResponse:
    return _response(await run_auto_map(budget_ms=payload.budget_ms, trigger="api"))


@router.get("/runs", response_model=list[CycleRunOut])
async def list_runs(
    kind: str | None = Query(None, max_length=32),
    days: int = Query(7, ge=1, le=90),
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    _ops: OpsTokenIdentity = Depends(require_ops_token),
) -> list[CycleRunOut]:
    cutoff = datetime.now(UTC) - timedelta(days=days)
    stmt = select(CycleRun).where(CycleRun.started_at >= cutoff)
    if kind:
        stmt = stmt.where(CycleRun.kind == kind)
    stmt = stmt.order_by(CycleRun.started_at.desc()).limit(limit)
    rows = (await db.execute(stmt)).scalars().all()
    return [CycleRunOut.model_validate(row) for row in rows]
