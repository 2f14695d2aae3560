import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models.cycle_run import CycleRun

logger = logging.getLogger(__name__)


def _sanitize_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed >= 0 else None


def _sanitize_stats(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, dict):
        return None
    sanitized: dict[str, Any] = {}
    for raw_key, raw_value in value.items():
        key = str(raw_key).strip()
        if not key:
            continue
        if isinstance(raw_value, (bool, int, float, str)) or raw_value is None:
            sanitized[key] = raw_value
    return sanitized or None


def build_cycle_run(run_context: dict) -> dict:
    """Normalize a finished run's context into a ``cycle_runs`` row."""
    started_at = run_context.get("started_at")
    completed_at = run_context.get("completed_at")
    if not isinstance(started_at, datetime):
        started_at = datetime.now(UTC)
    if not isinstance(completed_at, datetime):
        completed_at = started_at

    duration_ms = _sanitize_int(run_context.get("duration_ms"))
    if duration_ms is None:
        duration_ms = max(0, int((completed_at - started_at).total_seconds() * 1000))

    stats = _sanitize_stats(run_context.get("stats"))
    error_count = _sanitize_int(run_context.get("error_count"))
    if error_count is None:
        error_count = _sanitize_int((stats or {}).get("errors")) or 0

    error = run_context.get("error")
    error_text = str(error) if error else None

    return {
        "run_id": str(run_context.get("run_id") or uuid.uuid4().hex),
        "kind": str(run_context.get("kind") or "unknown"),
        "trigger": str(run_context.get("trigger") or "cli"),
        "started_at": started_at,
        "completed_at": completed_at,
        "duration_ms": duration_ms,
        "budget_ms": _sanitize_int(run_context.get("budget_ms")),
        "stats": stats,
        "error_count": error_count,
        "error": error_text,
        "degraded": bool(run_context.get("degraded", False)) or error_text is not None or error_count > 0,
        "created_at": datetime.now(UTC),
    }


async def persist_cycle_run(db: AsyncSession, row: dict) -> None:
    settings = get_settings()
    try:
        upsert_stmt = pg_insert(CycleRun).values(**row)
        upsert_stmt = upsert_stmt.on_conflict_do_update(
            index_elements=["run_id"],
            set_={
                "completed_at": upsert_stmt.excluded.completed_at,
                "duration_ms": upsert_stmt.excluded.duration_ms,
                "stats": upsert_stmt.excluded.stats,
                "error_count": upsert_stmt.excluded.error_count,
                "error": upsert_stmt.excluded.error,
                "degraded": upsert_stmt.excluded.degraded,
            },
        )
        await db.execute(upsert_stmt)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.warning(
            "Failed to persist cycle run",
            extra={"run_id": str(row.get("run_id", "")), "kind": row.get("kind")},
            exc_info=True,
        )
        if not settings.cycle_run_write_failures_soft:
            raise


async def cleanup_old_cycle_runs(db: AsyncSession, retention_days: int | None = None) -> int:
    settings = get_settings()
    days = retention_days if retention_days is not None else settings.cycle_run_retention_days
    cutoff = datetime.now(UTC) - timedelta(days=days)
    stmt = delete(CycleRun).where(CycleRun.created_at < cutoff)
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount or 0
