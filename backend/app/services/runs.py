"""Budgeted run entry points shared by the CLI, the poller and the ops API.

Each entry point wires the store and service clients, runs one pass,
records a ``cycle_runs`` row and returns a :class:`RunOutcome`.  A failed
run is reported through ``error``/``degraded`` rather than raised.
"""

import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

from app.adapters.ai.anthropic_client import AnthropicClient
from app.adapters.ai.base import CompletionService, EmbeddingService, VerificationService
from app.adapters.ai.voyage_client import VoyageEmbeddingClient
from app.adapters.store.base import FusionStore
from app.adapters.store.postgres import PostgresFusionStore
from app.core.config import Settings, get_settings
from app.core.database import AsyncSessionLocal
from app.services.aggregator import STATUS_WRITE_FAILED, EventAggregator
from app.services.auto_mapper import AutoMapper
from app.services.cross_matcher import CrossMatcher
from app.services.cycle_runs import build_cycle_run, persist_cycle_run
from app.services.fleet import aggregate_all

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunOutcome:
    run_id: str
    kind: str
    trigger: str
    duration_ms: int
    budget_ms: int | None
    stats: dict[str, Any]
    error: str | None = None
    degraded: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_store() -> FusionStore:
    return PostgresFusionStore(AsyncSessionLocal)


async def record_cycle_run(row: dict) -> None:
    async with AsyncSessionLocal() as db:
        await persist_cycle_run(db, row)


async def _execute(
    kind: str,
    trigger: str,
    budget_ms: int | None,
    body: Callable[[], Awaitable[dict[str, Any]]],
) -> RunOutcome:
    run_id = f"{kind}-{uuid.uuid4().hex[:12]}"
    started_at = datetime.now(UTC)
    started = time.monotonic()
    stats: dict[str, Any] = {}
    error: str | None = None
    logger.info("Run started", extra={"run_id": run_id, "kind": kind, "trigger": trigger, "budget_ms": budget_ms})
    try:
        stats = await body()
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"
        logger.exception("Run failed", extra={"run_id": run_id, "kind": kind})

    duration_ms = max(0, int((time.monotonic() - started) * 1000))
    row = build_cycle_run(
        {
            "run_id": run_id,
            "kind": kind,
            "trigger": trigger,
            "started_at": started_at,
            "completed_at": datetime.now(UTC),
            "duration_ms": duration_ms,
            "budget_ms": budget_ms,
            "stats": stats,
            "error": error,
        }
    )
    try:
        await record_cycle_run(row)
    except Exception:
        logger.exception("Cycle run persistence orchestration failed", extra={"run_id": run_id})

    outcome = RunOutcome(
        run_id=run_id,
        kind=kind,
        trigger=trigger,
        duration_ms=duration_ms,
        budget_ms=budget_ms,
        stats=stats,
        error=error,
        degraded=row["degraded"],
    )
    logger.info("Run finished", extra=outcome.as_dict())
    return outcome


async def run_aggregate(
    *,
    budget_ms: int | None = None,
    trigger: str = "cli",
    store: FusionStore | None = None,
    settings: Settings | None = None,
) -> RunOutcome:
    settings = settings or get_settings()
    store = store or default_store()
    budget_ms = settings.aggregate_budget_ms if budget_ms is None else budget_ms

    async def _body() -> dict[str, Any]:
        stats = await aggregate_all(store, budget_ms=budget_ms, settings=settings)
        return stats.as_dict()

    return await _execute("aggregate", trigger, budget_ms, _body)


async def run_aggregate_event(
    event_id: str,
    *,
    trigger: str = "cli",
    store: FusionStore | None = None,
    settings: Settings | None = None,
) -> RunOutcome:
    settings = settings or get_settings()
    store = store or default_store()

    async def _body() -> dict[str, Any]:
        result = await EventAggregator(store, settings).aggregate(event_id)
        return {
            "event_id": result.event_id,
            "status": result.status,
            "probability": result.probability,
            "source_count": result.source_count,
            "quality_score": result.quality_score,
            "max_spread": result.max_spread,
            "outliers": len(result.outlier_platforms),
            "errors": int(result.status == STATUS_WRITE_FAILED),
        }

    return await _execute("aggregate_event", trigger, None, _body)


async def run_cross_match(
    *,
    budget_ms: int | None = None,
    trigger: str = "cli",
    store: FusionStore | None = None,
    embedder: EmbeddingService | None = None,
    verifier: VerificationService | None = None,
    reaggregate: bool = True,
    settings: Settings | None = None,
) -> RunOutcome:
    """Cross-match; newly linked contracts get a fleet aggregation pass right after."""
    settings = settings or get_settings()
    store = store or default_store()
    embedder = embedder or VoyageEmbeddingClient(settings)
    verifier = verifier or AnthropicClient(settings)
    budget_ms = settings.cross_match_budget_ms if budget_ms is None else budget_ms

    async def _body() -> dict[str, Any]:
        matcher = CrossMatcher(store, embedder, verifier, settings)
        stats = await matcher.run(budget_ms)
        result: dict[str, Any] = stats.as_dict()
        if reaggregate and stats.linked > 0:
            fleet = await aggregate_all(store, budget_ms=settings.aggregate_budget_ms, settings=settings)
            result["reaggregated"] = fleet.updated
            result["errors"] = stats.errors + fleet.errors
        return result

    return await _execute("cross_match", trigger, budget_ms, _body)


async def run_auto_map(
    *,
    budget_ms: int | None = None,
    trigger: str = "cli",
    store: FusionStore | None = None,
    llm: CompletionService | None = None,
    settings: Settings | None = None,
) -> RunOutcome:
    settings = settings or get_settings()
    store = store or default_store()
    llm = llm or AnthropicClient(settings)
    budget_ms = settings.auto_map_budget_ms if budget_ms is None else budget_ms

    async def _body() -> dict[str, Any]:
        stats = await AutoMapper(store, llm, settings).run(budget_ms)
        return stats.as_dict()

    return await _execute("auto_map", trigger, budget_ms, _body)
