"""Fleet-wide aggregation pass with zombie deactivation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass

from app.adapters.errors import StoreError, StoreUnavailableError
from app.adapters.store.base import FusionStore
from app.core.budget import RunDeadline
from app.core.config import Settings, get_settings
from app.services.aggregator import (
    STATUS_NO_SOURCES,
    STATUS_NO_VALID_PRICES,
    STATUS_UPDATED,
    STATUS_WRITE_FAILED,
    EventAggregator,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FleetStats:
    processed: int = 0
    updated: int = 0
    deactivated: int = 0
    no_sources: int = 0
    no_valid_prices: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    elapsed_ms: int = 0
    budget_exhausted: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


async def aggregate_all(
    store: FusionStore,
    *,
    aggregator: EventAggregator | None = None,
    budget_ms: int | None = None,
    max_concurrency: int | None = None,
    settings: Settings | None = None,
) -> FleetStats:
    """Aggregate every eligible event, then deactivate the ones with no sources.

    Deactivation happens once, after the pass, so an event that loses and
    regains a contract mid-pass is never switched off by a stale reading.
    A lost store connection stops new units and is re-raised at the end.
    """
    settings = settings or get_settings()
    aggregator = aggregator or EventAggregator(store, settings)
    deadline = RunDeadline(budget_ms)
    limit = max(1, max_concurrency or settings.fusion_max_concurrency)
    semaphore = asyncio.Semaphore(limit)
    stats = FleetStats()
    zombies: list[str] = []
    fatal: list[StoreUnavailableError] = []

    event_ids = await store.list_eligible_events()
    logger.info(
        "Fleet aggregation started",
        extra={"events": len(event_ids), "budget_ms": budget_ms, "max_concurrency": limit},
    )

    async def _run_one(event_id: str) -> None:
        async with semaphore:
            if fatal:
                stats.skipped += 1
                return
            if deadline.expired:
                stats.skipped += 1
                stats.budget_exhausted = True
                return
            stats.processed += 1
            try:
                result = await aggregator.aggregate(event_id)
            except StoreUnavailableError as exc:
                logger.error("Store unavailable; aborting fleet pass", extra={"event_id": event_id})
                fatal.append(exc)
                stats.failed += 1
                stats.errors += 1
                return
            except Exception:
                logger.exception("Aggregation failed", extra={"event_id": event_id})
                stats.failed += 1
                stats.errors += 1
                return

            if result.status == STATUS_UPDATED:
                stats.updated += 1
            elif result.status == STATUS_NO_SOURCES:
                stats.no_sources += 1
                zombies.append(event_id)
            elif result.status == STATUS_NO_VALID_PRICES:
                stats.no_valid_prices += 1
            elif result.status == STATUS_WRITE_FAILED:
                stats.failed += 1
                stats.errors += 1

    await asyncio.gather(*(_run_one(event_id) for event_id in event_ids))

    if fatal:
        stats.elapsed_ms = deadline.elapsed_ms()
        raise fatal[0]

    if zombies:
        try:
            stats.deactivated = await store.batch_deactivate_events(sorted(zombies))
        except StoreUnavailableError:
            raise
        except StoreError:
            logger.exception("Zombie deactivation failed", extra={"zombies": len(zombies)})
            stats.errors += 1

    stats.elapsed_ms = deadline.elapsed_ms()
    logger.info("Fleet aggregation finished", extra=stats.as_dict())
    return stats
