import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass

from redis.asyncio import Redis

from app.core.config import get_settings
from app.core.database import AsyncSessionLocal
from app.core.logging import setup_logging
from app.services.cycle_runs import cleanup_old_cycle_runs
from app.services.runs import RunOutcome, default_store, run_aggregate, run_auto_map, run_cross_match

settings = get_settings()
logger = logging.getLogger(__name__)

LOCK_KEY = "poller:fusion-cycle-lock"
CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60


@dataclass
class PollerState:
    cycle_number: int = 0
    last_cleanup_monotonic: float = 0.0


@asynccontextmanager
async def redis_cycle_lock(redis: Redis | None, lock_key: str, ttl_seconds: int = 55):
    if redis is None:
        yield True
        return

    lock_value = str(uuid.uuid4())
    try:
        acquired = await redis.set(lock_key, lock_value, ex=ttl_seconds, nx=True)
    except Exception:
        logger.exception("Failed to acquire redis lock")
        yield True
        return

    if not acquired:
        yield False
        return

    try:
        yield True
    finally:
        try:
            current = await redis.get(lock_key)
            if current == lock_value:
                await redis.delete(lock_key)
        except Exception:
            logger.exception("Failed to release redis lock")


def _due(cycle_number: int, every_n: int) -> bool:
    return every_n > 0 and cycle_number % every_n == 0


async def run_fusion_cycle(state: PollerState) -> list[RunOutcome]:
    """Aggregate every cycle; cross-match and auto-map on their own cadence."""
    store = default_store()
    outcomes = [await run_aggregate(trigger="poller", store=store, settings=settings)]

    if _due(state.cycle_number, settings.cross_match_every_n_cycles):
        outcomes.append(await run_cross_match(trigger="poller", store=store, settings=settings))

    if settings.auto_map_enabled and _due(state.cycle_number, settings.auto_map_every_n_cycles):
        outcomes.append(await run_auto_map(trigger="poller", store=store, settings=settings))

    return outcomes


async def main() -> None:
    setup_logging()
    logger.info(
        "Starting fusion poller",
        extra={
            "poll_interval_seconds": settings.poll_interval_seconds,
            "cross_match_every_n_cycles": settings.cross_match_every_n_cycles,
            "auto_map_enabled": settings.auto_map_enabled,
            "auto_map_every_n_cycles": settings.auto_map_every_n_cycles,
        },
    )

    redis: Redis | None = None
    try:
        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        await redis.ping()
    except Exception:
        logger.exception("Redis unavailable, poller running without cycle lock")
        redis = None

    state = PollerState()

    while True:
        cycle_start = time.monotonic()
        state.cycle_number += 1
        try:
            async with redis_cycle_lock(redis, LOCK_KEY, ttl_seconds=settings.poll_lock_ttl_seconds) as acquired:
                if acquired:
                    outcomes = await run_fusion_cycle(state)
                    logger.info(
                        "Fusion cycle completed",
                        extra={
                            "cycle_number": state.cycle_number,
                            "runs": [o.kind for o in outcomes],
                            "degraded": any(o.degraded for o in outcomes),
                        },
                    )

                    now_monotonic = time.monotonic()
                    if now_monotonic - state.last_cleanup_monotonic >= CLEANUP_INTERVAL_SECONDS:
                        async with AsyncSessionLocal() as db:
                            deleted = await cleanup_old_cycle_runs(db)
                        state.last_cleanup_monotonic = now_monotonic
                        logger.info("Cycle run cleanup completed", extra={"deleted": deleted})
                else:
                    logger.info("Skipped cycle; lock held by another worker")
        except Exception:
            logger.exception("Fusion cycle failed")

        elapsed = time.monotonic() - cycle_start
        sleep_seconds = max(1, settings.poll_interval_seconds - elapsed)
        await asyncio.sleep(sleep_seconds)


if __name__ == "__main__":
    asyncio.run(main())
