from fastapi import APIRouter, Depends, Request
from sqlalchemy import text

from app.core.config import Settings, get_settings
from app.core.database import AsyncSessionLocal

router = APIRouter()


@router.get("/health/live")
async def health_live() -> dict:
    return {"status": "ok"}


@router.get("/health/ready")
async def health_ready(request: Request) -> dict:
    redis_ok = False
    db_ok = False

    redis = getattr(request.app.state, "redis", None)
    if redis is not None:
        try:
            redis_ok = bool(await redis.ping())
        except Exception:
            redis_ok = False

    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
            db_ok = True
    except Exception:
        db_ok = False

    # Redis only guards the poller lock; readiness hinges on the database.
    status = "ok" if db_ok else "degraded"
    return {"status": status, "db": db_ok, "redis": redis_ok}


@router.get("/health/config")
async def health_config(s: Settings = Depends(get_settings)) -> dict:
    return {
        "raw_count_sources": sorted(s.fusion_raw_count_sources_set),
        "deep_market_sources": sorted(s.fusion_deep_market_sources_set),
        "outlier_threshold": s.fusion_outlier_threshold,
        "similarity_floor": s.cross_match_similarity_floor,
        "embedding_model": s.voyage_model,
        "verification_model": s.verification_model,
        "auto_map_enabled": s.auto_map_enabled,
        "cross_match_every_n_cycles": s.cross_match_every_n_cycles,
        "auto_map_every_n_cycles": s.auto_map_every_n_cycles,
    }
