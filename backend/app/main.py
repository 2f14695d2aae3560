import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from redis.asyncio import Redis
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.api.router import api_router
from app.core.config import get_settings
from app.core.database import dispose_engine
from app.core.logging import setup_logging

settings = get_settings()

if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        integrations=[FastApiIntegration(), SqlalchemyIntegration()],
        send_default_pii=False,
    )
logger = logging.getLogger(__name__)


async def _connect_redis(url: str) -> Redis | None:
    # Only the poller lock and readiness probe use Redis; the API serves without it.
    try:
        redis = Redis.from_url(url, decode_responses=True)
        await redis.ping()
    except Exception:
        logger.exception("Redis connection failed")
        return None
    logger.info("Redis connected")
    return redis


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info(
        "Market fusion API starting",
        extra={
            "app_env": settings.app_env,
            "auto_map_enabled": settings.auto_map_enabled,
            "voyage_configured": bool(settings.voyage_api_key),
            "anthropic_configured": bool(settings.anthropic_api_key),
        },
    )
    app.state.redis = await _connect_redis(settings.redis_url)

    yield

    if app.state.redis is not None:
        await app.state.redis.aclose()
    await dispose_engine()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.include_router(api_router, prefix="/api/v1")
