import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import Settings, get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


def pool_size_for(settings: Settings) -> int:
    """Fleet units each hold a session; leave one connection for telemetry writes."""
    return max(settings.db_pool_size, settings.fusion_max_concurrency + 1)


def build_engine(settings: Settings) -> AsyncEngine:
    source = settings.resolved_database_url_source
    pool_size = pool_size_for(settings)
    logger.info(
        "Database engine configured",
        extra={
            "database_url_source": source,
            "database_host": settings.postgres_host if source == "postgres_fallback" else None,
            "database_name": settings.postgres_db if source == "postgres_fallback" else None,
            "pool_size": pool_size,
            "max_overflow": settings.db_max_overflow,
        },
    )
    return create_async_engine(
        settings.resolved_database_url,
        pool_pre_ping=True,
        pool_size=pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle_seconds,
    )


engine = build_engine(settings)
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def dispose_engine() -> None:
    await engine.dispose()
