import math
import os
from functools import lru_cache
from typing import Mapping
from urllib.parse import quote_plus

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DATABASE_URL_PLACEHOLDER = "REPLACE_WITH_STRONG_DB_PASSWORD"
# Headroom for writes already in flight when a run budget expires.
POLL_LOCK_MARGIN_SECONDS = 60


def resolve_database_url(
    *,
    database_url: str | None,
    postgres_user: str | None,
    postgres_password: str | None,
    postgres_host: str | None = "db",
    postgres_port: int | str | None = "5432",
    postgres_db: str | None = "market_fusion",
) -> tuple[str, str]:
    raw_database_url = (database_url or "").strip()
    if raw_database_url and DATABASE_URL_PLACEHOLDER not in raw_database_url:
        return raw_database_url, "env"

    user = quote_plus((postgres_user or "fusion").strip())
    password = quote_plus((postgres_password or "fusion").strip())
    host = (postgres_host or "db").strip() or "db"
    port = str(postgres_port or "5432").strip() or "5432"
    db_name = (postgres_db or "market_fusion").strip() or "market_fusion"
    constructed = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db_name}"
    return constructed, "postgres_fallback"


def resolve_database_url_from_env(
    env: Mapping[str, str] | None = None,
    *,
    default_database_url: str | None = None,
) -> tuple[str, str]:
    source_env = os.environ if env is None else env
    database_url = source_env.get("DATABASE_URL", default_database_url or "")
    return resolve_database_url(
        database_url=database_url,
        postgres_user=source_env.get("POSTGRES_USER"),
        postgres_password=source_env.get("POSTGRES_PASSWORD"),
        postgres_host=source_env.get("POSTGRES_HOST", "db"),
        postgres_port=source_env.get("POSTGRES_PORT", "5432"),
        postgres_db=source_env.get("POSTGRES_DB", "market_fusion"),
    )


def _split_csv(raw: str) -> list[str]:
    return [v.strip().lower() for v in raw.split(",") if v.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @model_validator(mode="after")
    def _check_production_secrets(self) -> "Settings":
        if self.app_env == "production" and self.ops_internal_token in {"", "dev-ops-token", "change-me-ops-token"}:
            raise ValueError(
                "OPS_INTERNAL_TOKEN must be set to a secure internal token in production."
            )
        if not 0.0 < self.cross_match_embed_budget_share < 1.0:
            raise ValueError("CROSS_MATCH_EMBED_BUDGET_SHARE must be between 0 and 1 (exclusive).")
        if self.fusion_stale_hard_hours < self.fusion_stale_soft_hours:
            raise ValueError("FUSION_STALE_HARD_HOURS must be >= FUSION_STALE_SOFT_HOURS.")
        if self.poll_lock_ttl_seconds < self.max_cycle_seconds + POLL_LOCK_MARGIN_SECONDS:
            raise ValueError(
                "POLL_LOCK_TTL_SECONDS must cover the longest poller cycle "
                f"({self.max_cycle_seconds}s) plus {POLL_LOCK_MARGIN_SECONDS}s."
            )
        return self

    app_env: str = "development"
    app_name: str = "Market Fusion API"
    log_level: str = "INFO"

    database_url: str = ""
    postgres_user: str = "fusion"
    postgres_password: str = "fusion"
    postgres_host: str = "db"
    postgres_port: int = 5432
    postgres_db: str = "market_fusion"
    redis_url: str = "redis://redis:6379/0"
    db_pool_size: int = 5
    db_max_overflow: int = 5
    db_pool_recycle_seconds: int = 1800

    ops_internal_token: str = "dev-ops-token"

    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.1

    # ── Fusion tunables ────────────────────────────────────────────
    fusion_volume_depth_cap: float = 1_000_000.0
    fusion_diversity_cap: int = 3
    fusion_trader_depth_cap: int = 1_000
    fusion_stale_soft_hours: float = 24.0
    fusion_stale_hard_hours: float = 72.0
    fusion_stale_soft_weight: float = 0.5
    fusion_stale_hard_weight: float = 0.2
    fusion_price_floor: float = 0.01
    fusion_outlier_threshold: float = 0.15
    fusion_raw_count_sources: str = "kalshi"
    fusion_deep_market_sources: str = "polymarket,kalshi"
    fusion_max_concurrency: int = 4
    aggregate_budget_ms: int = 240_000

    # ── Embedding service (Voyage) ─────────────────────────────────
    voyage_api_key: str = ""
    voyage_base_url: str = "https://api.voyageai.com/v1"
    voyage_model: str = "voyage-3-lite"
    voyage_timeout_seconds: float = 30.0
    embedding_dimensions: int = 512
    embedding_batch_size: int = 128

    # ── Language model (Anthropic) ─────────────────────────────────
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    verification_model: str = "claude-haiku-4-5"
    verification_max_tokens: int = 5
    llm_timeout_seconds: float = 30.0

    upstream_retry_attempts: int = 3
    upstream_retry_backoff_seconds: float = 2.0
    upstream_retry_backoff_max_seconds: float = 30.0

    # ── Cross-source matcher ───────────────────────────────────────
    cross_match_similarity_floor: float = 0.70
    cross_match_top_k: int = 3
    cross_match_event_batch_limit: int = 500
    cross_match_contract_batch_limit: int = 1000
    cross_match_match_batch_limit: int = 500
    cross_match_embed_budget_share: float = 0.6
    cross_match_budget_ms: int = 90_000

    # ── Auto-mapper ────────────────────────────────────────────────
    auto_map_enabled: bool = False
    auto_map_model: str = "claude-haiku-4-5"
    auto_map_batch_size: int = 25
    auto_map_max_tokens: int = 8192
    auto_map_budget_ms: int = 240_000
    auto_map_batch_pause_seconds: float = 7.0

    # ── Run telemetry ──────────────────────────────────────────────
    cycle_run_retention_days: int = 30
    cycle_run_write_failures_soft: bool = True

    # ── Poller ─────────────────────────────────────────────────────
    poll_interval_seconds: int = 300
    poll_lock_ttl_seconds: int = 900
    cross_match_every_n_cycles: int = 1
    auto_map_every_n_cycles: int = 6

    @property
    def max_cycle_seconds(self) -> int:
        """Worst-case poller cycle: aggregate, cross-match with its re-aggregation, then auto-map."""
        budget_ms = self.aggregate_budget_ms
        if self.cross_match_every_n_cycles > 0:
            budget_ms += self.cross_match_budget_ms + self.aggregate_budget_ms
        if self.auto_map_enabled and self.auto_map_every_n_cycles > 0:
            budget_ms += self.auto_map_budget_ms
        return math.ceil(budget_ms / 1000)

    @property
    def fusion_raw_count_sources_set(self) -> set[str]:
        return set(_split_csv(self.fusion_raw_count_sources))

    @property
    def fusion_deep_market_sources_set(self) -> set[str]:
        return set(_split_csv(self.fusion_deep_market_sources))

    @property
    def resolved_database_url(self) -> str:
        url, _source = resolve_database_url(
            database_url=self.database_url,
            postgres_user=self.postgres_user,
            postgres_password=self.postgres_password,
            postgres_host=self.postgres_host,
            postgres_port=self.postgres_port,
            postgres_db=self.postgres_db,
        )
        return url

    @property
    def resolved_database_url_source(self) -> str:
        _url, source = resolve_database_url(
            database_url=self.database_url,
            postgres_user=self.postgres_user,
            postgres_password=self.postgres_password,
            postgres_host=self.postgres_host,
            postgres_port=self.postgres_port,
            postgres_db=self.postgres_db,
        )
        return source


@lru_cache
def get_settings() -> Settings:
    return Settings()
