"""Per-event probability fusion.

Reads every active contract linked to an event, normalizes units, weights
by volume/liquidity and staleness, and writes the fused signal back with
snapshots and pairwise divergence records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from app.adapters.errors import StoreError, StoreUnavailableError
from app.adapters.store.base import DivergenceRow, FusedFields, FusionStore, SnapshotRow
from app.core.config import Settings, get_settings
from app.models.probability_snapshot import AGGREGATED_SOURCE
from app.services.fusion import (
    clamp_probability,
    dedupe_latest_per_platform,
    detect_outliers,
    minutes_since_freshest_trade,
    pairwise_divergences,
    price_spread,
    volume_weighted_probability,
)
from app.services.normalization import (
    SourceObservation,
    apply_staleness,
    normalize_units,
    observation_from_contract,
)
from app.services.quality_score import QualityInputs, compute_quality_score

logger = logging.getLogger(__name__)

STATUS_UPDATED = "updated"
STATUS_NO_SOURCES = "no_sources"
STATUS_NO_VALID_PRICES = "no_valid_prices"
STATUS_WRITE_FAILED = "write_failed"

DELTA_WINDOWS: dict[str, timedelta] = {
    "change_24h": timedelta(hours=24),
    "change_7d": timedelta(days=7),
    "change_30d": timedelta(days=30),
}
RANGE_WINDOW = timedelta(days=30)
VOLUME_24H_WINDOW = timedelta(hours=24)


@dataclass(slots=True)
class AggregationResult:
    event_id: str
    status: str
    probability: float | None = None
    source_count: int = 0
    quality_score: float | None = None
    max_spread: float | None = None
    outlier_platforms: list[str] = field(default_factory=list)
    excluded_contract_ids: list[str] = field(default_factory=list)

    @property
    def updated(self) -> bool:
        return self.status == STATUS_UPDATED


class EventAggregator:
    def __init__(self, store: FusionStore, settings: Settings | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()

    async def aggregate(self, event_id: str, now: datetime | None = None) -> AggregationResult:
        now = now or datetime.now(UTC)
        contracts = await self._store.list_active_contracts_for_event(event_id)
        if not contracts:
            return AggregationResult(event_id=event_id, status=STATUS_NO_SOURCES)

        parsed: list[SourceObservation] = []
        excluded: list[str] = []
        # One listing per source first; an unusable newest listing excludes its source.
        for contract in dedupe_latest_per_platform(contracts):
            obs = observation_from_contract(contract)
            if obs is None:
                excluded.append(contract.id)
                continue
            parsed.append(obs)
        if excluded:
            logger.warning(
                "Excluding contracts with unusable prices",
                extra={"event_id": event_id, "contract_ids": excluded},
            )
        if not parsed:
            return AggregationResult(
                event_id=event_id,
                status=STATUS_NO_VALID_PRICES,
                excluded_contract_ids=excluded,
            )

        observations = self._prepare(parsed, now)
        probability = volume_weighted_probability(observations)
        volume_24h = await self._fused_volume_24h(event_id, observations, now)
        volume_total = sum(obs.weighted_volume_total for obs in observations)
        liquidity = sum(obs.weighted_liquidity for obs in observations)
        num_traders = sum(obs.num_traders for obs in observations)
        spread = price_spread(observations)

        quality_score = compute_quality_score(
            QualityInputs(
                total_volume=volume_total,
                source_count=len(observations),
                minutes_since_last_trade=minutes_since_freshest_trade(observations, now),
                spread=spread,
                total_traders=num_traders,
                has_deep_market=any(
                    obs.platform.lower() in self._settings.fusion_deep_market_sources_set
                    for obs in observations
                ),
            ),
            volume_cap=self._settings.fusion_volume_depth_cap,
            diversity_cap=self._settings.fusion_diversity_cap,
            trader_cap=self._settings.fusion_trader_depth_cap,
        )

        deltas: dict[str, float | None] = {}
        for name, window in DELTA_WINDOWS.items():
            past = await self._store.latest_snapshot_before(event_id, AGGREGATED_SOURCE, now - window)
            deltas[name] = probability - past.probability if past is not None else None

        history = await self._store.snapshots_since(event_id, AGGREGATED_SOURCE, now - RANGE_WINDOW)
        range_values = [snap.probability for snap in history] + [probability]

        outliers = detect_outliers(observations, threshold=self._settings.fusion_outlier_threshold)
        fields = FusedFields(
            probability=probability,
            volume_24h=volume_24h,
            volume_total=volume_total,
            liquidity=liquidity,
            num_traders=num_traders,
            source_count=len(observations),
            quality_score=quality_score,
            max_spread=spread,
            change_24h=deltas["change_24h"],
            change_7d=deltas["change_7d"],
            change_30d=deltas["change_30d"],
            high_30d=max(range_values),
            low_30d=min(range_values),
            outlier_platforms=outliers,
            aggregated_at=now,
        )

        result = AggregationResult(
            event_id=event_id,
            status=STATUS_UPDATED,
            probability=probability,
            source_count=len(observations),
            quality_score=quality_score,
            max_spread=spread,
            outlier_platforms=outliers,
            excluded_contract_ids=excluded,
        )
        try:
            await self._write(event_id, fields, observations, now)
        except StoreUnavailableError:
            raise
        except StoreError:
            logger.exception("Failed to persist aggregation", extra={"event_id": event_id})
            result.status = STATUS_WRITE_FAILED
        return result

    def _prepare(self, parsed: list[SourceObservation], now: datetime) -> list[SourceObservation]:
        settings = self._settings
        normalized = [
            normalize_units(
                obs,
                raw_count_sources=settings.fusion_raw_count_sources_set,
                price_floor=settings.fusion_price_floor,
            )
            for obs in parsed
        ]
        return apply_staleness(
            normalized,
            now,
            soft_hours=settings.fusion_stale_soft_hours,
            hard_hours=settings.fusion_stale_hard_hours,
            soft_weight=settings.fusion_stale_soft_weight,
            hard_weight=settings.fusion_stale_hard_weight,
        )

    async def _fused_volume_24h(
        self, event_id: str, observations: list[SourceObservation], now: datetime
    ) -> float:
        total = 0.0
        for obs in observations:
            reported = obs.weighted_volume_24h
            if reported is not None:
                total += reported
                continue
            if obs.volume_total is None:
                continue
            # Per-source snapshots hold cumulative volume, so the 24h figure is a delta.
            past = await self._store.latest_snapshot_before(event_id, obs.platform, now - VOLUME_24H_WINDOW)
            if past is None or past.volume is None:
                continue
            total += max(0.0, obs.volume_total - past.volume) * obs.staleness_weight
        return total

    async def _write(
        self,
        event_id: str,
        fields: FusedFields,
        observations: list[SourceObservation],
        now: datetime,
    ) -> None:
        await self._store.write_event_fused_fields(event_id, fields)
        await self._store.append_snapshot(
            SnapshotRow(
                event_id=event_id,
                source=AGGREGATED_SOURCE,
                probability=fields.probability,
                captured_at=now,
                volume=fields.volume_total,
                liquidity=fields.liquidity,
                num_traders=fields.num_traders,
                quality_score=fields.quality_score,
            )
        )
        for obs in observations:
            await self._store.append_snapshot(
                SnapshotRow(
                    event_id=event_id,
                    source=obs.platform,
                    probability=clamp_probability(obs.price),
                    captured_at=now,
                    volume=obs.volume_total,
                    liquidity=obs.liquidity,
                    num_traders=obs.num_traders,
                )
            )
        if len(observations) < 2:
            return
        for pair in pairwise_divergences(observations):
            await self._store.append_divergence_snapshot(
                DivergenceRow(
                    event_id=event_id,
                    platform_a=pair.platform_a,
                    platform_b=pair.platform_b,
                    price_a=pair.price_a,
                    price_b=pair.price_b,
                    spread=pair.spread,
                    higher_platform=pair.higher_platform,
                    captured_at=now,
                )
            )
