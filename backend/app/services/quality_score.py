"""Data quality score (0.0 - 1.0) for a fused event.

Composite of four factors, each worth 0.25:
- volume depth: how much money is behind the price
- source diversity: how many platforms cover it
- freshness: recency of the freshest trade
- spread tightness: how much platforms agree
"""

from __future__ import annotations

from dataclasses import dataclass

COMPONENT_WEIGHT = 0.25

DEFAULT_VOLUME_DEPTH_CAP = 1_000_000.0
DEFAULT_DIVERSITY_CAP = 3
DEFAULT_TRADER_DEPTH_CAP = 1_000

FRESH_MINUTES = 5.0
RECENT_MINUTES = 60.0
RECENT_FACTOR = 0.9
STALE_MINUTES = 1440.0

TIGHT_SPREAD = 0.02
WIDE_SPREAD = 0.15
SINGLE_SOURCE_SPREAD_SCORE = 0.125


@dataclass(frozen=True, slots=True)
class QualityInputs:
    total_volume: float
    source_count: int
    minutes_since_last_trade: float | None
    spread: float
    total_traders: int = 0
    has_deep_market: bool = True


def volume_depth_score(
    total_volume: float,
    *,
    total_traders: int = 0,
    has_deep_market: bool = True,
    volume_cap: float = DEFAULT_VOLUME_DEPTH_CAP,
    trader_cap: int = DEFAULT_TRADER_DEPTH_CAP,
) -> float:
    # Forecast-only platforms carry no money; crowd size stands in for depth.
    if not has_deep_market:
        if trader_cap <= 0:
            return 0.0
        return min(max(total_traders, 0) / trader_cap, 1.0) * COMPONENT_WEIGHT
    if volume_cap <= 0:
        return COMPONENT_WEIGHT
    return min(max(total_volume, 0.0) / volume_cap, 1.0) * COMPONENT_WEIGHT


def diversity_score(source_count: int, *, diversity_cap: int = DEFAULT_DIVERSITY_CAP) -> float:
    if diversity_cap <= 0:
        return COMPONENT_WEIGHT
    return min(max(source_count, 0) / diversity_cap, 1.0) * COMPONENT_WEIGHT


def freshness_score(minutes_since_last_trade: float | None) -> float:
    if minutes_since_last_trade is None:
        return 0.0
    minutes = max(0.0, minutes_since_last_trade)
    if minutes <= FRESH_MINUTES:
        return COMPONENT_WEIGHT
    if minutes <= RECENT_MINUTES:
        return COMPONENT_WEIGHT * RECENT_FACTOR
    if minutes <= STALE_MINUTES:
        return COMPONENT_WEIGHT * (1 - minutes / STALE_MINUTES)
    return 0.0


def spread_score(spread: float, source_count: int) -> float:
    if source_count <= 1:
        return SINGLE_SOURCE_SPREAD_SCORE
    if spread <= TIGHT_SPREAD:
        return COMPONENT_WEIGHT
    if spread >= WIDE_SPREAD:
        return 0.0
    return COMPONENT_WEIGHT * (1 - (spread - TIGHT_SPREAD) / (WIDE_SPREAD - TIGHT_SPREAD))


def compute_quality_score(
    inputs: QualityInputs,
    *,
    volume_cap: float = DEFAULT_VOLUME_DEPTH_CAP,
    diversity_cap: int = DEFAULT_DIVERSITY_CAP,
    trader_cap: int = DEFAULT_TRADER_DEPTH_CAP,
) -> float:
    raw = (
        volume_depth_score(
            inputs.total_volume,
            total_traders=inputs.total_traders,
            has_deep_market=inputs.has_deep_market,
            volume_cap=volume_cap,
            trader_cap=trader_cap,
        )
        + diversity_score(inputs.source_count, diversity_cap=diversity_cap)
        + freshness_score(inputs.minutes_since_last_trade)
        + spread_score(inputs.spread, inputs.source_count)
    )
    return round(raw, 2)
