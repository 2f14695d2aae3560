"""Pure fusion math over normalized, staleness-weighted observations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from itertools import combinations
from typing import Iterable, Protocol, Sequence, TypeVar

from app.services.normalization import SourceObservation

DEFAULT_OUTLIER_THRESHOLD = 0.15


class _Listing(Protocol):
    @property
    def platform(self) -> str: ...

    @property
    def last_trade_at(self) -> datetime | None: ...


ListingT = TypeVar("ListingT", bound=_Listing)


@dataclass(frozen=True, slots=True)
class PairDivergence:
    platform_a: str
    platform_b: str
    price_a: float
    price_b: float
    spread: float
    higher_platform: str


def clamp_probability(value: float) -> float:
    return min(1.0, max(0.0, value))


def dedupe_latest_per_platform(observations: Iterable[ListingT]) -> list[ListingT]:
    """Keep one listing per platform: the one with the latest trade.

    Works on raw contracts and parsed observations alike. Missing trade
    timestamps sort oldest; ties keep the first seen.
    """
    latest: dict[str, ListingT] = {}
    for obs in observations:
        current = latest.get(obs.platform)
        if current is None:
            latest[obs.platform] = obs
            continue
        if current.last_trade_at is None and obs.last_trade_at is not None:
            latest[obs.platform] = obs
        elif (
            current.last_trade_at is not None
            and obs.last_trade_at is not None
            and obs.last_trade_at > current.last_trade_at
        ):
            latest[obs.platform] = obs
    return sorted(latest.values(), key=lambda o: o.platform)


def source_weight(obs: SourceObservation) -> float:
    volume = obs.weighted_volume_total
    if volume > 0:
        return volume
    liquidity = obs.weighted_liquidity
    if liquidity > 0:
        return liquidity
    return 1.0


def volume_weighted_probability(observations: Sequence[SourceObservation]) -> float:
    if not observations:
        raise ValueError("at least one observation is required")
    weights = [source_weight(obs) for obs in observations]
    total = sum(weights)
    if total <= 0:
        fused = sum(obs.price for obs in observations) / len(observations)
    else:
        fused = sum(obs.price * w for obs, w in zip(observations, weights)) / total
    return clamp_probability(fused)


def price_spread(observations: Sequence[SourceObservation]) -> float:
    if len(observations) < 2:
        return 0.0
    prices = [obs.price for obs in observations]
    return max(prices) - min(prices)


def detect_outliers(
    observations: Sequence[SourceObservation],
    *,
    threshold: float = DEFAULT_OUTLIER_THRESHOLD,
) -> list[str]:
    """Platforms whose price sits more than ``threshold`` from the plain mean."""
    if len(observations) < 2:
        return []
    mean = sum(obs.price for obs in observations) / len(observations)
    return sorted(obs.platform for obs in observations if abs(obs.price - mean) > threshold)


def pairwise_divergences(observations: Sequence[SourceObservation]) -> list[PairDivergence]:
    ordered = sorted(observations, key=lambda o: o.platform)
    pairs: list[PairDivergence] = []
    for a, b in combinations(ordered, 2):
        higher = a.platform if a.price >= b.price else b.platform
        pairs.append(
            PairDivergence(
                platform_a=a.platform,
                platform_b=b.platform,
                price_a=a.price,
                price_b=b.price,
                spread=abs(a.price - b.price),
                higher_platform=higher,
            )
        )
    return pairs


def minutes_since_freshest_trade(
    observations: Sequence[SourceObservation], now: datetime
) -> float | None:
    stamps = [obs.last_trade_at for obs in observations if obs.last_trade_at is not None]
    if not stamps:
        return None
    return max(0.0, (now - max(stamps)).total_seconds() / 60.0)
