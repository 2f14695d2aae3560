from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable

from app.adapters.store.base import ContractRecord

DEFAULT_PRICE_FLOOR = 0.01
DEFAULT_STALE_SOFT_HOURS = 24.0
DEFAULT_STALE_HARD_HOURS = 72.0
DEFAULT_STALE_SOFT_WEIGHT = 0.5
DEFAULT_STALE_HARD_WEIGHT = 0.2


@dataclass(frozen=True, slots=True)
class SourceObservation:
    """One platform's contribution to a fusion cycle.

    Volumes and liquidity are notional once :func:`normalize_units` has
    run.  ``staleness_weight`` scales volume/liquidity influence only,
    never the price.
    """

    contract_id: str
    platform: str
    price: float
    volume_24h: float | None = None
    volume_total: float | None = None
    liquidity: float | None = None
    num_traders: int = 0
    last_trade_at: datetime | None = None
    staleness_weight: float = 1.0

    @property
    def weighted_volume_total(self) -> float:
        return max(self.volume_total or 0.0, 0.0) * self.staleness_weight

    @property
    def weighted_volume_24h(self) -> float | None:
        if self.volume_24h is None:
            return None
        return max(self.volume_24h, 0.0) * self.staleness_weight

    @property
    def weighted_liquidity(self) -> float:
        return max(self.liquidity or 0.0, 0.0) * self.staleness_weight


def _finite_or_none(value: object) -> float | None:
    if value is None:
        return None
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def observation_from_contract(contract: ContractRecord) -> SourceObservation | None:
    """Build an observation, or None when the price is unusable."""
    price = _finite_or_none(contract.price)
    if price is None:
        return None
    traders = _finite_or_none(contract.num_traders)
    return SourceObservation(
        contract_id=contract.id,
        platform=contract.platform,
        price=price,
        volume_24h=_finite_or_none(contract.volume_24h),
        volume_total=_finite_or_none(contract.volume_total),
        liquidity=_finite_or_none(contract.liquidity),
        num_traders=max(int(traders), 0) if traders is not None else 0,
        last_trade_at=contract.last_trade_at,
    )


def normalize_units(
    observation: SourceObservation,
    *,
    raw_count_sources: Iterable[str],
    price_floor: float = DEFAULT_PRICE_FLOOR,
) -> SourceObservation:
    """Convert raw contract-count volume into notional volume.

    Raw-count platforms report the number of fixed-face contracts traded;
    notional ≈ count × price, with the price floored so a near-zero quote
    does not erase the volume.  Liquidity passes through unchanged.
    """
    if observation.platform.lower() not in {s.lower() for s in raw_count_sources}:
        return observation
    unit_price = max(observation.price, price_floor)
    return replace(
        observation,
        volume_total=observation.volume_total * unit_price if observation.volume_total is not None else None,
        volume_24h=observation.volume_24h * unit_price if observation.volume_24h is not None else None,
    )


def staleness_weight(
    last_trade_at: datetime | None,
    now: datetime,
    *,
    soft_hours: float = DEFAULT_STALE_SOFT_HOURS,
    hard_hours: float = DEFAULT_STALE_HARD_HOURS,
    soft_weight: float = DEFAULT_STALE_SOFT_WEIGHT,
    hard_weight: float = DEFAULT_STALE_HARD_WEIGHT,
) -> float:
    if last_trade_at is None:
        return hard_weight
    hours_ago = (now - last_trade_at).total_seconds() / 3600.0
    if hours_ago > hard_hours:
        return hard_weight
    if hours_ago > soft_hours:
        return soft_weight
    return 1.0


def apply_staleness(
    observations: Iterable[SourceObservation],
    now: datetime,
    *,
    soft_hours: float = DEFAULT_STALE_SOFT_HOURS,
    hard_hours: float = DEFAULT_STALE_HARD_HOURS,
    soft_weight: float = DEFAULT_STALE_SOFT_WEIGHT,
    hard_weight: float = DEFAULT_STALE_HARD_WEIGHT,
) -> list[SourceObservation]:
    return [
        replace(
            obs,
            staleness_weight=staleness_weight(
                obs.last_trade_at,
                now,
                soft_hours=soft_hours,
                hard_hours=hard_hours,
                soft_weight=soft_weight,
                hard_weight=hard_weight,
            ),
        )
        for obs in observations
    ]
