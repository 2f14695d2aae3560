"""Protocol and shared record types for the fusion store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Protocol, Sequence, runtime_checkable


@dataclass(frozen=True, slots=True)
class ContractRecord:
    """Read-only view of one source contract row."""

    id: str
    platform: str
    platform_contract_id: str
    title: str | None = None
    price: float | None = None
    volume_24h: float | None = None
    volume_total: float | None = None
    liquidity: float | None = None
    num_traders: int | None = None
    last_trade_at: datetime | None = None
    is_active: bool = True
    event_id: str | None = None
    embedding: list[float] | None = None
    match_checked_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class EventRecord:
    id: str
    title: str
    description: str | None = None
    category: str | None = None
    tags: list[str] | None = None
    resolution_date: date | None = None
    parent_event_id: str | None = None
    outcome_type: str = "binary"


@dataclass(frozen=True, slots=True)
class EventDraft:
    """A canonical event proposed for creation."""

    id: str
    title: str
    slug: str
    category: str
    description: str | None = None
    subcategory: str | None = None
    tags: list[str] = field(default_factory=list)
    resolution_date: date | None = None
    parent_event_id: str | None = None
    outcome_type: str = "binary"
    outcome_label: str | None = None
    outcome_index: int | None = None


@dataclass(frozen=True, slots=True)
class SnapshotRow:
    event_id: str
    source: str
    probability: float
    captured_at: datetime
    volume: float | None = None
    liquidity: float | None = None
    num_traders: int | None = None
    quality_score: float | None = None


@dataclass(frozen=True, slots=True)
class DivergenceRow:
    event_id: str
    platform_a: str
    platform_b: str
    price_a: float
    price_b: float
    spread: float
    higher_platform: str
    captured_at: datetime


@dataclass(frozen=True, slots=True)
class MappingRow:
    event_id: str
    platform: str
    platform_contract_id: str
    confidence: str
    mapped_by: str
    mapped_at: datetime


@dataclass(frozen=True, slots=True)
class SimilarEvent:
    event_id: str
    title: str
    similarity: float


@dataclass(slots=True)
class FusedFields:
    """Denormalized aggregation output written onto an event row."""

    probability: float
    volume_24h: float
    volume_total: float
    liquidity: float
    num_traders: int
    source_count: int
    quality_score: float
    max_spread: float
    change_24h: float | None
    change_7d: float | None
    change_30d: float | None
    high_30d: float
    low_30d: float
    outlier_platforms: list[str]
    aggregated_at: datetime


@runtime_checkable
class FusionStore(Protocol):
    """Read/write contract consumed by the aggregator, matcher and auto-mapper.

    Implementations raise ``StoreError`` for a failed operation and
    ``StoreUnavailableError`` when connectivity is lost.
    """

    # ── aggregation ──────────────────────────────────────────────────
    async def list_active_contracts_for_event(self, event_id: str) -> list[ContractRecord]: ...

    async def list_eligible_events(self) -> list[str]: ...

    async def batch_deactivate_events(self, event_ids: Sequence[str]) -> int: ...

    async def append_snapshot(self, row: SnapshotRow) -> None: ...

    async def append_divergence_snapshot(self, row: DivergenceRow) -> None: ...

    async def latest_snapshot_before(
        self, event_id: str, source: str, before: datetime
    ) -> SnapshotRow | None: ...

    async def snapshots_since(
        self, event_id: str, source: str, since: datetime
    ) -> list[SnapshotRow]: ...

    async def write_event_fused_fields(self, event_id: str, fields: FusedFields) -> None: ...

    # ── embeddings / matching ────────────────────────────────────────
    async def list_unembedded_events(self, limit: int) -> list[EventRecord]: ...

    async def list_unembedded_contracts(self, limit: int) -> list[ContractRecord]: ...

    async def write_event_embedding(self, event_id: str, vector: Sequence[float]) -> None: ...

    async def write_contract_embedding(self, contract_id: str, vector: Sequence[float]) -> None: ...

    async def list_unmatched_contracts(self, limit: int) -> list[ContractRecord]: ...

    async def vector_similarity_search(
        self, vector: Sequence[float], floor: float, k: int
    ) -> list[SimilarEvent]: ...

    async def link_contract_to_event(self, contract_id: str, event_id: str) -> None: ...

    async def upsert_mapping_record(self, row: MappingRow) -> None: ...

    async def stamp_checked(self, contract_id: str, checked_at: datetime) -> None: ...

    async def clear_checked_stamps(self) -> int: ...

    # ── auto-mapping ─────────────────────────────────────────────────
    async def list_unmapped_contracts_for_platform(
        self,
        platform: str,
        limit: int,
        *,
        min_liquidity: float | None = None,
        min_traders: int | None = None,
    ) -> list[ContractRecord]: ...

    async def list_open_events(self, limit: int) -> list[EventRecord]: ...

    async def existing_event_ids(self, event_ids: Sequence[str]) -> set[str]: ...

    async def insert_event(self, draft: EventDraft) -> None: ...

    async def link_contract_by_platform_id(
        self, platform: str, platform_contract_id: str, event_id: str
    ) -> int: ...
