import math
from collections import Counter
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Sequence
from unittest.mock import AsyncMock

import pytest

from app.adapters.errors import SlugConflictError, StoreError
from app.adapters.store.base import (
    ContractRecord,
    DivergenceRow,
    EventDraft,
    EventRecord,
    FusedFields,
    MappingRow,
    SimilarEvent,
    SnapshotRow,
)
from app.core.config import Settings
from app.models.event import OUTCOME_BINARY, RESOLUTION_OPEN


@dataclass
class FakeEvent:
    record: EventRecord
    slug: str | None = None
    is_active: bool = True
    resolution_status: str = RESOLUTION_OPEN
    embedding: list[float] | None = None


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryFusionStore:
    """Dict-backed FusionStore used by service tests.

    ``failures`` maps an operation name to the exception it should raise.
    """

    def __init__(self) -> None:
        self.events: dict[str, FakeEvent] = {}
        self.contracts: dict[str, ContractRecord] = {}
        self.snapshots: list[SnapshotRow] = []
        self.divergences: list[DivergenceRow] = []
        self.mappings: dict[tuple[str, str], MappingRow] = {}
        self.mapping_writes = 0
        self.fused: dict[str, FusedFields] = {}
        self.deactivation_batches: list[list[str]] = []
        self.failures: dict[str, Exception] = {}
        self.calls: Counter[str] = Counter()

    # ── helpers ──────────────────────────────────────────────────────
    def add_event(
        self,
        event_id: str,
        title: str = "",
        *,
        parent_event_id: str | None = None,
        outcome_type: str = OUTCOME_BINARY,
        embedding: list[float] | None = None,
        is_active: bool = True,
        resolution_status: str = RESOLUTION_OPEN,
        **fields,
    ) -> FakeEvent:
        event = FakeEvent(
            record=EventRecord(
                id=event_id,
                title=title or event_id,
                parent_event_id=parent_event_id,
                outcome_type=outcome_type,
                **fields,
            ),
            slug=event_id.replace("_", "-"),
            is_active=is_active,
            resolution_status=resolution_status,
            embedding=embedding,
        )
        self.events[event_id] = event
        return event

    def add_contract(self, contract_id: str, platform: str, **fields) -> ContractRecord:
        fields.setdefault("platform_contract_id", f"{platform}-{contract_id}")
        contract = ContractRecord(id=contract_id, platform=platform, **fields)
        self.contracts[contract_id] = contract
        return contract

    def snapshots_for(self, event_id: str, source: str | None = None) -> list[SnapshotRow]:
        return [
            s for s in self.snapshots if s.event_id == event_id and (source is None or s.source == source)
        ]

    def _check(self, operation: str) -> None:
        self.calls[operation] += 1
        failure = self.failures.get(operation)
        if failure is not None:
            raise failure

    # ── aggregation ──────────────────────────────────────────────────
    async def list_active_contracts_for_event(self, event_id: str) -> list[ContractRecord]:
        self._check("list_active_contracts_for_event")
        return [c for c in self.contracts.values() if c.event_id == event_id and c.is_active]

    async def list_eligible_events(self) -> list[str]:
        self._check("list_eligible_events")
        eligible = []
        for event_id, event in self.events.items():
            if not event.is_active or event.resolution_status != RESOLUTION_OPEN:
                continue
            if event.record.parent_event_id is None:
                if event.record.outcome_type == OUTCOME_BINARY:
                    eligible.append(event_id)
            elif any(c.event_id == event_id and c.is_active for c in self.contracts.values()):
                eligible.append(event_id)
        return sorted(eligible)

    async def batch_deactivate_events(self, event_ids: Sequence[str]) -> int:
        self._check("batch_deactivate_events")
        self.deactivation_batches.append(list(event_ids))
        changed = 0
        for event_id in event_ids:
            event = self.events.get(event_id)
            if event is not None and event.is_active:
                event.is_active = False
                changed += 1
        return changed

    async def append_snapshot(self, row: SnapshotRow) -> None:
        self._check("append_snapshot")
        self.snapshots.append(row)

    async def append_divergence_snapshot(self, row: DivergenceRow) -> None:
        self._check("append_divergence_snapshot")
        self.divergences.append(row)

    async def latest_snapshot_before(self, event_id: str, source: str, before: datetime) -> SnapshotRow | None:
        self._check("latest_snapshot_before")
        candidates = [s for s in self.snapshots_for(event_id, source) if s.captured_at <= before]
        return max(candidates, key=lambda s: s.captured_at, default=None)

    async def snapshots_since(self, event_id: str, source: str, since: datetime) -> list[SnapshotRow]:
        self._check("snapshots_since")
        return sorted(
            (s for s in self.snapshots_for(event_id, source) if s.captured_at >= since),
            key=lambda s: s.captured_at,
        )

    async def write_event_fused_fields(self, event_id: str, fields: FusedFields) -> None:
        self._check("write_event_fused_fields")
        self.fused[event_id] = fields

    # ── embeddings / matching ────────────────────────────────────────
    async def list_unembedded_events(self, limit: int) -> list[EventRecord]:
        self._check("list_unembedded_events")
        rows = [e.record for e in self.events.values() if e.is_active and e.embedding is None]
        return rows[:limit]

    async def list_unembedded_contracts(self, limit: int) -> list[ContractRecord]:
        self._check("list_unembedded_contracts")
        rows = [c for c in self.contracts.values() if c.is_active and c.embedding is None]
        return rows[:limit]

    async def write_event_embedding(self, event_id: str, vector: Sequence[float]) -> None:
        self._check("write_event_embedding")
        self.events[event_id].embedding = list(vector)

    async def write_contract_embedding(self, contract_id: str, vector: Sequence[float]) -> None:
        self._check("write_contract_embedding")
        self.contracts[contract_id] = replace(self.contracts[contract_id], embedding=list(vector))

    async def list_unmatched_contracts(self, limit: int) -> list[ContractRecord]:
        self._check("list_unmatched_contracts")
        rows = [
            c
            for c in self.contracts.values()
            if c.is_active and c.event_id is None and c.embedding is not None and c.match_checked_at is None
        ]
        return rows[:limit]

    async def vector_similarity_search(self, vector: Sequence[float], floor: float, k: int) -> list[SimilarEvent]:
        self._check("vector_similarity_search")
        hits = []
        for event_id, event in self.events.items():
            if event.embedding is None or not event.is_active or event.resolution_status != RESOLUTION_OPEN:
                continue
            similarity = _cosine(vector, event.embedding)
            if similarity >= floor:
                hits.append(SimilarEvent(event_id=event_id, title=event.record.title, similarity=similarity))
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:k]

    async def link_contract_to_event(self, contract_id: str, event_id: str) -> None:
        self._check("link_contract_to_event")
        self.contracts[contract_id] = replace(self.contracts[contract_id], event_id=event_id, match_checked_at=None)

    async def upsert_mapping_record(self, row: MappingRow) -> None:
        self._check("upsert_mapping_record")
        self.mapping_writes += 1
        self.mappings[(row.platform, row.platform_contract_id)] = row

    async def stamp_checked(self, contract_id: str, checked_at: datetime) -> None:
        self._check("stamp_checked")
        self.contracts[contract_id] = replace(self.contracts[contract_id], match_checked_at=checked_at)

    async def clear_checked_stamps(self) -> int:
        self._check("clear_checked_stamps")
        cleared = 0
        for contract_id, contract in list(self.contracts.items()):
            if contract.event_id is None and contract.match_checked_at is not None:
                self.contracts[contract_id] = replace(contract, match_checked_at=None)
                cleared += 1
        return cleared

    # ── auto-mapping ─────────────────────────────────────────────────
    async def list_unmapped_contracts_for_platform(
        self,
        platform: str,
        limit: int,
        *,
        min_liquidity: float | None = None,
        min_traders: int | None = None,
    ) -> list[ContractRecord]:
        self._check("list_unmapped_contracts_for_platform")
        rows = [
            c
            for c in self.contracts.values()
            if c.platform == platform
            and c.is_active
            and c.event_id is None
            and c.title
            and (c.platform, c.platform_contract_id) not in self.mappings
            and (min_liquidity is None or (c.liquidity or 0) > min_liquidity)
            and (min_traders is None or (c.num_traders or 0) > min_traders)
        ]
        if min_traders is not None:
            rows.sort(key=lambda c: c.num_traders or 0, reverse=True)
        else:
            rows.sort(key=lambda c: c.liquidity or 0, reverse=True)
        return rows[:limit]

    async def list_open_events(self, limit: int) -> list[EventRecord]:
        self._check("list_open_events")
        rows = [e.record for e in self.events.values() if e.is_active and e.resolution_status == RESOLUTION_OPEN]
        return rows[:limit]

    async def existing_event_ids(self, event_ids: Sequence[str]) -> set[str]:
        self._check("existing_event_ids")
        return {event_id for event_id in event_ids if event_id in self.events}

    async def insert_event(self, draft: EventDraft) -> None:
        self._check("insert_event")
        if draft.id in self.events:
            raise StoreError("insert_event", f"duplicate id {draft.id}")
        if any(e.slug == draft.slug for e in self.events.values()):
            raise SlugConflictError("insert_event", f"slug {draft.slug!r} already taken")
        self.events[draft.id] = FakeEvent(
            record=EventRecord(
                id=draft.id,
                title=draft.title,
                description=draft.description,
                category=draft.category,
                tags=list(draft.tags),
                resolution_date=draft.resolution_date,
                parent_event_id=draft.parent_event_id,
                outcome_type=draft.outcome_type,
            ),
            slug=draft.slug,
        )

    async def link_contract_by_platform_id(self, platform: str, platform_contract_id: str, event_id: str) -> int:
        self._check("link_contract_by_platform_id")
        linked = 0
        for contract_id, contract in list(self.contracts.items()):
            if (
                contract.is_active
                and contract.platform == platform
                and contract.platform_contract_id == platform_contract_id
            ):
                self.contracts[contract_id] = replace(contract, event_id=event_id, match_checked_at=None)
                linked += 1
        return linked


@pytest.fixture
def store() -> InMemoryFusionStore:
    return InMemoryFusionStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="testing",
        ops_internal_token="test-ops-token",
        voyage_api_key="voyage-test-key",
        anthropic_api_key="anthropic-test-key",
        upstream_retry_attempts=2,
        upstream_retry_backoff_seconds=0.1,
        upstream_retry_backoff_max_seconds=0.2,
        auto_map_batch_pause_seconds=0,
        embedding_batch_size=2,
    )


@pytest.fixture
def fake_embedder() -> AsyncMock:
    embedder = AsyncMock()
    embedder.model = "voyage-3-lite"
    embedder.embed.side_effect = lambda texts, mode="document", *, deadline=None: [
        [1.0, float(i)] for i, _ in enumerate(texts)
    ]
    return embedder


@pytest.fixture
def fake_verifier() -> AsyncMock:
    verifier = AsyncMock()
    verifier.model = "claude-haiku-4-5"
    verifier.verify_same_question.return_value = True
    return verifier


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
