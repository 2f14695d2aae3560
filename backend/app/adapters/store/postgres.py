"""PostgreSQL (SQLAlchemy async + pgvector) implementation of the fusion store."""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Sequence

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.adapters.errors import SlugConflictError, StoreError, StoreUnavailableError
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
from app.models.divergence_snapshot import DivergenceSnapshot
from app.models.event import OUTCOME_BINARY, RESOLUTION_OPEN, Event
from app.models.event_source_mapping import EventSourceMapping
from app.models.probability_snapshot import ProbabilitySnapshot
from app.models.source_contract import SourceContract

logger = logging.getLogger(__name__)


def _vector_to_list(value: object) -> list[float] | None:
    if value is None:
        return None
    return [float(v) for v in value]  # type: ignore[attr-defined]


def _contract_record(row: SourceContract) -> ContractRecord:
    return ContractRecord(
        id=str(row.id),
        platform=row.platform,
        platform_contract_id=row.platform_contract_id,
        title=row.contract_title,
        price=row.price,
        volume_24h=row.volume_24h,
        volume_total=row.volume_total,
        liquidity=row.liquidity,
        num_traders=row.num_traders,
        last_trade_at=row.last_trade_at,
        is_active=row.is_active,
        event_id=row.event_id,
        embedding=_vector_to_list(row.embedding),
        match_checked_at=row.match_checked_at,
    )


def _event_record(row: Event) -> EventRecord:
    return EventRecord(
        id=row.id,
        title=row.title,
        description=row.description,
        category=row.category,
        tags=list(row.tags) if row.tags else None,
        resolution_date=row.resolution_date,
        parent_event_id=row.parent_event_id,
        outcome_type=row.outcome_type,
    )


def _snapshot_row(row: ProbabilitySnapshot) -> SnapshotRow:
    return SnapshotRow(
        event_id=row.event_id,
        source=row.source,
        probability=row.probability,
        captured_at=row.captured_at,
        volume=row.volume,
        liquidity=row.liquidity,
        num_traders=row.num_traders,
        quality_score=row.quality_score,
    )


class PostgresFusionStore:
    """Opens one session per store call so independent units can run concurrently."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.error("Store connectivity lost", extra={"operation": operation, "error": str(exc)})
            raise StoreUnavailableError(operation, str(exc)) from exc
        except DBAPIError as exc:
            if exc.connection_invalidated:
                raise StoreUnavailableError(operation, str(exc)) from exc
            raise StoreError(operation, str(exc)) from exc
        except SQLAlchemyError as exc:
            raise StoreError(operation, str(exc)) from exc

    # ── aggregation ──────────────────────────────────────────────────

    async def list_active_contracts_for_event(self, event_id: str) -> list[ContractRecord]:
        async with self._session("list_active_contracts_for_event") as session:
            stmt = (
                select(SourceContract)
                .where(
                    SourceContract.event_id == event_id,
                    SourceContract.is_active.is_(True),
                )
                .order_by(SourceContract.platform.asc(), SourceContract.last_trade_at.desc())
            )
            rows = (await session.execute(stmt)).scalars().all()
        return [_contract_record(row) for row in rows]

    async def list_eligible_events(self) -> list[str]:
        has_active_contract = (
            select(SourceContract.id)
            .where(
                SourceContract.event_id == Event.id,
                SourceContract.is_active.is_(True),
            )
            .exists()
        )
        stmt = (
            select(Event.id)
            .where(
                Event.is_active.is_(True),
                Event.resolution_status == RESOLUTION_OPEN,
                or_(
                    and_(Event.parent_event_id.is_(None), Event.outcome_type == OUTCOME_BINARY),
                    and_(Event.parent_event_id.is_not(None), has_active_contract),
                ),
            )
            .order_by(Event.id.asc())
        )
        async with self._session("list_eligible_events") as session:
            return list((await session.execute(stmt)).scalars().all())

    async def batch_deactivate_events(self, event_ids: Sequence[str]) -> int:
        if not event_ids:
            return 0
        async with self._session("batch_deactivate_events") as session:
            stmt = (
                update(Event)
                .where(Event.id.in_(list(event_ids)), Event.is_active.is_(True))
                .values(is_active=False)
            )
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount or 0

    async def append_snapshot(self, row: SnapshotRow) -> None:
        async with self._session("append_snapshot") as session:
            session.add(ProbabilitySnapshot(**asdict(row)))
            await session.commit()

    async def append_divergence_snapshot(self, row: DivergenceRow) -> None:
        async with self._session("append_divergence_snapshot") as session:
            session.add(DivergenceSnapshot(**asdict(row)))
            await session.commit()

    async def latest_snapshot_before(
        self, event_id: str, source: str, before: datetime
    ) -> SnapshotRow | None:
        stmt = (
            select(ProbabilitySnapshot)
            .where(
                ProbabilitySnapshot.event_id == event_id,
                ProbabilitySnapshot.source == source,
                ProbabilitySnapshot.captured_at <= before,
            )
            .order_by(ProbabilitySnapshot.captured_at.desc())
            .limit(1)
        )
        async with self._session("latest_snapshot_before") as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _snapshot_row(row) if row is not None else None

    async def snapshots_since(
        self, event_id: str, source: str, since: datetime
    ) -> list[SnapshotRow]:
        stmt = (
            select(ProbabilitySnapshot)
            .where(
                ProbabilitySnapshot.event_id == event_id,
                ProbabilitySnapshot.source == source,
                ProbabilitySnapshot.captured_at >= since,
            )
            .order_by(ProbabilitySnapshot.captured_at.asc())
        )
        async with self._session("snapshots_since") as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_snapshot_row(row) for row in rows]

    async def write_event_fused_fields(self, event_id: str, fields: FusedFields) -> None:
        async with self._session("write_event_fused_fields") as session:
            stmt = update(Event).where(Event.id == event_id).values(**asdict(fields))
            await session.execute(stmt)
            await session.commit()

    # ── embeddings / matching ────────────────────────────────────────

    async def list_unembedded_events(self, limit: int) -> list[EventRecord]:
        stmt = (
            select(Event)
            .where(Event.embedding.is_(None), Event.is_active.is_(True))
            .order_by(Event.created_at.asc())
            .limit(limit)
        )
        async with self._session("list_unembedded_events") as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_event_record(row) for row in rows]

    async def list_unembedded_contracts(self, limit: int) -> list[ContractRecord]:
        stmt = (
            select(SourceContract)
            .where(
                SourceContract.embedding.is_(None),
                SourceContract.is_active.is_(True),
                SourceContract.contract_title.is_not(None),
            )
            .order_by(SourceContract.created_at.asc())
            .limit(limit)
        )
        async with self._session("list_unembedded_contracts") as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_contract_record(row) for row in rows]

    async def write_event_embedding(self, event_id: str, vector: Sequence[float]) -> None:
        async with self._session("write_event_embedding") as session:
            stmt = update(Event).where(Event.id == event_id).values(embedding=list(vector))
            await session.execute(stmt)
            await session.commit()

    async def write_contract_embedding(self, contract_id: str, vector: Sequence[float]) -> None:
        async with self._session("write_contract_embedding") as session:
            stmt = (
                update(SourceContract)
                .where(SourceContract.id == uuid.UUID(contract_id))
                .values(embedding=list(vector))
            )
            await session.execute(stmt)
            await session.commit()

    async def list_unmatched_contracts(self, limit: int) -> list[ContractRecord]:
        stmt = (
            select(SourceContract)
            .where(
                SourceContract.event_id.is_(None),
                SourceContract.embedding.is_not(None),
                SourceContract.is_active.is_(True),
                SourceContract.match_checked_at.is_(None),
            )
            .order_by(SourceContract.created_at.asc())
            .limit(limit)
        )
        async with self._session("list_unmatched_contracts") as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_contract_record(row) for row in rows]

    async def vector_similarity_search(
        self, vector: Sequence[float], floor: float, k: int
    ) -> list[SimilarEvent]:
        distance = Event.embedding.cosine_distance(list(vector))
        stmt = (
            select(Event.id, Event.title, (1 - distance).label("similarity"))
            .where(
                Event.embedding.is_not(None),
                Event.is_active.is_(True),
                Event.resolution_status == RESOLUTION_OPEN,
                distance <= 1 - floor,
            )
            .order_by(distance.asc())
            .limit(k)
        )
        async with self._session("vector_similarity_search") as session:
            rows = (await session.execute(stmt)).all()
        return [
            SimilarEvent(event_id=row.id, title=row.title, similarity=float(row.similarity))
            for row in rows
        ]

    async def link_contract_to_event(self, contract_id: str, event_id: str) -> None:
        async with self._session("link_contract_to_event") as session:
            stmt = (
                update(SourceContract)
                .where(SourceContract.id == uuid.UUID(contract_id))
                .values(event_id=event_id, match_checked_at=None)
            )
            await session.execute(stmt)
            await session.commit()

    async def upsert_mapping_record(self, row: MappingRow) -> None:
        stmt = pg_insert(EventSourceMapping).values(**asdict(row))
        stmt = stmt.on_conflict_do_update(
            constraint="uq_event_source_mappings_platform_contract",
            set_={
                "event_id": stmt.excluded.event_id,
                "confidence": stmt.excluded.confidence,
                "mapped_by": stmt.excluded.mapped_by,
                "mapped_at": stmt.excluded.mapped_at,
            },
        )
        async with self._session("upsert_mapping_record") as session:
            await session.execute(stmt)
            await session.commit()

    async def stamp_checked(self, contract_id: str, checked_at: datetime) -> None:
        async with self._session("stamp_checked") as session:
            stmt = (
                update(SourceContract)
                .where(SourceContract.id == uuid.UUID(contract_id))
                .values(match_checked_at=checked_at)
            )
            await session.execute(stmt)
            await session.commit()

    async def clear_checked_stamps(self) -> int:
        async with self._session("clear_checked_stamps") as session:
            stmt = (
                update(SourceContract)
                .where(
                    SourceContract.event_id.is_(None),
                    SourceContract.match_checked_at.is_not(None),
                )
                .values(match_checked_at=None)
            )
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount or 0

    # ── auto-mapping ─────────────────────────────────────────────────

    async def list_unmapped_contracts_for_platform(
        self,
        platform: str,
        limit: int,
        *,
        min_liquidity: float | None = None,
        min_traders: int | None = None,
    ) -> list[ContractRecord]:
        already_mapped = (
            select(EventSourceMapping.id)
            .where(
                EventSourceMapping.platform == SourceContract.platform,
                EventSourceMapping.platform_contract_id == SourceContract.platform_contract_id,
            )
            .exists()
        )
        stmt = select(SourceContract).where(
            SourceContract.platform == platform,
            SourceContract.is_active.is_(True),
            SourceContract.event_id.is_(None),
            SourceContract.contract_title.is_not(None),
            ~already_mapped,
        )
        if min_liquidity is not None:
            stmt = stmt.where(SourceContract.liquidity > min_liquidity)
        if min_traders is not None:
            stmt = stmt.where(SourceContract.num_traders > min_traders)
            stmt = stmt.order_by(SourceContract.num_traders.desc().nulls_last())
        else:
            stmt = stmt.order_by(SourceContract.liquidity.desc().nulls_last())
        stmt = stmt.limit(limit)
        async with self._session("list_unmapped_contracts_for_platform") as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_contract_record(row) for row in rows]

    async def list_open_events(self, limit: int) -> list[EventRecord]:
        stmt = (
            select(Event)
            .where(Event.is_active.is_(True), Event.resolution_status == RESOLUTION_OPEN)
            .order_by(Event.updated_at.desc())
            .limit(limit)
        )
        async with self._session("list_open_events") as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_event_record(row) for row in rows]

    async def existing_event_ids(self, event_ids: Sequence[str]) -> set[str]:
        if not event_ids:
            return set()
        async with self._session("existing_event_ids") as session:
            stmt = select(Event.id).where(Event.id.in_(list(event_ids)))
            return set((await session.execute(stmt)).scalars().all())

    async def insert_event(self, draft: EventDraft) -> None:
        async with self._session("insert_event") as session:
            session.add(
                Event(
                    id=draft.id,
                    title=draft.title,
                    slug=draft.slug,
                    description=draft.description,
                    category=draft.category,
                    subcategory=draft.subcategory,
                    tags=list(draft.tags),
                    resolution_date=draft.resolution_date,
                    resolution_status=RESOLUTION_OPEN,
                    is_active=True,
                    parent_event_id=draft.parent_event_id,
                    outcome_type=draft.outcome_type,
                    outcome_label=draft.outcome_label,
                    outcome_index=draft.outcome_index,
                )
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                if "slug" in str(exc.orig):
                    raise SlugConflictError("insert_event", f"slug {draft.slug!r} already taken") from exc
                raise StoreError("insert_event", str(exc.orig)) from exc

    async def link_contract_by_platform_id(
        self, platform: str, platform_contract_id: str, event_id: str
    ) -> int:
        async with self._session("link_contract_by_platform_id") as session:
            stmt = (
                update(SourceContract)
                .where(
                    SourceContract.platform == platform,
                    SourceContract.platform_contract_id == platform_contract_id,
                    SourceContract.is_active.is_(True),
                )
                .values(event_id=event_id, match_checked_at=None)
            )
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount or 0
