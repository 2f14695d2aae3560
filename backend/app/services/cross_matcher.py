"""Cross-platform contract matcher: embeddings for recall, an LLM for precision.

Phase 1 backfills embeddings for events and contracts that lack one.
Phase 2 takes each unmapped, embedded contract, finds the nearest events
above a similarity floor and links it only when the language model
confirms both resolve on the same real-world outcome.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Awaitable, Callable, Sequence

from app.adapters.ai.base import EmbeddingService, VerificationService
from app.adapters.errors import StoreError, StoreUnavailableError
from app.adapters.store.base import ContractRecord, EventRecord, FusionStore, MappingRow
from app.core.budget import RunDeadline
from app.core.config import Settings, get_settings
from app.models.event_source_mapping import CONFIDENCE_EMBEDDING_LLM_VERIFIED

logger = logging.getLogger(__name__)

DESCRIPTION_EMBED_CHARS = 200


@dataclass(slots=True)
class CrossMatchStats:
    events_embedded: int = 0
    contracts_embedded: int = 0
    ai_verified: int = 0
    ai_rejected: int = 0
    skipped: int = 0
    errors: int = 0
    stamps_cleared: int = 0
    elapsed_ms: int = 0

    @property
    def linked(self) -> int:
        return self.ai_verified

    def as_dict(self) -> dict:
        return asdict(self)


def build_event_embedding_text(event: EventRecord) -> str:
    parts = [event.title]
    if event.description:
        parts.append(event.description[:DESCRIPTION_EMBED_CHARS])
    if event.category:
        parts.append(f"[{event.category}]")
    if event.tags:
        parts.append(", ".join(event.tags))
    return " | ".join(parts)


def build_contract_embedding_text(contract: ContractRecord) -> str:
    return f"{contract.title or ''} [{contract.platform}]".strip()


class CrossMatcher:
    def __init__(
        self,
        store: FusionStore,
        embedder: EmbeddingService,
        verifier: VerificationService,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._verifier = verifier
        self._settings = settings or get_settings()

    @property
    def mapped_by(self) -> str:
        return f"{self._embedder.model}+{self._verifier.model}"

    async def run(self, budget_ms: int | None = None) -> CrossMatchStats:
        """One budgeted invocation: clear stamps, embed, then match."""
        settings = self._settings
        deadline = RunDeadline(settings.cross_match_budget_ms if budget_ms is None else budget_ms)
        stats = CrossMatchStats()

        # A new run reconsiders everything still unmapped against events created since.
        stats.stamps_cleared = await self._store.clear_checked_stamps()

        await self.embed_backlog(deadline.slice(settings.cross_match_embed_budget_share), stats)
        await self.match_backlog(deadline, stats)

        stats.elapsed_ms = deadline.elapsed_ms()
        logger.info("Cross-match finished", extra=stats.as_dict())
        return stats

    # ── Phase 1 ─────────────────────────────────────────────────────

    async def embed_backlog(
        self, deadline: RunDeadline, stats: CrossMatchStats | None = None
    ) -> CrossMatchStats:
        stats = stats or CrossMatchStats()
        settings = self._settings

        events = await self._list_backlog(
            self._store.list_unembedded_events, settings.cross_match_event_batch_limit, "event", stats
        )
        stats.events_embedded += await self._embed_rows(
            rows=events,
            texts=[build_event_embedding_text(e) for e in events],
            write=self._store.write_event_embedding,
            kind="event",
            deadline=deadline,
            stats=stats,
        )

        if deadline.expired:
            return stats

        contracts = [
            c
            for c in await self._list_backlog(
                self._store.list_unembedded_contracts, settings.cross_match_contract_batch_limit, "contract", stats
            )
            if c.title
        ]
        stats.contracts_embedded += await self._embed_rows(
            rows=contracts,
            texts=[build_contract_embedding_text(c) for c in contracts],
            write=self._store.write_contract_embedding,
            kind="contract",
            deadline=deadline,
            stats=stats,
        )
        return stats

    async def _list_backlog(self, fetch, limit: int, kind: str, stats: CrossMatchStats) -> list:
        try:
            return await fetch(limit)
        except StoreUnavailableError:
            raise
        except StoreError:
            logger.exception("Listing embedding backlog failed", extra={"kind": kind})
            stats.errors += 1
            return []

    async def _embed_rows(
        self,
        *,
        rows: Sequence[EventRecord | ContractRecord],
        texts: list[str],
        write: Callable[[str, Sequence[float]], Awaitable[None]],
        kind: str,
        deadline: RunDeadline,
        stats: CrossMatchStats,
    ) -> int:
        batch_size = max(1, self._settings.embedding_batch_size)
        written = 0
        for start in range(0, len(rows), batch_size):
            if deadline.expired:
                logger.info(
                    "Embedding budget exhausted",
                    extra={"kind": kind, "remaining": len(rows) - start},
                )
                break
            batch = rows[start : start + batch_size]
            try:
                vectors = await self._embedder.embed(
                    texts[start : start + batch_size], "document", deadline=deadline
                )
            except Exception:
                logger.exception("Embedding batch failed", extra={"kind": kind, "batch_size": len(batch)})
                stats.errors += 1
                continue

            for row, vector in zip(batch, vectors):
                try:
                    await write(row.id, vector)
                except StoreUnavailableError:
                    raise
                except Exception:
                    logger.exception("Embedding write failed", extra={"kind": kind, "id": row.id})
                    stats.errors += 1
                    continue
                written += 1
        logger.info("Embedded backlog rows", extra={"kind": kind, "embedded": written, "selected": len(rows)})
        return written

    # ── Phase 2 ─────────────────────────────────────────────────────

    async def match_backlog(
        self, deadline: RunDeadline, stats: CrossMatchStats | None = None
    ) -> CrossMatchStats:
        stats = stats or CrossMatchStats()
        contracts = await self._store.list_unmatched_contracts(self._settings.cross_match_match_batch_limit)
        if not contracts:
            logger.info("No unmapped contracts with embeddings to match")
            return stats

        for contract in contracts:
            if deadline.expired:
                logger.info("Match budget exhausted", extra={"remaining": len(contracts)})
                break
            await self._match_one(contract, deadline, stats)
        return stats

    async def _match_one(self, contract: ContractRecord, deadline: RunDeadline, stats: CrossMatchStats) -> None:
        settings = self._settings
        if contract.embedding is None:
            stats.skipped += 1
            return

        try:
            candidates = await self._store.vector_similarity_search(
                contract.embedding, settings.cross_match_similarity_floor, settings.cross_match_top_k
            )
        except StoreUnavailableError:
            raise
        except Exception:
            logger.exception("Similarity search failed", extra={"contract_id": contract.id})
            stats.errors += 1
            await self._stamp(contract)
            return

        candidates = [c for c in candidates if c.similarity >= settings.cross_match_similarity_floor]
        if not candidates:
            stats.skipped += 1
            await self._stamp(contract)
            return

        best = max(candidates, key=lambda c: c.similarity)
        try:
            same = await self._verifier.verify_same_question(
                contract.title or "", best.title, deadline=deadline
            )
        except Exception:
            logger.warning(
                "Verification failed",
                extra={"contract_id": contract.id, "event_id": best.event_id},
                exc_info=True,
            )
            stats.errors += 1
            await self._stamp(contract)
            return

        if not same:
            logger.info(
                "Candidate rejected by verification",
                extra={
                    "contract_id": contract.id,
                    "event_id": best.event_id,
                    "similarity": round(best.similarity, 3),
                },
            )
            stats.ai_rejected += 1
            await self._stamp(contract)
            return

        now = datetime.now(UTC)
        # Mapping first: a contract is only ever linked once its audit row exists.
        try:
            await self._store.upsert_mapping_record(
                MappingRow(
                    event_id=best.event_id,
                    platform=contract.platform,
                    platform_contract_id=contract.platform_contract_id,
                    confidence=CONFIDENCE_EMBEDDING_LLM_VERIFIED,
                    mapped_by=self.mapped_by,
                    mapped_at=now,
                )
            )
            await self._store.link_contract_to_event(contract.id, best.event_id)
        except StoreUnavailableError:
            raise
        except Exception:
            logger.exception(
                "Linking verified match failed",
                extra={"contract_id": contract.id, "event_id": best.event_id},
            )
            stats.errors += 1
            await self._stamp(contract)
            return

        logger.info(
            "Linked contract to event",
            extra={
                "contract_id": contract.id,
                "event_id": best.event_id,
                "similarity": round(best.similarity, 3),
            },
        )
        stats.ai_verified += 1

    async def _stamp(self, contract: ContractRecord) -> None:
        try:
            await self._store.stamp_checked(contract.id, datetime.now(UTC))
        except StoreUnavailableError:
            raise
        except Exception:
            logger.exception("Failed to stamp contract as checked", extra={"contract_id": contract.id})
