"""Language-model driven creation of canonical events for unmapped contracts."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import asdict, dataclass, replace
from datetime import UTC, datetime

from pydantic import ValidationError

from app.adapters.ai.base import CompletionService
from app.adapters.errors import SlugConflictError, StoreError, StoreUnavailableError, UpstreamServiceError
from app.adapters.store.base import ContractRecord, EventDraft, EventRecord, FusionStore, MappingRow
from app.core.budget import RunDeadline
from app.core.config import Settings, get_settings
from app.models.event_source_mapping import CONFIDENCE_AI_VERIFIED
from app.schemas.auto_map import ProposedEvent

logger = logging.getLogger(__name__)

TAXONOMY: dict[str, str] = {
    "trade_tariffs": "tariffs, trade deals, customs, import/export",
    "sanctions_export_controls": "sanctions, export bans, restrictions",
    "military_conflict": "wars, military action, defense",
    "diplomacy_treaties": "summits, treaties, bilateral relations",
    "elections_political": "elections, leadership changes, political transitions",
    "monetary_policy": "central bank rates, Fed, ECB, BOJ",
    "fiscal_policy": "taxes, spending, debt ceiling",
    "regulation": "tech regulation, financial regulation, ESG",
    "economic_indicators": "GDP, inflation, employment, CPI",
    "technology_industry": "AI, crypto, energy, healthcare, space, supply chain",
    "science_environment": "climate, pandemics, natural disasters, scientific milestones",
}
VALID_CATEGORIES = frozenset(TAXONOMY)


@dataclass(frozen=True, slots=True)
class PlatformFetchRule:
    platform: str
    limit: int
    min_liquidity: float | None = None
    min_traders: int | None = None


FETCH_RULES: tuple[PlatformFetchRule, ...] = (
    PlatformFetchRule("polymarket", limit=1200, min_liquidity=100),
    PlatformFetchRule("kalshi", limit=1200, min_liquidity=50),
    PlatformFetchRule("metaculus", limit=500, min_traders=20),
)

# Short-horizon crypto direction bets, sports and weather add nothing to the event graph.
NOISE_TITLE_RE = re.compile(
    r"price direction|up or down|5-min|1-hour|daily close|super bowl|\bnfl\b|\bnba\b|\bmlb\b"
    r"|\bnhl\b|\bufc\b|premier league|champions league|grand prix|world series|stanley cup"
    r"| vs\.? |counter-strike|dota 2|map winner|map handicap|\bo/u\b|set 1 winner|temperature",
    re.IGNORECASE,
)

PROPOSAL_PROMPT = """You are a prediction market analyst.

Group the source contracts below into CANONICAL EVENTS: unique real-world questions that may be \
listed on several platforms with different wording. Match by meaning, not by title similarity.

Categories (use these exact slugs):
{taxonomy}
{existing}
Multi-outcome questions (price brackets, categorical options) become ONE parent event with \
outcome_type "price_bracket" or "categorical" and no source_contracts, plus one child event per \
outcome carrying parent_event_id, outcome_label, outcome_index and its source_contracts.

Rules:
- Reuse an existing event_id exactly when a contract matches an existing event.
- Only create a new event when nothing existing matches.
- Skip trivial noise (short-term crypto direction bets, sports, entertainment gossip).
- event_id like "evt_us_china_tariff_q3_2026"; slug like "us-china-tariff-q3-2026".
- resolution_date as an ISO date when determinable from the title, otherwise null.
- 3-6 tags per event.

Source contracts:
{contracts}

Respond with ONLY a JSON array of objects with keys: event_id, title, slug, description, category, \
subcategory, tags, resolution_date, outcome_type, parent_event_id, outcome_label, outcome_index, \
source_contracts (list of {{"platform", "platform_contract_id"}}). No markdown, no explanation."""


@dataclass(slots=True)
class AutoMapStats:
    contracts_found: int = 0
    batches_processed: int = 0
    batches_failed: int = 0
    events_created: int = 0
    mappings_created: int = 0
    contracts_linked: int = 0
    proposals_dropped: int = 0
    errors: int = 0
    elapsed_ms: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def is_noise_title(title: str | None) -> bool:
    return not title or NOISE_TITLE_RE.search(title) is not None


def interleave(*sources: list[ContractRecord]) -> list[ContractRecord]:
    """Round-robin merge so every batch carries contracts from each platform."""
    merged: list[ContractRecord] = []
    longest = max((len(s) for s in sources), default=0)
    for i in range(longest):
        for source in sources:
            if i < len(source):
                merged.append(source[i])
    return merged


def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = re.sub(r"^```(?:json)?\s*", "", stripped)
        stripped = re.sub(r"\s*```$", "", stripped)
    return stripped


def recover_truncated_json_array(text: str) -> list | None:
    """Cut a truncated JSON array back to its last complete top-level object."""
    start = text.find("[")
    if start < 0:
        return None

    last_complete = -1
    depth = 0
    in_string = False
    escaped = False
    for i in range(start + 1, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
            continue
        if ch == "\\" and in_string:
            escaped = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0 and ch == "}":
                last_complete = i

    if last_complete < 0:
        return None
    try:
        recovered = json.loads(text[start : last_complete + 1] + "]")
    except json.JSONDecodeError:
        return None
    return recovered if isinstance(recovered, list) else None


def parse_proposals(text: str, *, truncated: bool = False) -> list[ProposedEvent]:
    body = strip_code_fences(text)
    try:
        raw = json.loads(body)
    except json.JSONDecodeError as exc:
        if not truncated:
            raise UpstreamServiceError("ANTHROPIC", f"proposal is not valid JSON: {body[:80]!r}") from exc
        raw = recover_truncated_json_array(body)
        if raw is None:
            raise UpstreamServiceError("ANTHROPIC", "could not recover truncated proposal") from exc
        logger.warning("Recovered proposals from truncated response", extra={"recovered": len(raw)})

    if not isinstance(raw, list):
        raise UpstreamServiceError("ANTHROPIC", f"expected a JSON array, got {type(raw).__name__}")

    proposals: list[ProposedEvent] = []
    for item in raw:
        try:
            proposals.append(ProposedEvent.model_validate(item))
        except ValidationError as exc:
            logger.warning("Dropping malformed proposal", extra={"errors": exc.error_count()})
    return proposals


def build_proposal_prompt(contracts: list[ContractRecord], existing: list[EventRecord]) -> str:
    taxonomy = "\n".join(f"- {slug}: {hint}" for slug, hint in TAXONOMY.items())
    existing_section = ""
    if existing:
        lines = []
        for i, event in enumerate(existing, start=1):
            resolves = f", resolves {event.resolution_date.isoformat()}" if event.resolution_date else ""
            lines.append(f'{i}. {event.id}: "{event.title}" ({event.category}{resolves})')
        existing_section = "\nEXISTING EVENTS (reuse these IDs when a contract matches):\n" + "\n".join(lines) + "\n"
    contract_lines = "\n".join(
        f'{i}. [{c.platform}] "{c.title}" (id: {c.platform_contract_id}, price: {c.price}, '
        f"liq: {c.liquidity}, traders: {c.num_traders})"
        for i, c in enumerate(contracts, start=1)
    )
    return PROPOSAL_PROMPT.format(taxonomy=taxonomy, existing=existing_section, contracts=contract_lines)


def _draft_from_proposal(proposal: ProposedEvent, *, parent_event_id: str | None) -> EventDraft:
    return EventDraft(
        id=proposal.event_id,
        title=proposal.title,
        slug=proposal.slug,
        category=proposal.category,
        description=proposal.description,
        subcategory=proposal.subcategory,
        tags=list(proposal.tags),
        resolution_date=proposal.resolution_date,
        parent_event_id=parent_event_id,
        outcome_type=proposal.outcome_type,
        outcome_label=proposal.outcome_label,
        outcome_index=proposal.outcome_index,
    )


class AutoMapper:
    EXISTING_EVENTS_LIMIT = 500

    def __init__(
        self,
        store: FusionStore,
        llm: CompletionService,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._llm = llm
        self._settings = settings or get_settings()

    async def fetch_unmapped_contracts(self) -> list[ContractRecord]:
        per_platform: list[list[ContractRecord]] = []
        for rule in FETCH_RULES:
            rows = await self._store.list_unmapped_contracts_for_platform(
                rule.platform,
                rule.limit,
                min_liquidity=rule.min_liquidity,
                min_traders=rule.min_traders,
            )
            per_platform.append([row for row in rows if not is_noise_title(row.title)])
        return interleave(*per_platform)

    async def run(self, budget_ms: int | None = None) -> AutoMapStats:
        settings = self._settings
        deadline = RunDeadline(settings.auto_map_budget_ms if budget_ms is None else budget_ms)
        stats = AutoMapStats()

        contracts = await self.fetch_unmapped_contracts()
        stats.contracts_found = len(contracts)
        if not contracts:
            stats.elapsed_ms = deadline.elapsed_ms()
            return stats

        batch_size = max(1, settings.auto_map_batch_size)
        for start in range(0, len(contracts), batch_size):
            if deadline.expired:
                logger.info("Auto-map budget reached", extra={"batches_processed": stats.batches_processed})
                break
            batch = contracts[start : start + batch_size]
            stats.batches_processed += 1
            try:
                await self._process_batch(batch, deadline, stats)
            except StoreUnavailableError:
                raise
            except Exception:
                logger.exception("Auto-map batch failed", extra={"batch": stats.batches_processed})
                stats.batches_failed += 1
                stats.errors += 1

            # Spacing keeps output-token throughput under the provider's per-minute cap.
            pause = settings.auto_map_batch_pause_seconds
            if start + batch_size < len(contracts) and pause > 0 and deadline.allows(pause):
                await asyncio.sleep(pause)

        stats.elapsed_ms = deadline.elapsed_ms()
        logger.info("Auto-map finished", extra=stats.as_dict())
        return stats

    async def _process_batch(
        self, batch: list[ContractRecord], deadline: RunDeadline, stats: AutoMapStats
    ) -> None:
        existing = await self._store.list_open_events(self.EXISTING_EVENTS_LIMIT)
        completion = await self._llm.complete(
            build_proposal_prompt(batch, existing),
            model=self._settings.auto_map_model,
            max_tokens=self._settings.auto_map_max_tokens,
            temperature=0.1,
            deadline=deadline,
        )
        proposals = parse_proposals(completion.text, truncated=completion.truncated)
        offered = {(c.platform, c.platform_contract_id) for c in batch}
        await self.insert_proposals(proposals, offered=offered, stats=stats)

    async def insert_proposals(
        self,
        proposals: list[ProposedEvent],
        *,
        offered: set[tuple[str, str]] | None = None,
        stats: AutoMapStats | None = None,
    ) -> AutoMapStats:
        """Insert new events parents-first, then map and link their contracts.

        ``offered`` restricts links to contracts actually sent in the batch.
        """
        stats = stats or AutoMapStats()
        valid = []
        for proposal in proposals:
            if proposal.category not in VALID_CATEGORIES:
                logger.info(
                    "Dropping proposal with unknown category",
                    extra={"event_id": proposal.event_id, "category": proposal.category},
                )
                stats.proposals_dropped += 1
                continue
            valid.append(proposal)
        valid.sort(key=lambda p: p.parent_event_id is not None)

        known = await self._store.existing_event_ids([p.event_id for p in valid])
        now = datetime.now(UTC)
        for proposal in valid:
            if proposal.event_id not in known:
                if not await self._insert(proposal, known, stats):
                    continue
                known.add(proposal.event_id)
                stats.events_created += 1

            for ref in proposal.source_contracts:
                key = (ref.platform, ref.platform_contract_id)
                if offered is not None and key not in offered:
                    continue
                try:
                    await self._store.upsert_mapping_record(
                        MappingRow(
                            event_id=proposal.event_id,
                            platform=ref.platform,
                            platform_contract_id=ref.platform_contract_id,
                            confidence=CONFIDENCE_AI_VERIFIED,
                            mapped_by=self._settings.auto_map_model,
                            mapped_at=now,
                        )
                    )
                    stats.mappings_created += 1
                    stats.contracts_linked += await self._store.link_contract_by_platform_id(
                        ref.platform, ref.platform_contract_id, proposal.event_id
                    )
                except StoreUnavailableError:
                    raise
                except StoreError:
                    logger.exception(
                        "Mapping failed",
                        extra={"platform": ref.platform, "platform_contract_id": ref.platform_contract_id},
                    )
                    stats.errors += 1
        return stats

    async def _insert(self, proposal: ProposedEvent, known: set[str], stats: AutoMapStats) -> bool:
        parent_id = proposal.parent_event_id
        if parent_id is not None and parent_id not in known:
            logger.warning(
                "Proposal references unknown parent; inserting as top-level",
                extra={"event_id": proposal.event_id, "parent_event_id": parent_id},
            )
            parent_id = None
        draft = _draft_from_proposal(proposal, parent_event_id=parent_id)
        try:
            try:
                await self._store.insert_event(draft)
            except SlugConflictError:
                fallback = proposal.event_id.replace("_", "-")
                logger.info(
                    "Slug collision; retrying with id-derived slug",
                    extra={"event_id": proposal.event_id, "slug": fallback},
                )
                await self._store.insert_event(replace(draft, slug=fallback))
        except StoreUnavailableError:
            raise
        except StoreError:
            logger.exception("Event insert failed", extra={"event_id": proposal.event_id})
            stats.errors += 1
            return False
        return True
