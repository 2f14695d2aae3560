from unittest.mock import AsyncMock

import pytest

from app.adapters.errors import StoreUnavailableError
from app.services import runs
from app.services.runs import run_aggregate, run_aggregate_event, run_cross_match


@pytest.fixture
def recorded(monkeypatch) -> AsyncMock:
    record = AsyncMock()
    monkeypatch.setattr(runs, "record_cycle_run", record)
    return record


def _seed_priced_event(store, now) -> None:
    store.add_event("evt_cpi", "US CPI above 3% in May?")
    store.add_contract("c1", "polymarket", event_id="evt_cpi", price=0.42, volume_total=5000, last_trade_at=now)


async def test_aggregate_run_records_cycle_row(store, settings, recorded, now) -> None:
    _seed_priced_event(store, now)

    outcome = await run_aggregate(budget_ms=30_000, store=store, settings=settings)

    assert outcome.kind == "aggregate"
    assert outcome.run_id.startswith("aggregate-")
    assert outcome.error is None
    assert outcome.degraded is False
    assert outcome.stats["updated"] == 1
    row = recorded.await_args.args[0]
    assert row["run_id"] == outcome.run_id
    assert row["budget_ms"] == 30_000
    assert row["stats"]["updated"] == 1


async def test_failed_run_is_reported_not_raised(store, settings, recorded) -> None:
    store.failures["list_eligible_events"] = StoreUnavailableError("list_eligible_events", "connection refused")

    outcome = await run_aggregate(store=store, settings=settings)

    assert outcome.error.startswith("StoreUnavailableError")
    assert outcome.degraded is True
    assert recorded.await_args.args[0]["error"] == outcome.error


async def test_persistence_failure_does_not_fail_the_run(store, settings, monkeypatch) -> None:
    monkeypatch.setattr(runs, "record_cycle_run", AsyncMock(side_effect=RuntimeError("db down")))

    outcome = await run_aggregate(store=store, settings=settings)

    assert outcome.error is None


async def test_single_event_run_reports_status(store, settings, recorded, now) -> None:
    _seed_priced_event(store, now)

    outcome = await run_aggregate_event("evt_cpi", store=store, settings=settings)

    assert outcome.kind == "aggregate_event"
    assert outcome.stats["status"] == "updated"
    assert outcome.stats["probability"] == pytest.approx(0.42)


async def test_cross_match_reaggregates_after_new_links(
    store, settings, recorded, fake_verifier, now
) -> None:
    store.add_event("evt_tariffs_eu", "US tariffs on EU goods by July?", embedding=[1.0, 0.0])
    store.add_contract(
        "kx_tariff",
        "kalshi",
        title="US tariffs on European Union imports by July",
        embedding=[1.0, 0.0],
        price=0.3,
        volume_total=1000,
        last_trade_at=now,
    )
    embedder = AsyncMock()
    embedder.model = "voyage-3-lite"

    outcome = await run_cross_match(
        budget_ms=60_000, store=store, embedder=embedder, verifier=fake_verifier, settings=settings
    )

    assert outcome.stats["ai_verified"] == 1
    assert outcome.stats["reaggregated"] == 1
    assert "evt_tariffs_eu" in store.fused


async def test_cross_match_without_links_skips_reaggregation(
    store, settings, recorded, fake_embedder, fake_verifier
) -> None:
    outcome = await run_cross_match(
        budget_ms=60_000, store=store, embedder=fake_embedder, verifier=fake_verifier, settings=settings
    )

    assert "reaggregated" not in outcome.stats
    assert store.fused == {}
