from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api.deps import OPS_TOKEN_HEADER
from app.api.routes import ops
from app.core.config import get_settings
from app.main import app
from app.services.runs import RunOutcome


@pytest_asyncio.fixture
async def async_client(settings) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_settings] = lambda: settings
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_settings, None)


def _ops_headers(token: str = "test-ops-token") -> dict[str, str]:
    return {OPS_TOKEN_HEADER: token}


def _outcome(kind: str) -> RunOutcome:
    return RunOutcome(
        run_id=f"{kind}-0123456789ab",
        kind=kind,
        trigger="api",
        duration_ms=42,
        budget_ms=60_000,
        stats={"updated": 7, "errors": 0},
    )


async def test_health_live(async_client: AsyncClient) -> None:
    resp = await async_client.get("/api/v1/health/live")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.parametrize("path", ["/api/v1/ops/aggregate", "/api/v1/ops/cross-match", "/api/v1/ops/auto-map"])
async def test_ops_triggers_require_token(async_client: AsyncClient, path: str) -> None:
    missing = await async_client.post(path)
    wrong = await async_client.post(path, headers=_ops_headers("nope"))

    assert missing.status_code == 403
    assert wrong.status_code == 403


async def test_runs_listing_requires_token(async_client: AsyncClient) -> None:
    resp = await async_client.get("/api/v1/ops/runs")
    assert resp.status_code == 403


async def test_aggregate_trigger_runs_with_requested_budget(monkeypatch, async_client: AsyncClient) -> None:
    run = AsyncMock(return_value=_outcome("aggregate"))
    monkeypatch.setattr(ops, "run_aggregate", run)

    resp = await async_client.post("/api/v1/ops/aggregate", json={"budget_ms": 60_000}, headers=_ops_headers())

    assert resp.status_code == 200
    body = resp.json()
    assert body["run_id"] == "aggregate-0123456789ab"
    assert body["stats"]["updated"] == 7
    assert body["degraded"] is False
    run.assert_awaited_once_with(budget_ms=60_000, trigger="api")


async def test_trigger_without_body_uses_default_budget(monkeypatch, async_client: AsyncClient) -> None:
    run = AsyncMock(return_value=_outcome("cross_match"))
    monkeypatch.setattr(ops, "run_cross_match", run)

    resp = await async_client.post("/api/v1/ops/cross-match", headers=_ops_headers())

    assert resp.status_code == 200
    run.assert_awaited_once_with(budget_ms=None, trigger="api")


async def test_trigger_rejects_out_of_range_budget(monkeypatch, async_client: AsyncClient) -> None:
    run = AsyncMock(return_value=_outcome("auto_map"))
    monkeypatch.setattr(ops, "run_auto_map", run)

    resp = await async_client.post("/api/v1/ops/auto-map", json={"budget_ms": 10}, headers=_ops_headers())

    assert resp.status_code == 422
    run.assert_not_awaited()


async def test_health_config_reports_fusion_settings(async_client: AsyncClient) -> None:
    resp = await async_client.get("/api/v1/health/config")

    assert resp.status_code == 200
    body = resp.json()
    assert body["raw_count_sources"] == ["kalshi"]
    assert body["similarity_floor"] == 0.70
