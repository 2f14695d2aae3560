from unittest.mock import AsyncMock

from app.services.runs import RunOutcome
from app.tasks import poller
from app.tasks.poller import PollerState, redis_cycle_lock, run_fusion_cycle, settings


def _outcome(kind: str) -> RunOutcome:
    return RunOutcome(run_id=f"{kind}-1", kind=kind, trigger="poller", duration_ms=5, budget_ms=None, stats={})


def _patch_runs(monkeypatch) -> dict[str, AsyncMock]:
    mocks = {kind: AsyncMock(return_value=_outcome(kind)) for kind in ("aggregate", "cross_match", "auto_map")}
    monkeypatch.setattr(poller, "default_store", lambda: object())
    monkeypatch.setattr(poller, "run_aggregate", mocks["aggregate"])
    monkeypatch.setattr(poller, "run_cross_match", mocks["cross_match"])
    monkeypatch.setattr(poller, "run_auto_map", mocks["auto_map"])
    return mocks


async def test_cycle_runs_cross_match_and_auto_map_on_their_cadence(monkeypatch) -> None:
    mocks = _patch_runs(monkeypatch)
    monkeypatch.setattr(settings, "cross_match_every_n_cycles", 2)
    monkeypatch.setattr(settings, "auto_map_every_n_cycles", 3)
    monkeypatch.setattr(settings, "auto_map_enabled", True)

    kinds_per_cycle = []
    for cycle_number in range(1, 7):
        outcomes = await run_fusion_cycle(PollerState(cycle_number=cycle_number))
        kinds_per_cycle.append([o.kind for o in outcomes])

    assert kinds_per_cycle == [
        ["aggregate"],
        ["aggregate", "cross_match"],
        ["aggregate", "auto_map"],
        ["aggregate", "cross_match"],
        ["aggregate"],
        ["aggregate", "cross_match", "auto_map"],
    ]
    assert all(call.kwargs["trigger"] == "poller" for call in mocks["aggregate"].await_args_list)


async def test_auto_map_disabled_never_runs(monkeypatch) -> None:
    mocks = _patch_runs(monkeypatch)
    monkeypatch.setattr(settings, "auto_map_enabled", False)
    monkeypatch.setattr(settings, "auto_map_every_n_cycles", 1)

    await run_fusion_cycle(PollerState(cycle_number=1))

    mocks["auto_map"].assert_not_awaited()


async def test_lock_without_redis_always_acquires() -> None:
    async with redis_cycle_lock(None, "lock") as acquired:
        assert acquired is True


async def test_lock_held_elsewhere_is_not_acquired() -> None:
    redis = AsyncMock()
    redis.set.return_value = False

    async with redis_cycle_lock(redis, "lock", ttl_seconds=30) as acquired:
        assert acquired is False

    redis.set.assert_awaited_once()
    assert redis.set.await_args.kwargs == {"ex": 30, "nx": True}
    redis.delete.assert_not_awaited()


async def test_lock_is_released_only_by_its_owner() -> None:
    redis = AsyncMock()
    redis.set.return_value = True
    stored: dict[str, str] = {}

    async def _set(key, value, ex=None, nx=False):  # type: ignore[no-untyped-def]
        stored[key] = value
        return True

    redis.set.side_effect = _set
    redis.get.side_effect = lambda key: stored.get(key)

    async with redis_cycle_lock(redis, "lock") as acquired:
        assert acquired is True

    redis.delete.assert_awaited_once_with("lock")
