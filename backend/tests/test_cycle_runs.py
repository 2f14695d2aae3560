from datetime import UTC, datetime, timedelta

from app.services.cycle_runs import build_cycle_run


def test_build_cycle_run_normalizes_context() -> None:
    started_at = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    row = build_cycle_run(
        {
            "run_id": "aggregate-abc123",
            "kind": "aggregate",
            "trigger": "poller",
            "started_at": started_at,
            "completed_at": started_at + timedelta(seconds=4),
            "budget_ms": 240_000,
            "stats": {"updated": 12, "errors": 0, "budget_exhausted": False, "nested": {"x": 1}, " ": 3},
        }
    )

    assert row["run_id"] == "aggregate-abc123"
    assert row["trigger"] == "poller"
    assert row["duration_ms"] == 4000
    assert row["stats"] == {"updated": 12, "errors": 0, "budget_exhausted": False}
    assert row["error_count"] == 0
    assert row["degraded"] is False


def test_errors_in_stats_mark_run_degraded() -> None:
    row = build_cycle_run({"kind": "cross_match", "stats": {"errors": 2}})

    assert row["error_count"] == 2
    assert row["degraded"] is True
    assert row["run_id"]
    assert row["trigger"] == "cli"


def test_failed_run_keeps_error_text() -> None:
    row = build_cycle_run(
        {"kind": "auto_map", "duration_ms": -5, "error_count": True, "error": "StoreUnavailableError: gone"}
    )

    assert row["error"] == "StoreUnavailableError: gone"
    assert row["degraded"] is True
    assert row["error_count"] == 0
    assert row["duration_ms"] == 0
    assert row["stats"] is None
