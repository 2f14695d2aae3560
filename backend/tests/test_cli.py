import json
from unittest.mock import AsyncMock

from app import cli
from app.services.runs import RunOutcome


def _outcome(error: str | None = None, errors: int = 0) -> RunOutcome:
    return RunOutcome(
        run_id="aggregate-0123456789ab",
        kind="aggregate",
        trigger="cli",
        duration_ms=12,
        budget_ms=5000,
        stats={"updated": 3, "errors": errors},
        error=error,
        degraded=bool(error) or errors > 0,
    )


def test_parser_accepts_every_command() -> None:
    parser = cli._build_arg_parser()

    assert parser.parse_args(["aggregate", "--budget-ms", "5000"]).budget_ms == 5000
    assert parser.parse_args(["aggregate-event", "evt_fed_june"]).event_id == "evt_fed_june"
    cross = parser.parse_args(["cross-match", "--no-reaggregate"])
    assert cross.no_reaggregate is True
    assert cross.budget_ms is None
    assert parser.parse_args(["auto-map"]).command == "auto-map"


def test_main_without_command_prints_help(capsys) -> None:
    assert cli.main([]) == 1
    assert "aggregate" in capsys.readouterr().out


def test_aggregate_prints_outcome_and_exits_zero_on_partial_failure(monkeypatch, capsys) -> None:
    run = AsyncMock(return_value=_outcome(errors=2))
    monkeypatch.setattr(cli, "run_aggregate", run)
    monkeypatch.setattr(cli, "setup_logging", lambda: None)

    code = cli.main(["aggregate", "--budget-ms", "5000"])

    assert code == 0
    run.assert_awaited_once_with(budget_ms=5000)
    printed = json.loads(capsys.readouterr().out)
    assert printed["stats"]["errors"] == 2
    assert printed["degraded"] is True


def test_failed_run_exits_non_zero(monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "run_aggregate", AsyncMock(return_value=_outcome(error="StoreUnavailableError: gone")))
    monkeypatch.setattr(cli, "setup_logging", lambda: None)

    assert cli.main(["aggregate"]) == 1


def test_cross_match_passes_reaggregate_flag(monkeypatch, capsys) -> None:
    run = AsyncMock(return_value=_outcome())
    monkeypatch.setattr(cli, "run_cross_match", run)
    monkeypatch.setattr(cli, "setup_logging", lambda: None)

    cli.main(["cross-match", "--budget-ms", "30000", "--no-reaggregate"])

    run.assert_awaited_once_with(budget_ms=30000, reaggregate=False)
