from __future__ import annotations

import argparse
import asyncio
import json

from app.core.database import dispose_engine
from app.core.logging import setup_logging
from app.services.runs import RunOutcome, run_aggregate, run_aggregate_event, run_auto_map, run_cross_match


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Market fusion operational CLI")
    subparsers = parser.add_subparsers(dest="command")

    aggregate_parser = subparsers.add_parser(
        "aggregate",
        help="Fuse every eligible event and deactivate events left without sources",
    )
    aggregate_parser.add_argument("--budget-ms", type=int, default=None, help="Wall-clock budget in milliseconds")

    event_parser = subparsers.add_parser("aggregate-event", help="Fuse a single event")
    event_parser.add_argument("event_id", help="Canonical event id")

    cross_parser = subparsers.add_parser(
        "cross-match",
        help="Embed backlog and link unmapped contracts to existing events",
    )
    cross_parser.add_argument("--budget-ms", type=int, default=None, help="Wall-clock budget in milliseconds")
    cross_parser.add_argument(
        "--no-reaggregate",
        action="store_true",
        help="Skip the aggregation pass that normally follows new links",
    )

    auto_parser = subparsers.add_parser("auto-map", help="Create canonical events for unmapped contracts")
    auto_parser.add_argument("--budget-ms", type=int, default=None, help="Wall-clock budget in milliseconds")

    return parser


def _print_outcome(outcome: RunOutcome) -> int:
    print(json.dumps(outcome.as_dict(), indent=2, sort_keys=True, default=str))
    # Partial failures are reported through the stats error count, not the exit code.
    return 1 if outcome.error else 0


async def _run(args: argparse.Namespace) -> int:
    try:
        return await _dispatch(args)
    finally:
        await dispose_engine()


async def _dispatch(args: argparse.Namespace) -> int:
    if args.command == "aggregate":
        return _print_outcome(await run_aggregate(budget_ms=args.budget_ms))
    if args.command == "aggregate-event":
        return _print_outcome(await run_aggregate_event(args.event_id))
    if args.command == "cross-match":
        return _print_outcome(
            await run_cross_match(budget_ms=args.budget_ms, reaggregate=not args.no_reaggregate)
        )
    if args.command == "auto-map":
        return _print_outcome(await run_auto_map(budget_ms=args.budget_ms))
    raise ValueError(f"unknown command {args.command!r}")


def main(argv: list[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1
    setup_logging()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
