"""
Command-line entry point for scheduled engine jobs.

Runs the aggregation sweeps, the retention purge and the subscription
rebuild outside the API process, e.g. from cron::

    telemetry-engine-jobs catch-up
    telemetry-engine-jobs last-days --days 3
    telemetry-engine-jobs regenerate
    telemetry-engine-jobs purge
    telemetry-engine-jobs rebuild-subscriptions

Exit code 0 on success, 1 when any system failed in a sweep.

CHANGELOG:
- 2026-02-27: Initial creation

TODO:
- None
"""

import argparse
import asyncio
import datetime
import json
import logging
import sys
import time

from telemetry_engine.config import get_settings
from telemetry_engine.logging_setup import configure_logging
from telemetry_engine.services import daily
from telemetry_engine.services.container import Services, build_services
from telemetry_engine.services.retention import purge_expired

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the jobs CLI."""
    parser = argparse.ArgumentParser(
        prog="telemetry-engine-jobs", description="Telemetry engine scheduled jobs."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    catch_up = sub.add_parser("catch-up", help="Aggregate missing or stale days.")
    catch_up.add_argument(
        "--include-today", action="store_true", help="Also aggregate today."
    )

    last_days = sub.add_parser("last-days", help="Recompute the most recent days.")
    last_days.add_argument("--days", type=int, default=2)
    last_days.add_argument(
        "--today", type=datetime.date.fromisoformat, default=None, help="YYYY-MM-DD"
    )

    day = sub.add_parser("day", help="Aggregate one day for every system.")
    day.add_argument("date", type=datetime.date.fromisoformat, help="YYYY-MM-DD")

    sub.add_parser("regenerate", help="Rebuild all daily aggregates (destructive).")
    sub.add_parser("purge", help="Delete data outside the retention windows.")
    sub.add_parser("rebuild-subscriptions", help="Rebuild the subscription registry.")
    return parser


async def run(args: argparse.Namespace, services: Services) -> int:
    """Run the selected command and return the exit code."""
    now_ms = int(time.time() * 1000)
    results: list[daily.SystemAggregationResult] | None = None

    if args.command == "catch-up":
        results = await daily.aggregate_all_missing_days_for_all_systems(
            services.session_factory, include_today=args.include_today, now_ms=now_ms
        )
    elif args.command == "last-days":
        results = await daily.aggregate_last_n_days(
            services.session_factory, args.days, today=args.today, now_ms=now_ms
        )
    elif args.command == "day":
        results = await daily.aggregate_day_for_all_systems(
            services.session_factory, args.date
        )
    elif args.command == "regenerate":
        results = await daily.regenerate_all(services.session_factory)
    elif args.command == "purge":
        purged = await purge_expired(services.session_factory, services.settings, now_ms)
        print(json.dumps(purged.as_dict()))
        return 0
    elif args.command == "rebuild-subscriptions":
        count = await services.rebuild_subscriptions()
        print(json.dumps({"source_systems": count}))
        return 0

    print(json.dumps([r.as_dict() for r in results or []]))
    return 0 if all(r.ok for r in results or []) else 1


async def _main(argv: list[str] | None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)
    services = build_services(settings)
    try:
        return await run(args, services)
    finally:
        await services.close()


def main(argv: list[str] | None = None) -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(_main(argv)))


if __name__ == "__main__":
    main()
