"""Operational commands for the Idle Counter service."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys

from idle_counter.core.logging import configure_logging
from idle_counter.core.settings import settings
from idle_counter.db.session import create_tables
from idle_counter.schemas.counter import CounterRead
from idle_counter.services.coordinator import ResetResult
from idle_counter.services.errors import CounterError
from idle_counter.services.runtime import build_counter_runtime


def _print_counter(payload: dict[str, object]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_init_db(_args: argparse.Namespace) -> None:
    create_tables()
    print(f"[manage] ensured tables on {settings.database_url_sync}")


def cmd_show(_args: argparse.Namespace) -> None:
    runtime = build_counter_runtime()
    counter = runtime.store.read()
    _print_counter(CounterRead.from_snapshot(counter).model_dump(mode="json"))


async def _check_idle_once() -> ResetResult | None:
    runtime = build_counter_runtime()
    try:
        return await runtime.check_idle()
    finally:
        # Flushes the relay connection so a reset reaches other processes.
        await runtime.notifier.stop()


def cmd_check_idle(_args: argparse.Namespace) -> None:
    """Run one idleness poll; suitable for a cron job next to the API."""
    result = asyncio.run(_check_idle_once())
    if result is None:
        print("[manage] counter not idle or already at rest")
        return
    _print_counter(
        {
            "outcome": result.outcome.value,
            "counter": CounterRead.from_snapshot(result.counter).model_dump(mode="json"),
        }
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Manage the Idle Counter service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the counter table if missing").set_defaults(
        handler=cmd_init_db
    )
    subparsers.add_parser("show", help="Print the current counter").set_defaults(
        handler=cmd_show
    )
    subparsers.add_parser(
        "check-idle", help="Reset the counter if its inactivity window has elapsed"
    ).set_defaults(handler=cmd_check_idle)

    args = parser.parse_args()
    configure_logging(settings.log_level, json_output=settings.log_json)
    try:
        args.handler(args)
    except CounterError as exc:
        print(f"[manage] ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
