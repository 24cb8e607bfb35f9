"""
Operator tooling for the alert dispatch engine.

Usage:
    python -m scripts.alert_admin stats [--user USER_ID]
    python -m scripts.alert_admin failed [--limit 10]
    python -m scripts.alert_admin drain
    python -m scripts.alert_admin clean
    python -m scripts.alert_admin health
    python -m scripts.alert_admin trigger ALERT_ID
    python -m scripts.alert_admin history ALERT_ID [--limit 50]
    python -m scripts.alert_admin seed
    python -m scripts.alert_admin run [--no-worker] [--no-trigger]

`seed` is IDEMPOTENT: it creates the sample alerts only if the demo
user has none.
"""
import argparse
import asyncio
import json
import os
import signal
import sys
from uuid import UUID

# Add project root to path so imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from app.core.config import settings
from app.core.database import async_session_maker, close_db, init_db
from app.core.exceptions import JobAlertError
from app.core.logging import get_logger, setup_logging
from app.models.job_alert import JobAlert
from app.workers.engine import AlertEngine

logger = get_logger(__name__)


# ─── Sample Alerts ─────────────────────────────────────────────

DEMO_USER = {
    "user_id": "demo-user",
    "user_email": "dev@jobalerts.dev",
    "user_name": "Dev User",
}

SAMPLE_ALERTS = [
    {
        "title": "Python Developer",
        "keywords": ["fastapi", "postgres"],
        "location": "Berlin",
        "employment_types": ["full-time"],
    },
    {
        "title": "Data Engineer",
        "keywords": ["spark"],
        "remote_only": True,
        "employment_types": ["full-time", "contract"],
    },
]


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# ─── Commands ──────────────────────────────────────────────────

async def cmd_stats(engine: AlertEngine, args) -> None:
    summary = await engine.alert_summary(args.user)
    _print({
        "alerts": summary["alerts"].model_dump(),
        "queue": summary["queue"].model_dump(),
        "breaker": summary["breaker"],
    })


async def cmd_failed(engine: AlertEngine, args) -> None:
    items = await engine.failed_items(args.limit)
    _print([item.model_dump(mode="json") for item in items])


async def cmd_drain(engine: AlertEngine, args) -> None:
    removed = await engine.drain_queue()
    print(f"Removed {removed} waiting/delayed alert checks")


async def cmd_clean(engine: AlertEngine, args) -> None:
    removed = await engine.clean_queue()
    print(f"Removed {removed} finished alert checks past retention")


async def cmd_health(engine: AlertEngine, args) -> None:
    _print(await engine.processor.provider.check_health())


async def cmd_trigger(engine: AlertEngine, args) -> None:
    result = await engine.trigger_alert(UUID(args.alert_id))
    _print(result.model_dump(mode="json"))


async def cmd_history(engine: AlertEngine, args) -> None:
    items = await engine.notification_history(UUID(args.alert_id), args.limit)
    _print([item.model_dump(mode="json") for item in items])


async def cmd_seed(engine: AlertEngine, args) -> None:
    await init_db()
    async with async_session_maker() as db:
        existing = await db.execute(
            select(JobAlert).where(JobAlert.user_id == DEMO_USER["user_id"]).limit(1)
        )
        if existing.scalar_one_or_none():
            print("  Alerts already exist, skipping...")
            return

        for sample in SAMPLE_ALERTS:
            db.add(JobAlert(**DEMO_USER, **sample))
        await db.commit()
        print(f"  Created {len(SAMPLE_ALERTS)} sample alerts for {DEMO_USER['user_email']}")


async def cmd_run(engine: AlertEngine, args) -> None:
    """Run worker + trigger until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await engine.start(run_worker=not args.no_worker, run_trigger=not args.no_trigger)
    await stop.wait()


COMMANDS = {
    "stats": cmd_stats,
    "failed": cmd_failed,
    "drain": cmd_drain,
    "clean": cmd_clean,
    "health": cmd_health,
    "trigger": cmd_trigger,
    "history": cmd_history,
    "seed": cmd_seed,
    "run": cmd_run,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="alert_admin",
        description=f"{settings.app_name} operator tooling",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    stats = sub.add_parser("stats", help="Alert counters, queue state and breaker state")
    stats.add_argument("--user", default=None, help="Limit alert counters to one user")

    failed = sub.add_parser("failed", help="Most recent failed alert checks")
    failed.add_argument("--limit", type=int, default=10)

    sub.add_parser("drain", help="Drop every waiting and delayed alert check")
    sub.add_parser("clean", help="Apply completed/failed retention now")
    sub.add_parser("health", help="Probe the job search provider")

    trigger = sub.add_parser("trigger", help="Check one alert immediately")
    trigger.add_argument("alert_id")

    history = sub.add_parser("history", help="Notification ledger for one alert")
    history.add_argument("alert_id")
    history.add_argument("--limit", type=int, default=50)

    sub.add_parser("seed", help="Create tables and sample alerts for development")

    run = sub.add_parser("run", help="Run the dispatch engine in the foreground")
    run.add_argument("--no-worker", action="store_true", help="Do not consume the queue")
    run.add_argument("--no-trigger", action="store_true", help="Do not schedule dispatch cycles")

    return parser


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    needs_queue = args.command in ("stats", "failed", "drain", "clean", "run")
    engine = await AlertEngine.create(use_queue=needs_queue)
    try:
        await COMMANDS[args.command](engine, args)
    except JobAlertError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1
    finally:
        await engine.stop()
        await close_db()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
