"""reservebot entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

from reservebot.clock import Clock
from reservebot.config import load_task_document, settings
from reservebot.errors import ConfigError, StatusStoreError
from reservebot.runlog import configure_logging
from reservebot.scheduler.models import TerminationReason
from reservebot.scheduler.orchestrator import TaskOrchestrator
from reservebot.scheduler.store import StatusRecord, StatusStore
from reservebot.scheduler.timing import Scheduler

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reservebot",
        description="Claim a reservation slot the moment its window opens.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one timed reservation task")
    run.add_argument("--config", type=Path, required=True, help="Task document (JSON or YAML)")
    run.add_argument("--profile", help="Override the profile / task id from the document")
    run.add_argument(
        "--production",
        action="store_true",
        help="Headless browser and no console log output",
    )

    status = sub.add_parser("status", help="Print the status record of a profile")
    status.add_argument("profile")
    return parser


async def _record_config_failure(
    store: StatusStore, clock: Clock, profile: str, exc: ConfigError
) -> None:
    summary = f"{TerminationReason.INVALID_CONFIG.value}: {str(exc).splitlines()[0]}"
    try:
        await store.write(profile, StatusRecord.failure(clock.now(), summary, 0.0))
    except StatusStoreError:
        logger.exception("Status write failed for %s", profile)


async def run_task(config_path: Path, profile: str | None, production: bool) -> int:
    """Load the task document and run it. Returns the process exit code."""
    from reservebot.browser.driver import LessonReservationDriver
    from reservebot.browser.session import BrowserSession

    clock = Clock(settings.timezone)
    store = StatusStore(settings.status_db_path)
    production = production or settings.production
    fallback_profile = profile or "test"

    try:
        document = load_task_document(config_path, profile=profile)
        config = document.to_task_config(clock.tz)
    except ConfigError as exc:
        run_log = configure_logging(
            fallback_profile,
            clock,
            settings.log_dir,
            production=production,
            level=settings.log_level,
        )
        logger.error("%s", exc)
        await _record_config_failure(store, clock, fallback_profile, exc)
        run_log.flush()
        return EXIT_CONFIG

    run_log = configure_logging(
        config.task_id,
        clock,
        settings.log_dir,
        production=production,
        level=settings.log_level,
    )
    try:
        headless = True if production else None
        driver = LessonReservationDriver(document, session=BrowserSession(headless=headless))
        orchestrator = TaskOrchestrator(
            config=config,
            driver=driver,
            scheduler=Scheduler(clock, timedelta(seconds=settings.engage_lead_seconds)),
            store=store,
            clock=clock,
            backoff=timedelta(seconds=settings.backoff_seconds),
        )
        result = await orchestrator.run()
    finally:
        run_log.flush()
    return result.exit_code


async def show_status(profile: str) -> int:
    store = StatusStore(settings.status_db_path)
    try:
        value = await store.read_value(profile)
    except StatusStoreError as exc:
        print(f"{profile}: {exc}", file=sys.stderr)
        return EXIT_FAILED
    if value is None:
        print(f"{profile}: no status (never started)")
        return EXIT_FAILED
    print(f"{profile}: {value}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, run the command, and exit with its code."""
    args = build_parser().parse_args(argv)
    if args.command == "status":
        code = asyncio.run(show_status(args.profile))
    else:
        code = asyncio.run(run_task(args.config, args.profile, args.production))
    sys.exit(code)


if __name__ == "__main__":
    main()
