"""
Command-line entrypoint.

Usage:
    python -m devmetrics sync --since 30 [--until YYYY-MM-DD] [--repo R]
                              [--exclude-repo a,b] [--force] [--skip-quota-check]
    python -m devmetrics coverage REPO [--since 30] [--until YYYY-MM-DD]
    python -m devmetrics reset REPO
    python -m devmetrics run        # (default) nightly scheduler, runs until Ctrl+C
    uvicorn devmetrics.api.main:app --host 0.0.0.0 --port 8000  # starts API

Exit codes: 0 success, 1 sync finished with errors or failed,
2 invalid input, missing configuration or rejected credentials.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from devmetrics.config import get_settings
from devmetrics.errors import (
    AuthenticationError,
    ConfigurationError,
    DevMetricsError,
    ValidationError,
)

logger = logging.getLogger(__name__)

EXIT_ERRORS = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="devmetrics", description=__doc__.split("\n")[1])
    sub = parser.add_subparsers(dest="command")

    sync = sub.add_parser("sync", help="sync GitHub activity for a date window")
    sync.add_argument("--since", help="days back from today, or YYYY-MM-DD")
    sync.add_argument("--until", help="YYYY-MM-DD (default: today)")
    sync.add_argument("--repo", help="sync only this repository")
    sync.add_argument("--exclude-repo", default="", help="comma-separated repositories to skip")
    sync.add_argument("--force", action="store_true", help="resync days already synced")
    sync.add_argument(
        "--skip-quota-check", action="store_true", help="sync even when quota looks too low"
    )

    coverage = sub.add_parser("coverage", help="show synced days and gaps of a repository")
    coverage.add_argument("repository")
    coverage.add_argument("--since")
    coverage.add_argument("--until")

    reset = sub.add_parser("reset", help="forget all synced days of a repository")
    reset.add_argument("repository")

    sub.add_parser("run", help="start the nightly sync scheduler")
    return parser


async def _run_sync(args) -> int:
    from devmetrics.db.engine import get_engine
    from devmetrics.services.sync_service import SyncService

    settings = get_settings()
    window = SyncService.parse_date_range(args.since or str(settings.sync_default_days), args.until)
    service = SyncService.from_settings(get_engine(), settings)
    exclude = [r.strip() for r in args.exclude_repo.split(",") if r.strip()]
    try:
        summary = await service.sync(
            window,
            repo=args.repo,
            exclude_repos=exclude,
            force=args.force,
            skip_quota_check=args.skip_quota_check,
            on_progress=lambda event: print(event.message, flush=True),
        )
    finally:
        await service.aclose()

    print(service.format_summary(summary))
    return EXIT_ERRORS if summary.errors else 0


def _run_coverage(args) -> int:
    from devmetrics.db.engine import get_engine
    from devmetrics.services.sync_service import SyncService

    settings = get_settings()
    window = SyncService.parse_date_range(args.since or str(settings.sync_default_days), args.until)
    report = SyncService(get_engine(), settings=settings).get_daily_sync_coverage(
        args.repository, window
    )
    print(f"{report['repository']} {report['start']} to {report['end']}")
    print(f"  Synced:   {report['ranges']}")
    print(
        f"  Coverage: {len(report['synced_days'])}/{report['total_days']} days "
        f"({report['coverage_percent']}%)"
    )
    if report["gaps"]:
        print(f"  Gaps:     {', '.join(report['gaps'])}")
    return 0


def _run_reset(args) -> int:
    from devmetrics.db.engine import get_engine
    from devmetrics.services.sync_service import SyncService

    removed = SyncService(get_engine()).reset_repository(args.repository)
    print(f"Removed {removed} synced days for {args.repository}")
    return 0


async def _run_scheduler() -> None:
    from devmetrics.db.engine import get_engine
    from devmetrics.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info("Scheduler started (nightly sync at %02d:00 UTC)", settings.sync_hour)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        logger.info("Goodbye.")


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        if args.command == "sync":
            return asyncio.run(_run_sync(args))
        if args.command == "coverage":
            return _run_coverage(args)
        if args.command == "reset":
            return _run_reset(args)
        asyncio.run(_run_scheduler())
        return 0
    except (ValidationError, ConfigurationError, AuthenticationError) as exc:
        logger.error("%s", exc)
        return EXIT_USAGE
    except DevMetricsError as exc:
        logger.error("Sync failed: %s", exc)
        return EXIT_ERRORS


if __name__ == "__main__":
    sys.exit(main())
