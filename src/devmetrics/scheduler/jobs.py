"""
APScheduler jobs for background sync.

The nightly job re-runs an incremental sync over the last SYNC_DEFAULT_DAYS
days. Already-synced days are skipped by the ledger, so in steady state
only yesterday and today cost API calls; days left pending by an earlier
failure or quota stop are picked up again here.
"""
import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from devmetrics.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the sync service.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        _nightly_sync,
        trigger="cron",
        hour=settings.sync_hour,
        minute=0,
        id="nightly_sync",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _nightly_sync(engine) -> None:
    """Nightly job: incremental sync of the whole organization. Never raises."""
    from devmetrics.services.sync_service import SyncService

    settings = get_settings()
    logger.info("Nightly sync starting at %s", datetime.utcnow().isoformat())

    service = None
    try:
        service = SyncService.from_settings(engine, settings)
        window = service.parse_date_range(str(settings.sync_default_days))
        summary = await service.sync(window)
        if summary.errors:
            logger.warning(
                "Nightly sync finished with %d errors: %s",
                len(summary.errors),
                "; ".join(summary.errors),
            )
        else:
            logger.info("Nightly sync finished: %d days synced", summary.days_synced)
    except Exception as exc:
        logger.error("Nightly sync failed: %s", exc)
    finally:
        if service is not None:
            await service.aclose()
