"""Sync trigger, status and coverage routes."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session, select

from devmetrics.config import Settings, get_settings
from devmetrics.db.engine import get_engine, get_session
from devmetrics.errors import DevMetricsError, ValidationError
from devmetrics.models.sync import SyncLog
from devmetrics.services.sync_service import SyncService, parse_date_range
from devmetrics.sync.calendar import DateWindow

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    since: Optional[str] = None  # day count or YYYY-MM-DD; None = SYNC_DEFAULT_DAYS
    until: Optional[str] = None
    repo: Optional[str] = None  # None = whole organization
    force: bool = False


class SyncStatusResponse(BaseModel):
    status: str
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    window_start: Optional[str]
    window_end: Optional[str]
    repository: Optional[str]
    repos_synced: Optional[int]
    days_synced: Optional[int]
    prs_fetched: Optional[int]
    error_message: Optional[str]


class CoverageResponse(BaseModel):
    repository: str
    start: str
    end: str
    synced_days: List[str]
    ranges: str
    gaps: List[str]
    missing_days: List[str]
    total_days: int
    coverage_percent: float


def _window(since: Optional[str], until: Optional[str], settings: Settings) -> DateWindow:
    try:
        return parse_date_range(since or str(settings.sync_default_days), until)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


async def _do_sync(window: DateWindow, repo: Optional[str] = None, force: bool = False) -> None:
    """Background task: build the service from settings and sync."""
    try:
        service = SyncService.from_settings(get_engine())
    except DevMetricsError as exc:
        logger.error("Sync not started: %s", exc)
        return

    try:
        await service.sync(window, repo=repo, force=force)
    except DevMetricsError as exc:
        logger.error("Background sync failed: %s", exc)
    finally:
        await service.aclose()


@router.post("/trigger")
async def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
):
    """
    Trigger an incremental sync. Dates are validated up front; the sync
    itself runs in the background and is reported through /sync/status.
    """
    window = _window(request.since, request.until, settings)
    background_tasks.add_task(_do_sync, window, request.repo, request.force)
    return {
        "message": "Sync started",
        "start": window.start_key,
        "end": window.end_key,
        "repo": request.repo,
        "force": request.force,
    }


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(session: Session = Depends(get_session)):
    """Return the status of the most recent sync run."""
    log = session.exec(
        select(SyncLog).order_by(SyncLog.started_at.desc())
    ).first()
    if not log:
        return SyncStatusResponse(
            status="never_run",
            started_at=None,
            finished_at=None,
            window_start=None,
            window_end=None,
            repository=None,
            repos_synced=None,
            days_synced=None,
            prs_fetched=None,
            error_message=None,
        )
    return SyncStatusResponse(
        status=log.status,
        started_at=log.started_at,
        finished_at=log.finished_at,
        window_start=log.window_start,
        window_end=log.window_end,
        repository=log.repository,
        repos_synced=log.repos_synced,
        days_synced=log.days_synced,
        prs_fetched=log.prs_fetched,
        error_message=log.error_message,
    )


@router.get("/coverage/{repository}", response_model=CoverageResponse)
def sync_coverage(
    repository: str,
    since: Optional[str] = None,
    until: Optional[str] = None,
    engine=Depends(get_engine),
    settings: Settings = Depends(get_settings),
):
    """Synced days, ranges and gaps of one repository over a window."""
    window = _window(since, until, settings)
    service = SyncService(engine, settings=settings)
    return service.get_daily_sync_coverage(repository, window)
