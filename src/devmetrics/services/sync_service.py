"""
SyncService: application-level entry point used by the CLI, the API and
the scheduler.

Wires settings, storage and the GitHub client into a GitHubSynchronizer,
turns user date input into a DateWindow, and records every run in SyncLog:
  1. Create SyncLog (status="running")
  2. Run the synchronizer
  3. Update SyncLog ("success", or "partial" when the summary has errors)

On an exception escaping the synchronizer: SyncLog status="error", re-raise.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlmodel import Session

from devmetrics.config import Settings, get_settings
from devmetrics.db.ledger import DailySyncLedger
from devmetrics.db.stores import ActivityStore
from devmetrics.errors import ConfigurationError, ValidationError
from devmetrics.github.client import GitHubClient
from devmetrics.github.synchronizer import (
    GitHubSynchronizer,
    SyncOptions,
    SyncSummary,
    format_summary,
)
from devmetrics.models.sync import SyncLog
from devmetrics.sync.calendar import (
    DateWindow,
    format_days_with_gaps,
    missing_days,
    parse_day_key,
)
from devmetrics.sync.planner import PULL_REQUESTS
from devmetrics.sync.progress import ProgressCallback

logger = logging.getLogger(__name__)


def parse_date_range(
    since: Optional[str], until: Optional[str] = None, today: Optional[date] = None
) -> DateWindow:
    """
    Build a window from user input.

    `since` is a day count back from today ("30") or a YYYY-MM-DD date;
    `until` is YYYY-MM-DD and defaults to today (UTC).

    Raises:
        ValidationError: malformed input, or since after until.
    """
    today = today or datetime.now(timezone.utc).date()
    if since is None or not str(since).strip():
        raise ValidationError("since", "a day count or YYYY-MM-DD date is required", since)
    since = str(since).strip()

    if since.isdigit():
        start = today - timedelta(days=int(since))
    else:
        start = _parse_date("since", since)
    end = _parse_date("until", until.strip()) if until else today
    return DateWindow(start, end)


def _parse_date(field: str, value: str) -> date:
    try:
        return parse_day_key(value)
    except ValidationError as exc:
        raise ValidationError(field, "expected a day count or YYYY-MM-DD", value) from exc


class SyncService:
    """Runs and reports on GitHub activity syncs for one organization."""

    def __init__(self, engine, client=None, settings: Optional[Settings] = None):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            client: GitHubClient (or AsyncMock in tests). Only needed for sync().
            settings: Defaults to get_settings().
        """
        self.engine = engine
        self.client = client
        self.settings = settings or get_settings()
        self.store = ActivityStore(engine)
        self.ledger = DailySyncLedger(engine)

    @classmethod
    def from_settings(cls, engine, settings: Optional[Settings] = None, transport=None) -> "SyncService":
        """
        Build a service with a live GitHubClient.

        Raises:
            ConfigurationError: token or organization missing.
        """
        settings = settings or get_settings()
        if not settings.github_token:
            raise ConfigurationError("GITHUB_TOKEN is not set")
        if not settings.github_organization:
            raise ConfigurationError("GITHUB_ORGANIZATION is not set")
        return cls(engine, GitHubClient.from_settings(settings, transport=transport), settings)

    @property
    def organization(self) -> str:
        if self.client is not None:
            return self.client.organization
        return self.settings.github_organization

    parse_date_range = staticmethod(parse_date_range)
    format_summary = staticmethod(format_summary)

    def build_synchronizer(self) -> GitHubSynchronizer:
        if self.client is None:
            raise ConfigurationError("SyncService has no GitHub client")
        return GitHubSynchronizer(
            self.client,
            self.store,
            self.ledger,
            safety_margin=self.settings.sync_quota_safety_margin,
            prs_per_day_estimate=self.settings.sync_prs_per_day_estimate,
            estimate_mode=self.settings.sync_quota_estimate_mode,
        )

    async def sync(
        self,
        window: DateWindow,
        *,
        repo: Optional[str] = None,
        exclude_repos: Optional[List[str]] = None,
        force: bool = False,
        skip_quota_check: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SyncSummary:
        """
        Sync `window` and record the run in SyncLog.

        Configured exclusions (SYNC_EXCLUDE_REPOS) are merged with
        `exclude_repos`.
        """
        synchronizer = self.build_synchronizer()
        excluded = sorted(set(self.settings.excluded_repos) | set(exclude_repos or []))
        options = SyncOptions(
            start_date=window.start,
            end_date=window.end,
            repo=repo,
            exclude_repos=excluded,
            force=force,
            skip_quota_check=skip_quota_check,
        )
        log = self._create_sync_log(window, repo)

        try:
            summary = await synchronizer.sync(options, on_progress)
        except Exception as exc:
            self._finish_sync_log(log, status="error", error_message=str(exc))
            raise

        self._finish_sync_log(
            log,
            status="partial" if summary.has_errors else "success",
            summary=summary,
            error_message="\n".join(summary.errors) or None,
        )
        logger.info(
            "Sync %s..%s finished: %d repos, %d days, %d PRs, %d errors",
            window.start_key,
            window.end_key,
            summary.repo_count,
            summary.days_synced,
            summary.prs_fetched,
            len(summary.errors),
        )
        return summary

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    # ─── Reporting ────────────────────────────────────────────────────────────

    def get_daily_sync_coverage(self, repository: str, window: DateWindow) -> Dict:
        """Synced days of one repository inside window, with ranges and gaps."""
        synced = self.ledger.get_synced_days(
            PULL_REQUESTS, self.organization, repository, window.start_key, window.end_key
        )
        ranges, gaps = format_days_with_gaps(synced)
        total = len(window.days())
        return {
            "repository": repository,
            "start": window.start_key,
            "end": window.end_key,
            "synced_days": synced,
            "ranges": ranges,
            "gaps": gaps,
            "missing_days": missing_days(window, synced),
            "total_days": total,
            "coverage_percent": round(100.0 * len(synced) / total, 1),
        }

    def get_synced_repositories(self) -> List[Dict]:
        return self.ledger.get_sync_summary(self.organization)

    def reset_repository(self, repository: str) -> int:
        """Forget every synced day of a repository. Returns rows removed."""
        removed = self.ledger.delete_by_repository(
            PULL_REQUESTS, self.organization, repository
        )
        logger.info("Reset %s: %d synced days removed", repository, removed)
        return removed

    def get_statistics(self) -> Dict:
        repos = self.get_synced_repositories()
        return {
            **self.store.counts(),
            "repositories": len({r["repository"] for r in repos}),
            "days_synced": sum(r["day_count"] for r in repos),
        }

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _create_sync_log(self, window: DateWindow, repo: Optional[str]) -> SyncLog:
        log = SyncLog(
            started_at=datetime.utcnow(),
            status="running",
            window_start=window.start_key,
            window_end=window.end_key,
            repository=repo,
        )
        with Session(self.engine) as s:
            s.add(log)
            s.commit()
            s.refresh(log)
        return log

    def _finish_sync_log(
        self,
        log: SyncLog,
        *,
        status: str,
        summary: Optional[SyncSummary] = None,
        error_message: Optional[str] = None,
    ) -> None:
        with Session(self.engine) as s:
            db_log = s.get(SyncLog, log.id)
            db_log.status = status
            db_log.finished_at = datetime.utcnow()
            if summary is not None:
                db_log.repos_synced = summary.repo_count
                db_log.days_synced = summary.days_synced
                db_log.prs_fetched = summary.prs_fetched
            db_log.error_message = error_message
            s.add(db_log)
            s.commit()
