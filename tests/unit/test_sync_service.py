"""Tests for SyncService input parsing, reporting and run logging."""
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlmodel import select

from devmetrics.config import Settings
from devmetrics.errors import AuthenticationError, ConfigurationError, ValidationError
from devmetrics.github.synchronizer import SyncSummary
from devmetrics.models.sync import DailySyncMetadata, SyncLog
from devmetrics.services.sync_service import SyncService, parse_date_range
from devmetrics.sync.calendar import DateWindow

TODAY = date(2025, 3, 10)


class TestParseDateRange:
    def test_days_ago(self):
        window = parse_date_range("7", today=TODAY)
        assert window == DateWindow(date(2025, 3, 3), TODAY)

    def test_zero_days_is_today(self):
        assert parse_date_range("0", today=TODAY) == DateWindow(TODAY, TODAY)

    def test_explicit_dates(self):
        window = parse_date_range("2025-01-01", "2025-01-31", today=TODAY)
        assert window == DateWindow(date(2025, 1, 1), date(2025, 1, 31))

    @pytest.mark.parametrize("since", ["-3", "last week", "2025/01/01", "2025-02-30", ""])
    def test_invalid_since(self, since):
        with pytest.raises(ValidationError):
            parse_date_range(since, today=TODAY)

    def test_invalid_until(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_date_range("7", "tomorrow", today=TODAY)
        assert exc_info.value.field == "until"

    def test_start_after_end(self):
        with pytest.raises(ValidationError):
            parse_date_range("2025-02-01", "2025-01-01", today=TODAY)


def _settings(**overrides):
    values = {"github_token": "t", "github_organization": "acme", **overrides}
    return Settings(_env_file=None, **values)


class TestFromSettings:
    def test_missing_token(self, engine):
        with pytest.raises(ConfigurationError):
            SyncService.from_settings(engine, _settings(github_token=""))

    def test_missing_organization(self, engine):
        with pytest.raises(ConfigurationError):
            SyncService.from_settings(engine, _settings(github_organization=""))

    def test_builds_client(self, engine):
        service = SyncService.from_settings(engine, _settings())
        assert service.organization == "acme"
        assert service.client.organization == "acme"


def _mark(ledger, days, repository="api"):
    ledger.save_batch([
        DailySyncMetadata(
            resource_type="pull_requests", organization="acme",
            repository=repository, sync_date=d, items_synced=1,
        )
        for d in days
    ])


class TestReporting:
    def test_coverage(self, engine, ledger):
        _mark(ledger, ["2025-01-01", "2025-01-02", "2025-01-04"])
        service = SyncService(engine, settings=_settings())
        report = service.get_daily_sync_coverage(
            "api", DateWindow(date(2025, 1, 1), date(2025, 1, 5))
        )
        assert report["ranges"] == "2025-01-01 to 2025-01-02, 2025-01-04"
        assert report["gaps"] == ["2025-01-03"]
        assert report["missing_days"] == ["2025-01-03", "2025-01-05"]
        assert report["total_days"] == 5
        assert report["coverage_percent"] == 60.0

    def test_reset_repository(self, engine, ledger):
        _mark(ledger, ["2025-01-01", "2025-01-02"])
        _mark(ledger, ["2025-01-01"], repository="web")
        service = SyncService(engine, settings=_settings())

        assert service.reset_repository("api") == 2
        assert [r["repository"] for r in service.get_synced_repositories()] == ["web"]

    def test_statistics(self, engine, ledger):
        _mark(ledger, ["2025-01-01", "2025-01-02"])
        stats = SyncService(engine, settings=_settings()).get_statistics()
        assert stats["repositories"] == 1
        assert stats["days_synced"] == 2
        assert stats["pull_requests"] == 0


class TestSyncLog:
    def _service(self, engine, result=None, error=None):
        service = SyncService(engine, client=MagicMock(organization="acme"), settings=_settings(
            sync_exclude_repos="legacy",
        ))
        synchronizer = MagicMock()
        synchronizer.sync = AsyncMock(return_value=result, side_effect=error)
        service.build_synchronizer = MagicMock(return_value=synchronizer)
        return service, synchronizer

    @pytest.mark.asyncio
    async def test_success(self, engine, test_session):
        service, synchronizer = self._service(engine, SyncSummary(repo_count=2, days_synced=10))
        window = DateWindow(date(2025, 1, 1), date(2025, 1, 5))
        await service.sync(window, exclude_repos=["sandbox"])

        options = synchronizer.sync.await_args.args[0]
        assert options.exclude_repos == ["legacy", "sandbox"]
        log = test_session.exec(select(SyncLog)).one()
        assert log.status == "success"
        assert (log.window_start, log.window_end) == ("2025-01-01", "2025-01-05")
        assert log.repos_synced == 2 and log.days_synced == 10
        assert log.finished_at is not None

    @pytest.mark.asyncio
    async def test_partial(self, engine, test_session):
        summary = SyncSummary(errors=["api/PR #3: boom"])
        service, _ = self._service(engine, summary)
        await service.sync(DateWindow(date(2025, 1, 1), date(2025, 1, 1)), repo="api")
        log = test_session.exec(select(SyncLog)).one()
        assert log.status == "partial"
        assert log.repository == "api"
        assert "boom" in log.error_message

    @pytest.mark.asyncio
    async def test_error_recorded_and_reraised(self, engine, test_session):
        service, _ = self._service(engine, error=AuthenticationError())
        with pytest.raises(AuthenticationError):
            await service.sync(DateWindow(date(2025, 1, 1), date(2025, 1, 1)))
        log = test_session.exec(select(SyncLog)).one()
        assert log.status == "error"
        assert "authentication" in log.error_message.lower()
