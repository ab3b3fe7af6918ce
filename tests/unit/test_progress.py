"""Tests for structured progress events."""
import logging
from unittest.mock import MagicMock

from devmetrics.sync.progress import Phase, ProgressReporter, QuotaSnapshot


class TestProgressReporter:
    def test_callback_receives_structured_event(self):
        callback = MagicMock()
        reporter = ProgressReporter(callback)

        quota = QuotaSnapshot(limit=5000, remaining=4200, reset_epoch=1893456000)
        reporter.emit(Phase.REPO_FINISHED, "api: done", repository="api", quota=quota)

        event = callback.call_args.args[0]
        assert event.phase is Phase.REPO_FINISHED
        assert event.repository == "api"
        assert event.quota.remaining == 4200
        assert str(event) == "api: done"

    def test_without_callback(self):
        event = ProgressReporter().emit(Phase.RUN_STARTED, "Date range: x")
        assert event.message == "Date range: x"

    def test_failing_callback_is_logged_not_raised(self, caplog):
        reporter = ProgressReporter(MagicMock(side_effect=RuntimeError("broken pipe")))
        with caplog.at_level(logging.ERROR, logger="devmetrics.sync.progress"):
            reporter.emit(Phase.PLANNED, "api: 3 days to sync")
        assert "Progress callback failed" in caplog.text

    def test_record_events_logged_at_debug(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="devmetrics.sync.progress"):
            ProgressReporter().emit(Phase.RECORD_PROCESSED, "PR #1 ok")
            ProgressReporter().emit(Phase.DAYS_MARKED, "3 days marked")
        levels = {r.getMessage(): r.levelno for r in caplog.records}
        assert levels["[record_processed] PR #1 ok"] == logging.DEBUG
        assert levels["[days_marked] 3 days marked"] == logging.INFO
