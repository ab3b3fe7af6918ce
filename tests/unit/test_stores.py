"""Tests for ActivityStore upserts and the default-branch cache."""
from datetime import datetime, timedelta

from sqlmodel import select

from devmetrics.github.normalizer import (
    normalize_commit,
    normalize_commit_files,
    normalize_pull_request,
)
from devmetrics.models.github import Commit, CommitFile, PullRequest, RepositoryMetadata
from factories import make_commit, make_pr


class TestPullRequests:
    def test_save_then_update_in_place(self, store, test_session):
        store.save_pull_request(normalize_pull_request(make_pr(title="First")))
        store.save_pull_request(normalize_pull_request(make_pr(title="Renamed")))

        rows = test_session.exec(select(PullRequest)).all()
        assert len(rows) == 1
        assert rows[0].title == "Renamed"
        assert rows[0].id == 1001


class TestCommits:
    def test_default_branch_resave_keeps_pull_request_id(self, store, test_session):
        commit = make_commit(sha="abc123")
        store.save_commit(normalize_commit(commit, "api", pull_request_id=1001))
        store.save_commit(normalize_commit(commit, "api"))

        row = test_session.get(Commit, "abc123")
        assert row.pull_request_id == 1001

    def test_commit_files_replaced_not_duplicated(self, store, test_session):
        detailed = make_commit(sha="abc123", detailed=True)
        files = normalize_commit_files(detailed, "api")
        store.save_commit_files("abc123", files)
        store.save_commit_files("abc123", files[:1])

        rows = test_session.exec(select(CommitFile)).all()
        assert [r.filename for r in rows] == ["pyproject.toml"]

    def test_counts(self, store):
        store.save_pull_request(normalize_pull_request(make_pr()))
        store.save_commit(normalize_commit(make_commit(sha="s1"), "api"))
        store.save_commit(normalize_commit(make_commit(sha="s2"), "api"))
        assert store.counts() == {"pull_requests": 1, "reviews": 0, "comments": 0, "commits": 2}


class TestDefaultBranchCache:
    def test_missing(self, store):
        assert store.get_default_branch("api") is None

    def test_update_and_read(self, store):
        store.update_default_branch("api", "trunk")
        assert store.get_default_branch("api") == "trunk"
        store.update_default_branch("api", "main")
        assert store.get_default_branch("api") == "main"

    def test_stale_after_seven_days(self, store, test_session):
        test_session.add(
            RepositoryMetadata(
                repository="api",
                default_branch="main",
                last_fetched=datetime.utcnow() - timedelta(days=8),
            )
        )
        test_session.commit()
        assert store.get_default_branch("api") is None


class TestNaiveUtcColumns:
    """Timestamps are stored as naive UTC; every datetime column must accept that."""

    def test_datetime_columns_are_plain_datetime(self):
        from sqlalchemy import DateTime
        from sqlmodel import SQLModel

        columns = [
            column
            for table in SQLModel.metadata.sorted_tables
            for column in table.columns
            if isinstance(column.type, DateTime) or "DateTime" in type(column.type).__name__
        ]
        assert columns
        for column in columns:
            assert type(column.type) is DateTime, f"{column.table.name}.{column.name}"
            assert not column.type.timezone

    def test_naive_timestamps_round_trip(self, store, test_session):
        store.save_pull_request(normalize_pull_request(make_pr()))
        row = test_session.get(PullRequest, 1001)
        assert row.created_at == datetime(2025, 1, 2, 9, 15)
        assert row.merged_at.tzinfo is None
        assert row.synced_at is not None
