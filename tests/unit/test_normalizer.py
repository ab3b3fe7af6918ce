"""Tests for the GitHub payload normalizer."""
import json
from datetime import datetime

import pytest
from pydantic import ValidationError as PayloadError

from devmetrics.github.normalizer import (
    is_direct_commit,
    is_merge_commit,
    is_squash_merge_commit,
    normalize_comment,
    normalize_commit,
    normalize_commit_files,
    normalize_pull_request,
    normalize_review,
)
from devmetrics.github.schemas import GitHubPullRequest
from factories import make_comment, make_commit, make_pr, make_review, pr_payload


class TestNormalizePullRequest:
    def test_merged_state_from_merged_at(self):
        fields = normalize_pull_request(make_pr())
        assert fields["state"] == "merged"
        assert fields["merged_by"] == "bob"

    def test_closed_without_merge(self):
        fields = normalize_pull_request(make_pr(merged_at=None, merged_by=None))
        assert fields["state"] == "closed"

    def test_fields(self):
        fields = normalize_pull_request(make_pr())
        assert fields["id"] == 1001
        assert fields["repository"] == "api"
        assert fields["author"] == "alice"
        assert fields["head_branch"] == "feature/retry-budget"
        assert fields["base_branch"] == "main"
        assert fields["created_at"] == datetime(2025, 1, 2, 9, 15)
        assert fields["created_at"].tzinfo is None
        assert fields["comment_count"] == 2
        assert json.loads(fields["labels_json"]) == ["backend", "reliability"]
        assert json.loads(fields["requested_reviewers_json"]) == ["carol"]

    def test_missing_user_is_unknown(self):
        assert normalize_pull_request(make_pr(user=None))["author"] == "unknown"

    def test_list_payload_defaults_sizes(self):
        payload = pr_payload()
        for key in ("additions", "deletions", "changed_files", "comments", "review_comments", "commits"):
            del payload[key]
        fields = normalize_pull_request(GitHubPullRequest.model_validate(payload))
        assert fields["additions"] == 0
        assert fields["commit_count"] == 0

    def test_invalid_state_rejected(self):
        with pytest.raises(PayloadError):
            make_pr(state="merged")


class TestNormalizeReviewAndComment:
    def test_review(self):
        fields = normalize_review(make_review(state="CHANGES_REQUESTED"), 1001, "api")
        assert fields["pull_request_id"] == 1001
        assert fields["reviewer"] == "bob"
        assert fields["state"] == "CHANGES_REQUESTED"
        assert fields["submitted_at"] == datetime(2025, 1, 3, 10, 0)

    def test_issue_comment_has_no_path(self):
        fields = normalize_comment(make_comment(), 1001, "api")
        assert fields["comment_type"] == "issue_comment"
        assert fields["path"] is None
        assert fields["review_id"] is None

    def test_review_comment(self):
        comment = make_comment(path="src/dispatch.py", line=88, review_id=501)
        fields = normalize_comment(comment, 1001, "api", "review_comment")
        assert fields["comment_type"] == "review_comment"
        assert fields["path"] == "src/dispatch.py"
        assert fields["line"] == 88
        assert fields["review_id"] == 501


class TestNormalizeCommit:
    def test_uses_committer_date(self):
        fields = normalize_commit(make_commit(date="2025-01-04T12:00:00Z"), "api")
        assert fields["committed_at"] == datetime(2025, 1, 4, 12, 0)

    def test_detailed_commit_stats_and_files(self):
        commit = make_commit(sha="abc", detailed=True)
        fields = normalize_commit(commit, "api", pull_request_id=7)
        assert (fields["additions"], fields["deletions"], fields["changed_files"]) == (2, 1, 2)
        assert fields["pull_request_id"] == 7
        files = normalize_commit_files(commit, "api")
        assert [f["filename"] for f in files] == ["pyproject.toml", "CHANGELOG.md"]
        assert files[0]["commit_sha"] == "abc"

    def test_list_commit_has_no_files(self):
        assert normalize_commit_files(make_commit(), "api") == []
        assert normalize_commit(make_commit(), "api")["changed_files"] == 0


class TestCommitKinds:
    def test_merge_commit(self):
        commit = make_commit(message="Merge branch 'release'", parents=2)
        assert is_merge_commit(commit)
        assert not is_direct_commit(commit)

    def test_squash_merge_commit(self):
        commit = make_commit(message="Add retry budget (#42)")
        assert is_squash_merge_commit(commit)
        assert not is_direct_commit(commit)

    def test_direct_commit(self):
        commit = make_commit(message="Hotfix: handle empty payload #42")
        assert is_direct_commit(commit)
