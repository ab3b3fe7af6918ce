"""
GitHub payload normalizer.

Converts validated GitHub payloads (github.schemas) into clean field dicts
that map directly onto SQLModel columns. No DB access here; callers
(the synchronizer) handle persistence through db.stores.

All datetimes are stored naive in UTC, matching datetime.utcnow() defaults
on the models.

GitHub reports the PR state as "closed" for both closed and merged pull
requests; merged_at is what tells them apart.
"""
import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from devmetrics.github.schemas import (
    GitHubComment,
    GitHubCommit,
    GitHubPullRequest,
    GitHubReview,
)

UNKNOWN_USER = "unknown"

ISSUE_COMMENT = "issue_comment"
REVIEW_COMMENT = "review_comment"

# GitHub appends "(#123)" to the subject of squash-merged PRs
_SQUASH_MERGE_RE = re.compile(r"\(#\d+\)")


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def normalize_pull_request(pr: GitHubPullRequest) -> Dict[str, Any]:
    """
    Normalize a pull request into PullRequest model fields.

    Works on both list and detail payloads, but only the detail payload
    carries additions/deletions/changed_files and the comment/commit counts.
    """
    state = "merged" if pr.merged_at else pr.state
    return {
        "id": pr.id,
        "number": pr.number,
        "repository": pr.base.repo.name,
        "author": pr.user.login if pr.user else UNKNOWN_USER,
        "title": pr.title,
        "body": pr.body or "",
        "state": state,
        "merged_by": pr.merged_by.login if pr.merged_by else None,
        "head_branch": pr.head.ref,
        "base_branch": pr.base.ref,
        "created_at": _to_naive_utc(pr.created_at),
        "updated_at": _to_naive_utc(pr.updated_at),
        "closed_at": _to_naive_utc(pr.closed_at),
        "merged_at": _to_naive_utc(pr.merged_at),
        "additions": pr.additions,
        "deletions": pr.deletions,
        "changed_files": pr.changed_files,
        "comment_count": pr.comments,
        "review_comment_count": pr.review_comments,
        "commit_count": pr.commits,
        "labels_json": json.dumps([label.name for label in pr.labels]),
        "requested_reviewers_json": json.dumps(
            [user.login for user in pr.requested_reviewers]
        ),
        "is_draft": pr.draft,
    }


def normalize_review(
    review: GitHubReview, pull_request_id: int, repository: str
) -> Dict[str, Any]:
    submitted_at = _to_naive_utc(review.submitted_at) or datetime.utcnow()
    return {
        "id": review.id,
        "pull_request_id": pull_request_id,
        "repository": repository,
        "reviewer": review.user.login if review.user else UNKNOWN_USER,
        "state": review.state,
        "body": review.body or "",
        "submitted_at": submitted_at,
    }


def normalize_comment(
    comment: GitHubComment,
    pull_request_id: int,
    repository: str,
    comment_type: str = ISSUE_COMMENT,
) -> Dict[str, Any]:
    """Normalize an issue or review comment into Comment model fields."""
    return {
        "id": comment.id,
        "pull_request_id": pull_request_id,
        "repository": repository,
        "author": comment.user.login if comment.user else UNKNOWN_USER,
        "body": comment.body or "",
        "created_at": _to_naive_utc(comment.created_at),
        "updated_at": _to_naive_utc(comment.updated_at),
        "comment_type": comment_type,
        "review_id": comment.pull_request_review_id,
        # path/line are None for issue comments
        "path": comment.path,
        "line": comment.line,
    }


def normalize_commit(
    commit: GitHubCommit, repository: str, pull_request_id: Optional[int] = None
) -> Dict[str, Any]:
    """
    Normalize a commit into Commit model fields.

    committed_at is the committer date (when it landed on the branch), not
    the author date, which squash merges carry over from the feature branch.
    """
    return {
        "sha": commit.sha,
        "repository": repository,
        "author": commit.author.login if commit.author else UNKNOWN_USER,
        "author_email": commit.commit.author.email,
        "committed_at": _to_naive_utc(commit.commit.committer.date),
        "message": commit.commit.message,
        "additions": commit.stats.additions if commit.stats else 0,
        "deletions": commit.stats.deletions if commit.stats else 0,
        "changed_files": len(commit.files) if commit.files else 0,
        "parent_count": len(commit.parents),
        "pull_request_id": pull_request_id,
    }


def normalize_commit_files(commit: GitHubCommit, repository: str) -> List[Dict[str, Any]]:
    """CommitFile rows for a detailed commit; empty for list payloads."""
    return [
        {
            "commit_sha": commit.sha,
            "repository": repository,
            "filename": f.filename,
            "status": f.status,
            "additions": f.additions,
            "deletions": f.deletions,
        }
        for f in commit.files or []
    ]


def is_merge_commit(commit: GitHubCommit) -> bool:
    return len(commit.parents) >= 2


def is_squash_merge_commit(commit: GitHubCommit) -> bool:
    return bool(_SQUASH_MERGE_RE.search(commit.commit.message))


def is_direct_commit(commit: GitHubCommit) -> bool:
    """True for commits pushed straight to a branch rather than landed via a PR."""
    return not is_merge_commit(commit) and not is_squash_merge_commit(commit)
