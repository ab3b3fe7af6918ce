"""GitHub activity records: pull requests, reviews, comments, commits."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class PullRequest(SQLModel, table=True):
    """One row per pull request, keyed by GitHub's global PR id."""

    __tablename__ = "pull_requests"

    id: int = Field(primary_key=True)  # GitHub id, not the PR number
    number: int
    repository: str = Field(index=True)
    author: str = Field(index=True)
    title: str
    body: str = ""
    state: str  # "open", "closed", "merged"
    merged_by: Optional[str] = None
    head_branch: Optional[str] = None
    base_branch: Optional[str] = None

    created_at: datetime = Field(index=True, sa_type=DateTime)
    updated_at: datetime = Field(sa_type=DateTime)
    closed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    merged_at: Optional[datetime] = Field(default=None, index=True, sa_type=DateTime)

    # Only populated by the single-PR endpoint
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    comment_count: int = 0
    review_comment_count: int = 0
    commit_count: int = 0

    labels_json: str = "[]"
    requested_reviewers_json: str = "[]"
    is_draft: bool = False

    synced_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime)


class Review(SQLModel, table=True):
    __tablename__ = "reviews"

    id: int = Field(primary_key=True)
    pull_request_id: int = Field(index=True)
    repository: str
    reviewer: str = Field(index=True)
    state: str  # APPROVED, CHANGES_REQUESTED, COMMENTED, DISMISSED
    body: str = ""
    submitted_at: datetime = Field(sa_type=DateTime)


class Comment(SQLModel, table=True):
    __tablename__ = "comments"

    id: int = Field(primary_key=True)
    pull_request_id: int = Field(index=True)
    repository: str
    author: str = Field(index=True)
    body: str = ""
    created_at: datetime = Field(sa_type=DateTime)
    updated_at: datetime = Field(sa_type=DateTime)
    comment_type: str  # "issue_comment" or "review_comment"
    review_id: Optional[int] = None

    # Review comments only
    path: Optional[str] = None
    line: Optional[int] = None


class Commit(SQLModel, table=True):
    __tablename__ = "commits"

    sha: str = Field(primary_key=True)
    repository: str = Field(index=True)
    author: str = Field(index=True)
    author_email: str = ""
    committed_at: datetime = Field(index=True, sa_type=DateTime)  # committer date: when it landed
    message: str = ""
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    parent_count: int = 1
    pull_request_id: Optional[int] = None  # None for direct commits to the default branch


class CommitFile(SQLModel, table=True):
    __tablename__ = "commit_files"
    __table_args__ = (
        UniqueConstraint("commit_sha", "filename", name="uq_commit_file"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    commit_sha: str = Field(index=True)
    repository: str
    filename: str
    status: str  # added, modified, removed, renamed
    additions: int = 0
    deletions: int = 0


class RepositoryMetadata(SQLModel, table=True):
    """Cached per-repository facts (default branch)."""

    __tablename__ = "repository_metadata"

    repository: str = Field(primary_key=True)
    default_branch: str
    last_fetched: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime)
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime)
