"""
Record storage for synced GitHub activity.

Every save is an upsert keyed on the record's natural primary key (GitHub
id, or commit sha) so re-syncing the same day never creates duplicates.
Callers hand in plain field dicts produced by github.normalizer.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from devmetrics.errors import StorageError
from devmetrics.models.github import (
    Comment,
    Commit,
    CommitFile,
    PullRequest,
    RepositoryMetadata,
    Review,
)

DEFAULT_BRANCH_MAX_AGE = timedelta(days=7)


class ActivityStore:
    """Upsert-style persistence for pull requests and their sub-records."""

    def __init__(self, engine):
        self.engine = engine

    # ─── Saves ────────────────────────────────────────────────────────────────

    def save_pull_request(self, fields: Dict[str, Any]) -> PullRequest:
        fields = {**fields, "synced_at": datetime.utcnow()}
        return self._upsert(PullRequest, fields["id"], fields, "save_pull_request")

    def save_review(self, fields: Dict[str, Any]) -> Review:
        return self._upsert(Review, fields["id"], fields, "save_review")

    def save_comment(self, fields: Dict[str, Any]) -> Comment:
        return self._upsert(Comment, fields["id"], fields, "save_comment")

    def save_commit(self, fields: Dict[str, Any]) -> Commit:
        """
        Upsert a commit. A commit first seen through its PR keeps that
        pull_request_id when it is later re-saved from the default branch.
        """
        if fields.get("pull_request_id") is None:
            fields = {k: v for k, v in fields.items() if k != "pull_request_id"}
        return self._upsert(Commit, fields["sha"], fields, "save_commit")

    def save_commit_files(self, commit_sha: str, files: List[Dict[str, Any]]) -> None:
        """Replace the file list of one commit in a single transaction."""
        try:
            with Session(self.engine) as s:
                existing = s.exec(
                    select(CommitFile).where(CommitFile.commit_sha == commit_sha)
                ).all()
                for row in existing:
                    s.delete(row)
                s.flush()
                for f in files:
                    s.add(CommitFile(**f))
                s.commit()
        except SQLAlchemyError as exc:
            raise StorageError("save_commit_files", str(exc)) from exc

    # ─── Repository metadata cache ────────────────────────────────────────────

    def get_default_branch(
        self, repository: str, max_age: timedelta = DEFAULT_BRANCH_MAX_AGE
    ) -> Optional[str]:
        """Cached default branch, or None if missing or older than max_age."""
        try:
            with Session(self.engine) as s:
                meta = s.get(RepositoryMetadata, repository)
        except SQLAlchemyError as exc:
            raise StorageError("get_default_branch", str(exc)) from exc
        if meta is None or datetime.utcnow() - meta.last_fetched > max_age:
            return None
        return meta.default_branch

    def update_default_branch(self, repository: str, default_branch: str) -> None:
        try:
            with Session(self.engine) as s:
                meta = s.get(RepositoryMetadata, repository)
                if meta is None:
                    meta = RepositoryMetadata(
                        repository=repository, default_branch=default_branch
                    )
                else:
                    meta.default_branch = default_branch
                    meta.last_fetched = datetime.utcnow()
                s.add(meta)
                s.commit()
        except SQLAlchemyError as exc:
            raise StorageError("update_default_branch", str(exc)) from exc

    # ─── Statistics ───────────────────────────────────────────────────────────

    def counts(self) -> Dict[str, int]:
        try:
            with Session(self.engine) as s:
                return {
                    name: s.exec(select(func.count()).select_from(model)).one()
                    for name, model in (
                        ("pull_requests", PullRequest),
                        ("reviews", Review),
                        ("comments", Comment),
                        ("commits", Commit),
                    )
                }
        except SQLAlchemyError as exc:
            raise StorageError("counts", str(exc)) from exc

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _upsert(self, model, key, fields: Dict[str, Any], operation: str):
        try:
            with Session(self.engine) as s:
                existing = s.get(model, key)
                if existing:
                    # Update scalar fields in-place (keeps same primary key)
                    for k, v in fields.items():
                        setattr(existing, k, v)
                    row = existing
                else:
                    row = model(**fields)
                s.add(row)
                s.commit()
                s.refresh(row)
                return row
        except SQLAlchemyError as exc:
            raise StorageError(operation, str(exc)) from exc
