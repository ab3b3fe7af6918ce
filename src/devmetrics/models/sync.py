"""Sync bookkeeping models: the per-day ledger and the run audit log."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class DailySyncMetadata(SQLModel, table=True):
    """
    One row per (resource type, organization, repository, day) that a sync
    pass fully covered. Existence of the row is the completion signal;
    items_synced is informational only.
    """

    __tablename__ = "daily_sync_metadata"

    __table_args__ = (
        UniqueConstraint(
            "resource_type",
            "organization",
            "repository",
            "sync_date",
            name="uq_daily_sync_day",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    resource_type: str = Field(index=True)  # "pull_requests", "reviews", "comments", "commits"
    organization: str
    repository: str = Field(index=True)
    sync_date: str  # YYYY-MM-DD, UTC
    synced_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime)
    items_synced: int = 0


class SyncLog(SQLModel, table=True):
    """Records each sync run for audit and debugging."""

    id: Optional[int] = Field(default=None, primary_key=True)
    started_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime)
    finished_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    status: str = "running"  # "running", "success", "partial", "error"
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    repository: Optional[str] = None  # None = whole organization
    repos_synced: int = 0
    days_synced: int = 0
    prs_fetched: int = 0
    error_message: Optional[str] = None
