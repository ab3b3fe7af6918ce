"""SQLModel engine singleton and session dependency."""
from typing import Generator

from sqlmodel import Session, SQLModel, create_engine

from devmetrics.config import get_settings

_engine = None


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}  # shared by FastAPI worker threads
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        init_db(_engine)
    return _engine


def init_db(engine) -> None:
    """Create all tables and apply pending migrations (idempotent)."""
    # Import all models so metadata is populated before create_all
    from devmetrics.models.github import (  # noqa: F401
        Comment,
        Commit,
        CommitFile,
        PullRequest,
        RepositoryMetadata,
        Review,
    )
    from devmetrics.models.sync import DailySyncMetadata, SyncLog  # noqa: F401
    from devmetrics.db.migrations import run_migrations

    SQLModel.metadata.create_all(engine)
    run_migrations(engine)


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session."""
    with Session(get_engine()) as session:
        yield session
