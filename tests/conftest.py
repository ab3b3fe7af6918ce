"""Shared test fixtures."""
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from devmetrics.models.github import (  # noqa: F401
    Comment,
    Commit,
    CommitFile,
    PullRequest,
    RepositoryMetadata,
    Review,
)
from devmetrics.models.sync import DailySyncMetadata, SyncLog  # noqa: F401
from devmetrics.db.ledger import DailySyncLedger
from devmetrics.db.stores import ActivityStore


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="ledger")
def ledger_fixture(engine) -> DailySyncLedger:
    return DailySyncLedger(engine)


@pytest.fixture(name="store")
def store_fixture(engine) -> ActivityStore:
    return ActivityStore(engine)
