"""Structured progress events emitted by the synchronizer."""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Phase(Enum):
    RUN_STARTED = "run_started"
    QUOTA = "quota"
    REPOS_DISCOVERED = "repos_discovered"
    REPO_STARTED = "repo_started"
    PLANNED = "planned"
    ALREADY_SYNCED = "already_synced"
    REPO_SKIPPED = "repo_skipped"
    FETCHING = "fetching"
    RECORD_PROCESSED = "record_processed"
    RECORD_FAILED = "record_failed"
    COMMITS = "commits"
    DAYS_MARKED = "days_marked"
    REPO_FINISHED = "repo_finished"
    REPO_FAILED = "repo_failed"
    QUOTA_EXHAUSTED = "quota_exhausted"
    RUN_FINISHED = "run_finished"


@dataclass(frozen=True)
class QuotaSnapshot:
    limit: int
    remaining: int
    reset_epoch: int


@dataclass(frozen=True)
class ProgressEvent:
    phase: Phase
    message: str
    repository: Optional[str] = None
    processed: Optional[int] = None
    total: Optional[int] = None
    quota: Optional[QuotaSnapshot] = None

    def __str__(self) -> str:
        return self.message


ProgressCallback = Callable[[ProgressEvent], None]

_DEBUG_PHASES = {Phase.RECORD_PROCESSED, Phase.FETCHING}


class ProgressReporter:
    """Fans events out to the log and an optional caller callback."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback

    def emit(self, phase: Phase, message: str, **fields) -> ProgressEvent:
        event = ProgressEvent(phase=phase, message=message, **fields)
        level = logging.DEBUG if phase in _DEBUG_PHASES else logging.INFO
        logger.log(level, "[%s] %s", phase.value, message)
        if self._callback is not None:
            try:
                self._callback(event)
            except Exception:
                logger.exception("Progress callback failed for %s", phase.value)
        return event
