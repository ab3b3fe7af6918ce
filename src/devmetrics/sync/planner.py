"""
Sync planner: decides which days of a window still need fetching.

Pure function of ledger state and calendar math, no network calls. The
ledger is reached through the SyncedDaysLookup protocol so this module
never depends on the storage layer.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Protocol

from devmetrics.sync.calendar import DateWindow

PULL_REQUESTS = "pull_requests"


class SyncedDaysLookup(Protocol):
    def get_synced_days(
        self,
        resource_type: str,
        organization: str,
        repository: str,
        start_key: str,
        end_key: str,
    ) -> List[str]:
        ...


@dataclass
class SyncPlan:
    """Partition of a window's days into to-fetch and already-complete."""

    repository: str
    days_to_sync: List[str] = field(default_factory=list)
    days_skipped: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.days_to_sync

    @property
    def total_days(self) -> int:
        return len(self.days_to_sync) + len(self.days_skipped)


@dataclass
class SyncPlanSet:
    plans: Dict[str, SyncPlan] = field(default_factory=dict)

    @property
    def total_days_to_sync(self) -> int:
        return sum(len(p.days_to_sync) for p in self.plans.values())

    @property
    def total_days_skipped(self) -> int:
        return sum(len(p.days_skipped) for p in self.plans.values())

    @property
    def repos_needing_sync(self) -> List[str]:
        return [name for name, p in self.plans.items() if not p.is_complete]

    @property
    def repos_complete(self) -> List[str]:
        return [name for name, p in self.plans.items() if p.is_complete]


class SyncPlanner:
    def __init__(
        self,
        ledger: SyncedDaysLookup,
        organization: str,
        resource_type: str = PULL_REQUESTS,
    ):
        self.ledger = ledger
        self.organization = organization
        self.resource_type = resource_type

    def create_repo_plan(
        self, repository: str, window: DateWindow, force: bool = False
    ) -> SyncPlan:
        all_days = window.days()
        if force:
            return SyncPlan(repository, days_to_sync=all_days)

        synced = set(
            self.ledger.get_synced_days(
                self.resource_type,
                self.organization,
                repository,
                window.start_key,
                window.end_key,
            )
        )
        plan = SyncPlan(repository)
        for day in all_days:
            if day in synced:
                plan.days_skipped.append(day)
            else:
                plan.days_to_sync.append(day)
        return plan

    def create_plan(
        self, repositories: List[str], window: DateWindow, force: bool = False
    ) -> SyncPlanSet:
        plan_set = SyncPlanSet()
        for repo in repositories:
            plan_set.plans[repo] = self.create_repo_plan(repo, window, force)
        return plan_set
