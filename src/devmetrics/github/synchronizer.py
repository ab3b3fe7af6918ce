"""
GitHubSynchronizer: incremental, resumable day-level sync of pull request
activity into the local database.

Per repository, strictly sequentially:
  1. Plan          - SyncPlanner splits the window into days to sync / already synced
  2. Batch         - contiguous missing days collapse into DayBatches; the
                     earliest batch start bounds the PR listing
  3. Quota gate    - skip the repository (nothing marked) if the estimated
                     call count does not fit the remaining quota
  4. Fetch         - PRs sorted by updated desc, paging stops at the bound
  5. Filter        - created/merged/closed inside the window, deduped by id
  6. Per PR        - detail, reviews, comments, PR commits; failures are
                     recorded and the loop moves on
  7. Attribution   - days of every fully persisted PR count as confirmed
  8. Commits       - default-branch commits over the batch span
  9. Mark days     - no errors: every planned day; errors: confirmed days only

A QuotaExceededError anywhere in steps 3-8 stops the whole run. Days of the
repository in flight are left unmarked; repositories finished earlier keep
their ledger rows, so re-running the same window resumes where it stopped.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Union

from devmetrics.errors import (
    AuthenticationError,
    QuotaExceededError,
    StorageError,
    ValidationError,
)
from devmetrics.github.normalizer import (
    ISSUE_COMMENT,
    REVIEW_COMMENT,
    is_direct_commit,
    normalize_comment,
    normalize_commit,
    normalize_commit_files,
    normalize_pull_request,
    normalize_review,
)
from devmetrics.github.schemas import GitHubPullRequest
from devmetrics.models.sync import DailySyncMetadata
from devmetrics.sync.calendar import DateWindow, batch_contiguous, day_key
from devmetrics.sync.planner import PULL_REQUESTS, SyncPlan, SyncPlanner
from devmetrics.sync.progress import Phase, ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)

# Concurrent commit-detail requests per batch
COMMIT_DETAIL_BATCH_SIZE = 15
# Lower bound for the heuristic PR estimate of the quota gate
MIN_ESTIMATED_PRS = 10

# Never contained per record or per repository
_FATAL_ERRORS = (QuotaExceededError, AuthenticationError, StorageError, ValidationError)


@dataclass
class SyncOptions:
    start_date: Union[date, datetime]
    end_date: Union[date, datetime]
    repo: Optional[str] = None  # None = every active repository of the organization
    exclude_repos: List[str] = field(default_factory=list)
    force: bool = False
    skip_quota_check: bool = False


@dataclass
class SyncSummary:
    repo_count: int = 0
    repos_skipped: int = 0
    prs_fetched: int = 0
    prs_skipped: int = 0
    reviews_fetched: int = 0
    comments_fetched: int = 0
    commits_fetched: int = 0
    days_synced: int = 0
    days_skipped: int = 0
    duration_ms: int = 0
    errors: List[str] = field(default_factory=list)
    quota_reset_at: Optional[datetime] = None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class _PullRequestResult:
    detail: GitHubPullRequest
    reviews: int
    comments: int
    commits: int


class GitHubSynchronizer:
    """Orchestrates GitHub -> DB sync for an organization."""

    def __init__(
        self,
        client,
        store,
        ledger,
        planner: Optional[SyncPlanner] = None,
        *,
        safety_margin: int = 50,
        prs_per_day_estimate: int = 15,
        estimate_mode: str = "heuristic",
    ):
        """
        Args:
            client: GitHubClient instance (or AsyncMock in tests).
            store: ActivityStore for pull requests, reviews, comments, commits.
            ledger: DailySyncLedger recording completed days.
            planner: Defaults to a SyncPlanner over `ledger`.
            estimate_mode: "heuristic" (prs_per_day_estimate per missing day)
                or "count" (server-side PR count since the fetch start).
        """
        self.client = client
        self.store = store
        self.ledger = ledger
        self.planner = planner or SyncPlanner(ledger, client.organization)
        self.safety_margin = safety_margin
        self.prs_per_day_estimate = prs_per_day_estimate
        self.estimate_mode = estimate_mode

    @property
    def organization(self) -> str:
        return self.client.organization

    async def sync(
        self, options: SyncOptions, on_progress: Optional[ProgressCallback] = None
    ) -> SyncSummary:
        """
        Sync every requested repository over the options' date window.

        Per-PR and per-repository failures are collected into
        summary.errors. A quota error inside the repository loop ends the
        run and is reported in the summary.

        Raises:
            ValidationError: start date after end date.
            AuthenticationError: the token was rejected.
            QuotaExceededError: quota exhausted before any repository started.
            StorageError: the ledger or a record store failed.
        """
        started = time.monotonic()
        window = DateWindow.of(options.start_date, options.end_date)
        summary = SyncSummary()
        progress = ProgressReporter(on_progress)

        initial = await self.client.check_quota()
        progress.emit(
            Phase.RUN_STARTED, f"Date range: {window.start_key} to {window.end_key}"
        )
        reset_in = max(0, int(-(-(initial.reset_epoch - time.time()) // 60)))
        progress.emit(
            Phase.QUOTA,
            f"GitHub API: {initial.remaining}/{initial.limit} requests remaining "
            f"(resets in {reset_in} min)",
            quota=initial.snapshot(),
        )

        if options.repo:
            repos = [options.repo]
        else:
            repos = await self._discover_repositories(window, options, summary, progress)

        for index, repo in enumerate(repos):
            progress.emit(
                Phase.REPO_STARTED,
                f"[{index + 1}/{len(repos)}] Syncing {repo}...",
                repository=repo,
                processed=index + 1,
                total=len(repos),
            )
            try:
                await self._sync_repository(repo, window, options, summary, progress)
            except QuotaExceededError as exc:
                remaining = len(repos) - index
                summary.quota_reset_at = exc.reset_at
                summary.errors.append(
                    f"Rate limit exceeded. {remaining} repositories remaining."
                )
                progress.emit(
                    Phase.QUOTA_EXHAUSTED,
                    f"GitHub API rate limit exceeded. Quota resets at "
                    f"{exc.reset_at.isoformat()} (in {exc.minutes_until_reset()} min). "
                    f"Re-run the same command to resume; synced days are skipped.",
                    repository=repo,
                    processed=index,
                    total=len(repos),
                )
                break
            except _FATAL_ERRORS:
                raise
            except Exception as exc:
                summary.repos_skipped += 1
                summary.errors.append(f"{repo}: {exc}")
                logger.exception("Repository sync failed: %s", repo)
                progress.emit(
                    Phase.REPO_FAILED, f"Error syncing {repo}: {exc}", repository=repo
                )

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        final = self.client.quota
        if final is not None:
            progress.emit(
                Phase.RUN_FINISHED,
                f"API usage: {max(0, initial.remaining - final.remaining)} requests used, "
                f"{final.remaining} remaining",
                quota=final.snapshot(),
            )
        return summary

    # ─── Repository discovery ─────────────────────────────────────────────────

    async def _discover_repositories(
        self,
        window: DateWindow,
        options: SyncOptions,
        summary: SyncSummary,
        progress: ProgressReporter,
    ) -> List[str]:
        """Active organization repositories, minus excluded and inactive ones."""
        progress.emit(Phase.FETCHING, "Fetching repositories from organization...")
        repos = await self.client.fetch_repositories()
        excluded = set(options.exclude_repos)

        active: List[str] = []
        for repo in repos:
            if repo.name in excluded:
                summary.repos_skipped += 1
                continue
            if repo.archived or repo.disabled:
                continue
            # No push since the window opened: nothing new to find
            if repo.pushed_at and day_key(repo.pushed_at) < window.start_key:
                summary.repos_skipped += 1
                continue
            active.append(repo.name)

        progress.emit(
            Phase.REPOS_DISCOVERED,
            f"Found {len(repos)} repositories, filtered {len(repos) - len(active)} "
            f"({len(excluded)} excluded, others archived or inactive since "
            f"{window.start_key}); syncing {len(active)}",
            processed=len(active),
            total=len(repos),
        )
        return active

    # ─── Single repository ────────────────────────────────────────────────────

    async def _sync_repository(
        self,
        repo: str,
        window: DateWindow,
        options: SyncOptions,
        summary: SyncSummary,
        progress: ProgressReporter,
    ) -> None:
        plan = self.planner.create_repo_plan(repo, window, options.force)
        summary.days_skipped += len(plan.days_skipped)

        if plan.is_complete:
            progress.emit(
                Phase.ALREADY_SYNCED,
                f"{repo}: all {plan.total_days} days already synced. Use --force to resync.",
                repository=repo,
            )
            summary.repo_count += 1
            return

        progress.emit(
            Phase.PLANNED,
            f"{repo}: {len(plan.days_to_sync)} days to sync "
            f"({len(plan.days_skipped)} already synced)",
            repository=repo,
            processed=len(plan.days_skipped),
            total=plan.total_days,
        )

        batches = batch_contiguous(plan.days_to_sync)
        fetch_since = batches[0].since
        fetch_until = batches[-1].until

        # An explicitly requested repository is always attempted
        if not (options.skip_quota_check or options.repo):
            if not await self._has_quota(repo, plan, fetch_since, progress):
                summary.repos_skipped += 1
                return

        if options.force:
            self.ledger.delete_range(
                PULL_REQUESTS, self.organization, repo, window.start_key, window.end_key
            )

        progress.emit(Phase.FETCHING, f"{repo}: fetching pull requests...", repository=repo)
        candidates = await self.client.fetch_pull_requests(repo, since=fetch_since)
        prs = self._filter_pull_requests(candidates, window)
        summary.prs_skipped += len(candidates) - len(prs)
        progress.emit(
            Phase.FETCHING,
            f"{repo}: {len(prs)} pull requests in range ({len(candidates)} listed)",
            repository=repo,
            total=len(prs),
        )

        planned: Set[str] = set(plan.days_to_sync)
        confirmed: Dict[str, int] = {}
        failed_days: Set[str] = set()
        errors_before = len(summary.errors)
        repo_prs = repo_reviews = repo_comments = 0

        for index, pr in enumerate(prs):
            try:
                result = await self._process_pull_request(repo, pr)
            except _FATAL_ERRORS:
                raise
            except Exception as exc:
                summary.errors.append(f"{repo}/PR #{pr.number}: {exc}")
                failed_days.update(self._attributed_days(pr, window, planned))
                logger.warning("PR %s#%d failed: %s", repo, pr.number, exc)
                progress.emit(
                    Phase.RECORD_FAILED,
                    f"PR #{pr.number}: {exc}",
                    repository=repo,
                    processed=index + 1,
                    total=len(prs),
                )
                continue

            summary.prs_fetched += 1
            summary.reviews_fetched += result.reviews
            summary.comments_fetched += result.comments
            repo_prs += 1
            repo_reviews += result.reviews
            repo_comments += result.comments
            for day in self._attributed_days(result.detail, window, planned):
                confirmed[day] = confirmed.get(day, 0) + 1

            progress.emit(
                Phase.RECORD_PROCESSED,
                f"PR #{pr.number}: {result.reviews} reviews, {result.comments} comments, "
                f"{result.commits} commits",
                repository=repo,
                processed=index + 1,
                total=len(prs),
            )

        repo_commits = 0
        try:
            repo_commits = await self._sync_commits(repo, fetch_since, fetch_until, progress)
            summary.commits_fetched += repo_commits
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            summary.errors.append(f"{repo}/Commits: {exc}")
            logger.warning("Commit sync failed for %s: %s", repo, exc)
            progress.emit(Phase.RECORD_FAILED, f"Commits: {exc}", repository=repo)

        had_errors = len(summary.errors) > errors_before
        if had_errors:
            days_to_mark = [
                d for d in plan.days_to_sync if d in confirmed and d not in failed_days
            ]
        else:
            days_to_mark = plan.days_to_sync
        self._mark_days(repo, days_to_mark, confirmed)
        summary.days_synced += len(days_to_mark)

        unmarked = len(plan.days_to_sync) - len(days_to_mark)
        message = f"{repo}: {len(days_to_mark)} days marked as synced"
        if unmarked:
            message += f", {unmarked} left pending due to errors (retried next sync)"
        progress.emit(
            Phase.DAYS_MARKED,
            message,
            repository=repo,
            processed=len(days_to_mark),
            total=len(plan.days_to_sync),
        )

        summary.repo_count += 1
        quota = self.client.quota
        progress.emit(
            Phase.REPO_FINISHED,
            f"{repo}: {repo_prs} PRs, {repo_reviews} reviews, {repo_comments} comments, "
            f"{repo_commits} commits",
            repository=repo,
            quota=quota.snapshot() if quota is not None else None,
        )

    async def _has_quota(
        self,
        repo: str,
        plan: SyncPlan,
        fetch_since: datetime,
        progress: ProgressReporter,
    ) -> bool:
        quota = await self.client.check_quota()
        if self.estimate_mode == "count":
            expected_prs = await self.client.count_pull_requests(repo, since=fetch_since)
        else:
            expected_prs = max(
                MIN_ESTIMATED_PRS, self.prs_per_day_estimate * len(plan.days_to_sync)
            )
        calls = self.client.estimate_calls(expected_prs)

        if not self.client.has_quota_for(calls, self.safety_margin):
            progress.emit(
                Phase.REPO_SKIPPED,
                f"{repo}: ~{expected_prs} PRs (~{calls} API calls needed), "
                f"insufficient quota ({quota.remaining} remaining), skipping",
                repository=repo,
                quota=quota.snapshot(),
            )
            return False

        progress.emit(
            Phase.QUOTA,
            f"{repo}: estimated ~{calls} API calls for ~{expected_prs} PRs",
            repository=repo,
            quota=quota.snapshot(),
        )
        return True

    # ─── Pull requests ────────────────────────────────────────────────────────

    @staticmethod
    def _filter_pull_requests(
        prs: Iterable[GitHubPullRequest], window: DateWindow
    ) -> List[GitHubPullRequest]:
        """In-window PRs (created, merged or closed), first occurrence of each id."""
        seen: Set[int] = set()
        kept: List[GitHubPullRequest] = []
        for pr in prs:
            if pr.id in seen:
                continue
            if not (
                window.contains(pr.created_at)
                or window.contains(pr.merged_at)
                or window.contains(pr.closed_at)
            ):
                continue
            seen.add(pr.id)
            kept.append(pr)
        return kept

    @staticmethod
    def _attributed_days(
        pr: GitHubPullRequest, window: DateWindow, planned: Set[str]
    ) -> Set[str]:
        days = set()
        for ts in (pr.created_at, pr.merged_at, pr.closed_at):
            if ts is not None and window.contains(ts):
                key = day_key(ts)
                if key in planned:
                    days.add(key)
        return days

    async def _process_pull_request(
        self, repo: str, pr: GitHubPullRequest
    ) -> _PullRequestResult:
        """Fetch and persist one PR with its reviews, comments and commits."""
        detail = await self.client.fetch_pull_request(repo, pr.number)
        self.store.save_pull_request(normalize_pull_request(detail))

        # PENDING reviews are unsubmitted drafts
        reviews = [
            r for r in await self.client.fetch_reviews(repo, pr.number)
            if r.state != "PENDING"
        ]
        for review in reviews:
            self.store.save_review(normalize_review(review, detail.id, repo))

        issue_comments = await self.client.fetch_issue_comments(repo, pr.number)
        review_comments = await self.client.fetch_review_comments(repo, pr.number)
        for comment in issue_comments:
            self.store.save_comment(
                normalize_comment(comment, detail.id, repo, ISSUE_COMMENT)
            )
        for comment in review_comments:
            self.store.save_comment(
                normalize_comment(comment, detail.id, repo, REVIEW_COMMENT)
            )

        commits = [c for c in await self.client.fetch_pr_commits(repo, pr.number) if c.author]
        for commit in commits:
            self.store.save_commit(normalize_commit(commit, repo, detail.id))

        return _PullRequestResult(
            detail=detail,
            reviews=len(reviews),
            comments=len(issue_comments) + len(review_comments),
            commits=len(commits),
        )

    # ─── Default-branch commits ───────────────────────────────────────────────

    async def _sync_commits(
        self,
        repo: str,
        since: datetime,
        until: datetime,
        progress: ProgressReporter,
    ) -> int:
        """Persist default-branch commits in [since, until]. Returns commits listed."""
        branch = await self._default_branch(repo)
        commits = await self.client.fetch_commits(repo, branch, since=since, until=until)

        # Merge and squash-merge commits are already covered by their PR
        direct = [c for c in commits if is_direct_commit(c)]
        detailed = {}
        for start in range(0, len(direct), COMMIT_DETAIL_BATCH_SIZE):
            batch = direct[start:start + COMMIT_DETAIL_BATCH_SIZE]
            results = await asyncio.gather(
                *(self.client.fetch_commit_details(repo, c.sha) for c in batch)
            )
            for commit in results:
                detailed[commit.sha] = commit
            done = start + len(batch)
            progress.emit(
                Phase.COMMITS,
                f"{repo}: commit details {done}/{len(direct)} "
                f"({round(done * 100 / len(direct))}%)",
                repository=repo,
                processed=done,
                total=len(direct),
            )

        for listed in commits:
            if listed.author is None:
                continue
            commit = detailed.get(listed.sha, listed)
            self.store.save_commit(normalize_commit(commit, repo))
            files = normalize_commit_files(commit, repo)
            if files:
                self.store.save_commit_files(commit.sha, files)

        progress.emit(
            Phase.COMMITS,
            f"{repo}: {len(commits)} commits on {branch} ({len(direct)} direct)",
            repository=repo,
        )
        return len(commits)

    async def _default_branch(self, repo: str) -> str:
        cached = self.store.get_default_branch(repo)
        if cached:
            return cached
        info = await self.client.fetch_repository_info(repo)
        self.store.update_default_branch(repo, info.default_branch)
        logger.info("Default branch of %s: %s (cached for 7 days)", repo, info.default_branch)
        return info.default_branch

    # ─── Ledger ───────────────────────────────────────────────────────────────

    def _mark_days(self, repo: str, days: List[str], confirmed: Dict[str, int]) -> None:
        if not days:
            return
        now = datetime.utcnow()
        self.ledger.save_batch(
            [
                DailySyncMetadata(
                    resource_type=PULL_REQUESTS,
                    organization=self.organization,
                    repository=repo,
                    sync_date=day,
                    synced_at=now,
                    items_synced=confirmed.get(day, 0),
                )
                for day in days
            ]
        )


def format_summary(summary: SyncSummary) -> str:
    """Fixed-layout, human-readable summary block."""
    rule = "=" * 40
    lines = [
        "",
        rule,
        "          SYNC SUMMARY",
        rule,
        "",
        f"Repositories synced:    {summary.repo_count}",
        f"Repositories skipped:   {summary.repos_skipped}",
        f"Days synced:            {summary.days_synced}",
        f"Days skipped:           {summary.days_skipped} (already synced)",
        f"Pull requests fetched:  {summary.prs_fetched}",
        f"Pull requests skipped:  {summary.prs_skipped}",
        f"Reviews fetched:        {summary.reviews_fetched}",
        f"Comments fetched:       {summary.comments_fetched}",
        f"Commits fetched:        {summary.commits_fetched}",
        f"Duration:               {summary.duration_ms / 1000:.2f}s",
        "",
    ]
    if summary.errors:
        lines.append("Errors:")
        lines.extend(f"   {error}" for error in summary.errors)
        if summary.quota_reset_at is not None:
            lines.append(f"   Quota resets at {summary.quota_reset_at.isoformat()}")
    else:
        lines.append("Sync completed successfully!")
    lines.extend(["", rule])
    return "\n".join(lines)
