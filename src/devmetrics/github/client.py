"""
Async GitHub REST client with quota tracking, throttling and retries.

Every request goes through _request(), which:
  1. Throttles pre-emptively: if the cached quota is below the threshold and
     the reset time is still ahead, sleeps until the reset and re-checks.
  2. Classifies failures:
       401             -> AuthenticationError (never retried)
       404             -> ResourceNotFoundError (never retried)
       429, 403 quota  -> QuotaExceededError carrying the reset time (never retried)
       other 4xx       -> GitHubApiError (never retried)
       5xx, network    -> retried up to max_retries with backoff_ms * 2**attempt
  3. Refreshes the cached quota from the X-RateLimit-* response headers.

List endpoints are exposed as PageIterator objects: a fresh lazy iterator
per call, so a consumer can stop pulling pages at any point without any
further request being made.
"""
import asyncio
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from devmetrics.errors import (
    AuthenticationError,
    GitHubApiError,
    QuotaExceededError,
    ResourceNotFoundError,
)
from devmetrics.github.schemas import (
    GitHubComment,
    GitHubCommit,
    GitHubPullRequest,
    GitHubRepository,
    GitHubReview,
    RateLimitResponse,
)
from devmetrics.sync.progress import QuotaSnapshot

logger = logging.getLogger(__name__)

PER_PAGE = 100
# detail + reviews + 2 comment kinds + PR commits + 1 spare
CALLS_PER_RECORD = 6
# Used when the server-side PR count cannot be obtained
FALLBACK_PR_COUNT = 50
_QUOTA_FALLBACK_SECONDS = 3600


@dataclass
class Quota:
    limit: int
    remaining: int
    reset_epoch: int  # seconds since epoch

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset_epoch, tz=timezone.utc)

    def snapshot(self) -> QuotaSnapshot:
        return QuotaSnapshot(self.limit, self.remaining, self.reset_epoch)


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: datetime) -> str:
    return _as_aware(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class PageIterator:
    """
    Lazy async iterator over the pages of one GitHub list endpoint.

    Yields each page as a list of raw dicts. A page shorter than per_page
    is the last one. Nothing is fetched until the first __anext__ call.
    """

    def __init__(
        self,
        client: "GitHubClient",
        path: str,
        params: Optional[Dict[str, Any]] = None,
        per_page: int = PER_PAGE,
    ):
        self._client = client
        self._path = path
        self._params = dict(params or {})
        self._per_page = per_page
        self._page = 1
        self._done = False

    def __aiter__(self) -> "PageIterator":
        return self

    async def __anext__(self) -> List[Dict[str, Any]]:
        if self._done:
            raise StopAsyncIteration
        params = {**self._params, "per_page": self._per_page, "page": self._page}
        response = await self._client._request("GET", self._path, params=params)
        items = response.json()
        self._page += 1
        if len(items) < self._per_page:
            self._done = True
        if not items:
            raise StopAsyncIteration
        return items

    @property
    def pages_fetched(self) -> int:
        return self._page - 1


class GitHubClient:
    """Rate-limit aware client for one GitHub organization."""

    def __init__(
        self,
        token: str,
        organization: str,
        *,
        api_url: str = "https://api.github.com",
        max_retries: int = 3,
        backoff_ms: int = 1000,
        quota_threshold: int = 10,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            token: Personal access token or app token (sent as Bearer).
            organization: Owner of every repository this client touches.
            transport: Optional httpx transport (httpx.MockTransport in tests).
        """
        self._organization = organization
        self.max_retries = max_retries
        self.backoff_ms = backoff_ms
        self.quota_threshold = quota_threshold
        self.quota: Optional[Quota] = None
        self._http = httpx.AsyncClient(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "devmetrics",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, transport=None) -> "GitHubClient":
        return cls(
            settings.github_token,
            settings.github_organization,
            api_url=settings.github_api_url,
            max_retries=settings.github_max_retries,
            backoff_ms=settings.github_backoff_ms,
            quota_threshold=settings.github_quota_threshold,
            timeout=settings.github_timeout_seconds,
            transport=transport,
        )

    @property
    def organization(self) -> str:
        return self._organization

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ─── Quota ────────────────────────────────────────────────────────────────

    async def check_quota(self) -> Quota:
        """Read the current core quota from /rate_limit and cache it."""
        response = await self._request("GET", "/rate_limit", throttle=False)
        rate = RateLimitResponse.model_validate(response.json()).rate
        self.quota = Quota(rate.limit, rate.remaining, rate.reset)
        return self.quota

    def has_quota_for(self, calls: int, safety_margin: int = 0) -> bool:
        """True if the last known quota covers calls plus safety_margin."""
        if self.quota is None:
            return True
        return self.quota.remaining >= calls + safety_margin

    @staticmethod
    def estimate_calls(
        expected_records: int,
        calls_per_record: int = CALLS_PER_RECORD,
        per_page: int = PER_PAGE,
    ) -> int:
        """List pages plus the per-record detail and sub-resource calls."""
        return math.ceil(expected_records / per_page) + expected_records * calls_per_record

    async def _throttle_if_needed(self) -> None:
        if self.quota is None:
            await self.check_quota()
        if self.quota.remaining >= self.quota_threshold:
            return
        wait = self.quota.reset_epoch - time.time()
        if wait > 0:
            logger.warning(
                "GitHub quota low (%d remaining), sleeping %.0fs until reset",
                self.quota.remaining,
                wait,
            )
            await asyncio.sleep(wait)
            await self.check_quota()

    def _update_quota_from_headers(self, headers: httpx.Headers) -> None:
        try:
            limit = int(headers["x-ratelimit-limit"])
            remaining = int(headers["x-ratelimit-remaining"])
            reset = int(headers["x-ratelimit-reset"])
        except (KeyError, ValueError):
            return
        self.quota = Quota(limit, remaining, reset)

    def _quota_reset_time(self, response: httpx.Response) -> datetime:
        header = response.headers.get("x-ratelimit-reset")
        if header and header.isdigit():
            return datetime.fromtimestamp(int(header), tz=timezone.utc)
        if self.quota is not None:
            return self.quota.reset_at
        return datetime.fromtimestamp(time.time() + _QUOTA_FALLBACK_SECONDS, tz=timezone.utc)

    @staticmethod
    def _is_quota_response(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.headers.get("x-ratelimit-remaining") == "0":
            return True
        return "rate limit" in response.text.lower()

    # ─── Core request ─────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        resource: Optional[Tuple[str, str]] = None,
        throttle: bool = True,
    ) -> httpx.Response:
        last_error = ""
        last_status: Optional[int] = None

        for attempt in range(self.max_retries + 1):
            if throttle:
                await self._throttle_if_needed()
            try:
                response = await self._http.request(method, path, params=params)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                last_status = None
            else:
                self._update_quota_from_headers(response.headers)
                status = response.status_code
                if status < 400:
                    return response
                if status == 401:
                    raise AuthenticationError()
                if status in (403, 429) and self._is_quota_response(response):
                    raise QuotaExceededError(self._quota_reset_time(response))
                if status == 404:
                    resource_type, resource_id = resource or ("resource", path)
                    raise ResourceNotFoundError(resource_type, resource_id)
                if status < 500:
                    raise GitHubApiError(
                        f"GitHub API request failed: {method} {path}",
                        details=response.text[:200],
                        status_code=status,
                    )
                last_error = f"HTTP {status}"
                last_status = status

            if attempt < self.max_retries:
                backoff = self.backoff_ms * 2 ** attempt / 1000
                logger.warning(
                    "%s %s failed (%s), retry %d/%d in %.1fs",
                    method,
                    path,
                    last_error,
                    attempt + 1,
                    self.max_retries,
                    backoff,
                )
                await asyncio.sleep(backoff)

        logger.error("%s %s failed after %d attempts: %s", method, path, self.max_retries + 1, last_error)
        raise GitHubApiError(
            f"Request failed after retries: {method} {path}",
            details=last_error,
            status_code=last_status or 500,
        )

    def paginate(self, path: str, params: Optional[Dict[str, Any]] = None) -> PageIterator:
        return PageIterator(self, path, params)

    def _repo_path(self, repo: str, suffix: str = "") -> str:
        return f"/repos/{self._organization}/{repo}{suffix}"

    # ─── Repositories ─────────────────────────────────────────────────────────

    async def fetch_repositories(self) -> List[GitHubRepository]:
        repos: List[GitHubRepository] = []
        async for page in self.paginate(f"/orgs/{self._organization}/repos", {"type": "all"}):
            repos.extend(GitHubRepository.model_validate(r) for r in page)
        return repos

    async def fetch_repository_info(self, repo: str) -> GitHubRepository:
        response = await self._request(
            "GET", self._repo_path(repo), resource=("repository", repo)
        )
        return GitHubRepository.model_validate(response.json())

    # ─── Pull requests ────────────────────────────────────────────────────────

    async def fetch_pull_requests(
        self,
        repo: str,
        since: Optional[datetime] = None,
        state: str = "all",
    ) -> List[GitHubPullRequest]:
        """
        List pull requests most recently updated first.

        Stops paging at the first PR last updated before `since`; everything
        after it in the listing is older still.
        """
        cutoff = _as_aware(since) if since else None
        params = {"state": state, "sort": "updated", "direction": "desc"}
        prs: List[GitHubPullRequest] = []
        async for page in self.paginate(self._repo_path(repo, "/pulls"), params):
            for raw in page:
                pr = GitHubPullRequest.model_validate(raw)
                if cutoff and pr.updated_at < cutoff:
                    return prs
                prs.append(pr)
        return prs

    async def count_pull_requests(self, repo: str, since: Optional[datetime] = None) -> int:
        """
        Count PRs created since `since` (newest first, stopping at the first
        older one). Falls back to FALLBACK_PR_COUNT if the listing fails for
        any reason other than quota or authentication.
        """
        cutoff = _as_aware(since) if since else None
        params = {"state": "all", "sort": "created", "direction": "desc"}
        count = 0
        try:
            async for page in self.paginate(self._repo_path(repo, "/pulls"), params):
                for raw in page:
                    if cutoff and _parse_timestamp(raw["created_at"]) < cutoff:
                        return count
                    count += 1
        except (QuotaExceededError, AuthenticationError):
            raise
        except (GitHubApiError, KeyError, ValueError) as exc:
            logger.warning(
                "Could not count PRs for %s (%s), assuming %d", repo, exc, FALLBACK_PR_COUNT
            )
            return FALLBACK_PR_COUNT
        return count

    async def fetch_pull_request(self, repo: str, number: int) -> GitHubPullRequest:
        """Single PR with the size and count fields the listing omits."""
        response = await self._request(
            "GET",
            self._repo_path(repo, f"/pulls/{number}"),
            resource=("pull request", f"{repo}#{number}"),
        )
        return GitHubPullRequest.model_validate(response.json())

    async def fetch_reviews(self, repo: str, number: int) -> List[GitHubReview]:
        path = self._repo_path(repo, f"/pulls/{number}/reviews")
        return [GitHubReview.model_validate(r) async for r in self._items(path)]

    async def fetch_issue_comments(self, repo: str, number: int) -> List[GitHubComment]:
        path = self._repo_path(repo, f"/issues/{number}/comments")
        return [GitHubComment.model_validate(c) async for c in self._items(path)]

    async def fetch_review_comments(self, repo: str, number: int) -> List[GitHubComment]:
        path = self._repo_path(repo, f"/pulls/{number}/comments")
        return [GitHubComment.model_validate(c) async for c in self._items(path)]

    async def fetch_pr_commits(self, repo: str, number: int) -> List[GitHubCommit]:
        path = self._repo_path(repo, f"/pulls/{number}/commits")
        return [GitHubCommit.model_validate(c) async for c in self._items(path)]

    # ─── Commits ──────────────────────────────────────────────────────────────

    async def fetch_commit_details(self, repo: str, sha: str) -> GitHubCommit:
        """Single commit including stats and changed files."""
        response = await self._request(
            "GET",
            self._repo_path(repo, f"/commits/{sha}"),
            resource=("commit", f"{repo}@{sha[:7]}"),
        )
        return GitHubCommit.model_validate(response.json())

    async def fetch_commits(
        self,
        repo: str,
        branch: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[GitHubCommit]:
        params: Dict[str, Any] = {"sha": branch}
        if since:
            params["since"] = _iso(since)
        if until:
            params["until"] = _iso(until)

        commits: List[GitHubCommit] = []
        async for page in self.paginate(self._repo_path(repo, "/commits"), params):
            commits.extend(GitHubCommit.model_validate(c) for c in page)
        logger.debug("Fetched %d commits from %s@%s", len(commits), repo, branch)
        return commits

    async def _items(self, path: str, params: Optional[Dict[str, Any]] = None):
        async for page in self.paginate(path, params):
            for item in page:
                yield item
