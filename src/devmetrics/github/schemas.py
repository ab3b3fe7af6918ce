"""
Pydantic models for the GitHub REST payloads we consume.

Only the fields the normalizer reads are declared; everything else in the
response is ignored. Validation failures surface as pydantic.ValidationError
and are treated as per-record errors by the synchronizer.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class GitHubUser(BaseModel):
    login: str
    id: int
    type: str = "User"


class GitHubRepository(BaseModel):
    id: int
    name: str
    full_name: str
    default_branch: str = "main"
    private: bool = False
    archived: bool = False
    disabled: bool = False
    fork: bool = False
    description: Optional[str] = None
    pushed_at: Optional[datetime] = None


class GitHubCommitIdentity(BaseModel):
    name: str = ""
    email: str = ""
    date: datetime


class GitHubCommitData(BaseModel):
    author: GitHubCommitIdentity
    committer: GitHubCommitIdentity
    message: str = ""


class GitHubCommitStats(BaseModel):
    additions: int = 0
    deletions: int = 0
    total: int = 0


class GitHubCommitFile(BaseModel):
    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0


class GitHubParent(BaseModel):
    sha: str


class GitHubAuthorRef(BaseModel):
    login: str


class GitHubCommit(BaseModel):
    """A commit from listCommits (no stats/files) or getCommit (with both)."""

    sha: str
    commit: GitHubCommitData
    author: Optional[GitHubAuthorRef] = None
    parents: List[GitHubParent] = Field(default_factory=list)
    stats: Optional[GitHubCommitStats] = None
    files: Optional[List[GitHubCommitFile]] = None


class GitHubLabel(BaseModel):
    name: str


class GitHubBranchRepo(BaseModel):
    name: str
    full_name: str


class GitHubHeadRef(BaseModel):
    ref: str


class GitHubBaseRef(BaseModel):
    ref: str
    repo: GitHubBranchRepo


class GitHubPullRequest(BaseModel):
    """
    Pull request from pulls.list or pulls.get.

    The list endpoint omits the size and count fields; they default to 0
    and are filled in by the per-PR detail fetch.
    """

    id: int
    number: int
    title: str
    state: Literal["open", "closed"]
    user: Optional[GitHubUser] = None
    body: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    merged_by: Optional[GitHubUser] = None
    draft: bool = False
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    comments: int = 0
    review_comments: int = 0
    commits: int = 0
    labels: List[GitHubLabel] = Field(default_factory=list)
    requested_reviewers: List[GitHubUser] = Field(default_factory=list)
    html_url: str = ""
    head: GitHubHeadRef
    base: GitHubBaseRef


class GitHubReview(BaseModel):
    id: int
    user: Optional[GitHubUser] = None
    body: Optional[str] = None
    state: Literal["APPROVED", "CHANGES_REQUESTED", "COMMENTED", "DISMISSED", "PENDING"]
    submitted_at: Optional[datetime] = None  # absent on PENDING reviews
    html_url: str = ""


class GitHubComment(BaseModel):
    """Issue comment or review comment; path/line only set on the latter."""

    id: int
    user: Optional[GitHubUser] = None
    body: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    html_url: str = ""
    pull_request_review_id: Optional[int] = None
    path: Optional[str] = None
    line: Optional[int] = None


class RateLimit(BaseModel):
    limit: int
    remaining: int
    reset: int  # epoch seconds
    used: int = 0


class RateLimitResponse(BaseModel):
    rate: RateLimit
