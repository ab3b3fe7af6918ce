"""
Exception hierarchy for devmetrics.

    DevMetricsError (base)
    ├── GitHubApiError          - upstream request failed (non-retryable or retries exhausted)
    │   ├── QuotaExceededError  - rate limit exhausted; resumable after reset_at
    │   ├── AuthenticationError - bad or missing token (HTTP 401)
    │   └── ResourceNotFoundError - HTTP 404
    ├── ValidationError         - malformed date window or day-key
    ├── StorageError            - ledger / record store write or read failed
    └── ConfigurationError      - missing credentials or organization

Per-record failures are collected by the synchronizer; QuotaExceededError
stops the repository loop; ValidationError, AuthenticationError and
StorageError propagate to the caller of sync().
"""
from datetime import datetime, timezone
from typing import Any, Optional


class DevMetricsError(Exception):
    """Base exception for all devmetrics errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class GitHubApiError(DevMetricsError):
    """An upstream request failed and will not be retried."""

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class QuotaExceededError(GitHubApiError):
    """
    The API quota is exhausted.

    Never retried by the client. Callers stop work and resume after reset_at.
    """

    def __init__(self, reset_at: datetime):
        if reset_at.tzinfo is None:
            reset_at = reset_at.replace(tzinfo=timezone.utc)
        self.reset_at = reset_at
        super().__init__(
            f"GitHub API rate limit exceeded. Resets at {reset_at.isoformat()}",
            status_code=429,
        )

    def minutes_until_reset(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        seconds = (self.reset_at - now).total_seconds()
        return max(0, int(-(-seconds // 60)))


class AuthenticationError(GitHubApiError):
    def __init__(self, message: str = "GitHub authentication failed. Check your token."):
        super().__init__(message, status_code=401)


class ResourceNotFoundError(GitHubApiError):
    def __init__(self, resource_type: str, resource_id: str, details: Optional[str] = None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"{resource_type} not found: {resource_id}", details, status_code=404
        )


class ValidationError(DevMetricsError):
    """Input validation failed (date windows, day-keys)."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(f"{field}: {message}")
        self.message = message

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class StorageError(DevMetricsError):
    """A database operation failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"Storage operation '{operation}' failed", message)


class ConfigurationError(DevMetricsError):
    """Required settings are missing."""
