from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    github_token: str = ""
    github_organization: str = ""
    github_api_url: str = "https://api.github.com"
    github_max_retries: int = 3
    github_backoff_ms: int = 1000
    github_quota_threshold: int = 10  # pre-flight throttle kicks in below this
    github_timeout_seconds: float = 30.0

    sync_quota_safety_margin: int = 50
    sync_prs_per_day_estimate: int = 15
    sync_quota_estimate_mode: str = "heuristic"  # "heuristic" or "count"
    sync_default_days: int = 30
    sync_exclude_repos: str = ""  # comma-separated
    sync_hour: int = 3

    database_url: str = "sqlite:///./devmetrics.db"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def excluded_repos(self) -> List[str]:
        return [r.strip() for r in self.sync_exclude_repos.split(",") if r.strip()]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
