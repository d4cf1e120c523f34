"""
Environment-driven runtime settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from .errors import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///research_scraper.db"
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; ResearchScraper/1.0)"


def load_env_files(project_root: Path | None = None) -> None:
    """
    Load simple KEY=VALUE pairs from `.env` and `.env.local` (if present).
    Existing process environment variables are not overwritten.
    """

    root = project_root or Path.cwd()
    for filename in (".env", ".env.local"):
        env_path = root / filename
        if not env_path.exists():
            continue

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value


def _get_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


def _get_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


def normalize_database_url(url: str) -> str:
    """
    Normalize postgres URLs to SQLAlchemy's psycopg driver form.
    """

    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


@dataclass(frozen=True)
class Settings:
    """
    Runtime settings for the scraping core.

    Lease length for one execution is
    max(default_lease_seconds, estimated_seconds * lease_safety_factor),
    capped at max_lease_seconds.
    """

    database_url: str = DEFAULT_DATABASE_URL
    default_lease_seconds: float = 300.0
    lease_safety_factor: float = 2.0
    max_lease_seconds: float = 3600.0
    sweep_interval_seconds: float = 300.0
    progress_buffer_size: int = 256
    persist_retries: int = 3
    user_agent: str = DEFAULT_USER_AGENT
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.default_lease_seconds <= 0:
            raise ConfigurationError("default_lease_seconds must be positive")
        if self.max_lease_seconds < self.default_lease_seconds:
            raise ConfigurationError("max_lease_seconds must be >= default_lease_seconds")
        if self.lease_safety_factor < 1.0:
            raise ConfigurationError("lease_safety_factor must be >= 1.0")
        if self.progress_buffer_size < 1:
            raise ConfigurationError("progress_buffer_size must be >= 1")

    def lease_for(self, estimated_seconds: float) -> float:
        lease = max(self.default_lease_seconds, estimated_seconds * self.lease_safety_factor)
        return min(lease, self.max_lease_seconds)


def load_settings() -> Settings:
    """Build settings from the process environment."""
    load_env_files()
    database_url = (
        os.getenv("RESEARCH_SCRAPER_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or DEFAULT_DATABASE_URL
    )
    return Settings(
        database_url=normalize_database_url(database_url),
        default_lease_seconds=_get_float_env("RESEARCH_SCRAPER_LEASE_SECONDS", 300.0),
        lease_safety_factor=_get_float_env("RESEARCH_SCRAPER_LEASE_SAFETY_FACTOR", 2.0),
        max_lease_seconds=_get_float_env("RESEARCH_SCRAPER_MAX_LEASE_SECONDS", 3600.0),
        sweep_interval_seconds=_get_float_env("RESEARCH_SCRAPER_SWEEP_INTERVAL_SECONDS", 300.0),
        progress_buffer_size=_get_int_env("RESEARCH_SCRAPER_PROGRESS_BUFFER", 256),
        persist_retries=_get_int_env("RESEARCH_SCRAPER_PERSIST_RETRIES", 3),
        user_agent=os.getenv("RESEARCH_SCRAPER_USER_AGENT", DEFAULT_USER_AGENT),
        log_level=os.getenv("RESEARCH_SCRAPER_LOG_LEVEL", "INFO"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return process-wide settings, loaded once."""
    return load_settings()
