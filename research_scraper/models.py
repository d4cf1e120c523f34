from __future__ import annotations

import re
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ScraperConfig(BaseModel):
    """Declared, validated configuration of one scraping plugin."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    strategy: Literal["static", "dynamic", "spa", "api", "hybrid"]
    priority: int = Field(default=0, ge=0, le=100)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    max_retries: int = Field(default=3, ge=0, le=10)
    speed: Literal["fast", "medium", "slow"] = "medium"
    requires_browser: bool = False
    supported_patterns: List[str] = Field(default_factory=list)
    excluded_patterns: List[str] = Field(default_factory=list)
    max_concurrency: int = Field(default=4, ge=1, le=32)
    request_delay_seconds: float = Field(default=0.0, ge=0.0, le=60.0)

    @field_validator("id", "name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("supported_patterns", "excluded_patterns")
    @classmethod
    def _patterns_compile(cls, patterns: List[str]) -> List[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid pattern {pattern!r}: {exc}") from exc
        return patterns


class ExecutionStatus:
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    BUSY = "busy"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PluginStatus:
    ready: bool
    busy: bool
    current_operation: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ExecutionOptions:
    """Caller-supplied options for one execution."""

    scraper_id: Optional[str] = None
    session_id: Optional[str] = None
    max_pages: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    user_agent: Optional[str] = None
    follow_redirects: bool = True
    lease_seconds: Optional[float] = None
    cancel_event: Optional[threading.Event] = field(default=None, compare=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass(frozen=True)
class ExtractedData:
    title: str = ""
    description: str = ""
    text_content: str = ""
    links: List[str] = field(default_factory=list)
    structured_data: Dict[str, Any] = field(default_factory=dict)
    contact_info: Dict[str, List[str]] = field(default_factory=dict)
    social_links: Dict[str, str] = field(default_factory=dict)
    technologies: List[str] = field(default_factory=list)
    api_endpoints: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    forms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def data_points(self) -> int:
        """Count populated text fields, contact entries, social links, structured keys and links."""
        count = sum(1 for value in (self.title, self.description, self.text_content) if value)
        count += sum(len(values) for values in self.contact_info.values())
        count += len(self.social_links)
        count += len(self.structured_data)
        count += len(self.links)
        return count

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PageResult:
    url: str
    success: bool
    status_code: Optional[int]
    scraper_id: str
    data: Optional[ExtractedData] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    duration: float = 0.0
    bytes_downloaded: int = 0
    timestamp: float = field(default_factory=time.time)
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ScrapingError:
    url: str
    error: str
    code: str
    timestamp: float = field(default_factory=time.time)
    retry_count: int = 0


@dataclass(frozen=True)
class ScrapingStats:
    duration: float = 0.0
    pages_attempted: int = 0
    pages_succeeded: int = 0
    pages_failed: int = 0
    bytes_downloaded: int = 0
    data_points_extracted: int = 0
    links_discovered: int = 0
    average_time_per_page: float = 0.0
    success_rate: float = 0.0

    @classmethod
    def from_pages(cls, pages: List[PageResult], duration: float, links_discovered: int) -> "ScrapingStats":
        attempted = len(pages)
        succeeded = sum(1 for p in pages if p.success)
        return cls(
            duration=duration,
            pages_attempted=attempted,
            pages_succeeded=succeeded,
            pages_failed=attempted - succeeded,
            bytes_downloaded=sum(p.bytes_downloaded for p in pages),
            data_points_extracted=sum(p.data.data_points() for p in pages if p.data is not None),
            links_discovered=links_discovered,
            average_time_per_page=(sum(p.duration for p in pages) / attempted) if attempted else 0.0,
            success_rate=(succeeded / attempted * 100.0) if attempted else 0.0,
        )


@dataclass(frozen=True)
class ScraperResult:
    success: bool
    status: str
    scraper_id: str
    scraper_name: str
    strategy: str
    pages: List[PageResult] = field(default_factory=list)
    errors: List[ScrapingError] = field(default_factory=list)
    stats: ScrapingStats = field(default_factory=ScrapingStats)
    discovered_links: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    suggestions: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LockHandle:
    """Proof of ownership of one (session, strategy) lease."""

    lock_id: int
    session_id: str
    strategy_id: str
    execution_id: str
    acquired_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class User:
    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class SessionRecord:
    id: str
    user_id: str
    domain: str
    discovered_urls: List[str]
    accumulated_data: Optional[Dict[str, Any]]
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    scraper_runs: int
    pages_scraped: int
    total_data_points: int
    available_scrapers: List[Dict[str, Any]]
    used_scrapers: List[str]
    suggestions: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
