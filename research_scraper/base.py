from __future__ import annotations

import copy
import logging
import re
import time
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import requests

from .backoff import BackoffStrategy
from .config import DEFAULT_USER_AGENT
from .context import ScraperContext
from .controller import ThreadPoolController
from .errors import ErrorCode
from .logging_utils import log_event
from .models import (
    ExecutionOptions,
    ExecutionStatus,
    ExtractedData,
    PageResult,
    PluginStatus,
    ScraperConfig,
    ScraperResult,
    ScrapingError,
    ScrapingStats,
)
from .normalization import normalize_url, unique_normalized
from .progress import NullProgressReporter
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Rough seconds per page for each declared speed class.
SPEED_SECONDS_PER_PAGE = {"fast": 1.0, "medium": 2.5, "slow": 5.0}

COLLECT_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class FetchedPage:
    """Raw HTTP response as seen by a plugin's parse()."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    bytes_downloaded: int = 0
    payload: Any = None


class BaseScraper(ABC):
    """Abstract base class for scraping plugins.

    Subclasses declare CONFIG (validated into a ScraperConfig when the
    plugin is instantiated) and implement fetch() and parse(). The shared
    execute() pipeline handles fan-out, rate limiting, retries with
    backoff, failure classification and progress reporting, and returns
    exactly one PageResult per input URL in input order.
    """

    CONFIG: Dict[str, Any] = {}

    def __init__(
        self,
        rate_limiter: Optional[RateLimiter] = None,
        backoff: Optional[BackoffStrategy] = None,
    ) -> None:
        self.config = ScraperConfig(**self.CONFIG)
        self._rate_limiter = rate_limiter or RateLimiter(self.config.request_delay_seconds)
        self._backoff = backoff or BackoffStrategy()
        self._supported = [re.compile(p, re.I) for p in self.config.supported_patterns]
        self._excluded = [re.compile(p, re.I) for p in self.config.excluded_patterns]
        self._reset_state()

    def _reset_state(self) -> None:
        self._context: Optional[ScraperContext] = None
        self._busy = False
        self._current_operation: Optional[str] = None
        self._error: Optional[str] = None

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def strategy(self) -> str:
        return self.config.strategy

    @property
    def priority(self) -> int:
        return self.config.priority

    def spawn(self) -> "BaseScraper":
        """Return a fresh instance for one execution, sharing rate limiter and backoff."""
        clone = copy.copy(self)
        clone._reset_state()
        return clone

    def initialize(self, context: ScraperContext) -> None:
        self._context = context
        self._error = None

    def cleanup(self) -> None:
        self._context = None
        self._busy = False
        self._current_operation = None

    def can_handle(self, url: str) -> bool:
        """Excluded patterns always win; no supported patterns means any http(s) URL."""
        normalized = normalize_url(url)
        if not normalized:
            return False
        if any(p.search(normalized) for p in self._excluded):
            return False
        if not self._supported:
            return True
        return any(p.search(normalized) for p in self._supported)

    def estimate_time(self, url_count: int) -> float:
        """Estimated wall-clock seconds to scrape url_count pages."""
        if url_count <= 0:
            return 0.0
        per_page = SPEED_SECONDS_PER_PAGE[self.config.speed]
        batches = -(-url_count // self.config.max_concurrency)
        return batches * per_page + url_count * self.config.request_delay_seconds

    def get_status(self) -> PluginStatus:
        return PluginStatus(
            ready=self._error is None,
            busy=self._busy,
            current_operation=self._current_operation,
            error=self._error,
        )

    def request_headers(self, options: ExecutionOptions) -> Dict[str, str]:
        return {"User-Agent": options.user_agent or DEFAULT_USER_AGENT, **options.headers}

    @abstractmethod
    def fetch(self, url: str, options: ExecutionOptions) -> FetchedPage:
        ...

    @abstractmethod
    def parse(self, page: FetchedPage) -> ExtractedData:
        ...

    def classify_exception(self, exc: Exception) -> str:
        if isinstance(exc, (requests.Timeout, TimeoutError)):
            return ErrorCode.TIMEOUT
        if isinstance(exc, (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema, requests.exceptions.InvalidSchema)):
            return ErrorCode.INVALID_URL
        if isinstance(exc, (requests.ConnectionError, ConnectionError)):
            return ErrorCode.CONNECTION_ERROR
        return ErrorCode.FETCH_ERROR

    def execute(self, urls: Sequence[str], options: ExecutionOptions) -> ScraperResult:
        urls = list(urls)
        context = self._context
        progress = context.progress if context else NullProgressReporter()
        cancel_event = options.cancel_event
        started = time.monotonic()

        self._busy = True
        self._current_operation = f"scraping {len(urls)} urls"
        log_event(
            logger,
            logging.INFO,
            "plugin_execute_started",
            plugin_id=self.id,
            url_count=len(urls),
            execution_id=context.execution_id if context else None,
        )

        pages: List[Optional[PageResult]] = [None] * len(urls)
        controller = ThreadPoolController(
            max_workers=self.config.max_concurrency,
            stopped_result=self._cancelled_page,
            cancel_event=cancel_event,
        )
        controller.start()
        cancelled = False
        try:
            futures: Dict[Future, int] = {}
            for index, url in enumerate(urls):
                futures[controller.submit(lambda u: self.scrape_page(u, options), url)] = index

            completed = 0
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=COLLECT_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    index = futures[future]
                    page = future.result()
                    pages[index] = page
                    completed += 1
                    progress.report(
                        completed,
                        len(urls),
                        f"{'Scraped' if page.success else 'Failed'} {page.url}",
                        plugin_id=self.id,
                        url=page.url,
                    )
                if cancel_event is not None and cancel_event.is_set():
                    cancelled = True
                    for future in pending:
                        future.cancel()
                    break
        finally:
            controller.stop(wait=not cancelled)

        if cancel_event is not None and cancel_event.is_set():
            cancelled = True
        final_pages = [page if page is not None else self._cancelled_page(urls[i]) for i, page in enumerate(pages)]
        result = self._build_result(final_pages, time.monotonic() - started, cancelled)
        self._busy = False
        self._current_operation = None
        log_event(
            logger,
            logging.INFO,
            "plugin_execute_finished",
            plugin_id=self.id,
            status=result.status,
            pages_succeeded=result.stats.pages_succeeded,
            pages_failed=result.stats.pages_failed,
            duration_seconds=round(result.stats.duration, 3),
        )
        return result

    def scrape_page(self, url: str, options: ExecutionOptions) -> PageResult:
        """Fetch and parse one URL with retries. Never raises."""
        cancel_event = options.cancel_event
        started = time.monotonic()
        timer = self._context.performance.start_timer("page_fetch", {"url": url}) if self._context else None

        def failure(code: str, message: str, status_code: Optional[int] = None, retries: int = 0) -> PageResult:
            if timer:
                timer.stop()
            return PageResult(
                url=url,
                success=False,
                status_code=status_code,
                scraper_id=self.id,
                error=message,
                error_code=code,
                duration=time.monotonic() - started,
                retry_count=retries,
            )

        if not normalize_url(url):
            return failure(ErrorCode.INVALID_URL, f"Invalid URL: {url!r}")

        attempt = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                return failure(ErrorCode.CANCELLED, "Execution cancelled", retries=attempt)
            if not self._rate_limiter.acquire(cancel_event):
                return failure(ErrorCode.CANCELLED, "Execution cancelled", retries=attempt)

            status_code: Optional[int] = None
            try:
                fetched = self.fetch(url, options)
            except Exception as exc:  # noqa: BLE001
                code = self.classify_exception(exc)
                message = f"{type(exc).__name__}: {exc}"
            else:
                status_code = fetched.status_code
                if 200 <= fetched.status_code < 300:
                    try:
                        data = self.parse(fetched)
                    except Exception as exc:  # noqa: BLE001
                        return failure(ErrorCode.PARSE_ERROR, f"{type(exc).__name__}: {exc}", status_code, attempt)
                    if timer:
                        timer.stop()
                    return PageResult(
                        url=url,
                        success=True,
                        status_code=status_code,
                        scraper_id=self.id,
                        data=data,
                        duration=time.monotonic() - started,
                        bytes_downloaded=fetched.bytes_downloaded,
                        retry_count=attempt,
                    )
                code = ErrorCode.http(fetched.status_code)
                message = f"HTTP {fetched.status_code}"

            if attempt >= self.config.max_retries or not self._backoff.is_retryable(code):
                log_event(
                    logger,
                    logging.WARNING,
                    "page_scrape_failed",
                    plugin_id=self.id,
                    url=url,
                    error_code=code,
                    error=message,
                    retry_count=attempt,
                )
                return failure(code, message, status_code, attempt)

            attempt += 1
            sleep_s = self._backoff.get_sleep(attempt, code)
            if cancel_event is not None:
                if cancel_event.wait(sleep_s):
                    return failure(ErrorCode.CANCELLED, "Execution cancelled", status_code, attempt)
            else:
                time.sleep(sleep_s)

    def _cancelled_page(self, url: str) -> PageResult:
        return PageResult(
            url=url,
            success=False,
            status_code=None,
            scraper_id=self.id,
            error="Execution cancelled",
            error_code=ErrorCode.CANCELLED,
        )

    def _build_result(self, pages: List[PageResult], duration: float, cancelled: bool) -> ScraperResult:
        succeeded = sum(1 for page in pages if page.success)
        discovered = unique_normalized(
            link for page in pages if page.data is not None for link in page.data.links
        )
        errors = [
            ScrapingError(
                url=page.url,
                error=page.error or "Unknown error",
                code=page.error_code or ErrorCode.FETCH_ERROR,
                timestamp=page.timestamp,
                retry_count=page.retry_count,
            )
            for page in pages
            if not page.success
        ]

        if cancelled:
            status = ExecutionStatus.CANCELLED
        elif succeeded == len(pages):
            status = ExecutionStatus.COMPLETED
        elif succeeded:
            status = ExecutionStatus.PARTIAL
        else:
            status = ExecutionStatus.FAILED

        context = self._context
        metadata: Dict[str, Any] = {}
        if context is not None:
            metadata["execution_id"] = context.execution_id
            metadata["session_id"] = context.session_id
            metadata["performance"] = context.performance.get_metrics()

        return ScraperResult(
            success=succeeded > 0 or not pages,
            status=status,
            scraper_id=self.id,
            scraper_name=self.name,
            strategy=self.strategy,
            pages=pages,
            errors=errors,
            stats=ScrapingStats.from_pages(pages, duration, len(discovered)),
            discovered_links=discovered,
            metadata=metadata,
        )

