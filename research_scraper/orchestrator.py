from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from .aggregator import AggregatedData, DataAggregator, generate_suggestions
from .base import BaseScraper
from .config import Settings, get_settings
from .context import ScraperContext, cleanup_scraper_context, create_scraper_context
from .errors import (
    ErrorCode,
    LockBusy,
    NoUrlsAvailable,
    PersistenceError,
    PluginExecutionError,
    PluginUnavailable,
    ResearchScraperError,
    SessionNotFound,
)
from .locks import ExecutionLockManager
from .logging_utils import log_event
from .models import ExecutionOptions, ExecutionStatus, ScraperResult, ScrapingError, ScrapingStats
from .normalization import dedupe_urls
from .progress import ProgressReporter
from .registry import ScraperRegistry
from .storage import SessionStore

logger = logging.getLogger(__name__)


class ScraperOrchestrator:
    """Runs plugins against URL sets and owns everything around a run.

    execute() handles plugin selection, the scraper context and cleanup.
    execute_for_session() adds the session lookup, the (session, plugin)
    lease and the best-effort persistence phase: page rows, the merge into
    the session's accumulated data and the execution metrics row.
    """

    def __init__(
        self,
        registry: ScraperRegistry,
        store: Optional[SessionStore] = None,
        lock_manager: Optional[ExecutionLockManager] = None,
        aggregator: Optional[DataAggregator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._locks = lock_manager
        self._aggregator = aggregator or DataAggregator()
        self._settings = settings or get_settings()
        self._merge_locks: Dict[str, threading.Lock] = {}
        self._merge_locks_guard = threading.Lock()

    def select_scraper(self, urls: Sequence[str], options: ExecutionOptions) -> Optional[BaseScraper]:
        if options.scraper_id:
            return self._registry.get_scraper_by_id(options.scraper_id)
        if not urls:
            return None
        return self._registry.get_best_scraper(urls[0])

    def execute(
        self,
        urls: Sequence[str],
        options: Optional[ExecutionOptions] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> ScraperResult:
        """Scrape `urls` with the forced or best plugin. Never raises for plugin failures."""
        options = options or ExecutionOptions()
        execution_id = str(uuid.uuid4())
        result, context = self._run(list(urls), options, progress, execution_id)
        context_session_id = context.session_id

        if self._store is not None and not context.is_temporary and result.pages:
            warnings: List[str] = []
            try:
                self._store.save_page_results(context_session_id, execution_id, result)
                self._store.record_execution(execution_id, context_session_id, result.scraper_id, len(urls), result)
            except Exception as exc:  # noqa: BLE001
                warnings.append(f"Failed to save results: {exc}")
                log_event(
                    logger,
                    logging.WARNING,
                    "save_results_failed",
                    session_id=context_session_id,
                    execution_id=execution_id,
                    error=str(exc),
                )
            if warnings:
                result = replace(result, metadata={**result.metadata, "warnings": warnings})
        return result

    def execute_for_session(
        self,
        session_id: str,
        options: Optional[ExecutionOptions] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> ScraperResult:
        """
        Scrape the session's discovered URLs under the (session, plugin) lease.

        Raises SessionNotFound or NoUrlsAvailable. Returns a result with
        status "busy" and performs no fetches when the lease is held.
        """
        if self._store is None or self._locks is None:
            raise PersistenceError("execute_for_session requires a session store and a lock manager")

        options = options or ExecutionOptions()
        session = self._store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        urls = dedupe_urls(session.discovered_urls)
        if not urls:
            raise NoUrlsAvailable(session_id)
        if options.max_pages:
            urls = urls[: options.max_pages]

        options = replace(options, session_id=session_id)
        plugin = self.select_scraper(urls, options)
        execution_id = str(uuid.uuid4())
        if plugin is None:
            message = (
                f"Scraper not found: {options.scraper_id}" if options.scraper_id else "No suitable scraper found"
            )
            result = self._error_result(urls, PluginUnavailable(message), execution_id)
            result = replace(result, metadata={**result.metadata, "session_id": session_id})
            try:
                self._store.record_execution(execution_id, session_id, result.scraper_id, len(urls), result)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.WARNING,
                    "persistence_step_failed",
                    step="record_execution",
                    session_id=session_id,
                    execution_id=execution_id,
                    error=str(exc),
                )
                result = replace(
                    result, metadata={**result.metadata, "warnings": [f"record_execution: {exc}"]}
                )
            return result

        lease = options.lease_seconds or self._settings.lease_for(plugin.estimate_time(len(urls)))
        handle = self._locks.acquire(session_id, plugin.id, lease, execution_id)
        if handle is None:
            busy = LockBusy(session_id, plugin.id)
            return ScraperResult(
                success=False,
                status=ExecutionStatus.BUSY,
                scraper_id=plugin.id,
                scraper_name=plugin.name,
                strategy=plugin.strategy,
                metadata={"execution_id": execution_id, "session_id": session_id, "reason": busy.message},
            )

        try:
            result, _ = self._run(urls, replace(options, scraper_id=plugin.id), progress, execution_id)
            return self._persist(session_id, execution_id, plugin.id, len(urls), result)
        finally:
            try:
                self._locks.release(handle)
            except Exception as exc:  # noqa: BLE001
                log_event(
                    logger,
                    logging.ERROR,
                    "lock_release_failed",
                    session_id=session_id,
                    strategy_id=plugin.id,
                    execution_id=execution_id,
                    error=str(exc),
                )

    def _run(
        self,
        urls: List[str],
        options: ExecutionOptions,
        progress: Optional[ProgressReporter],
        execution_id: str,
    ):
        context = create_scraper_context(options, progress, execution_id)
        plugin: Optional[BaseScraper] = None
        try:
            template = self.select_scraper(urls, options)
            if template is None:
                message = (
                    f"Scraper not found: {options.scraper_id}" if options.scraper_id else "No suitable scraper found"
                )
                log_event(logger, logging.WARNING, "no_scraper_selected", url_count=len(urls), reason=message)
                return self._error_result(urls, PluginUnavailable(message), execution_id, context), context

            plugin = template.spawn()
            plugin.initialize(context)
            log_event(
                logger,
                logging.INFO,
                "execution_started",
                session_id=context.session_id,
                execution_id=execution_id,
                plugin_id=plugin.id,
                url_count=len(urls),
            )
            result = plugin.execute(urls, options)
            return result, context
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.ERROR,
                "execution_failed",
                session_id=context.session_id,
                execution_id=execution_id,
                plugin_id=plugin.id if plugin else None,
                error=str(exc),
            )
            error = exc
            if not isinstance(exc, ResearchScraperError):
                error = PluginExecutionError(
                    str(exc),
                    {"plugin_id": plugin.id if plugin else None, "error_type": type(exc).__name__},
                )
            return self._error_result(urls, error, execution_id, context, plugin), context
        finally:
            if plugin is not None:
                try:
                    plugin.cleanup()
                except Exception as exc:  # noqa: BLE001
                    log_event(logger, logging.WARNING, "plugin_cleanup_failed", plugin_id=plugin.id, error=str(exc))
            cleanup_scraper_context(context)

    def _error_result(
        self,
        urls: Sequence[str],
        error: ResearchScraperError,
        execution_id: str,
        context: Optional[ScraperContext] = None,
        plugin: Optional[BaseScraper] = None,
    ) -> ScraperResult:
        message = error.message
        return ScraperResult(
            success=False,
            status=ExecutionStatus.FAILED,
            scraper_id=plugin.id if plugin else "orchestrator",
            scraper_name=plugin.name if plugin else "Scraper Orchestrator",
            strategy=plugin.strategy if plugin else "none",
            errors=[ScrapingError(url=url, error=message, code=ErrorCode.ORCHESTRATOR_ERROR) for url in urls],
            stats=ScrapingStats(),
            metadata={
                "execution_id": execution_id,
                "session_id": context.session_id if context else None,
                "error": message,
                "error_code": error.code,
            },
        )

    def _merge_lock(self, session_id: str) -> threading.Lock:
        with self._merge_locks_guard:
            return self._merge_locks.setdefault(session_id, threading.Lock())

    def merge_into_session(self, session_id: str, result: ScraperResult, phase: str) -> AggregatedData:
        """Merge a result into the session's accumulated data with optimistic retries."""
        attempts = max(1, self._settings.persist_retries)
        with self._merge_lock(session_id):
            for attempt in range(1, attempts + 1):
                session = self._store.get_session(session_id)
                if session is None:
                    raise SessionNotFound(session_id)
                existing = AggregatedData.from_dict(session.accumulated_data) if session.accumulated_data else None
                merged = self._aggregator.merge(existing, result, phase)
                if self._store.update_accumulated_data(session_id, merged.to_dict(), expected_version=session.version):
                    return merged
                log_event(
                    logger,
                    logging.WARNING,
                    "aggregate_version_conflict",
                    session_id=session_id,
                    attempt=attempt,
                    version=session.version,
                )
        raise PersistenceError(f"Accumulated data for {session_id} changed concurrently {attempts} times")

    def _persist(
        self,
        session_id: str,
        execution_id: str,
        phase: str,
        url_count: int,
        result: ScraperResult,
    ) -> ScraperResult:
        warnings: List[str] = []
        merged: Optional[AggregatedData] = None

        def warn(step: str, exc: Exception) -> None:
            warnings.append(f"{step}: {exc}")
            log_event(
                logger,
                logging.WARNING,
                "persistence_step_failed",
                step=step,
                session_id=session_id,
                execution_id=execution_id,
                error=str(exc),
            )

        try:
            self._store.save_page_results(session_id, execution_id, result)
        except Exception as exc:  # noqa: BLE001
            warn("save_page_results", exc)

        try:
            merged = self.merge_into_session(session_id, result, phase)
        except Exception as exc:  # noqa: BLE001
            warn("merge_accumulated_data", exc)

        try:
            self._store.record_execution(execution_id, session_id, result.scraper_id, url_count, result)
        except Exception as exc:  # noqa: BLE001
            warn("record_execution", exc)

        metadata = {**result.metadata, "execution_id": execution_id, "session_id": session_id}
        if warnings:
            metadata["warnings"] = warnings
        suggestions = list(result.suggestions)
        if merged is not None:
            metadata["aggregated_stats"] = merged.stats
            suggestions = generate_suggestions(merged, [p.id for p in self._registry.get_all_scrapers()])

        log_event(
            logger,
            logging.INFO,
            "execution_persisted",
            session_id=session_id,
            execution_id=execution_id,
            status=result.status,
            warnings=len(warnings),
        )
        return replace(result, metadata=metadata, suggestions=suggestions)
