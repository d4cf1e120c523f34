"""
Caller-facing scraping API: request validation, authorization and streaming.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Dict, List, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .aggregator import AggregatedData, generate_suggestions
from .auth import AuthProvider
from .config import Settings, get_settings
from .errors import ResearchScraperError, SessionNotFound, Unauthorized, ValidationError
from .logging_utils import log_event
from .models import ExecutionOptions, ScraperResult, SessionRecord, SessionStatus
from .orchestrator import ScraperOrchestrator
from .progress import CallbackProgressReporter, ProgressCallback, ProgressReporter
from .registry import ScraperRegistry
from .storage import SessionStore

logger = logging.getLogger(__name__)


class RequestOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_pages: Optional[int] = Field(default=None, ge=1)
    headers: Dict[str, str] = Field(default_factory=dict)
    user_agent: Optional[str] = None
    follow_redirects: bool = True
    lease_seconds: Optional[float] = Field(default=None, gt=0)


class ExecutionRequest(BaseModel):
    """Body of an execute call. URLs always come from the session, never the caller."""

    model_config = ConfigDict(extra="forbid")

    session_id: str = Field(min_length=1)
    scraper_id: Optional[str] = None
    options: RequestOptions = Field(default_factory=RequestOptions)


class ScrapingService:
    def __init__(
        self,
        orchestrator: ScraperOrchestrator,
        store: SessionStore,
        registry: ScraperRegistry,
        auth: AuthProvider,
        settings: Optional[Settings] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._registry = registry
        self._auth = auth
        self._settings = settings or get_settings()

    @staticmethod
    def validate_request(request: Union[ExecutionRequest, Dict[str, Any]]) -> ExecutionRequest:
        if isinstance(request, ExecutionRequest):
            return request
        if not isinstance(request, dict):
            raise ValidationError("Request body must be an object")
        try:
            return ExecutionRequest.model_validate(request)
        except pydantic.ValidationError as exc:
            fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
            raise ValidationError(
                f"Invalid execution request: {', '.join(fields)}",
                {"fields": fields},
            ) from exc

    def authorize_session(self, session_id: str) -> SessionRecord:
        """Return the session if the current user owns it."""
        user = self._auth.get_current_user()
        if user is None:
            raise Unauthorized("Authentication required")
        session = self._store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.user_id != user.id:
            raise Unauthorized("Session belongs to another user", {"session_id": session_id})
        return session

    def execute(
        self,
        request: Union[ExecutionRequest, Dict[str, Any]],
        progress: Optional[ProgressReporter] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScraperResult:
        req = self.validate_request(request)
        self.authorize_session(req.session_id)
        options = ExecutionOptions(
            scraper_id=req.scraper_id,
            session_id=req.session_id,
            max_pages=req.options.max_pages,
            headers=dict(req.options.headers),
            user_agent=req.options.user_agent or self._settings.user_agent,
            follow_redirects=req.options.follow_redirects,
            lease_seconds=req.options.lease_seconds,
            cancel_event=cancel_event,
        )
        log_event(
            logger,
            logging.INFO,
            "execute_requested",
            session_id=req.session_id,
            scraper_id=req.scraper_id,
        )
        return self._orchestrator.execute_for_session(req.session_id, options, progress)

    def execute_for_session(
        self,
        session_id: str,
        options: Optional[ExecutionOptions] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> ScraperResult:
        self.authorize_session(session_id)
        return self._orchestrator.execute_for_session(session_id, options, progress)

    def execute_with_streaming(
        self,
        request: Union[ExecutionRequest, Dict[str, Any]],
        progress_callback: ProgressCallback,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Run an execution, pushing events to `progress_callback`.

        Events arrive in order: start, progress (one per page), complete or
        error, done. Errors are delivered as events, never raised.
        """
        correlation_id = str(uuid.uuid4())
        session_id = request.get("session_id") if isinstance(request, dict) else getattr(request, "session_id", None)
        reporter = CallbackProgressReporter(
            progress_callback,
            correlation_id,
            session_id=session_id,
            buffer_size=self._settings.progress_buffer_size,
        )
        reporter.event("start", {"message": "Starting scraper execution"})
        success = False
        try:
            result = self.execute(request, progress=reporter, cancel_event=cancel_event)
            success = result.success
            reporter.complete(
                {
                    "success": result.success,
                    "status": result.status,
                    "scraper_id": result.scraper_id,
                    "pages_succeeded": result.stats.pages_succeeded,
                    "pages_failed": result.stats.pages_failed,
                    "data_points": result.stats.data_points_extracted,
                    "suggestions": list(result.suggestions),
                    "warnings": list(result.metadata.get("warnings", [])),
                }
            )
        except ResearchScraperError as exc:
            reporter.error(exc, exc.details)
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.ERROR, "streaming_execution_failed", correlation_id=correlation_id, error=str(exc))
            reporter.error(exc)
        finally:
            reporter.event("done", {"success": success})
            reporter.close()

    def get_available_scrapers(self) -> List[Dict[str, Any]]:
        return self._registry.summary()

    def get_session_status(self, session_id: str) -> SessionStatus:
        """Summarize an owned session. Raises Unauthorized or SessionNotFound."""
        session = self.authorize_session(session_id)
        available = self.get_available_scrapers()
        if not session.accumulated_data:
            return SessionStatus(
                session_id=session_id,
                scraper_runs=0,
                pages_scraped=0,
                total_data_points=0,
                available_scrapers=available,
                used_scrapers=[],
                suggestions=["Start scraping to collect data"],
            )

        data = AggregatedData.from_dict(session.accumulated_data)
        used = sorted(data.stats.get("phase_counts", {}))
        return SessionStatus(
            session_id=session_id,
            scraper_runs=len(used),
            pages_scraped=data.stats.get("total_pages", 0),
            total_data_points=data.stats.get("data_points", 0),
            available_scrapers=available,
            used_scrapers=used,
            suggestions=generate_suggestions(data, [s["id"] for s in available]),
        )
