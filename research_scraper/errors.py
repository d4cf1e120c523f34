from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """Machine-readable codes carried by PageResult.error_code and ScrapingError.code."""

    ORCHESTRATOR_ERROR = "ORCHESTRATOR_ERROR"
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    INVALID_URL = "INVALID_URL"
    CANCELLED = "CANCELLED"
    FETCH_ERROR = "FETCH_ERROR"

    @staticmethod
    def http(status_code: int) -> str:
        return f"HTTP_{status_code}"


class ResearchScraperError(Exception):
    """Base class for every error raised by the scraping core."""

    code = "RESEARCH_SCRAPER_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(ResearchScraperError):
    """Missing or malformed request fields. Caller's fault, never retried."""

    code = "VALIDATION_ERROR"


class Unauthorized(ResearchScraperError):
    """No authenticated user, or the session belongs to someone else."""

    code = "UNAUTHORIZED"


class SessionNotFound(ResearchScraperError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}", {"session_id": session_id})
        self.session_id = session_id


class NoUrlsAvailable(ResearchScraperError):
    """The discovery phase has not produced any URL for the session yet."""

    code = "NO_URLS_AVAILABLE"

    def __init__(self, session_id: str) -> None:
        super().__init__(
            "No URLs available for scraping. Run sitemap discovery first.",
            {"session_id": session_id},
        )
        self.session_id = session_id


class LockBusy(ResearchScraperError):
    """Another execution owns the (session, strategy) lease."""

    code = "LOCK_BUSY"

    def __init__(self, session_id: str, strategy_id: str) -> None:
        super().__init__(
            f"Execution already in progress for session={session_id} strategy={strategy_id}",
            {"session_id": session_id, "strategy_id": strategy_id},
        )


class PluginUnavailable(ResearchScraperError):
    code = "PLUGIN_UNAVAILABLE"


class PluginExecutionError(ResearchScraperError):
    code = "PLUGIN_EXECUTION_ERROR"


class PersistenceError(ResearchScraperError):
    """Saving results failed. Logged as a warning, never fails an execution."""

    code = "PERSISTENCE_ERROR"


class ConfigurationError(ResearchScraperError):
    code = "CONFIGURATION_ERROR"
