from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from .logging_utils import log_event
from .metrics import PerformanceTracker
from .models import ExecutionOptions
from .progress import NullProgressReporter, ProgressReporter

logger = logging.getLogger(__name__)

TEMP_SESSION_PREFIX = "temp_"


@dataclass
class ScraperContext:
    """Per-execution bundle owned by the orchestrator for one run."""

    session_id: str
    execution_id: str
    progress: ProgressReporter
    performance: PerformanceTracker
    options: ExecutionOptions
    created_at: float = field(default_factory=time.time)
    closed: bool = False

    @property
    def is_temporary(self) -> bool:
        return self.session_id.startswith(TEMP_SESSION_PREFIX)

    @property
    def cancelled(self) -> bool:
        return self.options.cancelled


def create_scraper_context(
    options: ExecutionOptions,
    progress: Optional[ProgressReporter] = None,
    execution_id: Optional[str] = None,
) -> ScraperContext:
    session_id = options.session_id or f"{TEMP_SESSION_PREFIX}{int(time.time() * 1000)}"
    context = ScraperContext(
        session_id=session_id,
        execution_id=execution_id or str(uuid.uuid4()),
        progress=progress or NullProgressReporter(),
        performance=PerformanceTracker(),
        options=options,
    )
    log_event(
        logger,
        logging.DEBUG,
        "scraper_context_created",
        session_id=context.session_id,
        execution_id=context.execution_id,
    )
    return context


def cleanup_scraper_context(context: ScraperContext) -> None:
    """Tear down a context. Safe to call more than once."""
    if context.closed:
        return
    cancelled_timers = context.performance.cancel_all()
    context.closed = True
    log_event(
        logger,
        logging.DEBUG,
        "scraper_context_closed",
        session_id=context.session_id,
        execution_id=context.execution_id,
        lifetime_seconds=round(time.time() - context.created_at, 3),
        cancelled_timers=cancelled_timers,
    )
