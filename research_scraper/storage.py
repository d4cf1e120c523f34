"""
Session store: research sessions, per-page results and execution metrics.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import ExecutionMetricRow, PageResultRow, ResearchSessionRow, utcnow
from .errors import PersistenceError, SessionNotFound
from .models import ScraperResult, SessionRecord
from .normalization import dedupe_urls, normalize_url


class SessionStore(ABC):
    """Persistence contract used by the orchestrator and service."""

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    def create_or_get_session(
        self,
        user_id: str,
        domain: str,
        discovered_urls: Optional[Sequence[str]] = None,
    ) -> SessionRecord:
        ...

    @abstractmethod
    def update_accumulated_data(
        self,
        session_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> bool:
        """Replace the accumulated data. Returns False on a version conflict."""

    @abstractmethod
    def save_page_results(self, session_id: str, execution_id: str, result: ScraperResult) -> int:
        ...

    @abstractmethod
    def record_execution(
        self,
        execution_id: str,
        session_id: str,
        scraper_id: str,
        url_count: int,
        result: ScraperResult,
    ) -> None:
        ...

    @abstractmethod
    def list_executions(self, session_id: str) -> List[Dict[str, Any]]:
        ...


def _to_record(row: ResearchSessionRow) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        domain=row.domain,
        discovered_urls=list(row.discovered_urls or []),
        accumulated_data=row.accumulated_data,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _error_message(result: ScraperResult) -> Optional[str]:
    if result.metadata.get("error"):
        return str(result.metadata["error"])
    if not result.success and result.errors:
        return result.errors[0].error
    return None


class SQLAlchemySessionStore(SessionStore):
    """
    SessionStore backed by the research_scraper SQLAlchemy tables.

    Every write runs in its own transaction; SQLAlchemy failures roll back
    and surface as PersistenceError.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        try:
            with self._session_factory() as db:
                row = db.get(ResearchSessionRow, session_id)
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load session {session_id}: {exc}") from exc

    def create_or_get_session(self, user_id, domain, discovered_urls=None) -> SessionRecord:
        domain = domain.strip().lower()
        urls = dedupe_urls(discovered_urls or [])
        with self._session_factory() as db:
            try:
                row = db.scalars(
                    select(ResearchSessionRow)
                    .where(ResearchSessionRow.user_id == user_id, ResearchSessionRow.domain == domain)
                    .order_by(ResearchSessionRow.created_at.desc())
                ).first()
                if row is None:
                    row = ResearchSessionRow(user_id=user_id, domain=domain, discovered_urls=urls, version=1)
                    db.add(row)
                elif urls:
                    merged = dedupe_urls(list(row.discovered_urls or []) + urls)
                    if merged != list(row.discovered_urls or []):
                        row.discovered_urls = merged
                db.commit()
                db.refresh(row)
                return _to_record(row)
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to create session for {domain}: {exc}") from exc

    def update_accumulated_data(self, session_id, data, expected_version=None) -> bool:
        stmt = update(ResearchSessionRow).where(ResearchSessionRow.id == session_id)
        if expected_version is not None:
            stmt = stmt.where(ResearchSessionRow.version == expected_version)
        stmt = stmt.values(
            accumulated_data=data,
            version=ResearchSessionRow.version + 1,
            updated_at=utcnow(),
        )
        with self._session_factory() as db:
            try:
                changed = db.execute(stmt).rowcount
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to update session {session_id}: {exc}") from exc
        if changed == 0 and expected_version is None:
            raise SessionNotFound(session_id)
        return changed == 1

    def save_page_results(self, session_id, execution_id, result) -> int:
        rows = [
            PageResultRow(
                session_id=session_id,
                execution_id=execution_id,
                scraper_id=page.scraper_id,
                url=page.url,
                normalized_url=normalize_url(page.url) or page.url,
                success=page.success,
                status_code=page.status_code,
                error=page.error,
                error_code=page.error_code,
                data=page.data.to_dict() if page.data is not None else None,
                duration_ms=int(page.duration * 1000),
                bytes_downloaded=page.bytes_downloaded,
            )
            for page in result.pages
        ]
        if not rows:
            return 0
        with self._session_factory() as db:
            try:
                db.add_all(rows)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to save page results for {session_id}: {exc}") from exc
        return len(rows)

    def record_execution(self, execution_id, session_id, scraper_id, url_count, result) -> None:
        row = ExecutionMetricRow(
            execution_id=execution_id,
            session_id=session_id,
            scraper_id=scraper_id,
            status=result.status,
            url_count=url_count,
            pages_scraped=result.stats.pages_succeeded,
            data_points=result.stats.data_points_extracted,
            duration_ms=int(result.stats.duration * 1000),
            success=result.success,
            error_message=_error_message(result),
        )
        with self._session_factory() as db:
            try:
                db.add(row)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Failed to record execution {execution_id}: {exc}") from exc

    def list_executions(self, session_id) -> List[Dict[str, Any]]:
        try:
            with self._session_factory() as db:
                rows = db.scalars(
                    select(ExecutionMetricRow)
                    .where(ExecutionMetricRow.session_id == session_id)
                    .order_by(ExecutionMetricRow.created_at.asc(), ExecutionMetricRow.id.asc())
                ).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list executions for {session_id}: {exc}") from exc
        return [
            {
                "execution_id": row.execution_id,
                "session_id": row.session_id,
                "scraper_id": row.scraper_id,
                "status": row.status,
                "url_count": row.url_count,
                "pages_scraped": row.pages_scraped,
                "data_points": row.data_points,
                "duration_ms": row.duration_ms,
                "success": row.success,
                "error_message": row.error_message,
                "created_at": row.created_at,
            }
            for row in rows
        ]
