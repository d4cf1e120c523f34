"""
Lease-based execution locks keyed by (session_id, strategy_id).

The unique constraint on execution_locks is the only arbiter of
exclusivity, so the guarantee holds across threads and processes that
share a database. A lease that was never released expires and can be
reclaimed by the next acquirer.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import ExecutionLockRow, utcnow
from .errors import PersistenceError
from .logging_utils import log_event
from .models import LockHandle

logger = logging.getLogger(__name__)


class ExecutionLockManager:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def acquire(
        self,
        session_id: str,
        strategy_id: str,
        lease_seconds: float,
        execution_id: Optional[str] = None,
    ) -> Optional[LockHandle]:
        """
        Try to take the lease for (session_id, strategy_id).

        Returns a LockHandle on success, or None when another execution
        holds an unexpired, unreleased lease.
        """
        execution_id = execution_id or str(uuid.uuid4())
        now = utcnow()
        expires_at = now + timedelta(seconds=lease_seconds)

        with self._session_factory() as db:
            try:
                row = ExecutionLockRow(
                    session_id=session_id,
                    strategy_id=strategy_id,
                    execution_id=execution_id,
                    acquired_at=now,
                    expires_at=expires_at,
                    released=False,
                )
                db.add(row)
                db.commit()
                lock_id = row.id
            except IntegrityError:
                db.rollback()
                lock_id = self._reclaim(db, session_id, strategy_id, execution_id, now, expires_at)
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Lock store unavailable: {exc}") from exc

        if lock_id is None:
            log_event(
                logger,
                logging.INFO,
                "lock_busy",
                session_id=session_id,
                strategy_id=strategy_id,
                execution_id=execution_id,
            )
            return None

        log_event(
            logger,
            logging.INFO,
            "lock_acquired",
            session_id=session_id,
            strategy_id=strategy_id,
            execution_id=execution_id,
            expires_at=expires_at,
        )
        return LockHandle(
            lock_id=lock_id,
            session_id=session_id,
            strategy_id=strategy_id,
            execution_id=execution_id,
            acquired_at=now,
            expires_at=expires_at,
        )

    def _reclaim(self, db, session_id, strategy_id, execution_id, now, expires_at) -> Optional[int]:
        # Owner and expiry change in one statement; only a released or
        # expired row can match.
        stmt = (
            update(ExecutionLockRow)
            .where(
                ExecutionLockRow.session_id == session_id,
                ExecutionLockRow.strategy_id == strategy_id,
                or_(ExecutionLockRow.released.is_(True), ExecutionLockRow.expires_at < now),
            )
            .values(
                execution_id=execution_id,
                acquired_at=now,
                expires_at=expires_at,
                released=False,
                released_at=None,
            )
        )
        try:
            changed = db.execute(stmt).rowcount
            if changed != 1:
                db.rollback()
                return None
            lock_id = db.scalar(
                select(ExecutionLockRow.id).where(
                    ExecutionLockRow.session_id == session_id,
                    ExecutionLockRow.strategy_id == strategy_id,
                )
            )
            db.commit()
            return lock_id
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Lock store unavailable: {exc}") from exc

    def release(self, handle: LockHandle) -> bool:
        """Release a lease held by this handle. Releasing twice is a no-op."""
        stmt = (
            update(ExecutionLockRow)
            .where(
                ExecutionLockRow.id == handle.lock_id,
                ExecutionLockRow.execution_id == handle.execution_id,
                ExecutionLockRow.released.is_(False),
            )
            .values(released=True, released_at=utcnow())
        )
        changed = self._execute(stmt)
        if changed:
            log_event(
                logger,
                logging.INFO,
                "lock_released",
                session_id=handle.session_id,
                strategy_id=handle.strategy_id,
                execution_id=handle.execution_id,
            )
        return changed == 1

    def extend(self, handle: LockHandle, seconds: float) -> Optional[LockHandle]:
        """Renew a still-owned, unexpired lease. Returns the updated handle or None."""
        now = utcnow()
        expires_at = now + timedelta(seconds=seconds)
        stmt = (
            update(ExecutionLockRow)
            .where(
                ExecutionLockRow.id == handle.lock_id,
                ExecutionLockRow.execution_id == handle.execution_id,
                ExecutionLockRow.released.is_(False),
                ExecutionLockRow.expires_at >= now,
            )
            .values(expires_at=expires_at)
        )
        if self._execute(stmt) != 1:
            log_event(
                logger,
                logging.WARNING,
                "lock_extend_failed",
                session_id=handle.session_id,
                strategy_id=handle.strategy_id,
                execution_id=handle.execution_id,
            )
            return None
        return replace(handle, expires_at=expires_at)

    def sweep_expired(self) -> int:
        """Mark every expired, unreleased lease as released. Returns the count."""
        now = utcnow()
        stmt = (
            update(ExecutionLockRow)
            .where(ExecutionLockRow.released.is_(False), ExecutionLockRow.expires_at < now)
            .values(released=True, released_at=now)
        )
        swept = self._execute(stmt)
        if swept:
            log_event(logger, logging.INFO, "locks_swept", count=swept)
        return swept

    def is_locked(self, session_id: str, strategy_id: str) -> bool:
        try:
            with self._session_factory() as db:
                lock_id = db.scalar(
                    select(ExecutionLockRow.id).where(
                        ExecutionLockRow.session_id == session_id,
                        ExecutionLockRow.strategy_id == strategy_id,
                        ExecutionLockRow.released.is_(False),
                        ExecutionLockRow.expires_at >= utcnow(),
                    )
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Lock store unavailable: {exc}") from exc
        return lock_id is not None

    def _execute(self, stmt) -> int:
        with self._session_factory() as db:
            try:
                changed = db.execute(stmt).rowcount
                db.commit()
                return changed
            except SQLAlchemyError as exc:
                db.rollback()
                raise PersistenceError(f"Lock store unavailable: {exc}") from exc
