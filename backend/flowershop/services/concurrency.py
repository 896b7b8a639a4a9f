# Overview: Service-layer operations for concurrency; unit of work, row locking and retry.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import scoped_session
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceError


class UnitOfWork:
    """
    One atomic database transaction over a session.

    Usage:
        with UnitOfWork(session):
            ...  # every write in here commits together or not at all

    Clean exit commits; any exception rolls back and propagates unchanged.
    Callers must finish business validation before entering, so the only
    failures expected inside are races caught by conditional writes and
    infrastructure errors.
    """

    def __init__(self, session):
        self.session = session
        self._active = False

    def begin(self) -> "UnitOfWork":
        if self._active:
            raise RuntimeError("unit of work already started")
        # db.session is a scoped_session; transaction state lives on the
        # Session it proxies. Validation reads may already have autobegun it.
        current = self.session() if isinstance(self.session, scoped_session) else self.session
        if not current.in_transaction():
            current.begin()
        self._active = True
        return self

    def commit(self) -> None:
        try:
            self.session.commit()
        finally:
            self._active = False

    def rollback(self) -> None:
        try:
            self.session.rollback()
        finally:
            self._active = False

    def __enter__(self) -> "UnitOfWork":
        return self.begin()

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            try:
                self.commit()
            except BaseException:
                self.rollback()
                raise
        else:
            self.rollback()
        return False


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Stock writes additionally use conditional UPDATEs, which are atomic on
    every backend.
    """
    return query.with_for_update()


def run_with_retry(func, *, session, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any SQLAlchemy error left after the
    last attempt becomes PersistenceError; business errors pass through
    on the first occurrence.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            session.rollback()
            if attempt >= attempts - 1:
                raise PersistenceError(
                    "Database temporarily unavailable, no changes were applied",
                    details={"attempts": attempts},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError("Database error, no changes were applied") from exc
    raise PersistenceError("Database operation was not attempted")
