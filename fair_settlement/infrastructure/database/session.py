"""Database session management, connection pooling and the atomic unit of work"""

from contextlib import contextmanager
from datetime import date, datetime
from functools import lru_cache
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm import sessionmaker, Session

from fair_settlement.config import settings
from fair_settlement.domain.exceptions import ConflictError, PersistenceError, SettlementTimeoutError
from fair_settlement.utils.date_utils import utc_now

# SQLSTATEs raised by PostgreSQL for lock and serialization conflicts
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}
QUERY_CANCELED_SQLSTATE = "57014"

SessionLocal = sessionmaker(autocommit=False, autoflush=False)


@lru_cache(maxsize=None)
def get_engine() -> Engine:
    """Shared engine. Pool: recycle connections hourly to avoid stale ones"""
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_recycle=settings.db_pool_recycle_seconds,
        pool_timeout=settings.db_pool_timeout_seconds,
    )


def translate_db_error(error: SQLAlchemyError) -> PersistenceError | ConflictError:
    """Map a SQLAlchemy/DBAPI failure onto the settlement error taxonomy"""
    if isinstance(error, PoolTimeoutError):
        return SettlementTimeoutError(f"Timed out waiting for a database connection: {error}")

    if isinstance(error, DBAPIError):
        orig = error.orig
        sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        if sqlstate == QUERY_CANCELED_SQLSTATE:
            return SettlementTimeoutError(f"Statement timeout exceeded: {orig}")
        if sqlstate in CONFLICT_SQLSTATES or "database is locked" in str(orig):
            return ConflictError(f"Concurrent modification, retry the operation: {orig}")
        return PersistenceError(f"Database rejected the operation: {orig}")

    return PersistenceError(f"Database error: {error}")


class UnitOfWork:
    """
    One open database transaction, passed explicitly to every collaborator
    that reads or writes within it.

    Collaborators may flush and query through it but never commit or roll back;
    that belongs to whoever opened the scope (see session_scope).
    """

    def __init__(self, session: Session, started_at: Optional[datetime] = None):
        self.session = session
        self.started_at = started_at or utc_now()

    @property
    def today(self) -> date:
        return self.started_at.date()

    def flush(self) -> None:
        """Flush pending writes, reporting store failures as PersistenceError"""
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            raise translate_db_error(e) from e

    def apply_statement_timeout(self, timeout_ms: int) -> None:
        """Bound every statement in this transaction (PostgreSQL only)"""
        if timeout_ms <= 0 or self.session.get_bind().dialect.name != "postgresql":
            return
        self.session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


@contextmanager
def session_scope(
    session_factory: Optional[Callable[[], Session]] = None,
    statement_timeout_ms: Optional[int] = None,
) -> Iterator[UnitOfWork]:
    """
    Open one atomic scope: commit on clean exit, roll back everything on any error.

    Database errors are translated once here; domain errors propagate unchanged.
    """
    session = session_factory() if session_factory else SessionLocal(bind=get_engine())
    timeout_ms = settings.statement_timeout_ms if statement_timeout_ms is None else statement_timeout_ms
    try:
        uow = UnitOfWork(session)
        uow.apply_statement_timeout(timeout_ms)
        yield uow
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise translate_db_error(e) from e
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
