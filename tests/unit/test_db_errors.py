"""Unit tests for mapping database failures onto settlement errors"""

from sqlalchemy.exc import IntegrityError, OperationalError, TimeoutError as PoolTimeoutError
from fair_settlement.infrastructure.database.session import translate_db_error
from fair_settlement.domain.exceptions import ConflictError, PersistenceError, SettlementTimeoutError


class FakeDriverError(Exception):
    """Stand-in for a psycopg2 error carrying a SQLSTATE"""

    def __init__(self, message: str, pgcode: str | None = None):
        super().__init__(message)
        self.pgcode = pgcode


def test_statement_timeout_maps_to_timeout_error():
    error = OperationalError("UPDATE installment", {}, FakeDriverError("canceling statement", "57014"))
    translated = translate_db_error(error)

    assert isinstance(translated, SettlementTimeoutError)
    assert isinstance(translated, PersistenceError)


def test_pool_timeout_maps_to_timeout_error():
    assert isinstance(translate_db_error(PoolTimeoutError("QueuePool limit reached")), SettlementTimeoutError)


def test_lock_not_available_maps_to_conflict():
    error = OperationalError("SELECT ... FOR UPDATE NOWAIT", {}, FakeDriverError("could not obtain lock", "55P03"))
    assert isinstance(translate_db_error(error), ConflictError)


def test_serialization_failure_maps_to_conflict():
    error = OperationalError("UPDATE purchase", {}, FakeDriverError("could not serialize", "40001"))
    assert isinstance(translate_db_error(error), ConflictError)


def test_constraint_violation_maps_to_persistence_error():
    error = IntegrityError("INSERT INTO audit_log", {}, FakeDriverError("not null violation", "23502"))
    translated = translate_db_error(error)

    assert type(translated) is PersistenceError
