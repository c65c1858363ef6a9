"""Pytest fixtures for testing"""

import pytest
from datetime import date
from typing import Callable, Generator, List, Optional
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from fair_settlement.infrastructure.database.models import Base, Purchase
from fair_settlement.infrastructure.database.repositories import PurchaseRepository
from fair_settlement.domain.installments import generate_installment_plan
from fair_settlement.domain.models import PlannedInstallment
from fair_settlement.services.settlement import SettlementService


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@event.listens_for(engine, "connect")
def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Session factory bound to the test database (tables already created)"""
    return TestingSessionLocal


@pytest.fixture
def service(session_factory: sessionmaker) -> SettlementService:
    """Settlement service writing to the test database"""
    return SettlementService(session_factory=session_factory)


@pytest.fixture
def make_purchase(db: Session) -> Callable[..., Purchase]:
    """
    Create and commit a purchase with its plan.

    Pass explicit amounts, or let the total be split into num_installments.
    """

    def _make(
        total_cents: int = 30000,
        amounts: Optional[List[int]] = None,
        num_installments: int = 2,
        first_due_date: date = date(2026, 3, 10),
        owner_id: str = "owner_1",
        fair_id: str = "fair_1",
    ) -> Purchase:
        if amounts is None:
            plan = generate_installment_plan(total_cents, num_installments, first_due_date=first_due_date)
        else:
            plan = [
                PlannedInstallment(number=i + 1, due_date=first_due_date, amount_cents=amount)
                for i, amount in enumerate(amounts)
            ]
        purchase = PurchaseRepository(db).create_purchase(
            owner_id=owner_id,
            fair_id=fair_id,
            total_cents=total_cents,
            installments=plan,
        )
        db.commit()
        return purchase

    return _make


@pytest.fixture
def reload_purchase(db: Session) -> Callable[..., Purchase]:
    """Fetch committed state, discarding anything cached in the session"""

    def _reload(purchase_id) -> Purchase:
        db.expire_all()
        return PurchaseRepository(db).get_purchase(purchase_id)

    return _reload
