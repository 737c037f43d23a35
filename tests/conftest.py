"""Pytest fixtures for testing"""

import pytest
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Generator, Iterable, Optional, Tuple
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from microfin_gateway.api.main import create_app
from microfin_gateway.domain.models import LoanStatus, ScheduleStatus
from microfin_gateway.infrastructure.database.models import Base, Loan, RepaymentScheduleItem
from microfin_gateway.infrastructure.database.session import get_db


# Test database
TEST_DATABASE_URL = "sqlite:///./test_microfin.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


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
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


# (total_due, due_date) or (total_due, due_date, paid_amount, status)
ItemSpec = Tuple


@pytest.fixture
def make_loan(db: Session) -> Callable[..., Loan]:
    """Factory for a loan with a hand-built schedule"""

    def _make_loan(
        items: Iterable[ItemSpec] = (),
        status: LoanStatus = LoanStatus.ACTIVE,
        branch_id: str = "branch-a",
        assigned_officer_id: Optional[str] = "officer-1",
        created_by_user_id: str = "manager-1",
        principal: Decimal = Decimal("100.00"),
    ) -> Loan:
        loan = Loan(
            loan_number=f"LN-{uuid.uuid4().hex[:8]}",
            customer_id="customer-1",
            branch_id=branch_id,
            assigned_officer_id=assigned_officer_id,
            created_by_user_id=created_by_user_id,
            principal_amount=principal,
            status=status.value,
            is_deleted=False,
        )
        db.add(loan)
        db.flush()

        for sequence, spec in enumerate(items, start=1):
            total_due, due_date = Decimal(spec[0]), spec[1]
            paid = Decimal(spec[2]) if len(spec) > 2 else Decimal("0")
            item_status = spec[3] if len(spec) > 3 else ScheduleStatus.PENDING
            db.add(
                RepaymentScheduleItem(
                    loan_id=loan.id,
                    sequence=sequence,
                    due_date=due_date,
                    principal_due=total_due,
                    interest_due=Decimal("0"),
                    total_due=total_due,
                    paid_amount=paid,
                    status=item_status.value,
                    is_deleted=False,
                )
            )
        db.commit()
        return loan

    return _make_loan


@pytest.fixture
def two_installment_loan(make_loan) -> Loan:
    """Loan owing 50 on 2024-01-01 and 50 on 2024-02-01"""
    return make_loan(
        [
            ("50.00", date(2024, 1, 1)),
            ("50.00", date(2024, 2, 1)),
        ]
    )


@pytest.fixture
def fixed_now() -> datetime:
    """Clock value for engine and service tests"""
    return FIXED_NOW
