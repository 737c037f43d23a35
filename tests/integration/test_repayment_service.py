"""Integration tests for role-aware repayment operations and loan activation"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from sqlalchemy.orm import Session
from microfin_gateway.config import settings
from microfin_gateway.domain.exceptions import (
    EditWindowExpiredError,
    InvalidLoanStateError,
    LoanNotFoundError,
    PermissionDeniedError,
    RepaymentNotFoundError,
)
from microfin_gateway.domain.models import Actor, LoanStatus, RepaymentMethod, Role, ScheduleStatus
from microfin_gateway.infrastructure.database.models import Loan, Repayment
from microfin_gateway.services.loans import LoanService
from microfin_gateway.services.repayments import Page, RepaymentService
from microfin_gateway.utils.date_utils import utcnow

ADMIN = Actor("admin-1", Role.ADMIN)
MANAGER_A = Actor("manager-1", Role.BRANCH_MANAGER, "branch-a")
MANAGER_B = Actor("manager-2", Role.BRANCH_MANAGER, "branch-b")
OFFICER_1 = Actor("officer-1", Role.CREDIT_OFFICER, "branch-a")
OFFICER_2 = Actor("officer-2", Role.CREDIT_OFFICER, "branch-b")


@pytest.fixture
def service(db: Session) -> RepaymentService:
    return RepaymentService(db)


@pytest.fixture
def loans(make_loan):
    """One loan per branch, each with two 50 installments"""
    items = [("50.00", date(2024, 1, 1)), ("50.00", date(2024, 2, 1))]
    loan_a = make_loan(items, branch_id="branch-a", assigned_officer_id="officer-1")
    loan_b = make_loan(
        items, branch_id="branch-b", assigned_officer_id="officer-2", created_by_user_id="manager-2"
    )
    return loan_a, loan_b


def record(service: RepaymentService, actor: Actor, loan: Loan, amount: str, method=RepaymentMethod.CASH, paid_at=None):
    return service.create_repayment(actor, loan.id, Decimal(amount), method, paid_at=paid_at)


def age(db: Session, repayment: Repayment, hours: int) -> None:
    repayment.created_at = utcnow() - timedelta(hours=hours)
    db.commit()


@pytest.mark.parametrize(
    "actor,expected_loans",
    [(ADMIN, {0, 1}), (MANAGER_A, {0}), (MANAGER_B, {1}), (OFFICER_1, {0}), (OFFICER_2, {1})],
)
def test_list_repayments_is_scoped_by_role(service, loans, actor, expected_loans):
    for loan in loans:
        record(service, ADMIN, loan, "10.00")

    repayments, total, _ = service.list_repayments(actor)

    assert total == len(expected_loans)
    assert {r.loan_id for r in repayments} == {loans[i].id for i in expected_loans}


def test_officer_sees_loans_they_created(service, make_loan):
    loan = make_loan(
        [("50.00", date(2024, 1, 1))], assigned_officer_id="officer-7", created_by_user_id="officer-1"
    )
    record(service, ADMIN, loan, "10.00")

    _, total, _ = service.list_repayments(OFFICER_1)

    assert total == 1


def test_list_repayments_filters_and_paging(service, loans):
    loan_a, loan_b = loans
    jan = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
    feb = datetime(2024, 2, 15, 10, 0, tzinfo=timezone.utc)
    record(service, ADMIN, loan_a, "5.00", RepaymentMethod.CASH, paid_at=jan)
    record(service, ADMIN, loan_a, "6.00", RepaymentMethod.MOBILE, paid_at=feb)
    record(service, ADMIN, loan_b, "7.00", RepaymentMethod.MOBILE, paid_at=feb)

    _, total, _ = service.list_repayments(ADMIN, method=RepaymentMethod.MOBILE)
    assert total == 2

    _, total, _ = service.list_repayments(ADMIN, loan_id=loan_a.id)
    assert total == 2

    repayments, total, _ = service.list_repayments(ADMIN, date_from=date(2024, 2, 1), date_to=date(2024, 2, 28))
    assert total == 2
    assert all(r.amount != Decimal("5.00") for r in repayments)

    page, total, paging = service.list_repayments(ADMIN, page=2, limit=2)
    assert total == 3
    assert len(page) == 1
    assert paging.offset == 2


def test_list_repayments_newest_first(service, loans):
    loan_a, _ = loans
    record(service, ADMIN, loan_a, "1.00", paid_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
    record(service, ADMIN, loan_a, "2.00", paid_at=datetime(2024, 1, 3, tzinfo=timezone.utc))

    repayments, _, _ = service.list_repayments(ADMIN)

    assert [r.amount for r in repayments] == [Decimal("2.00"), Decimal("1.00")]


def test_deleted_repayments_are_hidden(service, loans):
    loan_a, _ = loans
    repayment = record(service, ADMIN, loan_a, "10.00")
    service.delete_repayment(ADMIN, repayment.id)

    _, total, _ = service.list_repayments(ADMIN)
    assert total == 0
    with pytest.raises(RepaymentNotFoundError):
        service.get_repayment(ADMIN, repayment.id)


def test_page_limit_is_capped():
    paging = Page.of(0, 10_000)
    assert paging.page == 1
    assert paging.limit == settings.max_page_size
    assert Page.of(None, None).limit == settings.default_page_size


def test_get_repayment_permission(service, loans):
    loan_a, _ = loans
    repayment = record(service, ADMIN, loan_a, "10.00")

    assert service.get_repayment(MANAGER_A, repayment.id).id == repayment.id
    with pytest.raises(PermissionDeniedError):
        service.get_repayment(MANAGER_B, repayment.id)
    with pytest.raises(PermissionDeniedError):
        service.get_repayment(OFFICER_2, repayment.id)


def test_update_changes_metadata_only(db, service, loans):
    loan_a, _ = loans
    repayment = record(service, OFFICER_1, loan_a, "10.00")

    updated = service.update_repayment(
        OFFICER_1, repayment.id, method=RepaymentMethod.TRANSFER, reference="TRX-9", notes="bank slip"
    )

    assert updated.method == "TRANSFER"
    assert updated.reference == "TRX-9"
    assert updated.notes == "bank slip"
    assert updated.amount == Decimal("10.00")


def test_update_rejected_for_unassigned_officer_and_other_branch(service, loans):
    loan_a, _ = loans
    repayment = record(service, ADMIN, loan_a, "10.00")

    with pytest.raises(PermissionDeniedError):
        service.update_repayment(OFFICER_2, repayment.id, notes="x")
    with pytest.raises(PermissionDeniedError):
        service.update_repayment(MANAGER_B, repayment.id, notes="x")


def test_update_rejected_after_edit_window(db, service, loans):
    loan_a, _ = loans
    repayment = record(service, ADMIN, loan_a, "10.00")
    age(db, repayment, hours=25)

    with pytest.raises(EditWindowExpiredError):
        service.update_repayment(ADMIN, repayment.id, notes="late")


def test_delete_reverses_allocations(db, service, loans):
    loan_a, _ = loans
    repayment = record(service, MANAGER_A, loan_a, "100.00")
    assert db.get(Loan, loan_a.id).status == LoanStatus.COMPLETED.value

    service.delete_repayment(MANAGER_A, repayment.id)

    db.expire_all()
    loan = db.get(Loan, loan_a.id)
    assert loan.status == LoanStatus.ACTIVE.value
    assert all(item.paid_amount == Decimal("0") for item in loan.schedule_items)
    assert all(item.status == ScheduleStatus.PENDING.value for item in loan.schedule_items)


def test_delete_policy(db, service, loans):
    loan_a, _ = loans
    repayment = record(service, ADMIN, loan_a, "10.00")

    with pytest.raises(PermissionDeniedError):
        service.delete_repayment(OFFICER_1, repayment.id)
    with pytest.raises(PermissionDeniedError):
        service.delete_repayment(MANAGER_B, repayment.id)

    age(db, repayment, hours=30)
    with pytest.raises(EditWindowExpiredError):
        service.delete_repayment(ADMIN, repayment.id)

    assert db.get(Repayment, repayment.id).is_deleted is False


def test_list_schedules_scoped_and_filtered(service, loans):
    loan_a, loan_b = loans
    record(service, ADMIN, loan_a, "60.00")

    items, total, _ = service.list_schedules(ADMIN)
    assert total == 4

    items, total, _ = service.list_schedules(MANAGER_A)
    assert total == 2
    assert {i.loan_id for i in items} == {loan_a.id}

    items, total, _ = service.list_schedules(ADMIN, status=ScheduleStatus.PAID.value)
    assert total == 1
    assert items[0].loan_id == loan_a.id

    items, total, _ = service.list_schedules(ADMIN, date_from=date(2024, 1, 15))
    assert total == 2
    assert all(i.due_date == date(2024, 2, 1) for i in items)


def test_get_loan_schedule(service, loans):
    loan_a, _ = loans
    record(service, ADMIN, loan_a, "70.00")

    loan, schedule = service.get_loan_schedule(OFFICER_1, loan_a.id)

    assert loan.id == loan_a.id
    assert [item.sequence for item in schedule] == [1, 2]
    assert [len(item.allocations) for item in schedule] == [1, 1]
    assert schedule[1].allocations[0].amount == Decimal("20.00")


def test_get_loan_schedule_permissions(db, service, loans, make_loan):
    loan_a, _ = loans

    with pytest.raises(PermissionDeniedError):
        service.get_loan_schedule(OFFICER_2, loan_a.id)
    with pytest.raises(PermissionDeniedError):
        service.get_loan_schedule(MANAGER_B, loan_a.id)

    deleted = make_loan([])
    deleted.is_deleted = True
    db.commit()
    with pytest.raises(LoanNotFoundError):
        service.get_loan_schedule(ADMIN, deleted.id)


def test_summary(service, loans):
    loan_a, loan_b = loans
    record(service, ADMIN, loan_a, "10.00", RepaymentMethod.CASH)
    record(service, ADMIN, loan_a, "15.50", RepaymentMethod.MOBILE)
    record(service, ADMIN, loan_b, "20.00", RepaymentMethod.MOBILE)

    summary = service.get_summary(ADMIN)
    assert summary["total_repayments"] == 3
    assert summary["total_amount"] == Decimal("45.50")
    breakdown = {row["method"]: (row["count"], row["amount"]) for row in summary["method_breakdown"]}
    assert breakdown == {"CASH": (1, Decimal("10.00")), "MOBILE": (2, Decimal("35.50"))}
    assert len(summary["recent_repayments"]) == 3

    scoped = service.get_summary(MANAGER_B)
    assert scoped["total_repayments"] == 1
    assert scoped["total_amount"] == Decimal("20.00")


def test_summary_empty(service):
    summary = service.get_summary(ADMIN)
    assert summary["total_repayments"] == 0
    assert summary["total_amount"] == Decimal("0")
    assert summary["method_breakdown"] == []


def test_activate_loan_creates_schedule(db, make_loan):
    loan = make_loan([], status=LoanStatus.APPROVED, principal=Decimal("1000.00"))

    activated, items = LoanService(db).activate_loan(
        loan.id,
        num_installments=3,
        interval_days=30,
        interest_rate=Decimal("0.10"),
        start_date=date(2024, 1, 31),
    )

    assert activated.status == LoanStatus.ACTIVE.value
    assert [i.sequence for i in items] == [1, 2, 3]
    assert sum(i.total_due for i in items) == Decimal("1100.00")
    assert items[2].due_date == date(2024, 3, 31)
    assert all(i.status == ScheduleStatus.PENDING.value for i in items)


def test_activate_loan_rejects_wrong_state(db, make_loan):
    active = make_loan([("50.00", date(2024, 1, 1))])
    with pytest.raises(InvalidLoanStateError):
        LoanService(db).activate_loan(active.id)

    approved_with_schedule = make_loan([("50.00", date(2024, 1, 1))], status=LoanStatus.APPROVED)
    with pytest.raises(InvalidLoanStateError, match="already has a repayment schedule"):
        LoanService(db).activate_loan(approved_with_schedule.id)


def test_activated_loan_accepts_payments(db, service, make_loan):
    loan = make_loan([], status=LoanStatus.APPROVED, principal=Decimal("200.00"))
    LoanService(db).activate_loan(loan.id, num_installments=2, start_date=date(2024, 1, 1))

    record(service, OFFICER_1, loan, "200.00")

    assert db.get(Loan, loan.id).status == LoanStatus.COMPLETED.value
