"""Repayment operations for staff callers: listing, viewing, editing and deleting payments"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from microfin_gateway.config import settings
from microfin_gateway.domain.exceptions import LoanNotFoundError, RepaymentNotFoundError
from microfin_gateway.domain.models import Actor, RepaymentMethod
from microfin_gateway.domain.policies import (
    ensure_can_delete,
    ensure_can_update,
    ensure_can_view,
    ensure_can_view_schedule,
    ensure_within_edit_window,
)
from microfin_gateway.infrastructure.database.models import Loan, Repayment, RepaymentScheduleItem
from microfin_gateway.infrastructure.database.repositories import (
    LoanRepository,
    RepaymentRepository,
    ScheduleRepository,
)
from microfin_gateway.services.allocation_engine import RepaymentAllocationEngine
from microfin_gateway.utils.date_utils import end_of_day, start_of_day, utcnow


@dataclass
class Page:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def of(cls, page: Optional[int], limit: Optional[int]) -> "Page":
        page = max(page or 1, 1)
        limit = min(max(limit or settings.default_page_size, 1), settings.max_page_size)
        return cls(page=page, limit=limit)


def _range(date_from: Optional[date], date_to: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    return (
        start_of_day(date_from) if date_from else None,
        end_of_day(date_to) if date_to else None,
    )


class RepaymentService:
    """Role-aware repayment operations wrapping the allocation engine"""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.engine = RepaymentAllocationEngine(db, clock=clock)
        self.loans = LoanRepository(db)
        self.repayments = RepaymentRepository(db)
        self.schedules = ScheduleRepository(db)

    def create_repayment(
        self,
        actor: Actor,
        loan_id: uuid.UUID,
        amount: Decimal,
        method: RepaymentMethod,
        paid_at: Optional[datetime] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Repayment:
        return self.engine.record_payment(
            loan_id=loan_id,
            amount=amount,
            method=method,
            received_by=actor.user_id,
            paid_at=paid_at,
            reference=reference,
            notes=notes,
        )

    def list_repayments(
        self,
        actor: Actor,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        loan_id: Optional[uuid.UUID] = None,
        received_by_user_id: Optional[str] = None,
        method: Optional[RepaymentMethod] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Tuple[List[Repayment], int, Page]:
        paging = Page.of(page, limit)
        start, end = _range(date_from, date_to)
        repayments, total = self.repayments.list_repayments(
            actor,
            offset=paging.offset,
            limit=paging.limit,
            loan_id=loan_id,
            received_by_user_id=received_by_user_id,
            method=method.value if method else None,
            date_from=start,
            date_to=end,
        )
        return repayments, total, paging

    def get_repayment(self, actor: Actor, repayment_id: uuid.UUID) -> Repayment:
        repayment = self._get(repayment_id)
        ensure_can_view(actor, repayment.loan)
        return repayment

    def update_repayment(
        self,
        actor: Actor,
        repayment_id: uuid.UUID,
        method: Optional[RepaymentMethod] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Repayment:
        """Edit method/reference/notes; the amount is never editable"""
        repayment = self._get(repayment_id)
        ensure_can_update(actor, repayment.loan)
        ensure_within_edit_window(
            repayment.created_at, self.clock(), settings.repayment_edit_window_hours, "update"
        )

        if method is not None:
            repayment.method = RepaymentMethod(method).value
        if reference is not None:
            repayment.reference = reference
        if notes is not None:
            repayment.notes = notes

        self.db.commit()
        return repayment

    def delete_repayment(self, actor: Actor, repayment_id: uuid.UUID) -> Repayment:
        """Policy checks, then reverse the repayment's allocations"""
        repayment = self._get(repayment_id)
        ensure_can_delete(actor, repayment.loan)
        ensure_within_edit_window(
            repayment.created_at, self.clock(), settings.repayment_edit_window_hours, "delete"
        )
        self.engine.reverse_repayment(repayment.id)
        return repayment

    def list_schedules(
        self,
        actor: Actor,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        loan_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Tuple[List[RepaymentScheduleItem], int, Page]:
        paging = Page.of(page, limit)
        items, total = self.schedules.list_items(
            actor,
            offset=paging.offset,
            limit=paging.limit,
            loan_id=loan_id,
            status=status,
            date_from=date_from,
            date_to=date_to,
        )
        return items, total, paging

    def get_loan_schedule(self, actor: Actor, loan_id: uuid.UUID) -> Tuple[Loan, List[RepaymentScheduleItem]]:
        loan = self.loans.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError("Loan not found")
        ensure_can_view_schedule(actor, loan)
        return loan, self.loans.get_schedule(loan.id)

    def get_summary(
        self,
        actor: Actor,
        loan_id: Optional[uuid.UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Dict:
        start, end = _range(date_from, date_to)
        return self.repayments.summarize(actor, loan_id=loan_id, date_from=start, date_to=end)

    def _get(self, repayment_id: uuid.UUID) -> Repayment:
        repayment = self.repayments.get_repayment(repayment_id)
        if repayment is None:
            raise RepaymentNotFoundError("Repayment not found")
        return repayment
