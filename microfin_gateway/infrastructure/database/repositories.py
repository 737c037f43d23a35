"""Data access layer for loans, schedules, repayments and allocations"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from sqlalchemy import func, or_, false
from sqlalchemy.orm import Query, Session, selectinload
from microfin_gateway.domain.models import ALLOCATABLE_STATUSES, Actor, Role, ScheduleLine, ScheduleStatus
from microfin_gateway.infrastructure.database.models import (
    Loan,
    Repayment,
    RepaymentAllocation,
    RepaymentScheduleItem,
)


def not_deleted(model):
    """Explicit live-row predicate for soft-deleted tables"""
    return model.is_deleted.is_(False)


def scope_to_actor(query: Query, actor: Actor, officer_or_creator: bool = True) -> Query:
    """
    Restrict a query already joined to Loan to the loans the actor may see.

    Officers see loans assigned to them, plus loans they created when
    ``officer_or_creator`` is set.
    """
    if actor.role == Role.ADMIN:
        return query
    if actor.role == Role.BRANCH_MANAGER and actor.branch_id:
        return query.filter(Loan.branch_id == actor.branch_id)
    if actor.role == Role.CREDIT_OFFICER:
        if officer_or_creator:
            return query.filter(
                or_(Loan.assigned_officer_id == actor.user_id, Loan.created_by_user_id == actor.user_id)
            )
        return query.filter(Loan.assigned_officer_id == actor.user_id)
    return query.filter(false())


def apply_paid_at_range(query: Query, date_from: Optional[datetime], date_to: Optional[datetime]) -> Query:
    if date_from is not None:
        query = query.filter(Repayment.paid_at >= date_from)
    if date_to is not None:
        query = query.filter(Repayment.paid_at <= date_to)
    return query


class LoanRepository:
    """Repository for loans and their schedule items"""

    def __init__(self, db: Session):
        self.db = db

    def create_loan(
        self,
        loan_number: str,
        customer_id: str,
        branch_id: str,
        created_by_user_id: str,
        principal_amount: Decimal,
        status: str,
        assigned_officer_id: Optional[str] = None,
    ) -> Loan:
        """Persist a loan record"""
        db_loan = Loan(
            loan_number=loan_number,
            customer_id=customer_id,
            branch_id=branch_id,
            created_by_user_id=created_by_user_id,
            assigned_officer_id=assigned_officer_id,
            principal_amount=principal_amount,
            status=status,
            is_deleted=False,
        )
        self.db.add(db_loan)
        self.db.flush()  # Get ID without committing
        return db_loan

    def get_loan(self, loan_id: uuid.UUID) -> Optional[Loan]:
        """Fetch a live loan"""
        return (
            self.db.query(Loan)
            .filter(Loan.id == loan_id, not_deleted(Loan))
            .first()
        )

    def get_loan_for_update(self, loan_id: uuid.UUID, include_deleted: bool = False) -> Optional[Loan]:
        """Fetch a loan and lock its row; serializes writers on the loan aggregate"""
        query = self.db.query(Loan).filter(Loan.id == loan_id)
        if not include_deleted:
            query = query.filter(not_deleted(Loan))
        return (
            query.with_for_update()
            .populate_existing()
            .first()
        )

    def add_schedule(self, loan_id: uuid.UUID, lines: List[ScheduleLine]) -> List[RepaymentScheduleItem]:
        """Create schedule items for a loan"""
        items = []
        for line in lines:
            item = RepaymentScheduleItem(
                loan_id=loan_id,
                sequence=line.sequence,
                due_date=line.due_date,
                principal_due=line.principal_due,
                interest_due=line.interest_due,
                total_due=line.total_due,
                paid_amount=Decimal("0"),
                status=ScheduleStatus.PENDING.value,
                is_deleted=False,
            )
            self.db.add(item)
            items.append(item)
        self.db.flush()
        return items

    def get_schedule(self, loan_id: uuid.UUID) -> List[RepaymentScheduleItem]:
        """Live schedule items in installment order, with allocations and their repayments"""
        return (
            self.db.query(RepaymentScheduleItem)
            .options(selectinload(RepaymentScheduleItem.allocations).selectinload(RepaymentAllocation.repayment))
            .filter(RepaymentScheduleItem.loan_id == loan_id, not_deleted(RepaymentScheduleItem))
            .order_by(RepaymentScheduleItem.sequence.asc())
            .all()
        )

    def count_schedule_items(self, loan_id: uuid.UUID) -> int:
        return (
            self.db.query(func.count(RepaymentScheduleItem.id))
            .filter(RepaymentScheduleItem.loan_id == loan_id, not_deleted(RepaymentScheduleItem))
            .scalar()
        )

    def get_allocatable_items_for_update(self, loan_id: uuid.UUID) -> List[RepaymentScheduleItem]:
        """Live unpaid installments, oldest due date first, locked for the allocation walk"""
        return (
            self.db.query(RepaymentScheduleItem)
            .filter(
                RepaymentScheduleItem.loan_id == loan_id,
                not_deleted(RepaymentScheduleItem),
                RepaymentScheduleItem.status.in_([s.value for s in ALLOCATABLE_STATUSES]),
            )
            .order_by(RepaymentScheduleItem.due_date.asc(), RepaymentScheduleItem.sequence.asc())
            .with_for_update()
            .populate_existing()
            .all()
        )

    def get_item_for_update(self, item_id: uuid.UUID) -> Optional[RepaymentScheduleItem]:
        return (
            self.db.query(RepaymentScheduleItem)
            .filter(RepaymentScheduleItem.id == item_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def count_unpaid_items(self, loan_id: uuid.UUID) -> int:
        """Live installments not yet PAID"""
        return (
            self.db.query(func.count(RepaymentScheduleItem.id))
            .filter(
                RepaymentScheduleItem.loan_id == loan_id,
                not_deleted(RepaymentScheduleItem),
                RepaymentScheduleItem.status != ScheduleStatus.PAID.value,
            )
            .scalar()
        )


class ScheduleRepository:
    """Repository for cross-loan schedule listings"""

    def __init__(self, db: Session):
        self.db = db

    def list_items(
        self,
        actor: Actor,
        offset: int,
        limit: int,
        loan_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> Tuple[List[RepaymentScheduleItem], int]:
        """Page of live schedule items ordered by due date, plus the total count"""
        query = (
            self.db.query(RepaymentScheduleItem)
            .join(Loan, RepaymentScheduleItem.loan_id == Loan.id)
            .filter(not_deleted(RepaymentScheduleItem), not_deleted(Loan))
        )
        query = scope_to_actor(query, actor)

        if loan_id is not None:
            query = query.filter(RepaymentScheduleItem.loan_id == loan_id)
        if status is not None:
            query = query.filter(RepaymentScheduleItem.status == status)
        if date_from is not None:
            query = query.filter(RepaymentScheduleItem.due_date >= date_from)
        if date_to is not None:
            query = query.filter(RepaymentScheduleItem.due_date <= date_to)

        total = query.count()
        items = (
            query.options(selectinload(RepaymentScheduleItem.allocations).selectinload(RepaymentAllocation.repayment))
            .order_by(RepaymentScheduleItem.due_date.asc(), RepaymentScheduleItem.sequence.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total


class RepaymentRepository:
    """Repository for repayments and their allocations"""

    def __init__(self, db: Session):
        self.db = db

    def create_repayment(
        self,
        loan_id: uuid.UUID,
        received_by_user_id: str,
        amount: Decimal,
        paid_at: datetime,
        method: str,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Repayment:
        """Persist repayment record"""
        db_repayment = Repayment(
            loan_id=loan_id,
            received_by_user_id=received_by_user_id,
            amount=amount,
            paid_at=paid_at,
            method=method,
            reference=reference,
            notes=notes,
            is_deleted=False,
        )
        self.db.add(db_repayment)
        self.db.flush()
        return db_repayment

    def add_allocation(self, repayment_id: uuid.UUID, schedule_item_id: uuid.UUID, amount: Decimal) -> RepaymentAllocation:
        allocation = RepaymentAllocation(
            repayment_id=repayment_id,
            schedule_item_id=schedule_item_id,
            amount=amount,
        )
        self.db.add(allocation)
        return allocation

    def get_repayment(self, repayment_id: uuid.UUID) -> Optional[Repayment]:
        """Fetch a live repayment with its loan and allocations"""
        return (
            self.db.query(Repayment)
            .options(selectinload(Repayment.allocations).selectinload(RepaymentAllocation.schedule_item))
            .filter(Repayment.id == repayment_id, not_deleted(Repayment))
            .first()
        )

    def get_repayment_for_update(self, repayment_id: uuid.UUID) -> Optional[Repayment]:
        return (
            self.db.query(Repayment)
            .filter(Repayment.id == repayment_id, not_deleted(Repayment))
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_allocations(self, repayment_id: uuid.UUID) -> List[RepaymentAllocation]:
        return (
            self.db.query(RepaymentAllocation)
            .filter(RepaymentAllocation.repayment_id == repayment_id)
            .all()
        )

    def _scoped_query(
        self,
        actor: Actor,
        loan_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        officer_or_creator: bool = True,
    ) -> Query:
        query = (
            self.db.query(Repayment)
            .join(Loan, Repayment.loan_id == Loan.id)
            .filter(not_deleted(Repayment), not_deleted(Loan))
        )
        query = scope_to_actor(query, actor, officer_or_creator=officer_or_creator)
        if loan_id is not None:
            query = query.filter(Repayment.loan_id == loan_id)
        return apply_paid_at_range(query, date_from, date_to)

    def list_repayments(
        self,
        actor: Actor,
        offset: int,
        limit: int,
        loan_id: Optional[uuid.UUID] = None,
        received_by_user_id: Optional[str] = None,
        method: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Tuple[List[Repayment], int]:
        """Page of live repayments, newest payment first, plus the total count"""
        query = self._scoped_query(actor, loan_id, date_from, date_to)
        if received_by_user_id is not None:
            query = query.filter(Repayment.received_by_user_id == received_by_user_id)
        if method is not None:
            query = query.filter(Repayment.method == method)

        total = query.count()
        repayments = (
            query.options(selectinload(Repayment.allocations).selectinload(RepaymentAllocation.schedule_item))
            .order_by(Repayment.paid_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return repayments, total

    def summarize(
        self,
        actor: Actor,
        loan_id: Optional[uuid.UUID] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        recent_limit: int = 5,
    ) -> Dict:
        """Totals, per-method breakdown and most recent repayments"""
        query = self._scoped_query(actor, loan_id, date_from, date_to, officer_or_creator=False)

        total_count = query.count()
        total_amount = query.with_entities(func.sum(Repayment.amount)).scalar()

        breakdown_rows = (
            query.with_entities(Repayment.method, func.count(Repayment.id), func.sum(Repayment.amount))
            .group_by(Repayment.method)
            .order_by(Repayment.method.asc())
            .all()
        )
        recent = query.order_by(Repayment.paid_at.desc()).limit(recent_limit).all()

        return {
            "total_repayments": total_count,
            "total_amount": _as_money(total_amount),
            "method_breakdown": [
                {"method": method, "count": count, "amount": _as_money(amount)}
                for method, count, amount in breakdown_rows
            ],
            "recent_repayments": recent,
        }


def _as_money(value) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))
