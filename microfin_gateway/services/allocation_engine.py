"""Repayment allocation engine - records payments against a loan schedule and reverses them"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from microfin_gateway.domain.allocation import apply_payment, plan_allocation, revert_payment, validate_amount
from microfin_gateway.domain.exceptions import InvalidLoanStateError, LoanNotFoundError, RepaymentNotFoundError
from microfin_gateway.domain.models import LoanStatus, RepaymentMethod
from microfin_gateway.infrastructure.database.models import Loan, Repayment
from microfin_gateway.infrastructure.database.repositories import LoanRepository, RepaymentRepository
from microfin_gateway.infrastructure.database.unit_of_work import run_in_transaction
from microfin_gateway.infrastructure.observability.metrics import loan_status_counter, repayment_reversal_counter
from microfin_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


class RepaymentAllocationEngine:
    """
    Owns the loan + schedule-items aggregate for payment processing.

    Every public call is a single unit of work: the loan row is locked, the
    schedule items are read for update, everything is mutated and committed
    together, and the whole call is retried on serialization conflicts.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.loans = LoanRepository(db)
        self.repayments = RepaymentRepository(db)

    def record_payment(
        self,
        loan_id: uuid.UUID,
        amount: Decimal,
        method: RepaymentMethod,
        received_by: str,
        paid_at: Optional[datetime] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Repayment:
        """
        Record a payment and distribute it over outstanding installments.

        Installments are paid oldest due date first. Any amount left once
        every installment is paid stays on the repayment record but is not
        allocated anywhere. The loan is completed when no live installment
        remains unpaid.

        Raises:
            InvalidAmountError: Amount is not a positive cent-precise decimal
            LoanNotFoundError: Loan missing or deleted
            InvalidLoanStateError: Loan is not ACTIVE
            ConcurrencyConflictError: Conflicts persisted across all retries
        """
        value = validate_amount(amount)
        method_value = RepaymentMethod(method).value

        def _record() -> Repayment:
            now = self.clock()
            loan = self._lock_loan(loan_id)
            if loan.status != LoanStatus.ACTIVE.value:
                raise InvalidLoanStateError(f"Can only make payments on active loans (status: {loan.status})")

            repayment = self.repayments.create_repayment(
                loan_id=loan.id,
                received_by_user_id=received_by,
                amount=value,
                paid_at=paid_at or now,
                method=method_value,
                reference=reference,
                notes=notes,
            )

            items = self.loans.get_allocatable_items_for_update(loan.id)
            plan = plan_allocation(value, items)
            for line in plan.lines:
                self.repayments.add_allocation(repayment.id, line.item.id, line.amount)
                apply_payment(line.item, line.amount, now)
            self.db.flush()

            if plan.unallocated > 0:
                logger.warning(
                    "Payment exceeds outstanding balance, excess not allocated",
                    extra={"loan_id": str(loan.id), "unallocated_amount": str(plan.unallocated)},
                )

            self._complete_if_fully_paid(loan, now)
            return repayment

        return run_in_transaction(self.db, _record)

    def reverse_repayment(self, repayment_id: uuid.UUID) -> None:
        """
        Undo a repayment: take its allocations back off their installments,
        soft-delete it, and reopen the loan if it had been completed.

        Allocation rows are kept as history. Permission and edit-window
        checks belong to the caller.

        Raises:
            RepaymentNotFoundError: Repayment missing or already deleted
            ConcurrencyConflictError: Conflicts persisted across all retries
        """

        def _reverse() -> None:
            now = self.clock()
            repayment = self.repayments.get_repayment_for_update(repayment_id)
            if repayment is None:
                raise RepaymentNotFoundError("Repayment not found")

            # Loan may itself be soft-deleted; its installments are still reconciled
            loan = self.loans.get_loan_for_update(repayment.loan_id, include_deleted=True)

            for allocation in self.repayments.get_allocations(repayment.id):
                item = self.loans.get_item_for_update(allocation.schedule_item_id)
                if item is None:
                    continue
                revert_payment(item, allocation.amount)

            repayment.is_deleted = True
            repayment.deleted_at = now
            self.db.flush()

            if loan is not None:
                self._reopen_if_unpaid(loan)

        run_in_transaction(self.db, _reverse)
        repayment_reversal_counter.inc()
        logger.info("Repayment reversed", extra={"repayment_id": str(repayment_id)})

    def _lock_loan(self, loan_id: uuid.UUID) -> Loan:
        loan = self.loans.get_loan_for_update(loan_id)
        if loan is None:
            raise LoanNotFoundError("Loan not found")
        return loan

    def _complete_if_fully_paid(self, loan: Loan, now: datetime) -> bool:
        """ACTIVE -> COMPLETED once the loan has installments and none is unpaid"""
        if self.loans.count_schedule_items(loan.id) == 0:
            return False
        if self.loans.count_unpaid_items(loan.id) > 0:
            return False

        loan.status = LoanStatus.COMPLETED.value
        loan.closed_at = now
        self.db.flush()
        loan_status_counter.labels(status=LoanStatus.COMPLETED.value).inc()
        logger.info("Loan completed", extra={"loan_id": str(loan.id)})
        return True

    def _reopen_if_unpaid(self, loan: Loan) -> bool:
        """COMPLETED -> ACTIVE when a reversal leaves any installment unpaid"""
        if loan.status != LoanStatus.COMPLETED.value:
            return False
        if self.loans.count_unpaid_items(loan.id) == 0:
            return False

        loan.status = LoanStatus.ACTIVE.value
        loan.closed_at = None
        self.db.flush()
        loan_status_counter.labels(status=LoanStatus.ACTIVE.value).inc()
        logger.info("Loan reopened", extra={"loan_id": str(loan.id)})
        return True
