"""Loan activation - creates the repayment schedule and opens the loan for payments"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from microfin_gateway.domain.exceptions import InvalidLoanStateError, LoanNotFoundError
from microfin_gateway.domain.installments import generate_repayment_schedule
from microfin_gateway.domain.models import LoanStatus
from microfin_gateway.infrastructure.database.models import Loan, RepaymentScheduleItem
from microfin_gateway.infrastructure.database.repositories import LoanRepository
from microfin_gateway.infrastructure.database.unit_of_work import run_in_transaction

logger = logging.getLogger(__name__)


class LoanService:
    def __init__(self, db: Session):
        self.db = db
        self.loans = LoanRepository(db)

    def activate_loan(
        self,
        loan_id: uuid.UUID,
        num_installments: int = 4,
        interval_days: int = 30,
        interest_rate: Decimal = Decimal("0"),
        start_date: Optional[date] = None,
    ) -> Tuple[Loan, List[RepaymentScheduleItem]]:
        """
        Move an APPROVED loan to ACTIVE and create its schedule items.

        Raises:
            LoanNotFoundError: Loan missing or deleted
            InvalidLoanStateError: Loan is not APPROVED or already has a schedule
        """

        def _activate():
            loan = self.loans.get_loan_for_update(loan_id)
            if loan is None:
                raise LoanNotFoundError("Loan not found")
            if loan.status != LoanStatus.APPROVED.value:
                raise InvalidLoanStateError(f"Only approved loans can be activated (status: {loan.status})")
            if self.loans.count_schedule_items(loan.id) > 0:
                raise InvalidLoanStateError("Loan already has a repayment schedule")

            lines = generate_repayment_schedule(
                loan.principal_amount,
                interest_rate=interest_rate,
                num_installments=num_installments,
                interval_days=interval_days,
                start_date=start_date,
            )
            items = self.loans.add_schedule(loan.id, lines)
            loan.status = LoanStatus.ACTIVE.value
            self.db.flush()
            return loan, items

        loan, items = run_in_transaction(self.db, _activate)
        logger.info(
            "Loan activated",
            extra={"loan_id": str(loan.id), "installments": len(items)},
        )
        return loan, items
