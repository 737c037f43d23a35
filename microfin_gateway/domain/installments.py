"""Repayment schedule generation for loan activation"""

from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List
from microfin_gateway.domain.models import ScheduleLine

CENT = Decimal("0.01")


def split_evenly(amount: Decimal, parts: int) -> List[Decimal]:
    """
    Split a cent-precise amount into equal parts; the last part absorbs the
    rounding remainder so the parts always sum to the amount.

    Example:
        400.03 / 4 -> [100.00, 100.00, 100.00, 100.03]
    """
    cents = int((amount / CENT).to_integral_value())
    base, remainder = divmod(cents, parts)
    shares = [Decimal(base) * CENT for _ in range(parts)]
    shares[-1] = Decimal(base + remainder) * CENT
    return shares


def generate_repayment_schedule(
    principal: Decimal,
    interest_rate: Decimal = Decimal("0"),
    num_installments: int = 4,
    interval_days: int = 30,
    start_date: date | None = None,
) -> List[ScheduleLine]:
    """
    Generate equal installments with flat interest.

    Requirements:
    - Interest is ``principal * interest_rate`` rounded half-up to cents
    - Principal and interest are each split evenly, last installment absorbs remainders
    - Installments are ``interval_days`` apart

    Args:
        principal: Loan principal amount
        interest_rate: Flat rate for the whole term (0.10 for 10%)
        num_installments: Number of payments (default 4)
        interval_days: Days between payments (default 30)
        start_date: First due date (default: today + interval_days)

    Returns:
        List of ScheduleLine objects ordered by sequence
    """
    if principal <= 0 or num_installments <= 0:
        return []

    if start_date is None:
        start_date = date.today() + timedelta(days=interval_days)

    interest_total = (principal * interest_rate).quantize(CENT, rounding=ROUND_HALF_UP)

    principal_shares = split_evenly(principal, num_installments)
    interest_shares = split_evenly(interest_total, num_installments)

    return [
        ScheduleLine(
            sequence=i + 1,
            due_date=start_date + timedelta(days=i * interval_days),
            principal_due=principal_shares[i],
            interest_due=interest_shares[i],
        )
        for i in range(num_installments)
    ]
