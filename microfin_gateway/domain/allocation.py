"""Repayment allocation rules - distributing payments across installments"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Sequence

from microfin_gateway.domain.exceptions import InvalidAmountError
from microfin_gateway.domain.models import (
    MONEY_PRECISION,
    MONEY_SCALE,
    AllocationLine,
    AllocationPlan,
    ScheduleStatus,
)

ZERO = Decimal("0")
CENT = Decimal("0.01")
# Largest value a money column can hold
MAX_AMOUNT = Decimal(10) ** (MONEY_PRECISION - MONEY_SCALE) - CENT


def validate_amount(amount) -> Decimal:
    """
    Ensure a payment amount is a finite, positive, cent-precise Decimal.

    Floats are rejected outright and extra precision is an error, never
    rounded away.

    Raises:
        InvalidAmountError: If the amount cannot be taken as money
    """
    if isinstance(amount, (float, bool)):
        raise InvalidAmountError("Amount must be a decimal, not a float")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from e

    if not value.is_finite():
        raise InvalidAmountError("Amount must be finite")
    if value <= ZERO:
        raise InvalidAmountError("Amount must be greater than 0")
    if value > MAX_AMOUNT:
        raise InvalidAmountError(f"Amount cannot exceed {MAX_AMOUNT}")
    if value.as_tuple().exponent < -MONEY_SCALE and value != value.quantize(CENT):
        raise InvalidAmountError("Amount cannot have more than 2 decimal places")
    return value


def outstanding(item) -> Decimal:
    return item.total_due - item.paid_amount


def status_for(paid_amount: Decimal, total_due: Decimal) -> ScheduleStatus:
    """Installment status implied by its paid amount"""
    if paid_amount >= total_due:
        return ScheduleStatus.PAID
    if paid_amount > ZERO:
        return ScheduleStatus.PARTIAL
    return ScheduleStatus.PENDING


def allocation_order(items: Iterable) -> List:
    """Oldest obligation first: due date, then installment sequence"""
    return sorted(items, key=lambda item: (item.due_date, item.sequence))


def plan_allocation(amount: Decimal, items: Sequence) -> AllocationPlan:
    """
    Walk installments in due-date order, assigning as much of the payment to
    each as it still owes.

    Items are expected to be the loan's allocatable installments. Anything
    left after the last installment is reported as ``unallocated`` and is
    not assigned anywhere.

    Example:
        items owing 50 (Jan) and 50 (Feb), amount 70
        -> [50 to Jan, 20 to Feb], unallocated 0
    """
    plan = AllocationPlan()
    remaining = amount

    for item in allocation_order(items):
        if remaining <= ZERO:
            break

        owed = outstanding(item)
        if owed <= ZERO:
            continue

        allocated = min(remaining, owed)
        plan.lines.append(AllocationLine(item=item, amount=allocated))
        remaining -= allocated

    plan.unallocated = remaining if remaining > ZERO else ZERO
    return plan


def apply_payment(item, amount: Decimal, now: datetime) -> None:
    """Add an allocated amount to an installment and refresh its status"""
    item.paid_amount = item.paid_amount + amount
    status = status_for(item.paid_amount, item.total_due)
    item.status = status.value
    item.closed_at = now if status == ScheduleStatus.PAID else None


def revert_payment(item, amount: Decimal) -> None:
    """Remove a previously allocated amount from an installment"""
    paid = item.paid_amount - amount
    if paid < ZERO:
        paid = ZERO
    item.paid_amount = paid

    status = status_for(paid, item.total_due)
    item.status = status.value
    if status != ScheduleStatus.PAID:
        item.closed_at = None
