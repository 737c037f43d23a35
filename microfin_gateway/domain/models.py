"""Domain models - pure Python dataclasses and enums representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional


class LoanStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DEFAULTED = "DEFAULTED"
    WRITTEN_OFF = "WRITTEN_OFF"
    CANCELED = "CANCELED"


class ScheduleStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"  # Maintained by the caller, never set by allocation


# Stored money: total digits and digits after the point
MONEY_PRECISION = 18
MONEY_SCALE = 2

# Installment states a payment may be applied to
ALLOCATABLE_STATUSES = (ScheduleStatus.PENDING, ScheduleStatus.PARTIAL, ScheduleStatus.OVERDUE)


class RepaymentMethod(str, Enum):
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    POS = "POS"
    MOBILE = "MOBILE"
    USSD = "USSD"
    OTHER = "OTHER"


class Role(str, Enum):
    ADMIN = "ADMIN"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    CREDIT_OFFICER = "CREDIT_OFFICER"


STAFF_ROLES = (Role.ADMIN, Role.BRANCH_MANAGER, Role.CREDIT_OFFICER)
MANAGER_ROLES = (Role.ADMIN, Role.BRANCH_MANAGER)


@dataclass
class Actor:
    """Authenticated caller as established by the upstream auth layer"""

    user_id: str
    role: Role
    branch_id: Optional[str] = None


@dataclass
class ScheduleLine:
    """Single installment of a generated repayment schedule"""

    sequence: int
    due_date: date
    principal_due: Decimal
    interest_due: Decimal

    @property
    def total_due(self) -> Decimal:
        return self.principal_due + self.interest_due


@dataclass
class AllocationLine:
    """Portion of a payment applied to one schedule item"""

    item: Any  # RepaymentScheduleItem
    amount: Decimal


@dataclass
class AllocationPlan:
    """Result of walking outstanding installments with a payment amount"""

    lines: List[AllocationLine] = field(default_factory=list)
    unallocated: Decimal = Decimal("0")

    @property
    def allocated(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))
