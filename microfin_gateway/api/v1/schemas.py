"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from microfin_gateway.domain.models import MONEY_PRECISION, MONEY_SCALE, RepaymentMethod, ScheduleStatus


class RepaymentCreateRequest(BaseModel):
    """Request body for POST /v1/repayments"""

    loan_id: str = Field(..., min_length=1, description="Loan identifier")
    amount: Decimal = Field(..., gt=0, max_digits=MONEY_PRECISION, decimal_places=MONEY_SCALE, description="Amount paid")
    paid_at: Optional[datetime] = Field(None, description="When the money was received (default: now)")
    method: RepaymentMethod
    reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)


class RepaymentUpdateRequest(BaseModel):
    """Request body for PUT /v1/repayments/{repayment_id}; amount cannot be changed"""

    method: Optional[RepaymentMethod] = None
    reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)


class AllocationSchema(BaseModel):
    """Portion of a repayment applied to one installment"""

    id: str
    schedule_item_id: str
    sequence: Optional[int] = None
    due_date: Optional[date] = None
    amount: Decimal


class RepaymentResponse(BaseModel):
    """Repayment with its allocations"""

    id: str
    loan_id: str
    amount: Decimal
    allocated_amount: Decimal
    unallocated_amount: Decimal
    paid_at: datetime
    method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    received_by_user_id: str
    created_at: Optional[datetime] = None
    allocations: List[AllocationSchema]


class RepaymentListResponse(BaseModel):
    """Response for GET /v1/repayments"""

    repayments: List[RepaymentResponse]
    total: int
    page: int
    limit: int


class ScheduleAllocationSchema(BaseModel):
    """Repayment contribution to an installment"""

    repayment_id: str
    amount: Decimal
    method: str
    paid_at: datetime
    reference: Optional[str] = None
    repayment_deleted: bool = False


class ScheduleItemSchema(BaseModel):
    """Single installment in a repayment schedule"""

    id: str
    loan_id: str
    sequence: int
    due_date: date
    principal_due: Decimal
    interest_due: Decimal
    total_due: Decimal
    paid_amount: Decimal
    outstanding: Decimal
    status: ScheduleStatus
    closed_at: Optional[datetime] = None
    allocations: List[ScheduleAllocationSchema] = []


class ScheduleListResponse(BaseModel):
    """Response for GET /v1/repayments/schedules"""

    schedules: List[ScheduleItemSchema]
    total: int
    page: int
    limit: int


class LoanSchema(BaseModel):
    loan_id: str
    loan_number: str
    customer_id: str
    branch_id: str
    assigned_officer_id: Optional[str] = None
    principal_amount: Decimal
    status: str
    closed_at: Optional[datetime] = None


class LoanScheduleResponse(BaseModel):
    """Response for GET /v1/repayments/schedules/{loan_id} and loan activation"""

    loan: LoanSchema
    schedule: List[ScheduleItemSchema]


class MethodBreakdown(BaseModel):
    method: str
    count: int
    amount: Decimal


class RecentRepayment(BaseModel):
    id: str
    loan_id: str
    amount: Decimal
    method: str
    paid_at: datetime


class SummaryResponse(BaseModel):
    """Response for GET /v1/repayments/summary"""

    total_repayments: int
    total_amount: Decimal
    method_breakdown: List[MethodBreakdown]
    recent_repayments: List[RecentRepayment]


class LoanActivationRequest(BaseModel):
    """Request body for POST /v1/loans/{loan_id}/activate"""

    num_installments: int = Field(4, gt=0, le=360)
    interval_days: int = Field(30, gt=0, le=366)
    interest_rate: Decimal = Field(Decimal("0"), ge=0, le=10, decimal_places=6, description="Flat rate for the term")
    start_date: Optional[date] = None


def allocation_schema(allocation) -> AllocationSchema:
    item = allocation.schedule_item
    return AllocationSchema(
        id=str(allocation.id),
        schedule_item_id=str(allocation.schedule_item_id),
        sequence=item.sequence if item is not None else None,
        due_date=item.due_date if item is not None else None,
        amount=allocation.amount,
    )


def repayment_response(repayment) -> RepaymentResponse:
    allocations = sorted(
        repayment.allocations,
        key=lambda a: a.schedule_item.sequence if a.schedule_item is not None else 0,
    )
    allocated = sum((a.amount for a in allocations), Decimal("0"))
    return RepaymentResponse(
        id=str(repayment.id),
        loan_id=str(repayment.loan_id),
        amount=repayment.amount,
        allocated_amount=allocated,
        unallocated_amount=repayment.amount - allocated,
        paid_at=repayment.paid_at,
        method=repayment.method,
        reference=repayment.reference,
        notes=repayment.notes,
        received_by_user_id=repayment.received_by_user_id,
        created_at=repayment.created_at,
        allocations=[allocation_schema(a) for a in allocations],
    )


def schedule_item_schema(item) -> ScheduleItemSchema:
    return ScheduleItemSchema(
        id=str(item.id),
        loan_id=str(item.loan_id),
        sequence=item.sequence,
        due_date=item.due_date,
        principal_due=item.principal_due,
        interest_due=item.interest_due,
        total_due=item.total_due,
        paid_amount=item.paid_amount,
        outstanding=item.total_due - item.paid_amount,
        status=item.status,
        closed_at=item.closed_at,
        allocations=[
            ScheduleAllocationSchema(
                repayment_id=str(a.repayment_id),
                amount=a.amount,
                method=a.repayment.method,
                paid_at=a.repayment.paid_at,
                reference=a.repayment.reference,
                repayment_deleted=a.repayment.is_deleted,
            )
            for a in item.allocations
        ],
    )


def loan_schema(loan) -> LoanSchema:
    return LoanSchema(
        loan_id=str(loan.id),
        loan_number=loan.loan_number,
        customer_id=loan.customer_id,
        branch_id=loan.branch_id,
        assigned_officer_id=loan.assigned_officer_id,
        principal_amount=loan.principal_amount,
        status=loan.status,
        closed_at=loan.closed_at,
    )
